import asyncio

from counterlink.negotiation import ConnectionState, NegotiationStateMachine, SessionRegistry
from counterlink.signaling import LoopbackSignalingChannel
from counterlink.signaling.schemas import EVENT_JOIN_SESSION

from fakes import FakeFactory


def build_registry():
    channels = {}

    def factory(session_key: str) -> NegotiationStateMachine:
        channel = LoopbackSignalingChannel(f"counter-{session_key}")
        channels[session_key] = channel
        return NegotiationStateMachine(channel, FakeFactory())

    return SessionRegistry(factory), channels


def test_open_initialises_and_starts_each_session() -> None:
    async def scenario() -> None:
        registry, channels = build_registry()
        first = await registry.open("KIOSK-A")
        second = await registry.open("KIOSK-B")

        assert first is not second
        assert len(registry) == 2
        assert "KIOSK-A" in registry
        assert registry.get("KIOSK-B") is second
        assert channels["KIOSK-A"].emitted_events(EVENT_JOIN_SESSION) == [
            {"sessionKey": "KIOSK-A", "counterId": "counter-KIOSK-A"}
        ]
        assert sorted(registry) == ["KIOSK-A", "KIOSK-B"]
        await registry.close_all()

    asyncio.run(scenario())


def test_open_returns_live_session_for_same_key() -> None:
    async def scenario() -> None:
        registry, channels = build_registry()
        first = await registry.open("KIOSK-A")
        again = await registry.open("KIOSK-A")

        assert again is first
        assert len(channels["KIOSK-A"].emitted_events(EVENT_JOIN_SESSION)) == 1
        await registry.close_all()

    asyncio.run(scenario())


def test_sessions_are_negotiated_independently() -> None:
    async def scenario() -> None:
        registry, channels = build_registry()
        first = await registry.open("KIOSK-A")
        second = await registry.open("KIOSK-B")

        channels["KIOSK-A"].deliver("session-joined", {"kioskId": "K-A"})
        await first.wait_idle()

        assert first.state is ConnectionState.NEGOTIATING
        assert second.state is ConnectionState.NEW
        await registry.close_all()

    asyncio.run(scenario())


def test_close_removes_and_closes_session() -> None:
    async def scenario() -> None:
        registry, _ = build_registry()
        session = await registry.open("KIOSK-A")

        assert await registry.close("KIOSK-A") is True
        assert await registry.close("KIOSK-A") is False
        assert session.state is ConnectionState.CLOSED
        assert len(registry) == 0

    asyncio.run(scenario())
