import asyncio

from counterlink.rtc.ice_servers import IceServerConfig
from counterlink.signaling import LoopbackSignalingChannel, WebSocketSignalingChannel
from counterlink.signaling.websocket import decode_frame, encode_frame


def test_loopback_dispatches_copies_to_handlers() -> None:
    channel = LoopbackSignalingChannel("C1")
    received = []

    def handler(payload: dict) -> None:
        payload["mutated"] = True
        received.append(payload)

    channel.on("answer", handler)
    channel.on("answer", received.append)
    channel.deliver("answer", {"from": "K1"})

    assert received[0] == {"from": "K1", "mutated": True}
    assert received[1] == {"from": "K1"}


def test_loopback_off_removes_handler() -> None:
    channel = LoopbackSignalingChannel()
    received = []
    token = channel.on("offer", received.append)
    assert channel.handler_count("offer") == 1

    channel.off(token)
    channel.deliver("offer", {})

    assert received == []
    assert channel.handler_count() == 0


def test_loopback_runs_async_handlers() -> None:
    async def scenario() -> list:
        channel = LoopbackSignalingChannel()
        received = []

        async def handler(payload: dict) -> None:
            await asyncio.sleep(0)
            received.append(payload)

        channel.on("session-joined", handler)
        channel.deliver("session-joined", {"kioskId": "K1"})
        await asyncio.sleep(0.01)
        return received

    assert asyncio.run(scenario()) == [{"kioskId": "K1"}]


def test_loopback_records_and_forwards_emissions() -> None:
    forwarded = []
    channel = LoopbackSignalingChannel("C1", on_emit=lambda event, payload: forwarded.append(event))
    channel.emit("join-session", {"sessionKey": "K", "counterId": "C1"})

    assert channel.emitted == [("join-session", {"sessionKey": "K", "counterId": "C1"})]
    assert channel.emitted_events("join-session") == [{"sessionKey": "K", "counterId": "C1"}]
    assert forwarded == ["join-session"]
    assert asyncio.run(channel.get_local_id()) == "C1"


def test_frame_encoding() -> None:
    raw = encode_frame("offer", {"to": "K1"})

    assert raw == '{"event":"offer","data":{"to":"K1"}}'
    assert decode_frame(raw) == ("offer", {"to": "K1"})


def test_malformed_frames_are_rejected() -> None:
    assert decode_frame("not json") is None
    assert decode_frame("[1, 2]") is None
    assert decode_frame('{"data": {}}') is None
    assert decode_frame('{"event": "answer", "data": "oops"}') == ("answer", {})


def test_websocket_channel_uses_static_ice_servers() -> None:
    servers = [IceServerConfig(urls=["turn:turn.example.com"], username="u", credential="p")]
    channel = WebSocketSignalingChannel("ws://127.0.0.1:1/signaling", ice_servers=servers)

    assert asyncio.run(channel.get_ice_servers()) == servers
    assert channel.is_closed is True


def test_websocket_emit_before_connect_is_dropped() -> None:
    channel = WebSocketSignalingChannel("ws://127.0.0.1:1/signaling")

    channel.emit("offer", {"to": "K1"})

    assert channel.is_closed is True
