import asyncio

from fastapi.testclient import TestClient

from counterlink.api import create_app
from counterlink.negotiation import NegotiationStateMachine
from counterlink.settings import CounterSettings
from counterlink.signaling import LoopbackSignalingChannel
from counterlink.signaling.schemas import EVENT_JOIN_SESSION

from fakes import FakeFactory


def make_client(initialise: bool = True):
    channel = LoopbackSignalingChannel("C1")
    factory = FakeFactory()
    session = NegotiationStateMachine(channel, factory, negotiation_timeout=None)
    if initialise:
        asyncio.run(session.initialise())
    app = create_app(session=session, settings=CounterSettings(session_key="KIOSK-ABC123"))
    return TestClient(app), session, channel, factory


def test_healthz_reports_session_key() -> None:
    client, _, _, _ = make_client()

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sessionKey": "KIOSK-ABC123", "connectionState": "new"}


def test_session_snapshot() -> None:
    client, _, _, _ = make_client()

    payload = client.get("/session").json()

    assert payload["localId"] == "C1"
    assert payload["remoteId"] is None
    assert payload["connectionState"] == "new"
    assert payload["lastReceivedMessage"] is None
    assert payload["role"] == "initiator"


def test_start_uses_configured_session_key() -> None:
    client, _, channel, _ = make_client()

    response = client.post("/session/start")

    assert response.status_code == 200
    assert response.json() == {"started": True, "sessionKey": "KIOSK-ABC123"}
    assert channel.emitted_events(EVENT_JOIN_SESSION) == [{"sessionKey": "KIOSK-ABC123", "counterId": "C1"}]


def test_start_with_explicit_session_key() -> None:
    client, _, channel, _ = make_client()

    response = client.post("/session/start", json={"sessionKey": "KIOSK-XYZ"})

    assert response.status_code == 200
    assert channel.emitted_events(EVENT_JOIN_SESSION)[0]["sessionKey"] == "KIOSK-XYZ"


def test_start_before_initialise_is_conflict() -> None:
    client, _, channel, _ = make_client(initialise=False)

    response = client.post("/session/start")

    assert response.status_code == 409
    assert channel.emitted == []


def test_message_without_open_channel_is_conflict() -> None:
    client, _, _, _ = make_client()

    response = client.post("/messages", json={"text": "hi"})

    assert response.status_code == 409


def test_message_on_open_channel_is_accepted() -> None:
    client, session, _, factory = make_client()
    asyncio.run(session.on_joined("K1"))
    factory.handle.channel.state = "open"

    response = client.post("/messages", json={"text": "hi"})

    assert response.status_code == 202
    assert factory.handle.channel.sent == ["hi"]


def test_diagnostics_are_listed() -> None:
    client, _, _, _ = make_client()
    client.post("/messages", json={"text": "hi"})
    client.post("/messages", json={"text": "again"})

    events = client.get("/diagnostics", params={"limit": 1}).json()["events"]

    assert len(events) == 1
    assert events[0]["kind"] == "error"
    assert events[0]["payload"]["error"] == "ChannelNotOpen"


def test_diagnostics_stream_pushes_new_entries() -> None:
    client, _, _, _ = make_client()

    with client.websocket_connect("/diagnostics/stream") as websocket:
        client.post("/messages", json={"text": "hi"})
        entry = websocket.receive_json()

    assert entry["kind"] == "error"
    assert entry["payload"]["error"] == "ChannelNotOpen"
