from counterlink.negotiation import DiagnosticKind, DiagnosticStream
from counterlink.observable import EventHook, Observable


def test_observable_delivers_current_value_on_subscribe() -> None:
    observable = Observable("new")
    seen = []
    observable.subscribe(seen.append)

    assert seen == ["new"]


def test_observable_notifies_only_on_change() -> None:
    observable = Observable(0)
    seen = []
    observable.subscribe(seen.append)

    assert observable.set(1) is True
    assert observable.set(1) is False
    assert observable.set(1, force=True) is True

    assert seen == [0, 1, 1]
    assert observable.value == 1


def test_observer_failure_does_not_stop_others() -> None:
    observable = Observable(0)
    seen = []

    def broken(value: int) -> None:
        if value:
            raise RuntimeError("observer bug")

    observable.subscribe(broken)
    observable.subscribe(seen.append)
    observable.set(2)

    assert seen == [0, 2]


def test_event_hook_unsubscribe_and_clear() -> None:
    hook = EventHook("test")
    seen = []
    token = hook.subscribe(lambda *args: seen.append(args))
    hook.subscribe(lambda *args: seen.append(("second",) + args))
    assert hook.subscriber_count == 2

    hook.emit(1, 2)
    hook.unsubscribe(token)
    hook.emit(3)
    hook.clear()
    hook.emit(4)

    assert seen == [(1, 2), ("second", 1, 2), ("second", 3)]
    assert hook.subscriber_count == 0


def test_diagnostic_stream_history_is_bounded() -> None:
    stream = DiagnosticStream(history=3)
    received = []
    token = stream.subscribe(received.append)
    for index in range(5):
        stream.publish(DiagnosticKind.MESSAGE, index=index)
    stream.unsubscribe(token)
    stream.publish(DiagnosticKind.ERROR, message="late")

    assert [event.payload["index"] for event in received] == [0, 1, 2, 3, 4]
    assert [event.kind for event in stream.history] == [
        DiagnosticKind.MESSAGE,
        DiagnosticKind.MESSAGE,
        DiagnosticKind.ERROR,
    ]
    assert [event.payload.get("index") for event in stream.recent(2)] == [4, None]
    assert stream.recent(0) == []
    assert len(stream.of_kind(DiagnosticKind.ERROR)) == 1


def test_diagnostic_event_to_dict() -> None:
    stream = DiagnosticStream()
    event = stream.publish(DiagnosticKind.TRANSITION, **{"from": "new", "to": "negotiating"})

    data = event.to_dict()
    assert data["kind"] == "transition"
    assert data["payload"] == {"from": "new", "to": "negotiating"}
    assert isinstance(data["timestamp"], float)
