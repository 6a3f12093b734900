"""Tests for the session event bus."""

from ..session.events import SessionEvent, SessionEventEmitter, SessionEventType


def test_subscribe_and_emit():
    emitter = SessionEventEmitter()
    received = []
    emitter.subscribe(SessionEventType.PHASE_CHANGED, received.append)
    emitter.emit(SessionEvent(SessionEventType.PHASE_CHANGED, data={"phase": "induction"}))
    emitter.emit(SessionEvent(SessionEventType.SESSION_END))
    assert len(received) == 1
    assert received[0].get("phase") == "induction"
    assert received[0].timestamp is not None


def test_subscribe_twice_delivers_once():
    emitter = SessionEventEmitter()
    received = []
    emitter.subscribe(SessionEventType.CLIP_ERROR, received.append)
    emitter.subscribe(SessionEventType.CLIP_ERROR, received.append)
    emitter.emit_type(SessionEventType.CLIP_ERROR, handle="a.ogg")
    assert len(received) == 1


def test_unsubscribe():
    emitter = SessionEventEmitter()
    received = []
    emitter.subscribe(SessionEventType.SESSION_START, received.append)
    emitter.unsubscribe(SessionEventType.SESSION_START, received.append)
    emitter.unsubscribe(SessionEventType.SESSION_STOP, received.append)
    emitter.emit_type(SessionEventType.SESSION_START)
    assert received == []


def test_wildcard_subscriber():
    emitter = SessionEventEmitter()
    types = []
    callback = lambda evt: types.append(evt.event_type)  # noqa: E731
    emitter.subscribe_all(callback)
    emitter.emit_type(SessionEventType.SESSION_START)
    emitter.emit_type(SessionEventType.EXIT_REQUESTED, reason="back")
    emitter.unsubscribe_all(callback)
    emitter.emit_type(SessionEventType.SESSION_END)
    assert types == [SessionEventType.SESSION_START, SessionEventType.EXIT_REQUESTED]


def test_callback_error_does_not_stop_delivery(caplog):
    emitter = SessionEventEmitter()
    received = []

    def broken(_evt):
        raise ValueError("subscriber bug")

    emitter.subscribe(SessionEventType.SESSION_END, broken)
    emitter.subscribe(SessionEventType.SESSION_END, received.append)
    emitter.emit_type(SessionEventType.SESSION_END)
    assert len(received) == 1
    assert "subscriber bug" in caplog.text


def test_emit_type_payload_and_str():
    emitter = SessionEventEmitter()
    event = emitter.emit_type(SessionEventType.AFFIRMATION_START, index=2, id="c")
    assert event.data == {"index": 2, "id": "c"}
    assert "AFFIRMATION_START" in str(event)
    assert str(SessionEvent(SessionEventType.SESSION_STOP)) == "SessionEvent(SESSION_STOP)"


def test_clear_all():
    emitter = SessionEventEmitter()
    received = []
    emitter.subscribe(SessionEventType.SESSION_START, received.append)
    emitter.subscribe_all(received.append)
    emitter.clear_all()
    emitter.emit_type(SessionEventType.SESSION_START)
    assert received == []
