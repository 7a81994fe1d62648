"""Tests for dualterm.wire (Wire, WireEvent, EventType)."""

from __future__ import annotations

import asyncio

from dualterm.session.base import ExitStatus
from dualterm.wire import EventType, Wire, WireEvent


class TestEventType:
    def test_all_variants_exist(self) -> None:
        expected = {
            "SESSION_STARTED",
            "SESSION_DATA",
            "SESSION_EXIT",
            "SESSION_ERROR",
            "STATUS",
        }
        assert {e.name for e in EventType} == expected

    def test_values_are_lowercase(self) -> None:
        for e in EventType:
            assert e.value == e.name.lower()


class TestWire:
    def test_send_to_subscriber(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send(WireEvent(type=EventType.STATUS, data={"message": "hi"}))
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.STATUS
        assert event.data["message"] == "hi"

    def test_send_to_multiple_subscribers(self) -> None:
        wire = Wire()
        q1 = wire.subscribe()
        q2 = wire.subscribe()
        wire.send_session_data("s1", "chunk")
        e1 = q1.get_nowait()
        e2 = q2.get_nowait()
        assert e1 is not None and e2 is not None
        assert e1.type == e2.type == EventType.SESSION_DATA

    def test_unsubscribe(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.unsubscribe(q)
        wire.send_status("gone")
        assert q.empty()

    def test_unsubscribe_nonexistent_is_safe(self) -> None:
        wire = Wire()
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        wire.unsubscribe(q)  # Should not raise


class TestWireClosedGuard:
    def test_close_sends_sentinel_to_all_subscribers(self) -> None:
        wire = Wire()
        q1 = wire.subscribe()
        q2 = wire.subscribe()
        wire.close()
        assert q1.get_nowait() is None
        assert q2.get_nowait() is None
        assert wire.closed

    def test_sends_after_close_dropped(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        q.get_nowait()  # drain sentinel
        wire.send_status("nope")
        wire.send_session_started("s", "t", "pty", 1)
        wire.send_session_data("s", "nope")
        wire.send_session_error("s", "nope")
        wire.send_session_exit("s", "t", ExitStatus(0))
        assert q.empty()


class TestSessionEvents:
    def test_started(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_session_started("s1", "bash", "pty", 4242)
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.SESSION_STARTED
        assert event.data == {"session_id": "s1", "title": "bash", "kind": "pty", "pid": 4242}

    def test_error(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_session_error("s1", "No such file")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.SESSION_ERROR
        assert event.data["error"] == "No such file"

    def test_exit_with_signal(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_session_exit("s1", "bash", ExitStatus(None, "SIGTERM"), "bye")
        event = q.get_nowait()
        assert event is not None
        assert event.type == EventType.SESSION_EXIT
        assert event.data["code"] is None
        assert event.data["signal"] == "SIGTERM"
        assert event.data["last_output"] == "bye"

    def test_exit_truncates_output(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send_session_exit("s2", "test", ExitStatus(1), "x" * 1000)
        event = q.get_nowait()
        assert event is not None
        assert len(event.data["last_output"]) == 500
