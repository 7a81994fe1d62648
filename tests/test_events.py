"""Tests for dualterm.session.events.SessionEvents."""

from __future__ import annotations

import asyncio
import logging

import pytest

from dualterm.session.base import ExitStatus
from dualterm.session.events import SessionEvents


class TestData:
    def test_callback_order(self) -> None:
        events = SessionEvents()
        seen: list[str] = []
        events.set_on_data(seen.append)
        for chunk in ["a", "b", "c"]:
            events.emit_data(chunk)
        assert seen == ["a", "b", "c"]

    def test_empty_chunks_dropped(self) -> None:
        events = SessionEvents()
        seen: list[str] = []
        events.set_on_data(seen.append)
        events.emit_data("")
        assert seen == []

    def test_no_data_after_exit(self) -> None:
        events = SessionEvents()
        seen: list[str] = []
        events.set_on_data(seen.append)
        events.emit_exit(ExitStatus(0))
        events.emit_data("late")
        assert seen == []

    def test_callback_error_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        events = SessionEvents()

        def _boom(chunk: str) -> None:
            raise RuntimeError("callback failed")

        events.set_on_data(_boom)
        with caplog.at_level(logging.ERROR):
            events.emit_data("x")  # Should not raise
        assert "Error in data callback" in caplog.text


class TestExit:
    def test_fires_once(self) -> None:
        events = SessionEvents()
        seen: list[ExitStatus] = []
        events.set_on_exit(seen.append)
        assert events.emit_exit(ExitStatus(0)) is True
        assert events.emit_exit(ExitStatus(1)) is False
        assert seen == [ExitStatus(0)]
        assert events.exit_status == ExitStatus(0)
        assert events.exited

    def test_late_subscriber_gets_exit(self) -> None:
        events = SessionEvents()
        events.emit_exit(ExitStatus(None, "SIGTERM"))
        seen: list[ExitStatus] = []
        events.set_on_exit(seen.append)
        assert seen == [ExitStatus(None, "SIGTERM")]

    def test_late_subscriber_gets_error(self) -> None:
        events = SessionEvents()
        err = FileNotFoundError("nope")
        events.emit_error(err)
        seen: list[BaseException] = []
        events.set_on_error(seen.append)
        assert seen == [err]
        assert events.error is err


class TestStream:
    def test_stream_until_exit(self) -> None:
        async def _run() -> list[str]:
            events = SessionEvents()
            chunks = events.stream()
            events.emit_data("one")
            events.emit_data("two")
            events.emit_exit(ExitStatus(0))
            return [chunk async for chunk in chunks]

        assert asyncio.run(_run()) == ["one", "two"]

    def test_only_chunks_after_attach(self) -> None:
        async def _run() -> tuple[list[str], list[str]]:
            events = SessionEvents()
            events.emit_data("before\n")
            chunks = events.stream()
            events.emit_data("after\n")
            events.emit_exit(ExitStatus(0))
            return [chunk async for chunk in chunks], events.tail(5)

        streamed, tail = asyncio.run(_run())
        assert streamed == ["after\n"]
        assert tail == ["before", "after"]

    def test_attach_after_exit_ends_immediately(self) -> None:
        async def _run() -> list[str]:
            events = SessionEvents()
            events.emit_exit(ExitStatus(0))
            return [chunk async for chunk in events.stream()]

        assert asyncio.run(_run()) == []

    def test_callback_only_queues_nothing(self) -> None:
        events = SessionEvents(tail_chars=64)
        seen: list[str] = []
        events.set_on_data(seen.append)
        for _ in range(10_000):
            events.emit_data("x" * 100)
        assert len(seen) == 10_000
        assert events._queue is None
        assert sum(len(c) for c in events._tail) <= 164

    def test_single_consumer(self) -> None:
        async def _run() -> None:
            events = SessionEvents()
            events.emit_exit(ExitStatus(0))
            _ = [c async for c in events.stream()]
            with pytest.raises(RuntimeError):
                events.stream()

        asyncio.run(_run())

    def test_wait(self) -> None:
        async def _run() -> ExitStatus | None:
            events = SessionEvents()
            asyncio.get_running_loop().call_later(0.01, events.emit_exit, ExitStatus(3))
            return await events.wait(timeout=5)

        assert asyncio.run(_run()) == ExitStatus(3)

    def test_wait_timeout(self) -> None:
        async def _run() -> ExitStatus | None:
            return await SessionEvents().wait(timeout=0.01)

        assert asyncio.run(_run()) is None


class TestTail:
    def test_last_lines(self) -> None:
        events = SessionEvents()
        events.emit_data("first\r\nsecond\n")
        events.emit_data("third\n\nfourth")
        assert events.tail(3) == ["second", "third", "fourth"]

    def test_bounded(self) -> None:
        events = SessionEvents(tail_chars=10)
        for i in range(100):
            events.emit_data(f"line {i}\n")
        assert events.tail(1) == ["line 99"]
        assert "line 0" not in events.tail(100)
