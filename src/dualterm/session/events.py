"""Event plumbing for terminal sessions: ordered data, one exit, errors."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import AsyncIterator

from dualterm.session.base import (
    DataCallback,
    ErrorCallback,
    ExitCallback,
    ExitStatus,
)

logger = logging.getLogger(__name__)


class SessionEvents:
    """Delivers a session's output and exit notification.

    Each concrete session owns one of these. It guarantees:

    * data chunks reach the data callback and the ``stream()`` consumer
      in the order they were emitted;
    * nothing is delivered after the exit notification;
    * the exit notification fires exactly once, no matter how many
      code paths race to report it.

    Output is only queued for ``stream()`` once a consumer has attached;
    a session driven purely by callbacks holds nothing but its tail.

    A bounded tail of recent output is kept so exit notifications can
    show the last few lines the process printed.
    """

    def __init__(self, tail_chars: int = 4096) -> None:
        self._on_data: DataCallback | None = None
        self._on_exit: ExitCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._queue: asyncio.Queue[str | None] | None = None
        self._exited = asyncio.Event()
        self._exit_status: ExitStatus | None = None
        self._error: BaseException | None = None
        self._tail: deque[str] = deque()
        self._tail_len = 0
        self._tail_chars = tail_chars

    def set_on_data(self, callback: DataCallback | None) -> None:
        self._on_data = callback

    def set_on_exit(self, callback: ExitCallback | None) -> None:
        """Set the exit callback.

        If the session already exited the callback is invoked right away,
        so late subscribers still get their single notification.
        """
        self._on_exit = callback
        if callback is not None and self._exit_status is not None:
            self._invoke(callback, self._exit_status, "exit")

    def set_on_error(self, callback: ErrorCallback | None) -> None:
        self._on_error = callback
        if callback is not None and self._error is not None:
            self._invoke(callback, self._error, "error")

    def emit_data(self, chunk: str) -> None:
        if not chunk or self._exit_status is not None:
            return
        self._tail.append(chunk)
        self._tail_len += len(chunk)
        while self._tail_len > self._tail_chars and len(self._tail) > 1:
            self._tail_len -= len(self._tail.popleft())
        if self._queue is not None:
            self._queue.put_nowait(chunk)
        if self._on_data is not None:
            self._invoke(self._on_data, chunk, "data")

    def emit_exit(self, status: ExitStatus) -> bool:
        """Record the exit status. Returns False if exit was already emitted."""
        if self._exit_status is not None:
            return False
        self._exit_status = status
        if self._queue is not None:
            self._queue.put_nowait(None)
        self._exited.set()
        if self._on_exit is not None:
            self._invoke(self._on_exit, status, "exit")
        return True

    def emit_error(self, exc: BaseException) -> None:
        self._error = exc
        if self._on_error is not None:
            self._invoke(self._on_error, exc, "error")

    def _invoke(self, callback, arg, kind: str) -> None:
        try:
            callback(arg)
        except Exception:
            logger.exception("Error in %s callback", kind)

    def stream(self) -> AsyncIterator[str]:
        """Attach the output consumer and return its chunk iterator.

        The iterator yields every chunk emitted after this call, until
        the session exits. Earlier chunks are not replayed; only
        ``tail()`` remembers them. There is a single consumer per session.
        """
        if self._queue is not None:
            raise RuntimeError("Session output is already being consumed")
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        if self._exit_status is not None:
            queue.put_nowait(None)
        self._queue = queue
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue[str | None]) -> AsyncIterator[str]:
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            yield chunk

    async def wait(self, timeout: float | None = None) -> ExitStatus | None:
        """Wait for the exit notification. Returns None on timeout."""
        try:
            await asyncio.wait_for(self._exited.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self._exit_status

    def tail(self, n: int = 3) -> list[str]:
        """The last ``n`` non-empty lines of output."""
        text = "".join(self._tail)
        lines = [line for line in text.replace("\r", "").split("\n") if line.strip()]
        return lines[-n:]

    @property
    def exited(self) -> bool:
        return self._exit_status is not None

    @property
    def exit_status(self) -> ExitStatus | None:
        return self._exit_status

    @property
    def error(self) -> BaseException | None:
        return self._error
