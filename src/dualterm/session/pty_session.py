"""PTY session — a terminal backed by a real pseudo-terminal device."""

from __future__ import annotations

import asyncio
import codecs
import fcntl
import logging
import os
import pty
import select
import struct
import subprocess
import termios
from dataclasses import dataclass, field
from typing import AsyncIterator, ClassVar

from dualterm.launcher import Geometry, LaunchSpec
from dualterm.session.base import (
    BackendKind,
    DataCallback,
    ErrorCallback,
    ExitCallback,
    ExitStatus,
    SessionState,
    encode_input,
    resolve_signal,
)
from dualterm.session.events import SessionEvents

logger = logging.getLogger(__name__)

READ_SIZE = 4096
# How often the reader wakes up to check on the child when the pty is quiet.
POLL_INTERVAL = 0.1
# How long to keep reading after the child exits, in case a descendant
# still holds the slave side open.
DRAIN_TIMEOUT = 1.0


def set_winsize(fd: int, cols: int, rows: int) -> None:
    """Send TIOCSWINSZ ioctl to resize the PTY."""
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def collapse_returncode(returncode: int) -> int:
    """Fold a signal death into a plain code the way shells do (128 + N)."""
    if returncode < 0:
        return 128 - returncode
    return returncode


@dataclass
class PTYSession:
    """A session whose process runs on the slave side of a pty pair.

    Bytes go verbatim to and from the master side, resize is a native
    window-size ioctl and kill signals the child directly.

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when
    spawned from within an asyncio event loop on macOS.
    """

    kind: ClassVar[BackendKind] = BackendKind.PTY

    spec: LaunchSpec
    geometry: Geometry = field(init=False)
    events: SessionEvents = field(default_factory=SessionEvents, init=False)

    _master_fd: int = field(default=-1, init=False)
    _proc: subprocess.Popen | None = field(default=None, init=False)
    _reader_task: asyncio.Task | None = field(default=None, init=False)
    _state: SessionState = field(default=SessionState.STARTING, init=False)

    def __post_init__(self) -> None:
        self.geometry = Geometry(*self.spec.geometry.as_tuple())

    async def start(self) -> None:
        """Open the pty pair and spawn the process on it.

        Raises whatever the OS raises: the backend selector treats any
        failure here as a reason to retry with pipes.
        """
        master_fd, slave_fd = pty.openpty()
        try:
            set_winsize(master_fd, self.geometry.cols, self.geometry.rows)
            self._proc = subprocess.Popen(
                self.spec.argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                env=self.spec.env,
                cwd=self.spec.cwd,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        self._master_fd = master_fd
        self._state = SessionState.RUNNING
        self._reader_task = asyncio.create_task(self._read_loop())

        logger.info(
            "PTY session started: pid=%d cmd=%s",
            self._proc.pid,
            " ".join(self.spec.argv),
        )

    def _read_chunk(self, poller: select.poll) -> bytes | None:
        """Read from the master, or return None if nothing came in time."""
        if not poller.poll(POLL_INTERVAL * 1000):
            return None
        return os.read(self._master_fd, READ_SIZE)

    async def _read_loop(self) -> None:
        """Forward master-side output until the slave side is gone.

        Once the child itself is reaped, reading continues for at most
        DRAIN_TIMEOUT even if a descendant keeps the slave open.
        """
        loop = asyncio.get_running_loop()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        poller = select.poll()
        poller.register(self._master_fd, select.POLLIN)
        deadline: float | None = None
        try:
            while True:
                try:
                    data = await loop.run_in_executor(None, self._read_chunk, poller)
                except OSError:
                    # EIO on Linux once every slave fd is closed
                    break
                if data == b"":
                    break
                if data is not None:
                    self.events.emit_data(decoder.decode(data))
                if deadline is None:
                    if self._proc.poll() is not None:
                        deadline = loop.time() + DRAIN_TIMEOUT
                elif loop.time() >= deadline:
                    logger.debug(
                        "PTY slave still open after pid=%d exited, stop reading",
                        self._proc.pid,
                    )
                    break
            self.events.emit_data(decoder.decode(b"", final=True))
        finally:
            returncode = await loop.run_in_executor(None, self._proc.wait)
            self._close_master()
            self._state = SessionState.EXITED
            status = ExitStatus(code=collapse_returncode(returncode))
            logger.info("PTY session pid=%d exited (code=%s)", self._proc.pid, status.code)
            self.events.emit_exit(status)

    def _close_master(self) -> None:
        fd, self._master_fd = self._master_fd, -1
        if fd >= 0:
            try:
                os.close(fd)
            except OSError:
                pass

    def write(self, data: str | bytes) -> None:
        if not self.alive or self._master_fd < 0:
            return
        view = memoryview(encode_input(data))
        try:
            while view:
                written = os.write(self._master_fd, view)
                view = view[written:]
        except OSError as e:
            logger.debug("PTY write dropped (pid=%s): %s", self.pid, e)

    def resize(self, cols: int, rows: int) -> None:
        try:
            self.geometry = Geometry(cols, rows)
        except ValueError as e:
            logger.warning("Ignoring resize: %s", e)
            return
        if self._master_fd < 0:
            return
        try:
            set_winsize(self._master_fd, cols, rows)
        except OSError as e:
            logger.debug("PTY resize failed (pid=%s): %s", self.pid, e)

    def kill(self, sig: str | int = "SIGTERM") -> None:
        """Signal the child process. The pty owns job control for its group."""
        if not self.alive or self._proc is None:
            return
        signum = resolve_signal(sig)
        if signum is None:
            return
        self._state = SessionState.KILLING
        try:
            self._proc.send_signal(signum)
            logger.info("Sent %s to PTY session pid=%d", signum.name, self._proc.pid)
        except ProcessLookupError:
            logger.debug("Process already gone: %d", self._proc.pid)
        except OSError as e:
            logger.warning("Error signalling PTY session pid=%d: %s", self._proc.pid, e)

    def set_on_data(self, callback: DataCallback | None) -> None:
        self.events.set_on_data(callback)

    def set_on_exit(self, callback: ExitCallback | None) -> None:
        self.events.set_on_exit(callback)

    def set_on_error(self, callback: ErrorCallback | None) -> None:
        self.events.set_on_error(callback)

    def output(self) -> AsyncIterator[str]:
        return self.events.stream()

    async def wait(self, timeout: float | None = None) -> ExitStatus | None:
        return await self.events.wait(timeout)

    def tail(self, n: int = 3) -> list[str]:
        return self.events.tail(n)

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def alive(self) -> bool:
        return self._state in (SessionState.RUNNING, SessionState.KILLING)

    @property
    def exit_status(self) -> ExitStatus | None:
        return self.events.exit_status
