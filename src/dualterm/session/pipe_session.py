"""Pipe session — terminal emulation over plain stdin/stdout/stderr pipes.

Used when no pseudo-terminal is available (or when forced). A process
on pipes gets none of a terminal's help, so this session fakes the
parts that matter to an interactive shell:

* the process leads its own process group, so SIGWINCH on resize and
  signals on kill reach every descendant, not just the shell;
* stdout and stderr are merged into the one output feed, as they
  would be on a terminal device;
* a carriage return is written shortly after start, because a shell
  without a tty tends to hold its first prompt until it sees input.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, ClassVar

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
    signal_name,
)
from dualterm.session.events import SessionEvents

logger = logging.getLogger(__name__)

READ_SIZE = 4096
KICK = b"\r"
# How long to keep reading after the process exits, in case a detached
# descendant still holds the pipes open.
DRAIN_TIMEOUT = 1.0

_POSIX = sys.platform != "win32"


def spawn_failure_code(exc: BaseException, cwd: str | None = None) -> int:
    """Shell-style exit code for a command that could not be started.

    127 when the command is missing, 126 when it cannot be executed, 1
    for anything else. A missing working directory also surfaces as
    FileNotFoundError, but names the directory rather than the command.
    """
    if isinstance(exc, FileNotFoundError) and not (cwd and exc.filename == cwd):
        return 127
    if isinstance(exc, PermissionError):
        return 126
    return 1


@dataclass
class PipeSession:
    """A session whose process talks to us over ordinary pipes."""

    kind: ClassVar[BackendKind] = BackendKind.PIPE

    spec: LaunchSpec
    kick_delay: float = 0.05
    geometry: Geometry = field(init=False)
    events: SessionEvents = field(default_factory=SessionEvents, init=False)

    _proc: asyncio.subprocess.Process | None = field(default=None, init=False)
    _state: SessionState = field(default=SessionState.STARTING, init=False)
    _pumps: list[asyncio.Task] = field(default_factory=list, init=False)
    _waiter: asyncio.Task | None = field(default=None, init=False)
    _kick_handle: asyncio.TimerHandle | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.geometry = Geometry(*self.spec.geometry.as_tuple())

    async def start(self) -> None:
        """Spawn the process. Never raises for an unstartable command.

        If the command cannot be started the session goes straight to
        FAILED: the error callback gets the exception and the exit
        notification carries a shell-style failure code.
        """
        kwargs: dict[str, Any] = {}
        if _POSIX:
            kwargs["start_new_session"] = True
        else:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.spec.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.spec.cwd,
                env=self.spec.env,
                **kwargs,
            )
        except OSError as e:
            self._fail(e)
            return

        self._state = SessionState.RUNNING
        self._pumps = [
            asyncio.create_task(self._pump(self._proc.stdout)),
            asyncio.create_task(self._pump(self._proc.stderr)),
        ]
        self._waiter = asyncio.create_task(self._wait_exit())
        self._kick_handle = asyncio.get_running_loop().call_later(
            self.kick_delay, self._kick
        )

        logger.info(
            "Pipe session started: pid=%d cmd=%s",
            self._proc.pid,
            " ".join(self.spec.argv),
        )

    def _fail(self, exc: OSError) -> None:
        self._state = SessionState.FAILED
        code = spawn_failure_code(exc, self.spec.cwd)
        logger.warning(
            "Failed to start %s (code=%d): %s", self.spec.command, code, exc
        )
        self.events.emit_error(exc)
        self.events.emit_exit(ExitStatus(code=code))

    async def _pump(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(READ_SIZE)
            if not data:
                break
            self.events.emit_data(decoder.decode(data))
        self.events.emit_data(decoder.decode(b"", final=True))

    async def _wait_exit(self) -> None:
        assert self._proc is not None
        returncode = await self._proc.wait()
        if self._kick_handle is not None:
            self._kick_handle.cancel()

        # Deliver whatever is still buffered before announcing the exit
        done, pending = await asyncio.wait(self._pumps, timeout=DRAIN_TIMEOUT)
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.debug("Output pump for pid=%d ended: %s", self._proc.pid, task.exception())

        if self._proc.stdin is not None:
            self._proc.stdin.close()

        self._state = SessionState.EXITED
        if returncode < 0:
            status = ExitStatus(code=None, signal=signal_name(-returncode))
        else:
            status = ExitStatus(code=returncode)
        logger.info(
            "Pipe session pid=%d exited (code=%s signal=%s)",
            self._proc.pid,
            status.code,
            status.signal,
        )
        self.events.emit_exit(status)

    def _kick(self) -> None:
        self._kick_handle = None
        self.write(KICK)

    def _stdin_open(self) -> bool:
        return (
            self._proc is not None
            and self._proc.stdin is not None
            and not self._proc.stdin.is_closing()
        )

    def write(self, data: str | bytes) -> None:
        if not self.alive or not self._stdin_open():
            return
        try:
            self._proc.stdin.write(encode_input(data))
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("Pipe write dropped (pid=%s): %s", self.pid, e)

    def resize(self, cols: int, rows: int) -> None:
        """Store the new size and tell the process group to re-query it.

        There is no terminal device to resize, so the best we can do is
        SIGWINCH the whole group. On Windows only the size is stored.
        """
        try:
            self.geometry = Geometry(cols, rows)
        except ValueError as e:
            logger.warning("Ignoring resize: %s", e)
            return
        if not _POSIX or not self.alive:
            return
        try:
            os.killpg(self._proc.pid, signal.SIGWINCH)
        except OSError as e:
            logger.debug("SIGWINCH to group %s failed: %s", self.pid, e)

    def kill(self, sig: str | int = "SIGTERM") -> None:
        """Signal the whole process group so no descendant is orphaned."""
        if not self.alive:
            return
        signum = resolve_signal(sig)
        if signum is None:
            return
        self._state = SessionState.KILLING
        try:
            if _POSIX:
                os.killpg(self._proc.pid, signum)
            else:
                self._proc.send_signal(signum)
            logger.info("Sent %s to pipe session group %d", signum.name, self._proc.pid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._proc.pid)
        except OSError as e:
            logger.warning("Error signalling pipe session %d: %s", self._proc.pid, e)

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
