"""Session manager — the registry mapping session ids to live terminals."""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from dualterm.backend import spawn_session
from dualterm.config import TerminalConfig, get_config
from dualterm.launcher import SpawnRequest, default_shell
from dualterm.session.base import ExitStatus, SessionHandle
from dualterm.wire import Wire

logger = logging.getLogger(__name__)

# Reports the shell's cwd to the client as OSC 6 after every prompt.
PROMPT_COMMAND = 'printf "\\x1b]6;%s\\x07" "$PWD"'


@dataclass
class ManagedSession:
    """A session plus the bookkeeping the manager keeps for it."""

    id: str
    title: str
    handle: SessionHandle
    initial_cwd: str
    created: float = field(default_factory=time.monotonic)
    ready: bool = False
    pending_writes: list[str | bytes] = field(default_factory=list)
    _ready_timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def mark_ready(self) -> None:
        """Flush input queued while the terminal was still coming up."""
        if self.ready:
            return
        self.ready = True
        if self._ready_timer is not None:
            self._ready_timer.cancel()
            self._ready_timer = None
        pending, self.pending_writes = self.pending_writes, []
        for data in pending:
            self.handle.write(data)


class SessionManager:
    """Manages the lifecycle of multiple terminal sessions.

    The manager owns the id -> session map and is the only place that
    locks around it. It ensures:
    - Sessions are tracked and can be looked up by ID
    - Input sent before a terminal is ready is queued, not lost
    - Exited sessions are dropped and announced on the wire
    - All sessions are killed on cleanup (no orphan processes)
    """

    def __init__(
        self, wire: Wire | None = None, config: TerminalConfig | None = None
    ) -> None:
        self._sessions: dict[str, ManagedSession] = {}
        self._lock = asyncio.Lock()
        self._wire = wire
        self._config = config or get_config()

    async def create(
        self,
        command: str | None = None,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        cols: int = 120,
        rows: int = 40,
        title: str = "",
    ) -> ManagedSession:
        """Spawn a terminal and start tracking it.

        Args:
            command: Program to run. Defaults to the user's shell.
            args: Arguments for the program.
            cwd: Working directory. Defaults to $HOME.
            env: Extra environment variables.
            cols: Initial width in columns.
            rows: Initial height in rows.
            title: Human-readable title for the session.

        Returns:
            The new managed session.
        """
        async with self._lock:
            if len(self._sessions) >= self._config.max_sessions:
                oldest = min(self._sessions.values(), key=lambda s: s.created)
                logger.warning("Max sessions reached, killing oldest: %s", oldest.id)
                self._drop(oldest.id, "SIGKILL")

            session_env = {"PROMPT_SP": "", "PROMPT_COMMAND": PROMPT_COMMAND}
            session_env.update(env or {})
            command = command or default_shell()
            cwd = cwd or os.path.expanduser("~")
            request = SpawnRequest(
                command=command,
                args=list(args or []),
                cwd=cwd,
                env=session_env,
                cols=cols,
                rows=rows,
            )
            handle = await spawn_session(request, self._config)

            managed = ManagedSession(
                id=uuid.uuid4().hex,
                title=title or os.path.basename(command),
                handle=handle,
                initial_cwd=cwd,
            )
            self._sessions[managed.id] = managed
            self._attach(managed)

        logger.info(
            "Session %s created: kind=%s pid=%s", managed.id, handle.kind.value, handle.pid
        )
        return managed

    def _attach(self, managed: ManagedSession) -> None:
        """Wire up a session's callbacks to the manager and the wire."""
        wire = self._wire
        session_id = managed.id

        if managed.handle.alive:
            managed._ready_timer = asyncio.get_running_loop().call_later(
                self._config.ready_timeout, managed.mark_ready
            )

        def _on_data(chunk: str) -> None:
            managed.mark_ready()
            if wire:
                wire.send_session_data(session_id, chunk)

        def _on_error(exc: BaseException) -> None:
            if wire:
                wire.send_session_error(session_id, str(exc))

        def _on_exit(status: ExitStatus) -> None:
            if managed._ready_timer is not None:
                managed._ready_timer.cancel()
                managed._ready_timer = None
            self._sessions.pop(session_id, None)
            logger.info(
                "Session %s exited (code=%s signal=%s)",
                session_id,
                status.code,
                status.signal,
            )
            if wire:
                wire.send_session_exit(
                    session_id, managed.title, status, "\n".join(managed.handle.tail(3))
                )

        if wire:
            wire.send_session_started(
                session_id, managed.title, managed.handle.kind.value, managed.handle.pid
            )
        managed.handle.set_on_data(_on_data)
        managed.handle.set_on_error(_on_error)
        managed.handle.set_on_exit(_on_exit)

    def get(self, session_id: str) -> ManagedSession | None:
        """Get a session by ID."""
        return self._sessions.get(session_id)

    def write(self, session_id: str, data: str | bytes) -> None:
        """Send input to a session, queueing it until the session is ready."""
        managed = self._sessions.get(session_id)
        if managed is None:
            logger.debug("Write to unknown session %s ignored", session_id)
            return
        if not managed.ready:
            managed.pending_writes.append(data)
            return
        managed.handle.write(data)

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        managed = self._sessions.get(session_id)
        if managed is None:
            logger.debug("Resize of unknown session %s ignored", session_id)
            return
        managed.handle.resize(cols, rows)

    async def kill(self, session_id: str, sig: str | int = "SIGTERM") -> None:
        """Kill a session and remove it from tracking."""
        async with self._lock:
            self._drop(session_id, sig)

    def _drop(self, session_id: str, sig: str | int) -> None:
        managed = self._sessions.pop(session_id, None)
        if managed is None:
            logger.debug("Kill of unknown session %s ignored", session_id)
            return
        managed.handle.kill(sig)

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all active sessions."""
        return [
            {
                "id": s.id,
                "title": s.title,
                "kind": s.handle.kind.value,
                "pid": s.handle.pid,
                "cols": s.handle.geometry.cols,
                "rows": s.handle.geometry.rows,
                "state": s.handle.state.value,
                "cwd": s.initial_cwd,
            }
            for s in self._sessions.values()
        ]

    async def cleanup(self, timeout: float = 2.0) -> None:
        """Kill all sessions. Called on shutdown.

        Sessions get SIGHUP first, like a closing terminal would send;
        anything still alive after ``timeout`` seconds gets SIGKILL.
        """
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        if self._wire is not None and sessions:
            self._wire.send_status(f"Closing {len(sessions)} terminal session(s)")
        for managed in sessions:
            managed.handle.kill("SIGHUP")
        for managed in sessions:
            if await managed.handle.wait(timeout) is None:
                logger.warning("Session %s ignored SIGHUP, killing", managed.id)
                managed.handle.kill("SIGKILL")
                await managed.handle.wait(timeout)
        logger.info("All terminal sessions cleaned up")

    def __len__(self) -> int:
        return len(self._sessions)
