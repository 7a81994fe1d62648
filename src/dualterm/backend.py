"""Backend selection — real PTY when possible, pipe emulation otherwise.

Two levels decide the backend:

1. A capability probe, run once per process, answers "can this
   machine open pseudo-terminals at all?".
2. Per spawn, a PTY session is attempted; if it fails to start (odd
   command, bad cwd, exhausted ptys) that one session falls back to
   pipes and the caller never sees the error.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Iterable

from dualterm.config import TerminalConfig, get_config
from dualterm.launcher import SpawnRequest, prepare_launch
from dualterm.session.base import BackendKind, SessionHandle
from dualterm.session.pipe_session import PipeSession

logger = logging.getLogger(__name__)


def _probe_default() -> bool:
    """Try the standard route: the pty module and a throwaway pty pair."""
    try:
        import fcntl  # noqa: F401
        import pty
        import termios  # noqa: F401
    except ImportError as e:
        logger.debug("pty modules unavailable: %s", e)
        return False
    try:
        master_fd, slave_fd = pty.openpty()
    except OSError as e:
        logger.debug("openpty failed: %s", e)
        return False
    os.close(master_fd)
    os.close(slave_fd)
    return True


def _probe_alternates(paths: Iterable[str]) -> bool:
    """Look for a pty multiplexer device somewhere other than the default."""
    for path in paths:
        try:
            fd = os.open(path, os.O_RDWR | getattr(os, "O_NOCTTY", 0))
        except OSError:
            continue
        os.close(fd)
        logger.debug("Found pty multiplexer at %s", path)
        return True
    return False


def probe_pty_support(search_paths: Iterable[str] | None = None) -> bool:
    """Default discovery strategy for the PTY capability."""
    if _probe_default():
        return True
    if search_paths is None:
        search_paths = get_config().pty_search_paths
    return _probe_alternates(search_paths)


_probe: Callable[[], bool] = probe_pty_support
_pty_available: bool | None = None


def set_pty_probe(probe: Callable[[], bool] | None) -> None:
    """Swap the discovery strategy (None restores the default).

    The cached answer is dropped so the next ``pty_available()`` call
    probes again.
    """
    global _probe, _pty_available
    _probe = probe or probe_pty_support
    _pty_available = None


def pty_available() -> bool:
    """Whether a PTY facility exists. Probed once per process."""
    global _pty_available
    if _pty_available is None:
        try:
            _pty_available = bool(_probe())
        except Exception as e:
            logger.warning("PTY probe raised, assuming no PTY: %s", e)
            _pty_available = False
        if _pty_available:
            logger.info("PTY support available")
        else:
            logger.info("No PTY support found, terminals will use pipe emulation")
    return _pty_available


def select_backend(config: TerminalConfig | None = None) -> BackendKind:
    """The backend a new session will try first."""
    cfg = config or get_config()
    if cfg.force_pipe:
        return BackendKind.PIPE
    if pty_available():
        return BackendKind.PTY
    return BackendKind.PIPE


async def spawn_session(
    request: SpawnRequest, config: TerminalConfig | None = None
) -> SessionHandle:
    """Start a terminal session for ``request`` on the best backend.

    Never raises for a command that fails to start: the returned handle
    reports the failure through its error and exit notifications.
    """
    cfg = config or get_config()
    spec = prepare_launch(request, cfg)

    if select_backend(cfg) is BackendKind.PTY:
        from dualterm.session.pty_session import PTYSession

        session = PTYSession(spec)
        try:
            await session.start()
            return session
        except Exception as e:
            logger.warning(
                "PTY spawn failed for %s, falling back to pipes: %s", spec.command, e
            )

    pipe = PipeSession(spec, kick_delay=cfg.kick_delay)
    await pipe.start()
    return pipe
