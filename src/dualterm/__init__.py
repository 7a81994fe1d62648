"""dualterm — interactive terminal sessions with a PTY or pipe backend.

Callers ask ``spawn_session`` for a terminal and get back a handle with
the same write/resize/kill and data/exit semantics whichever backend
ended up running it.
"""

from dualterm.backend import pty_available, select_backend, spawn_session
from dualterm.config import TerminalConfig
from dualterm.launcher import Geometry, SpawnRequest, prepare_launch
from dualterm.manager import SessionManager
from dualterm.session import BackendKind, ExitStatus, SessionHandle, SessionState
from dualterm.wire import Wire

__all__ = [
    "BackendKind",
    "ExitStatus",
    "Geometry",
    "SessionHandle",
    "SessionManager",
    "SessionState",
    "SpawnRequest",
    "TerminalConfig",
    "Wire",
    "prepare_launch",
    "pty_available",
    "select_backend",
    "spawn_session",
]
