"""Terminal sessions — the handle contract and its two backends.

``PTYSession`` is imported lazily by the backend selector because the
pty, termios and fcntl modules do not exist everywhere.
"""

from dualterm.session.base import (
    BackendKind,
    ExitStatus,
    SessionHandle,
    SessionState,
    resolve_signal,
)
from dualterm.session.events import SessionEvents
from dualterm.session.pipe_session import PipeSession

__all__ = [
    "BackendKind",
    "ExitStatus",
    "SessionHandle",
    "SessionState",
    "SessionEvents",
    "PipeSession",
    "resolve_signal",
]
