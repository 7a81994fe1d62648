"""The session handle contract shared by both backends."""

from __future__ import annotations

import enum
import logging
import signal
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Protocol, runtime_checkable

from dualterm.launcher import Geometry

logger = logging.getLogger(__name__)


class BackendKind(enum.Enum):
    """Which mechanism drives a session. Fixed for the session's lifetime."""

    PTY = "pty"
    PIPE = "pipe"


class SessionState(enum.Enum):
    """Lifecycle states for a terminal session."""

    STARTING = "starting"
    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for the exit event
    EXITED = "exited"
    FAILED = "failed"  # The command never started


@dataclass(frozen=True)
class ExitStatus:
    """Payload of the exit notification.

    PTY sessions only ever report a code. Pipe sessions report the
    signal name instead of a code when a signal ended the process.
    """

    code: int | None
    signal: str | None = None

    @property
    def success(self) -> bool:
        return self.code == 0 and self.signal is None

    def to_dict(self) -> dict[str, int | str | None]:
        return {"code": self.code, "signal": self.signal}


DataCallback = Callable[[str], None]
ExitCallback = Callable[[ExitStatus], None]
ErrorCallback = Callable[[BaseException], None]


@runtime_checkable
class SessionHandle(Protocol):
    """What callers get back from ``spawn_session``.

    ``write``, ``resize`` and ``kill`` never raise: once the process is
    gone they do nothing, and OS-level failures are logged and dropped.
    Output arrives through ``set_on_data`` / ``output()`` and the exit
    status through ``set_on_exit`` / ``wait()``, exactly once.
    """

    kind: BackendKind
    geometry: Geometry

    @property
    def pid(self) -> int | None: ...

    @property
    def state(self) -> SessionState: ...

    @property
    def alive(self) -> bool: ...

    @property
    def exit_status(self) -> ExitStatus | None: ...

    def write(self, data: str | bytes) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def kill(self, sig: str | int = "SIGTERM") -> None: ...

    def set_on_data(self, callback: DataCallback | None) -> None: ...

    def set_on_exit(self, callback: ExitCallback | None) -> None: ...

    def set_on_error(self, callback: ErrorCallback | None) -> None: ...

    def output(self) -> AsyncIterator[str]: ...

    async def wait(self, timeout: float | None = None) -> ExitStatus | None: ...

    def tail(self, n: int = 3) -> list[str]: ...


def resolve_signal(sig: str | int | signal.Signals) -> signal.Signals | None:
    """Map ``"SIGTERM"``, ``"term"``, ``15`` or a ``Signals`` member to a signal.

    Returns None (and logs) for anything this platform does not know.
    """
    if isinstance(sig, signal.Signals):
        return sig
    try:
        if isinstance(sig, int):
            return signal.Signals(sig)
        name = sig.strip().upper()
        if not name.startswith("SIG"):
            name = "SIG" + name
        return signal.Signals[name]
    except (KeyError, ValueError):
        logger.warning("Unknown signal %r, ignoring", sig)
        return None


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG{signum}"


def encode_input(data: str | bytes) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)
