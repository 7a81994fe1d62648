"""Wire protocol — decouples terminal sessions from their transport.

Session output and lifecycle events flow from the manager to whatever
transport is attached (a websocket bridge, the CLI, tests). Transports
subscribe to the wire and forward events to their clients.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any

from dualterm.session.base import ExitStatus


class EventType(enum.Enum):
    SESSION_STARTED = "session_started"
    SESSION_DATA = "session_data"
    SESSION_EXIT = "session_exit"
    SESSION_ERROR = "session_error"
    STATUS = "status"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: sessions -> transport subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_session_started(
        self, session_id: str, title: str, kind: str, pid: int | None
    ) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_STARTED,
                data={"session_id": session_id, "title": title, "kind": kind, "pid": pid},
            )
        )

    def send_session_data(self, session_id: str, chunk: str) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_DATA,
                data={"session_id": session_id, "data": chunk},
            )
        )

    def send_session_error(self, session_id: str, error: str) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_ERROR,
                data={"session_id": session_id, "error": error},
            )
        )

    def send_session_exit(
        self,
        session_id: str,
        title: str,
        status: ExitStatus,
        last_output: str = "",
    ) -> None:
        """Notify subscribers that a session's process is gone."""
        self.send(
            WireEvent(
                type=EventType.SESSION_EXIT,
                data={
                    "session_id": session_id,
                    "title": title,
                    **status.to_dict(),
                    "last_output": last_output[:500],
                },
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)

    @property
    def closed(self) -> bool:
        return self._closed
