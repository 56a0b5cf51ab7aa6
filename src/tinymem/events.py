"""State-change notifications for observers such as a dashboard."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    NEW_SESSION = "new_session"
    SESSION_DONE = "session_done"
    NEW_QUESTION = "new_question"
    REFRESH = "refresh"


@dataclass(slots=True)
class Event:
    kind: EventKind
    session_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """Fan out events to subscriber queues without ever blocking the publisher.

    A subscriber that stops draining its queue simply misses events once the
    queue is full.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._maxsize = maxsize
        self._subscribers: list[asyncio.Queue[Event]] = []
        self.published = 0
        self.dropped = 0

    def subscribe(self) -> asyncio.Queue[Event]:
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Event]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, kind: EventKind, session_id: str | None = None, **data: Any) -> None:
        event = Event(kind=kind, session_id=session_id, data=data)
        self.published += 1
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.debug(
                    "Dropping event for slow subscriber",
                    extra={"kind": kind.value, "session_id": session_id},
                )


__all__ = ["Event", "EventBus", "EventKind"]
