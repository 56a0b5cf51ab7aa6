"""Blocking ask/answer handshake between an agent session and a human."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from ..events import EventKind
from ..storage import ActiveStatus, WaitingStatus
from ..storage.models import now
from .lifecycle import SessionManager

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_TIMEOUT = 300.0


class AskTimeoutError(TimeoutError):
    """No answer arrived before the timeout ceiling. The session stays healthy."""

    def __init__(self, session_id: str, timeout: float) -> None:
        super().__init__(f"No answer for session '{session_id}' within {timeout:g}s")
        self.session_id = session_id
        self.timeout = timeout


class Rendezvous:
    """Poll the store for an answer while suspending cooperatively.

    The answering side only writes the answer value; the waiting ``ask`` call
    owns every status transition.
    """

    def __init__(
        self,
        manager: SessionManager,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._manager = manager
        self._repo = manager.repository
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._clock = clock or time.monotonic

    @property
    def timeout(self) -> float:
        return self._timeout

    async def ask(self, session_id: str, question: str) -> str:
        started = self._clock()
        await self._manager.touch(session_id)
        await self._repo.clear_pending(session_id)
        await self._repo.set_pending(session_id, question)
        await self._repo.update_status(
            session_id, WaitingStatus(question=question, asked_at=now())
        )
        self._manager.events.publish(EventKind.NEW_QUESTION, session_id, question=question)
        logger.info("Waiting for answer", extra={"session_id": session_id})

        while True:
            if self._clock() - started > self._timeout:
                await self._finish(session_id)
                logger.info("Question timed out", extra={"session_id": session_id})
                raise AskTimeoutError(session_id, self._timeout)

            answer = await self._repo.get_answer(session_id)
            if answer is not None:
                await self._finish(session_id)
                logger.info("Question answered", extra={"session_id": session_id})
                return answer

            await asyncio.sleep(self._poll_interval)

    async def _finish(self, session_id: str) -> None:
        """Clear the handshake and leave Waiting. A session closed meanwhile stays Done."""

        await self._repo.clear_pending(session_id)
        session = await self._repo.get_session(session_id)
        if session is not None and session.is_waiting:
            session.status = ActiveStatus()
            await self._repo.save_session(session)
        self._manager.events.publish(EventKind.REFRESH, session_id)

    async def answer(self, session_id: str, text: str) -> None:
        await self._repo.set_answer(session_id, text)

    async def pending_question(self, session_id: str) -> str | None:
        return await self._repo.get_pending(session_id)


__all__ = ["AskTimeoutError", "DEFAULT_POLL_INTERVAL", "DEFAULT_TIMEOUT", "Rendezvous"]
