"""Session lifecycle: creation, touch/reactivation, completion and stale sweeps."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..events import EventBus, EventKind
from ..storage import Hook, Msg, Repository, Session, StoreError, StoredDataError
from ..storage.models import now, short_id

logger = logging.getLogger(__name__)

PRE_TOOL_KIND = "pre"
SUMMARY_ROLE = "summary"
DEFAULT_LOG_LIMIT = 20
_MAX_ID_ATTEMPTS = 8


class SessionManager:
    """Drive the Active / Waiting / Done state machine of agent sessions.

    Done is a soft idle marker: any touch on a Done session brings it back to
    the active set with its identity and hooks intact.
    """

    def __init__(self, repository: Repository, *, events: EventBus | None = None) -> None:
        self._repo = repository
        self._events = events or EventBus()

    @property
    def repository(self) -> Repository:
        return self._repo

    @property
    def events(self) -> EventBus:
        return self._events

    async def _new_id(self) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = short_id()
            if not await self._repo.session_exists(candidate):
                return candidate
        raise RuntimeError("Could not allocate a unique session id")

    async def create_session(
        self, agent: str, name: str | None = None, cwd: str = ""
    ) -> Session:
        ts = now()
        session = Session(
            id=await self._new_id(),
            name=name,
            agent=agent,
            cwd=cwd,
            created=ts,
            last_activity=ts,
        )
        await self._repo.create_session(session)
        self._events.publish(EventKind.NEW_SESSION, session.id)
        logger.info(
            "Created session",
            extra={"session_id": session.id, "agent": agent, "session_name": session.display_name},
        )
        return session

    async def start_session(self, external_id: str, agent: str, cwd: str = "") -> tuple[str, bool]:
        """Resolve an external correlation id to a session, creating one if needed."""

        mapped = await self._repo.get_external_mapping(external_id)
        if mapped:
            try:
                existing = await self._repo.touch_and_reactivate(mapped)
            except StoredDataError:
                logger.warning(
                    "Mapped session unreadable, starting a new one",
                    extra={"session_id": mapped, "external_id": external_id},
                )
                existing = None
            if existing is not None:
                self._events.publish(EventKind.REFRESH, mapped)
                logger.info(
                    "Reused session", extra={"session_id": mapped, "external_id": external_id}
                )
                return mapped, True

        session = await self.create_session(agent, cwd=cwd)
        await self._repo.set_external_mapping(external_id, session.id)
        return session.id, False

    async def get_session(self, session_id: str) -> Session | None:
        return await self._repo.get_session(session_id)

    async def list_active(self) -> list[str]:
        return await self._repo.list_active()

    async def list_history(self, limit: int = 20) -> list[str]:
        return await self._repo.list_history(limit)

    async def touch(self, session_id: str) -> bool:
        """Record activity; reactivates a Done session. False if the id is unknown."""

        session = await self._repo.touch_and_reactivate(session_id)
        if session is None:
            return False
        self._events.publish(EventKind.REFRESH, session_id)
        return True

    async def mark_done(self, session_id: str) -> bool:
        session = await self._repo.mark_done(session_id)
        if session is None:
            return False
        self._events.publish(EventKind.SESSION_DONE, session_id)
        logger.info("Session marked done", extra={"session_id": session_id})
        return True

    async def append_hook(
        self, session_id: str, kind: str, task: str, meta: Any = None
    ) -> Hook:
        hook = Hook(ts=now(), kind=kind, task=task, meta=meta)
        if kind == PRE_TOOL_KIND:
            await self._repo.set_active_tool(session_id, task)
        else:
            await self._repo.clear_active_tool(session_id)
        await self._repo.add_hook(session_id, hook)
        await self.touch(session_id)
        return hook

    async def get_hooks(self, session_id: str, limit: int = DEFAULT_LOG_LIMIT) -> list[Hook]:
        return await self._repo.get_hooks(session_id, limit)

    async def add_msg(self, session_id: str, content: str, role: str = "agent") -> Msg:
        """Append a note to the session's message log and record activity."""

        msg = Msg(ts=now(), role=role, content=content)
        await self._repo.add_msg(session_id, msg)
        await self.touch(session_id)
        return msg

    async def set_summary(self, session_id: str, summary: str) -> Msg:
        return await self.add_msg(session_id, summary, role=SUMMARY_ROLE)

    async def get_msgs(self, session_id: str, limit: int = DEFAULT_LOG_LIMIT) -> list[Msg]:
        return await self._repo.get_msgs(session_id, limit)

    async def set_active_tool(self, session_id: str, tool: str) -> None:
        await self._repo.set_active_tool(session_id, tool)

    async def clear_active_tool(self, session_id: str) -> None:
        await self._repo.clear_active_tool(session_id)

    async def get_active_tool(self, session_id: str) -> str | None:
        return await self._repo.get_active_tool(session_id)

    async def cleanup_stale(self, max_inactive_seconds: int) -> list[str]:
        """Mark idle Active sessions done. Waiting sessions are never closed.

        A touch landing between the read and the write here can be lost; the
        session then reactivates on its next touch.
        """

        current = now()
        cleaned: list[str] = []
        for session_id in await self._repo.list_active():
            try:
                session = await self._repo.get_session(session_id)
            except StoredDataError:
                logger.debug("Skipping unparsable session", extra={"session_id": session_id})
                continue
            if session is None or not session.is_active:
                continue
            if current - session.last_activity > max_inactive_seconds:
                if await self.mark_done(session_id):
                    cleaned.append(session_id)
        if cleaned:
            logger.info("Closed stale sessions", extra={"session_ids": cleaned})
        return cleaned

    async def run_sweeper(self, *, interval: float, max_inactive_seconds: int) -> None:
        """Periodically close stale sessions until cancelled."""

        while True:
            await asyncio.sleep(interval)
            try:
                await self.cleanup_stale(max_inactive_seconds)
            except StoreError as exc:
                logger.warning("Stale sweep failed", extra={"error": str(exc)})


__all__ = ["DEFAULT_LOG_LIMIT", "PRE_TOOL_KIND", "SUMMARY_ROLE", "SessionManager"]
