"""FastMCP server bootstrap for tinymem."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from fastmcp import FastMCP

from . import __version__
from .config import TinymemSettings, get_settings
from .events import EventBus
from .sessions import Rendezvous, SessionManager
from .storage import KVStore, Repository, StoreError
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the tinymem server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[TinymemSettings] = None,
    store: KVStore | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server wired to the shared store."""

    settings = settings or get_settings()
    store = store or KVStore(settings.redis_url)
    events = EventBus()
    repository = Repository(store)
    manager = SessionManager(repository, events=events)
    rendezvous = Rendezvous(
        manager,
        poll_interval=settings.ask_poll_interval,
        timeout=settings.ask_timeout_seconds,
    )

    store_metadata: dict[str, Any] = {
        "available": False,
        "url": settings.redis_url,
        "error": None,
    }

    @asynccontextmanager
    async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        try:
            await store.ping()
            store_metadata.update(available=True, error=None)
        except StoreError as exc:
            store_metadata.update(available=False, error=str(exc))
            logging.getLogger(__name__).warning(
                "Store unavailable at startup", extra={"url": settings.redis_url}
            )

        sweeper = asyncio.create_task(
            manager.run_sweeper(
                interval=settings.sweep_interval_seconds,
                max_inactive_seconds=settings.stale_after_seconds,
            )
        )
        try:
            yield {}
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            await store.close()

    server = FastMCP(
        name="tinymem",
        version=__version__,
        instructions=(
            "tinymem coordinates agent sessions. Record progress with hooks, ask the "
            "user questions that block until answered, save memories by descriptive "
            "key, checkpoint multi-session work as chain links, and search across "
            "chains and artifacts."
        ),
        lifespan=lifespan,
    )

    handles = register_tools(
        server,
        settings=settings,
        manager=manager,
        rendezvous=rendezvous,
    )

    async def status_payload() -> dict[str, Any]:
        """Summarize sessions, store health and rendezvous settings."""

        active: list[str] = []
        history: list[str] = []
        storage_error = None
        try:
            active = await manager.list_active()
            history = await manager.list_history(settings.history_limit)
            store_metadata.update(available=True, error=None)
        except StoreError as exc:
            storage_error = str(exc)
            store_metadata.update(available=False, error=storage_error)

        waiting: list[str] = []
        for session_id in active:
            try:
                session = await manager.get_session(session_id)
            except (StoreError, ValueError):
                continue
            if session is not None and session.is_waiting:
                waiting.append(session_id)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "storage": {**store_metadata, "error": storage_error},
            "sessions": {
                "active": len(active),
                "waiting": waiting,
                "history_preview": history[:5],
            },
            "events": {"published": events.published, "dropped": events.dropped},
            "rendezvous": {
                "timeout_seconds": settings.ask_timeout_seconds,
                "poll_interval": settings.ask_poll_interval,
            },
        }
        return payload

    @server.resource(
        "resource://tinymem/status",
        name="tinymem_status",
        description="Provides the current runtime status for the tinymem server.",
        mime_type="application/json",
    )
    async def status_resource() -> str:
        return json.dumps(await status_payload())

    setattr(server, "kv_store", store)
    setattr(server, "store_metadata", store_metadata)
    setattr(server, "repository", repository)
    setattr(server, "session_manager", manager)
    setattr(server, "rendezvous", rendezvous)
    setattr(server, "event_bus", events)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_payload", status_payload)
    return server


def main() -> None:
    """Entry point for running the tinymem MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching tinymem MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "redis_url": settings.redis_url,
        },
    )
    server.run()


if __name__ == "__main__":
    main()
