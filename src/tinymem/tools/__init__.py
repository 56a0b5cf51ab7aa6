"""Tool registration for the tinymem MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP

from ..config import TinymemSettings
from ..sessions import DEFAULT_LOG_LIMIT, AskTimeoutError, Rendezvous, SessionManager
from ..storage import ChainLink
from ..storage.models import MEMORY_KINDS, now

DEFAULT_SEARCH_LIMIT = 25
DEFAULT_CHAIN_LOAD_LIMIT = 5
DEFAULT_CHAIN_SEARCH_LIMIT = 10
DEFAULT_MAX_CHARS = 8000


@dataclass(slots=True)
class ToolHandles:
    session_create: Any
    session_start: Any
    session_get: Any
    sessions: Any
    hook: Any
    hooks: Any
    msg: Any
    summary: Any
    msgs: Any
    done: Any
    ask: Any
    answer: Any
    save: Any
    memory_search: Any
    memory_get: Any
    memory_delete: Any
    chain_link: Any
    chain_load: Any
    chain_list: Any
    chain_search: Any
    chain_delete: Any
    chain_link_delete: Any
    artifact_save: Any
    artifact_text: Any
    artifact_list: Any
    artifact_delete: Any
    search: Any
    get: Any


def window_text(payload: dict[str, Any], offset: int, max_chars: int) -> dict[str, Any]:
    """Trim a ``text`` field to ``[offset, offset + max_chars)`` and describe the range."""

    text = payload.get("text")
    if not isinstance(text, str):
        return payload
    offset = max(offset, 0)
    chunk = text[offset : offset + max(max_chars, 0)]
    end = offset + len(chunk)
    windowed = dict(payload)
    windowed["text"] = chunk
    windowed["text_range"] = {"offset": offset, "end": end, "total": len(text)}
    if end < len(text):
        windowed["has_more"] = True
        windowed["next_offset"] = end
    return windowed


def register_tools(
    server: FastMCP,
    *,
    settings: TinymemSettings,
    manager: SessionManager,
    rendezvous: Rendezvous,
) -> ToolHandles:
    """Register tinymem's MCP tools on the server."""

    repo = manager.repository

    async def _session_summary(session_id: str) -> dict[str, Any] | None:
        session = await manager.get_session(session_id)
        if session is None:
            return None
        summary = session.model_dump()
        summary["display_name"] = session.display_name
        summary["active_tool"] = await manager.get_active_tool(session_id)
        return summary

    async def _session_create(
        agent: str,
        name: str | None = None,
        cwd: str = "",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a new session and return its id."""

        session = await manager.create_session(agent, name=name, cwd=cwd)
        _emit_log(context, "info", "Created session", extra={"session_id": session.id})
        return {"id": session.id}

    async def _session_start(
        external_id: str,
        agent: str,
        cwd: str = "",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the session mapped to an external id, creating it on first use."""

        session_id, reused = await manager.start_session(external_id, agent, cwd)
        _emit_log(
            context,
            "info",
            "Started session",
            extra={"session_id": session_id, "reused": reused},
        )
        return {"id": session_id, "reused": reused}

    async def _session_get(session_id: str, context: Context | None = None) -> dict[str, Any]:
        summary = await _session_summary(session_id)
        if summary is None:
            return {"error": "not found", "session_id": session_id}
        return summary

    async def _sessions(
        history_limit: int | None = None, context: Context | None = None
    ) -> dict[str, Any]:
        """List active sessions and the most recently finished ones."""

        limit = history_limit if history_limit is not None else settings.history_limit
        active = [await _session_summary(sid) for sid in await manager.list_active()]
        history = [await _session_summary(sid) for sid in await manager.list_history(limit)]
        _emit_log(
            context,
            "debug",
            "Listing sessions",
            extra={"active": len(active), "history": len(history)},
        )
        return {
            "active": [item for item in active if item is not None],
            "history": [item for item in history if item is not None],
        }

    async def _hook(
        session_id: str,
        kind: str,
        task: str,
        meta: Any = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record a lifecycle event; kind 'pre' marks a tool about to run."""

        hook = await manager.append_hook(session_id, kind, task, meta)
        return {"session_id": session_id, "ts": hook.ts}

    async def _hooks(
        session_id: str, limit: int = DEFAULT_LOG_LIMIT, context: Context | None = None
    ) -> dict[str, Any]:
        hooks = await manager.get_hooks(session_id, limit)
        return {"session_id": session_id, "hooks": [hook.model_dump() for hook in hooks]}

    async def _msg(
        session_id: str, content: str, context: Context | None = None
    ) -> dict[str, Any]:
        """Append a note to the session's message log."""

        msg = await manager.add_msg(session_id, content)
        return {"session_id": session_id, "ts": msg.ts}

    async def _summary(
        session_id: str, summary: str, context: Context | None = None
    ) -> dict[str, Any]:
        msg = await manager.set_summary(session_id, summary)
        _emit_log(context, "info", "Summary recorded", extra={"session_id": session_id})
        return {"session_id": session_id, "ts": msg.ts}

    async def _msgs(
        session_id: str, limit: int = DEFAULT_LOG_LIMIT, context: Context | None = None
    ) -> dict[str, Any]:
        msgs = await manager.get_msgs(session_id, limit)
        return {"session_id": session_id, "msgs": [msg.model_dump() for msg in msgs]}

    async def _done(session_id: str, context: Context | None = None) -> dict[str, Any]:
        found = await manager.mark_done(session_id)
        _emit_log(context, "info", "Mark done", extra={"session_id": session_id, "found": found})
        return {"session_id": session_id, "done": found}

    async def _ask(
        session_id: str, question: str, context: Context | None = None
    ) -> dict[str, Any]:
        """Ask the human a question and block until answered or timed out."""

        try:
            answer = await rendezvous.ask(session_id, question)
        except AskTimeoutError:
            _emit_log(context, "warning", "Ask timed out", extra={"session_id": session_id})
            return {"error": "timeout"}
        return {"answer": answer}

    async def _answer(
        session_id: str, text: str, context: Context | None = None
    ) -> dict[str, Any]:
        await rendezvous.answer(session_id, text)
        _emit_log(context, "info", "Answer recorded", extra={"session_id": session_id})
        return {"session_id": session_id, "answered": True}

    tool_session_create = server.tool(
        name="tinymem_session_create",
        description="Create a tinymem session for an agent. Returns the session id.",
    )(_session_create)

    tool_session_start = server.tool(
        name="tinymem_session_start",
        description=(
            "Start or resume the session mapped to an external session id. "
            "Returns the tinymem id and whether an existing session was reused."
        ),
    )(_session_start)

    tool_session_get = server.tool(
        name="tinymem_session_get",
        description="Fetch a session record with its status and active tool.",
    )(_session_get)

    tool_sessions = server.tool(
        name="tinymem_sessions",
        description="List active sessions and recent history.",
    )(_sessions)

    tool_hook = server.tool(
        name="tinymem_hook",
        description="Append a lifecycle event (pre/post tool use) to a session log.",
    )(_hook)

    tool_hooks = server.tool(
        name="tinymem_hooks",
        description="Read the most recent lifecycle events of a session, oldest first.",
    )(_hooks)

    tool_msg = server.tool(
        name="tinymem_msg",
        description="Send a message/note to the tinymem session log.",
    )(_msg)

    tool_summary = server.tool(
        name="tinymem_summary",
        description="Record a short summary of the session's work in its message log.",
    )(_summary)

    tool_msgs = server.tool(
        name="tinymem_msgs",
        description="Read the most recent messages of a session log, oldest first.",
    )(_msgs)

    tool_done = server.tool(
        name="tinymem_done",
        description="Mark a session done. Any later activity reactivates it.",
    )(_done)

    tool_ask = server.tool(
        name="tinymem_ask",
        description="Ask a question to the user. Blocks until answered or the timeout elapses.",
    )(_ask)

    tool_answer = server.tool(
        name="tinymem_answer",
        description="Answer the pending question of a session.",
    )(_answer)

    async def _save(
        session_id: str,
        key: str,
        content: str,
        kind: str = "insight",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Save a memory under a descriptive key; an existing key is overwritten."""

        if kind and kind not in MEMORY_KINDS:
            _emit_log(context, "debug", "Non-standard memory kind", extra={"kind": kind})
        memory = await repo.save_memory(session_id, key, content, kind)
        return {"saved": memory.key}

    async def _memory_search(
        query: str, limit: int = DEFAULT_SEARCH_LIMIT, context: Context | None = None
    ) -> dict[str, Any]:
        results = await repo.search_memory(query, limit)
        _emit_log(context, "debug", "Memory search", extra={"query": query, "results": len(results)})
        return {"keys": [{"key": key, "score": score} for key, score in results]}

    async def _memory_get(key: str, context: Context | None = None) -> dict[str, Any]:
        memory = await repo.get_memory(key)
        if memory is None:
            return {"error": "not found", "key": key}
        return {"memory": memory.model_dump()}

    async def _memory_delete(key: str, context: Context | None = None) -> dict[str, Any]:
        await repo.delete_memory(key)
        return {"deleted": key}

    tool_save = server.tool(
        name="tinymem_save",
        description=(
            "Save a memory for later retrieval. Use descriptive lowercase keys with "
            "underscores and domain context, e.g. 'postgres_connection_pool_config'; "
            "the key is what fuzzy search matches against."
        ),
    )(_save)

    tool_memory_search = server.tool(
        name="tinymem_memory_search",
        description="Fuzzy search memory keys. Returns {key, score} sorted by relevance.",
    )(_memory_search)

    tool_memory_get = server.tool(
        name="tinymem_memory_get",
        description="Retrieve a memory by exact key.",
    )(_memory_get)

    tool_memory_delete = server.tool(
        name="tinymem_memory_delete",
        description="Delete a memory by exact key.",
    )(_memory_delete)

    async def _chain_link(
        session_id: str,
        chain_name: str,
        slug: str,
        content: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Save a checkpoint of the current work on a multi-session chain."""

        link = ChainLink(
            chain_name=chain_name, session_id=session_id, slug=slug, content=content, ts=now()
        )
        key = await repo.save_chain_link(link)
        _emit_log(context, "info", "Saved chain link", extra={"chain": chain_name, "key": key})
        return {"saved": key, "chain": chain_name, "slug": slug}

    async def _chain_load(
        chain_name: str,
        limit: int = DEFAULT_CHAIN_LOAD_LIMIT,
        context: Context | None = None,
    ) -> dict[str, Any]:
        links = await repo.get_chain_links(chain_name)
        return {
            "chain": chain_name,
            "count": len(links),
            "links": [link.model_dump() for link in links[: max(limit, 0)]],
        }

    async def _chain_list(context: Context | None = None) -> dict[str, Any]:
        chains = await repo.list_chains()
        return {"chains": [{"name": name, "links": count} for name, count in chains]}

    async def _chain_search(
        query: str,
        limit: int = DEFAULT_CHAIN_SEARCH_LIMIT,
        context: Context | None = None,
    ) -> dict[str, Any]:
        results = await repo.search_chains(query, limit)
        return {"chains": [{"name": name, "score": score} for name, score in results]}

    async def _chain_delete(chain_name: str, context: Context | None = None) -> dict[str, Any]:
        await repo.delete_chain(chain_name)
        _emit_log(context, "info", "Deleted chain", extra={"chain": chain_name})
        return {"deleted": chain_name}

    async def _chain_link_delete(
        chain_name: str, slug: str, context: Context | None = None
    ) -> dict[str, Any]:
        """Delete one link by slug or timestamp."""

        deleted = await repo.delete_chain_link(chain_name, slug)
        if not deleted:
            return {"error": "not found", "chain": chain_name, "slug": slug}
        return {"deleted": slug, "chain": chain_name}

    tool_chain_link = server.tool(
        name="tinymem_chain_link",
        description=(
            "Save a chain link: context, decisions, code changes and next steps for a "
            "multi-session project. chain_name groups links; slug names this checkpoint."
        ),
    )(_chain_link)

    tool_chain_load = server.tool(
        name="tinymem_chain_load",
        description="Load chain links, newest first, to continue earlier work.",
    )(_chain_load)

    tool_chain_list = server.tool(
        name="tinymem_chain_list",
        description="List all chains with their link counts.",
    )(_chain_list)

    tool_chain_search = server.tool(
        name="tinymem_chain_search",
        description="Fuzzy search chains by name.",
    )(_chain_search)

    tool_chain_delete = server.tool(
        name="tinymem_chain_delete",
        description="Delete a chain and every link in it.",
    )(_chain_delete)

    tool_chain_link_delete = server.tool(
        name="tinymem_chain_link_delete",
        description="Delete a single chain link; removing the last link removes the chain.",
    )(_chain_link_delete)

    async def _artifact_save(
        session_id: str,
        file_path: str,
        title: str,
        description: str = "",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Register an existing file as a searchable artifact."""

        path = Path(file_path).expanduser()
        if not path.is_file():
            raise ValueError(f"File not found: {file_path}")
        artifact = await repo.save_artifact(session_id, str(path.resolve()), title, description)
        _emit_log(context, "info", "Saved artifact", extra={"artifact_id": artifact.id})
        return {"id": artifact.id, "file_type": artifact.file_type}

    async def _artifact_text(
        artifact_id: str, text: str, context: Context | None = None
    ) -> dict[str, Any]:
        """Cache extracted text for an artifact so search and get can use it."""

        if await repo.get_artifact(artifact_id) is None:
            return {"error": "not found", "artifact_id": artifact_id}
        await repo.set_artifact_text(artifact_id, text)
        return {"artifact_id": artifact_id, "chars": len(text)}

    async def _artifact_list(context: Context | None = None) -> dict[str, Any]:
        return {"artifacts": [artifact.model_dump() for artifact in await repo.list_artifacts()]}

    async def _artifact_delete(artifact_id: str, context: Context | None = None) -> dict[str, Any]:
        await repo.delete_artifact(artifact_id)
        return {"deleted": artifact_id}

    async def _search(
        query: str, limit: int = DEFAULT_SEARCH_LIMIT, context: Context | None = None
    ) -> dict[str, Any]:
        """Search chain links and artifacts together."""

        hits = await repo.global_search(query, limit)
        _emit_log(context, "debug", "Global search", extra={"query": query, "results": len(hits)})
        return {"results": [hit.model_dump() for hit in hits]}

    async def _get(
        id: str,
        offset: int = 0,
        max_chars: int = DEFAULT_MAX_CHARS,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Fetch a search result by its composite id (chain:<name>:<slug> or artifact:<id>)."""

        payload = await repo.global_get(id)
        if payload is None:
            return {"error": "not found", "id": id}
        return window_text(payload, offset, max_chars)

    tool_artifact_save = server.tool(
        name="tinymem_artifact_save",
        description="Save a reference to a file with a title and description for later search.",
    )(_artifact_save)

    tool_artifact_text = server.tool(
        name="tinymem_artifact_text",
        description="Store the extracted text of an artifact for searching and paged retrieval.",
    )(_artifact_text)

    tool_artifact_list = server.tool(
        name="tinymem_artifact_list",
        description="List artifacts, newest first.",
    )(_artifact_list)

    tool_artifact_delete = server.tool(
        name="tinymem_artifact_delete",
        description="Delete an artifact and its cached text.",
    )(_artifact_delete)

    tool_search = server.tool(
        name="tinymem_search",
        description=(
            "Search chain links and artifacts. Returns {type, id, title, score, preview}; "
            "pass the id to tinymem_get."
        ),
    )(_search)

    tool_get = server.tool(
        name="tinymem_get",
        description=(
            "Retrieve a chain link or artifact by search result id. Long artifact text "
            "is paged with offset/max_chars."
        ),
    )(_get)

    return ToolHandles(
        session_create=tool_session_create,
        session_start=tool_session_start,
        session_get=tool_session_get,
        sessions=tool_sessions,
        hook=tool_hook,
        hooks=tool_hooks,
        msg=tool_msg,
        summary=tool_summary,
        msgs=tool_msgs,
        done=tool_done,
        ask=tool_ask,
        answer=tool_answer,
        save=tool_save,
        memory_search=tool_memory_search,
        memory_get=tool_memory_get,
        memory_delete=tool_memory_delete,
        chain_link=tool_chain_link,
        chain_load=tool_chain_load,
        chain_list=tool_chain_list,
        chain_search=tool_chain_search,
        chain_delete=tool_chain_delete,
        chain_link_delete=tool_chain_link_delete,
        artifact_save=tool_artifact_save,
        artifact_text=tool_artifact_text,
        artifact_list=tool_artifact_list,
        artifact_delete=tool_artifact_delete,
        search=tool_search,
        get=tool_get,
    )


__all__ = ["register_tools", "ToolHandles", "window_text"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
