"""tinymem operator CLI: inspect sessions and answer pending questions."""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Awaitable, Callable

from tinymem.config import TinymemSettings
from tinymem.sessions import Rendezvous, SessionManager
from tinymem.storage import KVStore, Repository, StoreError


def load_store(settings: TinymemSettings) -> Repository:
    return Repository(KVStore(settings.redis_url))


def _run(work: Callable[[Repository], Awaitable[Any]]) -> Any:
    settings = TinymemSettings()
    repo = load_store(settings)

    async def _main() -> Any:
        try:
            return await work(repo)
        finally:
            await repo.store.close()

    try:
        return asyncio.run(_main())
    except StoreError as exc:
        print(f"Store unavailable: {exc}")
        raise SystemExit(1)


async def _describe(repo: Repository, session_ids: list[str]) -> list[dict[str, Any]]:
    rows = []
    for session_id in session_ids:
        session = await repo.get_session(session_id)
        if session is None:
            continue
        rows.append(
            {
                "id": session.id,
                "name": session.display_name,
                "agent": session.agent,
                "status": session.status.type,
                "last_activity": session.last_activity,
                "active_tool": await repo.get_active_tool(session_id),
            }
        )
    return rows


def cmd_sessions(args: argparse.Namespace) -> None:
    async def work(repo: Repository) -> list[dict[str, Any]]:
        return await _describe(repo, await repo.list_active())

    print(json.dumps(_run(work), indent=2))


def cmd_history(args: argparse.Namespace) -> None:
    async def work(repo: Repository) -> list[dict[str, Any]]:
        return await _describe(repo, await repo.list_history(args.limit))

    print(json.dumps(_run(work), indent=2))


def cmd_msgs(args: argparse.Namespace) -> None:
    async def work(repo: Repository) -> list[dict[str, Any]]:
        return [msg.model_dump() for msg in await repo.get_msgs(args.session_id, args.limit)]

    print(json.dumps(_run(work), indent=2))


def cmd_pending(args: argparse.Namespace) -> None:
    async def work(repo: Repository) -> list[dict[str, Any]]:
        pending = []
        for session_id in await repo.list_active():
            question = await repo.get_pending(session_id)
            if question is not None:
                pending.append({"session_id": session_id, "question": question})
        return pending

    print(json.dumps(_run(work), indent=2))


def cmd_answer(args: argparse.Namespace) -> None:
    async def work(repo: Repository) -> str | None:
        rendezvous = Rendezvous(SessionManager(repo))
        question = await rendezvous.pending_question(args.session_id)
        await rendezvous.answer(args.session_id, args.text)
        return question

    question = _run(work)
    if question is None:
        print(f"No pending question for {args.session_id}; answer stored anyway")
    else:
        print(f"Answered {args.session_id}: {question}")


def cmd_cleanup(args: argparse.Namespace) -> None:
    async def work(repo: Repository) -> list[str]:
        return await SessionManager(repo).cleanup_stale(args.max_inactive)

    print(json.dumps({"cleaned": _run(work)}, indent=2))


def cmd_chains(args: argparse.Namespace) -> None:
    async def work(repo: Repository) -> list[tuple[str, int]]:
        return await repo.list_chains()

    print(json.dumps([{"name": name, "links": count} for name, count in _run(work)], indent=2))


def cmd_search(args: argparse.Namespace) -> None:
    async def work(repo: Repository) -> list[dict[str, Any]]:
        return [hit.model_dump() for hit in await repo.global_search(args.query, args.limit)]

    print(json.dumps(_run(work), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="tinymem diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List active sessions")
    p_sessions.set_defaults(func=cmd_sessions)

    p_history = sub.add_parser("history", help="List recently finished sessions")
    p_history.add_argument("--limit", type=int, default=20)
    p_history.set_defaults(func=cmd_history)

    p_msgs = sub.add_parser("msgs", help="Show a session's recent messages")
    p_msgs.add_argument("session_id")
    p_msgs.add_argument("--limit", type=int, default=20)
    p_msgs.set_defaults(func=cmd_msgs)

    p_pending = sub.add_parser("pending", help="List questions waiting for an answer")
    p_pending.set_defaults(func=cmd_pending)

    p_answer = sub.add_parser("answer", help="Answer a session's pending question")
    p_answer.add_argument("session_id")
    p_answer.add_argument("text")
    p_answer.set_defaults(func=cmd_answer)

    p_cleanup = sub.add_parser("cleanup", help="Mark idle active sessions done")
    p_cleanup.add_argument(
        "--max-inactive",
        type=int,
        default=120,
        help="Seconds without activity before a session is closed",
    )
    p_cleanup.set_defaults(func=cmd_cleanup)

    p_chains = sub.add_parser("chains", help="List chains with link counts")
    p_chains.set_defaults(func=cmd_chains)

    p_search = sub.add_parser("search", help="Search chain links and artifacts")
    p_search.add_argument("query")
    p_search.add_argument("--limit", type=int, default=25)
    p_search.set_defaults(func=cmd_search)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
