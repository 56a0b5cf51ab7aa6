"""Typed entity access on top of :class:`KVStore`.

The repository owns key naming and keeps every membership index in step with
the records it points at. Listings are best effort: a member whose record is
missing or fails to parse is skipped, while a single-key fetch of a corrupt
record raises :class:`StoredDataError`.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from ..search import (
    CHAIN_NAME_FLOOR,
    GLOBAL_SEARCH_FLOOR,
    SUBSTRING_BONUS_CHAIN,
    SUBSTRING_BONUS_MEMORY,
    rank_names,
    score,
)
from .kv import KVOp, KVStore
from .models import (
    ActiveStatus,
    Artifact,
    ChainLink,
    DoneStatus,
    Hook,
    Memory,
    Msg,
    SearchHit,
    Session,
    SessionStatus,
    artifact_id,
    file_type_of,
    now,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

ACTIVE_SET = "active"
HISTORY_LIST = "history"
CHAIN_NAMES_SET = "chain_names"
MEMORY_KEYS_SET = "memory_keys"
ARTIFACT_IDS_SET = "artifact_ids"

CHAIN_PREFIX = "chain:"
ARTIFACT_PREFIX = "artifact:"
PREVIEW_CHARS = 200


class StoredDataError(ValueError):
    """Raised when a record fetched by key cannot be parsed."""


class InvalidCompositeIdError(ValueError):
    """Raised when a global id does not start with a known prefix."""


def session_key(session_id: str) -> str:
    return f"sessions:{session_id}"


def hooks_key(session_id: str) -> str:
    return f"sessions:{session_id}:hooks"


def msgs_key(session_id: str) -> str:
    return f"sessions:{session_id}:msgs"


def active_tool_key(session_id: str) -> str:
    return f"sessions:{session_id}:active_tool"


def pending_key(session_id: str) -> str:
    return f"sessions:{session_id}:pending"


def answer_key(session_id: str) -> str:
    return f"sessions:{session_id}:answer"


def external_key(external_id: str) -> str:
    return f"claude:{external_id}"


def chain_link_key(chain_name: str, ts: int) -> str:
    return f"chains:{chain_name}:{ts}"


def chain_links_set(chain_name: str) -> str:
    return f"chain:{chain_name}:links"


def memory_key(key: str) -> str:
    return f"memories:{key}"


def artifact_key(artifact_id_: str) -> str:
    return f"artifacts:{artifact_id_}"


def artifact_text_key(artifact_id_: str) -> str:
    return f"artifacts:{artifact_id_}:text"


def _parse(model: type[ModelT], raw: str, key: str) -> ModelT:
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise StoredDataError(f"Malformed {model.__name__} stored at '{key}'") from exc


class Repository:
    """Typed CRUD for sessions, hooks, chains, memories and artifacts."""

    def __init__(self, store: KVStore) -> None:
        self._store = store

    @property
    def store(self) -> KVStore:
        return self._store

    async def _fetch(self, model: type[ModelT], key: str) -> ModelT | None:
        raw = await self._store.get(key)
        if raw is None:
            return None
        return _parse(model, raw, key)

    async def _fetch_lenient(self, model: type[ModelT], key: str) -> ModelT | None:
        try:
            return await self._fetch(model, key)
        except StoredDataError:
            logger.debug("Skipping unparsable record", extra={"key": key})
            return None

    # Sessions

    async def create_session(self, session: Session) -> None:
        await self._store.atomic(
            [
                KVOp.set(session_key(session.id), session.model_dump_json()),
                KVOp.add_to_set(ACTIVE_SET, session.id),
            ]
        )

    async def get_session(self, session_id: str) -> Session | None:
        return await self._fetch(Session, session_key(session_id))

    async def session_exists(self, session_id: str) -> bool:
        return await self._store.get(session_key(session_id)) is not None

    async def save_session(self, session: Session) -> None:
        await self._store.set(session_key(session.id), session.model_dump_json())

    async def update_status(self, session_id: str, status: SessionStatus) -> Session | None:
        session = await self.get_session(session_id)
        if session is None:
            return None
        session.status = status
        await self.save_session(session)
        return session

    async def touch_and_reactivate(self, session_id: str) -> Session | None:
        """Refresh ``last_activity``; a Done session moves back to the active set."""

        session = await self.get_session(session_id)
        if session is None:
            return None
        session.last_activity = now()
        if session.is_done:
            session.status = ActiveStatus()
            await self._store.atomic(
                [
                    KVOp.set(session_key(session_id), session.model_dump_json()),
                    KVOp.remove_from_list(HISTORY_LIST, session_id, count=1),
                    KVOp.add_to_set(ACTIVE_SET, session_id),
                ]
            )
        else:
            await self.save_session(session)
        return session

    async def mark_done(self, session_id: str) -> Session | None:
        session = await self.get_session(session_id)
        if session is None:
            return None
        session.status = DoneStatus()
        await self._store.atomic(
            [
                KVOp.set(session_key(session_id), session.model_dump_json()),
                KVOp.remove_from_set(ACTIVE_SET, session_id),
                KVOp.remove_from_list(HISTORY_LIST, session_id),
                KVOp.push_to_list_head(HISTORY_LIST, session_id),
            ]
        )
        return session

    async def list_active(self) -> list[str]:
        return sorted(await self._store.members_of(ACTIVE_SET))

    async def list_history(self, limit: int) -> list[str]:
        if limit <= 0:
            return []
        return await self._store.range_of_list(HISTORY_LIST, 0, limit - 1)

    async def add_hook(self, session_id: str, hook: Hook) -> None:
        await self._store.append_to_list(hooks_key(session_id), hook.model_dump_json())

    async def _tail(self, model: type[ModelT], key: str, limit: int) -> list[ModelT]:
        if limit <= 0:
            return []
        entries: list[ModelT] = []
        for raw in await self._store.range_of_list(key, -limit, -1):
            try:
                entries.append(model.model_validate_json(raw))
            except ValidationError:
                logger.debug("Skipping unparsable log entry", extra={"key": key})
        return entries

    async def get_hooks(self, session_id: str, limit: int) -> list[Hook]:
        """Return the last ``limit`` hooks in append order."""

        return await self._tail(Hook, hooks_key(session_id), limit)

    async def add_msg(self, session_id: str, msg: Msg) -> None:
        await self._store.append_to_list(msgs_key(session_id), msg.model_dump_json())

    async def get_msgs(self, session_id: str, limit: int) -> list[Msg]:
        """Return the last ``limit`` messages in append order."""

        return await self._tail(Msg, msgs_key(session_id), limit)

    async def set_active_tool(self, session_id: str, tool: str) -> None:
        await self._store.set(active_tool_key(session_id), tool)

    async def get_active_tool(self, session_id: str) -> str | None:
        return await self._store.get(active_tool_key(session_id))

    async def clear_active_tool(self, session_id: str) -> None:
        await self._store.delete(active_tool_key(session_id))

    async def set_pending(self, session_id: str, question: str) -> None:
        await self._store.set(pending_key(session_id), question)

    async def get_pending(self, session_id: str) -> str | None:
        return await self._store.get(pending_key(session_id))

    async def clear_pending(self, session_id: str) -> None:
        """Drop both the pending question and any answer written for it."""

        await self._store.atomic(
            [KVOp.delete(pending_key(session_id)), KVOp.delete(answer_key(session_id))]
        )

    async def set_answer(self, session_id: str, text: str) -> None:
        await self._store.set(answer_key(session_id), text)

    async def get_answer(self, session_id: str) -> str | None:
        return await self._store.get(answer_key(session_id))

    async def set_external_mapping(self, external_id: str, session_id: str) -> None:
        await self._store.set(external_key(external_id), session_id)

    async def get_external_mapping(self, external_id: str) -> str | None:
        return await self._store.get(external_key(external_id))

    # Memories

    async def save_memory(
        self, session_id: str, key: str, content: str, kind: str | None = None
    ) -> Memory:
        memory = Memory(key=key, session_id=session_id, content=content, kind=kind, ts=now())
        await self._store.atomic(
            [
                KVOp.set(memory_key(key), memory.model_dump_json()),
                KVOp.add_to_set(MEMORY_KEYS_SET, key),
            ]
        )
        return memory

    async def get_memory(self, key: str) -> Memory | None:
        return await self._fetch(Memory, memory_key(key))

    async def delete_memory(self, key: str) -> None:
        await self._store.atomic(
            [KVOp.delete(memory_key(key)), KVOp.remove_from_set(MEMORY_KEYS_SET, key)]
        )

    async def list_memory_keys(self) -> list[str]:
        return sorted(await self._store.members_of(MEMORY_KEYS_SET))

    async def search_memory(self, query: str, limit: int) -> list[tuple[str, float]]:
        keys = await self.list_memory_keys()
        return rank_names(keys, query, limit, boost=SUBSTRING_BONUS_MEMORY)

    # Chains

    async def save_chain_link(self, link: ChainLink) -> str:
        key = chain_link_key(link.chain_name, link.ts)
        await self._store.atomic(
            [
                KVOp.set(key, link.model_dump_json()),
                KVOp.add_to_set(CHAIN_NAMES_SET, link.chain_name),
                KVOp.add_to_set(chain_links_set(link.chain_name), key),
            ]
        )
        return key

    async def _chain_links_with_keys(self, chain_name: str) -> list[tuple[str, ChainLink]]:
        pairs: list[tuple[str, ChainLink]] = []
        for key in await self._store.members_of(chain_links_set(chain_name)):
            link = await self._fetch_lenient(ChainLink, key)
            if link is not None:
                pairs.append((key, link))
        pairs.sort(key=lambda pair: pair[1].ts, reverse=True)
        return pairs

    async def get_chain_links(self, chain_name: str) -> list[ChainLink]:
        """Return every link of the chain, newest first."""

        return [link for _, link in await self._chain_links_with_keys(chain_name)]

    async def get_chain_link(self, chain_name: str, identifier: str) -> ChainLink | None:
        """Find a link by slug, falling back to its timestamp."""

        for link in await self.get_chain_links(chain_name):
            if link.slug == identifier or str(link.ts) == identifier:
                return link
        return None

    async def list_chain_names(self) -> list[str]:
        return sorted(await self._store.members_of(CHAIN_NAMES_SET))

    async def list_chains(self) -> list[tuple[str, int]]:
        chains: list[tuple[str, int]] = []
        for name in await self.list_chain_names():
            chains.append((name, len(await self.get_chain_links(name))))
        return chains

    async def search_chains(self, query: str, limit: int) -> list[tuple[str, float]]:
        names = await self.list_chain_names()
        return rank_names(
            names, query, limit, boost=SUBSTRING_BONUS_CHAIN, floor=CHAIN_NAME_FLOOR
        )

    async def delete_chain(self, chain_name: str) -> None:
        link_keys = await self._store.members_of(chain_links_set(chain_name))
        ops = [KVOp.delete(key) for key in sorted(link_keys)]
        ops.append(KVOp.delete(chain_links_set(chain_name)))
        ops.append(KVOp.remove_from_set(CHAIN_NAMES_SET, chain_name))
        await self._store.atomic(ops)

    async def delete_chain_link(self, chain_name: str, identifier: str) -> bool:
        """Delete one link; removing the last one also drops the chain name."""

        link_keys = await self._store.members_of(chain_links_set(chain_name))
        for key, link in await self._chain_links_with_keys(chain_name):
            if link.slug != identifier and str(link.ts) != identifier:
                continue
            ops = [KVOp.delete(key), KVOp.remove_from_set(chain_links_set(chain_name), key)]
            if link_keys <= {key}:
                ops.append(KVOp.delete(chain_links_set(chain_name)))
                ops.append(KVOp.remove_from_set(CHAIN_NAMES_SET, chain_name))
            await self._store.atomic(ops)
            return True
        return False

    # Artifacts

    async def save_artifact(
        self, session_id: str, file_path: str, title: str, description: str = ""
    ) -> Artifact:
        ts = now()
        artifact = Artifact(
            id=artifact_id(title, ts),
            file_path=file_path,
            title=title,
            description=description,
            session_id=session_id,
            file_type=file_type_of(file_path),
            ts=ts,
        )
        await self._store.atomic(
            [
                KVOp.set(artifact_key(artifact.id), artifact.model_dump_json()),
                KVOp.add_to_set(ARTIFACT_IDS_SET, artifact.id),
            ]
        )
        return artifact

    async def get_artifact(self, artifact_id_: str) -> Artifact | None:
        return await self._fetch(Artifact, artifact_key(artifact_id_))

    async def list_artifacts(self) -> list[Artifact]:
        artifacts: list[Artifact] = []
        for member in await self._store.members_of(ARTIFACT_IDS_SET):
            artifact = await self._fetch_lenient(Artifact, artifact_key(member))
            if artifact is not None:
                artifacts.append(artifact)
        artifacts.sort(key=lambda item: item.ts, reverse=True)
        return artifacts

    async def delete_artifact(self, artifact_id_: str) -> None:
        await self._store.atomic(
            [
                KVOp.delete(artifact_key(artifact_id_)),
                KVOp.remove_from_set(ARTIFACT_IDS_SET, artifact_id_),
                KVOp.delete(artifact_text_key(artifact_id_)),
            ]
        )

    async def set_artifact_text(self, artifact_id_: str, text: str) -> None:
        await self._store.set(artifact_text_key(artifact_id_), text)

    async def get_artifact_text(self, artifact_id_: str) -> str | None:
        return await self._store.get(artifact_text_key(artifact_id_))

    # Cross-entity

    async def global_search(self, query: str, limit: int) -> list[SearchHit]:
        hits: list[SearchHit] = []

        for chain_name in await self.list_chain_names():
            for link in await self.get_chain_links(chain_name):
                searchable = f"{chain_name} {link.slug} {link.content}"
                relevance = score(searchable, query)
                if relevance > GLOBAL_SEARCH_FLOOR:
                    hits.append(
                        SearchHit(
                            type="chain_link",
                            id=f"{CHAIN_PREFIX}{chain_name}:{link.slug}",
                            title=f"{chain_name}/{link.slug}",
                            score=relevance,
                            preview=link.content[:PREVIEW_CHARS],
                        )
                    )

        for artifact in await self.list_artifacts():
            cached_text = await self.get_artifact_text(artifact.id) or ""
            searchable = f"{artifact.title} {artifact.description} {cached_text}"
            relevance = score(searchable, query)
            if relevance > GLOBAL_SEARCH_FLOOR:
                hits.append(
                    SearchHit(
                        type="artifact",
                        id=f"{ARTIFACT_PREFIX}{artifact.id}",
                        title=artifact.title,
                        score=relevance,
                        preview=(cached_text or artifact.description)[:PREVIEW_CHARS],
                    )
                )

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[: max(limit, 0)]

    async def global_get(self, composite_id: str) -> dict[str, Any] | None:
        """Dereference an id produced by :meth:`global_search`."""

        if composite_id.startswith(CHAIN_PREFIX):
            return await self._resolve_chain_id(composite_id)

        if composite_id.startswith(ARTIFACT_PREFIX):
            target = composite_id[len(ARTIFACT_PREFIX) :]
            artifact = await self.get_artifact(target)
            if artifact is None:
                return None
            payload = artifact.model_dump()
            payload["text"] = await self.get_artifact_text(target) or ""
            return payload

        raise InvalidCompositeIdError(
            f"Unknown id prefix in '{composite_id}'; expected 'chain:' or 'artifact:'"
        )

    async def _resolve_chain_id(self, composite_id: str) -> dict[str, Any] | None:
        """Resolve ``chain:<name>:<slug>`` where both name and slug may contain colons.

        Every colon is tried as the separator, shortest known chain name first.
        """

        rest = composite_id[len(CHAIN_PREFIX) :]
        splits = [index for index, char in enumerate(rest) if char == ":" and index > 0]
        if not splits:
            raise InvalidCompositeIdError(f"Malformed chain id '{composite_id}'")
        known = set(await self.list_chain_names())
        for index in splits:
            chain_name, slug = rest[:index], rest[index + 1 :]
            if chain_name not in known:
                continue
            link = await self.get_chain_link(chain_name, slug)
            if link is not None:
                return link.model_dump()
        return None


__all__ = [
    "InvalidCompositeIdError",
    "Repository",
    "StoredDataError",
]
