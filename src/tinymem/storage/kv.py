"""Redis-backed key-value store client."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Iterable, Protocol, Sequence

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when a store round trip fails. Callers decide whether to retry."""


class StoreUnavailableError(StoreError):
    """Raised when the backend cannot be reached."""


class PipelineProtocol(Protocol):
    """Minimal transactional pipeline API used by tinymem."""

    async def __aenter__(self) -> "PipelineProtocol":
        ...

    async def __aexit__(self, *exc_info: Any) -> None:
        ...

    async def execute(self) -> list[Any]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the subset of the redis asyncio client tinymem relies on."""

    async def ping(self) -> bool:
        ...

    async def get(self, name: str) -> str | None:
        ...

    async def set(self, name: str, value: str) -> Any:
        ...

    async def delete(self, *names: str) -> int:
        ...

    async def sadd(self, name: str, *values: str) -> int:
        ...

    async def srem(self, name: str, *values: str) -> int:
        ...

    async def smembers(self, name: str) -> set[str]:
        ...

    async def rpush(self, name: str, *values: str) -> int:
        ...

    async def lpush(self, name: str, *values: str) -> int:
        ...

    async def lrem(self, name: str, count: int, value: str) -> int:
        ...

    async def lrange(self, name: str, start: int, end: int) -> list[str]:
        ...

    def pipeline(self, transaction: bool = True) -> PipelineProtocol:
        ...

    async def aclose(self) -> None:
        ...


_ATOMIC_COMMANDS = {"set", "delete", "sadd", "srem", "rpush", "lpush", "lrem"}


@dataclass(frozen=True, slots=True)
class KVOp:
    """One write inside an atomic batch."""

    command: str
    args: tuple[Any, ...]

    def __post_init__(self) -> None:
        if self.command not in _ATOMIC_COMMANDS:
            raise ValueError(f"Unsupported atomic command '{self.command}'")

    @classmethod
    def set(cls, key: str, value: str) -> "KVOp":
        return cls("set", (key, value))

    @classmethod
    def delete(cls, key: str) -> "KVOp":
        return cls("delete", (key,))

    @classmethod
    def add_to_set(cls, set_name: str, member: str) -> "KVOp":
        return cls("sadd", (set_name, member))

    @classmethod
    def remove_from_set(cls, set_name: str, member: str) -> "KVOp":
        return cls("srem", (set_name, member))

    @classmethod
    def append_to_list(cls, list_name: str, value: str) -> "KVOp":
        return cls("rpush", (list_name, value))

    @classmethod
    def push_to_list_head(cls, list_name: str, value: str) -> "KVOp":
        return cls("lpush", (list_name, value))

    @classmethod
    def remove_from_list(cls, list_name: str, value: str, count: int = 0) -> "KVOp":
        """Remove ``count`` occurrences of ``value`` (0 removes all)."""

        return cls("lrem", (list_name, count, value))


class KVStore:
    """Uniform async access to the shared store.

    Errors from the backend are re-raised as :class:`StoreError`; nothing here
    retries.
    """

    def __init__(
        self,
        url: str = "redis://127.0.0.1:6379",
        *,
        client_factory: Callable[[], ClientProtocol] | None = None,
    ) -> None:
        self._url = url
        self._client_factory = client_factory or self._default_client_factory
        self._client: ClientProtocol | None = None

    @property
    def url(self) -> str:
        return self._url

    def _default_client_factory(self) -> ClientProtocol:
        return aioredis.Redis.from_url(self._url, decode_responses=True)

    def _ensure_client(self) -> ClientProtocol:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as exc:
            logger.debug("Store unreachable", extra={"operation": operation})
            raise StoreUnavailableError(f"{operation} failed: {exc}") from exc
        except RedisError as exc:
            raise StoreError(f"{operation} failed: {exc}") from exc

    async def ping(self) -> bool:
        """Verify that the backend answers."""

        async with self._guard("ping"):
            return bool(await self._ensure_client().ping())

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        async with self._guard("close"):
            await client.aclose()

    async def get(self, key: str) -> str | None:
        async with self._guard("get"):
            return await self._ensure_client().get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._guard("set"):
            await self._ensure_client().set(key, value)

    async def delete(self, key: str) -> None:
        async with self._guard("delete"):
            await self._ensure_client().delete(key)

    async def add_to_set(self, set_name: str, member: str) -> None:
        async with self._guard("add_to_set"):
            await self._ensure_client().sadd(set_name, member)

    async def remove_from_set(self, set_name: str, member: str) -> None:
        async with self._guard("remove_from_set"):
            await self._ensure_client().srem(set_name, member)

    async def members_of(self, set_name: str) -> set[str]:
        async with self._guard("members_of"):
            return set(await self._ensure_client().smembers(set_name))

    async def append_to_list(self, list_name: str, value: str) -> None:
        async with self._guard("append_to_list"):
            await self._ensure_client().rpush(list_name, value)

    async def push_to_list_head(self, list_name: str, value: str) -> None:
        async with self._guard("push_to_list_head"):
            await self._ensure_client().lpush(list_name, value)

    async def remove_from_list(self, list_name: str, value: str, count: int = 0) -> int:
        async with self._guard("remove_from_list"):
            return int(await self._ensure_client().lrem(list_name, count, value))

    async def range_of_list(self, list_name: str, start: int, end: int) -> list[str]:
        """Return elements ``start..end`` inclusive; negative indices count from the tail."""

        async with self._guard("range_of_list"):
            return list(await self._ensure_client().lrange(list_name, start, end))

    async def atomic(self, operations: Iterable[KVOp]) -> None:
        """Apply every operation as one MULTI/EXEC unit."""

        ops: Sequence[KVOp] = list(operations)
        if not ops:
            return
        async with self._guard("atomic"):
            async with self._ensure_client().pipeline(transaction=True) as pipe:
                for op in ops:
                    getattr(pipe, op.command)(*op.args)
                await pipe.execute()


__all__ = ["KVOp", "KVStore", "StoreError", "StoreUnavailableError"]
