from __future__ import annotations

from typing import Any

import pytest

from tinymem.events import EventBus
from tinymem.sessions import SessionManager
from tinymem.storage import KVStore, Repository


class StubPipeline:
    def __init__(self, client: "StubRedis", transaction: bool) -> None:
        self._client = client
        self.transaction = transaction
        self.commands: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> "StubPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.commands = []

    def __getattr__(self, command: str):
        if command not in StubRedis.COMMANDS:
            raise AttributeError(command)

        def queue(*args: Any) -> "StubPipeline":
            self.commands.append((command, args))
            return self

        return queue

    async def execute(self) -> list[Any]:
        self._client._check()
        batch = list(self.commands)
        self._client.transactions.append(batch)
        return [self._client._apply(command, *args) for command, args in batch]


class StubRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis tinymem uses."""

    COMMANDS = {"get", "set", "delete", "sadd", "srem", "smembers", "rpush", "lpush", "lrem", "lrange"}

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.strings: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.lists: dict[str, list[str]] = {}
        self.transactions: list[list[tuple[str, tuple[Any, ...]]]] = []
        self.fail_with = fail_with
        self.closed = False

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _apply(self, command: str, *args: Any) -> Any:
        return getattr(self, f"_{command}")(*args)

    def _get(self, name):
        return self.strings.get(name)

    def _set(self, name, value):
        self.strings[name] = value
        return True

    def _delete(self, *names):
        removed = 0
        for name in names:
            for bucket in (self.strings, self.sets, self.lists):
                if name in bucket:
                    del bucket[name]
                    removed += 1
        return removed

    def _sadd(self, name, *values):
        members = self.sets.setdefault(name, set())
        before = len(members)
        members.update(values)
        return len(members) - before

    def _srem(self, name, *values):
        members = self.sets.get(name, set())
        removed = len(members & set(values))
        members.difference_update(values)
        if not members:
            self.sets.pop(name, None)
        return removed

    def _smembers(self, name):
        return set(self.sets.get(name, set()))

    def _rpush(self, name, *values):
        items = self.lists.setdefault(name, [])
        items.extend(values)
        return len(items)

    def _lpush(self, name, *values):
        items = self.lists.setdefault(name, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    def _lrem(self, name, count, value):
        items = self.lists.get(name, [])
        indexes = [i for i, item in enumerate(items) if item == value]
        if count > 0:
            indexes = indexes[:count]
        elif count < 0:
            indexes = indexes[count:]
        for i in reversed(indexes):
            del items[i]
        if not items:
            self.lists.pop(name, None)
        return len(indexes)

    def _lrange(self, name, start, end):
        items = self.lists.get(name, [])
        size = len(items)
        if start < 0:
            start = max(size + start, 0)
        if end < 0:
            end = size + end
        end = min(end, size - 1)
        if start > end:
            return []
        return items[start : end + 1]

    def __getattr__(self, command: str):
        if command not in self.COMMANDS:
            raise AttributeError(command)

        async def call(*args: Any) -> Any:
            self._check()
            return self._apply(command, *args)

        return call

    async def ping(self) -> bool:
        self._check()
        return True

    def pipeline(self, transaction: bool = True) -> StubPipeline:
        return StubPipeline(self, transaction)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def stub_redis() -> StubRedis:
    return StubRedis()


@pytest.fixture
def store(stub_redis: StubRedis) -> KVStore:
    return KVStore(client_factory=lambda: stub_redis)


@pytest.fixture
def repo(store: KVStore) -> Repository:
    return Repository(store)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def manager(repo: Repository, events: EventBus) -> SessionManager:
    return SessionManager(repo, events=events)
