from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from tinymem.storage import KVOp, KVStore, StoreError, StoreUnavailableError

from conftest import StubRedis


def test_basic_roundtrip(store: KVStore) -> None:
    async def scenario():
        await store.set("greeting", "hello")
        await store.add_to_set("names", "a")
        await store.add_to_set("names", "b")
        await store.remove_from_set("names", "a")
        await store.append_to_list("log", "1")
        await store.append_to_list("log", "2")
        await store.push_to_list_head("log", "0")
        return (
            await store.get("greeting"),
            await store.get("missing"),
            await store.members_of("names"),
            await store.range_of_list("log", 0, -1),
        )

    greeting, missing, names, log = asyncio.run(scenario())

    assert greeting == "hello"
    assert missing is None
    assert names == {"b"}
    assert log == ["0", "1", "2"]


def test_range_of_list_negative_indices(store: KVStore) -> None:
    async def scenario():
        for value in "abcde":
            await store.append_to_list("letters", value)
        return (
            await store.range_of_list("letters", -2, -1),
            await store.range_of_list("letters", 0, 1),
            await store.range_of_list("letters", -10, -1),
            await store.range_of_list("empty", 0, -1),
        )

    tail, head, everything, empty = asyncio.run(scenario())

    assert tail == ["d", "e"]
    assert head == ["a", "b"]
    assert everything == list("abcde")
    assert empty == []


def test_remove_from_list_counts(store: KVStore) -> None:
    async def scenario():
        for value in ["x", "y", "x", "x"]:
            await store.append_to_list("items", value)
        removed_one = await store.remove_from_list("items", "x", count=1)
        after_one = await store.range_of_list("items", 0, -1)
        removed_rest = await store.remove_from_list("items", "x")
        return removed_one, after_one, removed_rest, await store.range_of_list("items", 0, -1)

    removed_one, after_one, removed_rest, final = asyncio.run(scenario())

    assert removed_one == 1
    assert after_one == ["y", "x", "x"]
    assert removed_rest == 2
    assert final == ["y"]


def test_atomic_runs_single_transaction(store: KVStore, stub_redis: StubRedis) -> None:
    asyncio.run(
        store.atomic(
            [
                KVOp.set("sessions:abc", "{}"),
                KVOp.add_to_set("active", "abc"),
                KVOp.push_to_list_head("history", "zzz"),
            ]
        )
    )

    assert len(stub_redis.transactions) == 1
    assert [command for command, _ in stub_redis.transactions[0]] == ["set", "sadd", "lpush"]
    assert stub_redis.strings["sessions:abc"] == "{}"
    assert stub_redis.sets["active"] == {"abc"}


def test_atomic_with_no_operations_is_noop(store: KVStore, stub_redis: StubRedis) -> None:
    asyncio.run(store.atomic([]))
    assert stub_redis.transactions == []


def test_kvop_rejects_unknown_command() -> None:
    with pytest.raises(ValueError):
        KVOp("flushall", ())


def test_connection_errors_surface_as_unavailable() -> None:
    failing = StubRedis(fail_with=RedisConnectionError("connection refused"))
    store = KVStore(client_factory=lambda: failing)

    with pytest.raises(StoreUnavailableError):
        asyncio.run(store.get("anything"))
    with pytest.raises(StoreUnavailableError):
        asyncio.run(store.atomic([KVOp.set("k", "v")]))


def test_other_redis_errors_surface_as_store_error() -> None:
    failing = StubRedis(fail_with=ResponseError("WRONGTYPE"))
    store = KVStore(client_factory=lambda: failing)

    with pytest.raises(StoreError) as info:
        asyncio.run(store.members_of("active"))
    assert not isinstance(info.value, StoreUnavailableError)


def test_client_created_lazily_and_closed(stub_redis: StubRedis) -> None:
    calls = []

    def factory():
        calls.append(1)
        return stub_redis

    store = KVStore(client_factory=factory)
    assert calls == []

    async def scenario():
        assert await store.ping()
        await store.set("a", "1")
        await store.close()

    asyncio.run(scenario())

    assert calls == [1]
    assert stub_redis.closed
