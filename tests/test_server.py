from __future__ import annotations

import asyncio
import json

import pytest
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError

import tinymem.server as server_module
from tinymem.config import TinymemSettings
from tinymem.storage import KVStore, WaitingStatus

from conftest import StubRedis


class StubFastMCP:
    def __init__(self, *args, **kwargs):
        self.init_kwargs = kwargs
        self.tools: dict[str, object] = {}
        self.resources: dict[str, object] = {}

    def resource(self, uri, **kwargs):
        def decorator(fn):
            self.resources[uri] = fn
            return fn

        return decorator

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[kwargs["name"]] = fn
            return fn

        return decorator

    def run(self):  # pragma: no cover - not used in tests
        return None


@pytest.fixture
def stub_fastmcp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(server_module, "FastMCP", StubFastMCP)


def _settings(**overrides) -> TinymemSettings:
    values = {
        "TINYMEM_ASK_TIMEOUT": 12,
        "TINYMEM_ASK_POLL_INTERVAL": 0.25,
        "TINYMEM_SWEEP_INTERVAL": 0.01,
        "TINYMEM_STALE_AFTER": 60,
    }
    values.update(overrides)
    return TinymemSettings(**values)


def test_create_server_wires_components(stub_fastmcp, stub_redis: StubRedis) -> None:
    store = KVStore(client_factory=lambda: stub_redis)
    server = server_module.create_server(_settings(), store=store)

    assert server.kv_store is store
    assert server.session_manager.repository is server.repository
    assert server.rendezvous.timeout == 12
    assert "tinymem_ask" in server.tools
    assert "resource://tinymem/status" in server.resources
    assert server.init_kwargs["name"] == "tinymem"


def test_status_payload_reports_sessions(stub_fastmcp, stub_redis: StubRedis) -> None:
    store = KVStore(client_factory=lambda: stub_redis)
    server = server_module.create_server(_settings(), store=store)
    manager = server.session_manager

    async def scenario():
        waiting = await manager.create_session("claude")
        finished = await manager.create_session("codex")
        await manager.repository.update_status(
            waiting.id, WaitingStatus(question="ok?", asked_at=1)
        )
        await manager.mark_done(finished.id)
        payload = await server.status_payload()
        resource = json.loads(await server.resources["resource://tinymem/status"]())
        return waiting.id, finished.id, payload, resource

    waiting_id, finished_id, payload, resource = asyncio.run(scenario())

    assert payload["sessions"]["active"] == 1
    assert payload["sessions"]["waiting"] == [waiting_id]
    assert payload["sessions"]["history_preview"] == [finished_id]
    assert payload["storage"]["available"] is True
    assert payload["events"]["published"] >= 3
    assert payload["rendezvous"] == {"timeout_seconds": 12, "poll_interval": 0.25}
    assert resource["server_version"] == payload["server_version"]


def test_status_payload_survives_store_outage(stub_fastmcp) -> None:
    failing = StubRedis(fail_with=RedisConnectionError("refused"))
    server = server_module.create_server(
        _settings(), store=KVStore(client_factory=lambda: failing)
    )

    payload = asyncio.run(server.status_payload())

    assert payload["storage"]["available"] is False
    assert "refused" in payload["storage"]["error"]
    assert payload["sessions"]["active"] == 0


def test_lifespan_pings_and_closes_store(stub_fastmcp, stub_redis: StubRedis) -> None:
    store = KVStore(client_factory=lambda: stub_redis)
    server = server_module.create_server(_settings(), store=store)
    lifespan = server.init_kwargs["lifespan"]

    async def scenario():
        async with lifespan(server):
            await asyncio.sleep(0.03)
            return dict(server.store_metadata)

    metadata = asyncio.run(scenario())

    assert metadata["available"] is True
    assert stub_redis.closed


def test_settings_reject_invalid_values() -> None:
    with pytest.raises(ValidationError):
        TinymemSettings(TINYMEM_LOG_LEVEL="chatty")
    with pytest.raises(ValidationError):
        TinymemSettings(TINYMEM_ASK_TIMEOUT=0)
    with pytest.raises(ValidationError):
        TinymemSettings(TINYMEM_HISTORY_LIMIT=0)


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TINYMEM_REDIS", "redis://cache:6380/2")
    monkeypatch.setenv("TINYMEM_LOG_LEVEL", "debug")

    settings = TinymemSettings()

    assert settings.redis_url == "redis://cache:6380/2"
    assert settings.log_level == "DEBUG"
    assert settings.ask_timeout_seconds == 300
