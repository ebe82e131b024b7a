from __future__ import annotations

import pytest

from nl2query.core.errors import StatusRegistryError
from nl2query.domain.schema import WorkspaceStatus
from nl2query.services.status import RedisStatusRegistry
from nl2query.tests.utils.fakes import FakeRedis


@pytest.fixture
def redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def registry(redis: FakeRedis) -> RedisStatusRegistry:
    return RedisStatusRegistry(redis, prefix="test:status")


async def test_missing_record_reads_as_done(registry: RedisStatusRegistry) -> None:
    assert await registry.get("tenant_new") == (WorkspaceStatus.DONE, None)


async def test_lifecycle_transitions(registry: RedisStatusRegistry, redis: FakeRedis) -> None:
    await registry.set_in_progress("tenant_a")
    status, _ = await registry.get("tenant_a")
    assert status == WorkspaceStatus.IN_PROGRESS
    assert "test:status:tenant_a" in redis.data

    await registry.set_error("tenant_a", "embedder offline")
    assert await registry.get("tenant_a") == (WorkspaceStatus.ERROR, "embedder offline")

    await registry.set_done("tenant_a")
    assert await registry.get("tenant_a") == (WorkspaceStatus.DONE, None)
    assert redis.data == {}


async def test_warn_finishes_with_message(registry: RedisStatusRegistry) -> None:
    await registry.set_in_progress("tenant_a")
    await registry.set_warn("tenant_a", "partial schema")

    assert await registry.get("tenant_a") == (WorkspaceStatus.DONE, "partial schema")


async def test_writes_are_idempotent_and_tenants_isolated(registry: RedisStatusRegistry) -> None:
    await registry.set_in_progress("tenant_a")
    await registry.set_in_progress("tenant_a")
    await registry.clear("tenant_b")

    status_a, _ = await registry.get("tenant_a")
    assert status_a == WorkspaceStatus.IN_PROGRESS
    assert await registry.get("tenant_b") == (WorkspaceStatus.DONE, None)


async def test_unknown_stored_value_reads_as_error(registry: RedisStatusRegistry, redis: FakeRedis) -> None:
    redis.data["test:status:tenant_a"] = {"status": "PAUSED", "message": ""}

    status, message = await registry.get("tenant_a")

    assert status == WorkspaceStatus.ERROR
    assert message is None


async def test_storage_failures_propagate(registry: RedisStatusRegistry, redis: FakeRedis) -> None:
    redis.fail = True

    with pytest.raises(StatusRegistryError):
        await registry.get("tenant_a")
    with pytest.raises(StatusRegistryError):
        await registry.set_in_progress("tenant_a")
    with pytest.raises(StatusRegistryError):
        await registry.set_done("tenant_a")
