from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from nl2query.core.config import get_settings
from nl2query.core.errors import StatusRegistryError
from nl2query.domain.schema import WorkspaceStatus


logger = logging.getLogger(__name__)

_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


class StatusRegistry(Protocol):
    async def set_in_progress(self, tenant_id: str) -> None:
        ...

    async def set_done(self, tenant_id: str) -> None:
        ...

    async def set_error(self, tenant_id: str, message: str) -> None:
        ...

    async def set_warn(self, tenant_id: str, message: str) -> None:
        ...

    async def get(self, tenant_id: str) -> tuple[WorkspaceStatus, str | None]:
        ...

    async def clear(self, tenant_id: str) -> None:
        ...


async def get_status_redis() -> Redis:
    # Reuse one Redis client per event loop for status reads and writes.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        # Drop loop-bound clients to avoid cross-loop errors in tests.
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            _redis_loop = current_loop
    return _redis_pool


def _as_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return str(value)


class RedisStatusRegistry:
    """Ingestion status per tenant, one Redis hash per tenant.

    Fields are ``status`` and ``message``. DONE is stored by deleting the key,
    and a missing key reads back as DONE so fresh tenants are queryable
    without a priming write.
    """

    def __init__(self, redis: Redis | None = None, *, prefix: str | None = None) -> None:
        self._redis = redis
        self._prefix = prefix or get_settings().status_redis_prefix

    def _key(self, tenant_id: str) -> str:
        return f"{self._prefix}:{tenant_id}"

    async def _client(self) -> Redis:
        if self._redis is None:
            self._redis = await get_status_redis()
        return self._redis

    async def _write(self, tenant_id: str, status: WorkspaceStatus, message: str) -> None:
        redis = await self._client()
        try:
            await redis.hset(self._key(tenant_id), mapping={"status": status.value, "message": message})
        except RedisError as exc:
            raise StatusRegistryError(f"Failed to write status for {tenant_id}") from exc
        logger.info("status_set tenant_id=%s status=%s", tenant_id, status.value)

    async def set_in_progress(self, tenant_id: str) -> None:
        await self._write(tenant_id, WorkspaceStatus.IN_PROGRESS, "Ingestion in progress")

    async def set_done(self, tenant_id: str) -> None:
        await self.clear(tenant_id)

    async def set_error(self, tenant_id: str, message: str) -> None:
        await self._write(tenant_id, WorkspaceStatus.ERROR, message)

    async def set_warn(self, tenant_id: str, message: str) -> None:
        # Warnings finish the ingestion; the message explains the degradation.
        await self._write(tenant_id, WorkspaceStatus.DONE, message)

    async def get(self, tenant_id: str) -> tuple[WorkspaceStatus, str | None]:
        redis = await self._client()
        try:
            record = await redis.hgetall(self._key(tenant_id))
        except RedisError as exc:
            raise StatusRegistryError(f"Failed to read status for {tenant_id}") from exc
        if not record:
            return WorkspaceStatus.DONE, None
        decoded = {_as_text(key): _as_text(value) for key, value in record.items()}
        raw_status = decoded.get("status") or WorkspaceStatus.DONE.value
        try:
            status = WorkspaceStatus(raw_status)
        except ValueError:
            logger.warning("status_unknown tenant_id=%s value=%s", tenant_id, raw_status)
            status = WorkspaceStatus.ERROR
        return status, decoded.get("message") or None

    async def clear(self, tenant_id: str) -> None:
        redis = await self._client()
        try:
            await redis.delete(self._key(tenant_id))
        except RedisError as exc:
            raise StatusRegistryError(f"Failed to clear status for {tenant_id}") from exc
