from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Protocol
from uuid import uuid4

from arq import Retry, create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel
from redis.exceptions import RedisError

from nl2query.core.config import get_settings
from nl2query.core.errors import DecryptionError, NL2QueryError, ProviderConfigError, TaskQueueError
from nl2query.providers.client_db.base import ClientDatabaseFactory
from nl2query.services.hashing import generate_checksum
from nl2query.services.ingestion import IngestionService
from nl2query.services.status import StatusRegistry
from nl2query.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()
# Keep heartbeat key stable for ops endpoint lookups.
WORKER_HEARTBEAT_KEY = "nl2query:worker:heartbeat"
INGEST_JOB_NAME = "ingest_workspace"


def _queue_key(queue_name: str) -> str:
    # Use arq's queue naming convention for depth checks.
    return f"arq:queue:{queue_name}"


class IngestionJobPayload(BaseModel):
    tenant_id: str
    db_url: str


class TaskQueue(Protocol):
    async def enqueue_ingestion_task(self, tenant_id: str, db_url: str) -> str:
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _inline_mode() -> bool:
    return get_settings().ingest_execution_mode.lower() == "inline"


async def get_redis_pool():
    # Cache the Redis pool to avoid reconnecting on every enqueue.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        # Drop loop-bound pools to avoid cross-loop errors in tests.
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.ingest_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


async def get_queue_depth() -> int | None:
    # None signals Redis unavailability to ops endpoints.
    if _inline_mode():
        return 0
    try:
        redis = await get_redis_pool()
        depth = await redis.llen(_queue_key(get_settings().ingest_queue_name))
        return int(depth)
    except (RedisError, OSError):
        return None


async def set_worker_heartbeat(*, timestamp: datetime | None = None) -> None:
    if _inline_mode():
        # Inline mode does not run a worker.
        return
    redis = await get_redis_pool()
    heartbeat_time = timestamp or _utc_now()
    await redis.set(WORKER_HEARTBEAT_KEY, heartbeat_time.isoformat())


async def get_worker_heartbeat() -> datetime | None:
    # None when the heartbeat is missing or Redis is unavailable.
    if _inline_mode():
        return None
    try:
        redis = await get_redis_pool()
        raw_value = await redis.get(WORKER_HEARTBEAT_KEY)
    except (RedisError, OSError):
        return None
    if not raw_value:
        return None
    value = raw_value.decode("utf-8") if isinstance(raw_value, (bytes, bytearray)) else str(raw_value)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _is_retryable(exc: Exception) -> bool:
    # Configuration and payload problems fail the same way on every attempt.
    return not isinstance(exc, (ProviderConfigError, DecryptionError, ValueError))


async def _mark_tenant_failed(status: StatusRegistry, tenant_id: str, reason: str) -> None:
    try:
        await status.set_error(tenant_id, reason)
    except NL2QueryError:
        logger.warning("ingestion_status_write_failed tenant_id=%s", tenant_id)


async def process_ingestion_job(
    payload: IngestionJobPayload,
    *,
    ingestion: IngestionService,
    status: StatusRegistry,
    client_db_factory: ClientDatabaseFactory,
    job_id: str,
    attempt: int,
    max_retries: int,
) -> int:
    # Shared by the arq worker and inline mode so both retry the same way.
    client_db = client_db_factory()
    try:
        await client_db.connect(payload.db_url)
        metadata = await client_db.get_database_metadata()
        metadata.tenant_id = payload.tenant_id
        metadata.checksum = generate_checksum(metadata)
        written = await ingestion.vectorize_and_store(metadata)
        logger.info("ingestion_job_completed tenant_id=%s job_id=%s vectors=%s", payload.tenant_id, job_id, written)
        return written
    except Exception as exc:  # noqa: BLE001 - every failure ends as retry or ERROR status
        if _is_retryable(exc) and attempt < max_retries:
            logger.warning(
                "ingestion_job_retry tenant_id=%s job_id=%s attempt=%s error=%s",
                payload.tenant_id,
                job_id,
                attempt,
                exc.__class__.__name__,
            )
            raise Retry() from exc
        await _mark_tenant_failed(status, payload.tenant_id, str(exc))
        increment_counter("ingestion_jobs_failed_total")
        logger.exception("ingestion_job_failed tenant_id=%s job_id=%s", payload.tenant_id, job_id)
        return 0
    finally:
        await client_db.close()


async def _run_inline_job(
    payload: IngestionJobPayload,
    *,
    ingestion: IngestionService,
    status: StatusRegistry,
    client_db_factory: ClientDatabaseFactory,
    job_id: str,
    max_retries: int,
) -> int:
    # Inline mode mimics worker retries without requiring Redis.
    attempt = 1
    while True:
        try:
            return await process_ingestion_job(
                payload,
                ingestion=ingestion,
                status=status,
                client_db_factory=client_db_factory,
                job_id=job_id,
                attempt=attempt,
                max_retries=max_retries,
            )
        except Retry:
            attempt += 1


class ArqTaskQueue:
    """Dispatches ingestion jobs to the arq worker.

    In inline mode the job runs in-process, which needs the same collaborators
    the worker builds at startup.
    """

    def __init__(
        self,
        *,
        ingestion: IngestionService | None = None,
        status: StatusRegistry | None = None,
        client_db_factory: ClientDatabaseFactory | None = None,
    ) -> None:
        self._ingestion = ingestion
        self._status = status
        self._client_db_factory = client_db_factory

    async def enqueue_ingestion_task(self, tenant_id: str, db_url: str) -> str:
        payload = IngestionJobPayload(tenant_id=tenant_id, db_url=db_url)
        # Fresh id per sync; arq ignores enqueues whose id already has a result.
        job_id = f"ingest-{uuid4().hex}"
        settings = get_settings()

        if _inline_mode():
            if self._ingestion is None or self._status is None or self._client_db_factory is None:
                raise TaskQueueError("Inline ingestion is not configured")
            await _run_inline_job(
                payload,
                ingestion=self._ingestion,
                status=self._status,
                client_db_factory=self._client_db_factory,
                job_id=job_id,
                max_retries=settings.ingest_max_retries,
            )
            return job_id

        try:
            redis = await get_redis_pool()
            job = await redis.enqueue_job(
                INGEST_JOB_NAME,
                payload.model_dump(),
                _job_id=job_id,
                _queue_name=settings.ingest_queue_name,
            )
        except (RedisError, OSError) as exc:
            raise TaskQueueError().add_additional_error_info(str(exc)) from exc
        increment_counter("ingestion_jobs_enqueued_total")
        logger.info("ingestion_job_enqueued tenant_id=%s job_id=%s", tenant_id, job_id)
        return job.job_id if job else job_id
