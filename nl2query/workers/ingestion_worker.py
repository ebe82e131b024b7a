from __future__ import annotations

import asyncio
import logging

from arq.connections import RedisSettings

from nl2query.core.config import get_settings
from nl2query.core.logging import configure_logging
from nl2query.services.factory import (
    build_ingestion_service,
    close_shared_resources,
    get_status_registry,
    new_client_database,
)
from nl2query.services.ingest.queue import (
    IngestionJobPayload,
    process_ingestion_job,
    set_worker_heartbeat,
)


logger = logging.getLogger(__name__)


async def ingest_workspace(ctx, payload: dict) -> int:
    # Parse and validate payloads in the worker to enforce schema contracts.
    job_payload = IngestionJobPayload.model_validate(payload)
    settings = get_settings()
    return await process_ingestion_job(
        job_payload,
        ingestion=ctx["ingestion"],
        status=ctx["status"],
        client_db_factory=new_client_database,
        job_id=ctx.get("job_id") or "unknown",
        attempt=ctx.get("job_try", 1),
        max_retries=settings.ingest_max_retries,
    )


async def _heartbeat_loop() -> None:
    settings = get_settings()
    while True:
        await set_worker_heartbeat()
        await asyncio.sleep(settings.worker_heartbeat_interval_s)


async def _startup(ctx) -> None:
    configure_logging()
    ctx["ingestion"] = build_ingestion_service()
    ctx["status"] = get_status_registry()
    ctx["heartbeat_task"] = asyncio.create_task(_heartbeat_loop())
    logger.info("ingestion_worker_started queue=%s", get_settings().ingest_queue_name)


async def _shutdown(ctx) -> None:
    task = ctx.get("heartbeat_task")
    if task:
        task.cancel()
    await close_shared_resources()


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.ingest_queue_name
    max_tries = settings.ingest_max_retries
    functions = [ingest_workspace]
    on_startup = _startup
    on_shutdown = _shutdown
