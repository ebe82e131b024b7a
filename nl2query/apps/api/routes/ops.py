from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from nl2query.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from nl2query.apps.api.response import SuccessEnvelope, envelope, get_request_id
from nl2query.services.ingest import queue as ingest_queue
from nl2query.services.telemetry import counters_snapshot, external_call_stats, request_latency_by_class


router = APIRouter(prefix="/ops", tags=["ops"], responses=DEFAULT_ERROR_RESPONSES)


class OpsMetricsResponse(BaseModel):
    window_s: int
    counters: dict[str, int]
    request_latency: dict[str, Any]
    external_calls: dict[str, Any]
    # None when Redis is unavailable.
    ingest_queue_depth: int | None = None
    worker_heartbeat_at: datetime | None = None


@router.get("/metrics", response_model=SuccessEnvelope[OpsMetricsResponse])
async def ops_metrics(
    request: Request,
    window_s: int = Query(default=300, ge=1, le=86400),
) -> dict:
    response = OpsMetricsResponse(
        window_s=window_s,
        counters=counters_snapshot(),
        request_latency=request_latency_by_class(window_s),
        external_calls=external_call_stats(window_s),
        ingest_queue_depth=await ingest_queue.get_queue_depth(),
        worker_heartbeat_at=await ingest_queue.get_worker_heartbeat(),
    )
    return envelope(get_request_id(request), response)
