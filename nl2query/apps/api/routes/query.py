from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from nl2query.apps.api.deps import get_query_service
from nl2query.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from nl2query.apps.api.response import SuccessEnvelope, envelope, get_request_id
from nl2query.services.query import QueryService


logger = logging.getLogger(__name__)

router = APIRouter(tags=["query"], responses=DEFAULT_ERROR_RESPONSES)

_DISCONNECT_POLL_S = 0.5


class QueryRequest(BaseModel):
    tenant_id: str = Field(min_length=1)
    prompt: str = Field(min_length=1)
    with_data: bool = False

    model_config = {"extra": "forbid"}


class QueryResponse(BaseModel):
    tenant_id: str
    query: str | None
    # Present only when the query ran against the client database.
    data: list[dict[str, Any]] | None = None
    warning: str | None = None
    created_at: datetime
    updated_at: datetime


async def _watch_disconnect(request: Request, cancel_event: asyncio.Event) -> None:
    while not cancel_event.is_set():
        if await request.is_disconnected():
            cancel_event.set()
            return
        await asyncio.sleep(_DISCONNECT_POLL_S)


async def _stop_watcher(watcher: asyncio.Task) -> None:
    watcher.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await watcher


@router.post("/query", response_model=SuccessEnvelope[QueryResponse])
async def prompt_to_query(
    request: Request,
    payload: QueryRequest,
    service: QueryService = Depends(get_query_service),
) -> dict:
    request_id = get_request_id(request)
    # Stop generating once the caller goes away.
    cancel_event = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel_event))
    try:
        result, warning = await service.prompt_to_query_data(
            payload.tenant_id,
            payload.prompt,
            payload.with_data,
            cancel_event=cancel_event,
        )
    except asyncio.CancelledError:
        logger.info("query_cancelled request_id=%s tenant_id=%s", request_id, payload.tenant_id)
        raise
    finally:
        await _stop_watcher(watcher)

    response = QueryResponse(
        tenant_id=result.tenant_id,
        query=result.result_query,
        # Client rows may hold dates or decimals.
        data=jsonable_encoder(result.result_data) if result.result_data is not None else None,
        warning=warning,
        created_at=result.created_at,
        updated_at=result.updated_at,
    )
    return envelope(request_id, response)
