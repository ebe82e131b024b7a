from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from nl2query.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from nl2query.apps.api.response import SuccessEnvelope, envelope, get_request_id

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    return envelope(get_request_id(request), HealthResponse(status="ok"))
