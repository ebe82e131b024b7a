from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from nl2query.apps.api.deps import get_workspace_service
from nl2query.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from nl2query.apps.api.response import SuccessEnvelope, envelope, get_request_id
from nl2query.domain.models import Workspace
from nl2query.services.hashing import generate_tenant_id
from nl2query.services.workspace import WorkspaceService


router = APIRouter(prefix="/workspaces", tags=["workspaces"], responses=DEFAULT_ERROR_RESPONSES)


class SyncRequest(BaseModel):
    db_url: str = Field(min_length=1)

    model_config = {"extra": "forbid"}


class SyncResponse(BaseModel):
    tenant_id: str
    # False when the schema is unchanged or the client database was unreachable.
    ingestion_enqueued: bool
    metadata: dict[str, Any] | None = None
    warning: str | None = None


class WorkspaceResponse(BaseModel):
    # The encrypted URL stays server-side.
    tenant_id: str
    checksum: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class WorkspaceStatusResponse(BaseModel):
    tenant_id: str
    status: str
    message: str | None = None
    vectors_indexed: bool


class DeleteResponse(BaseModel):
    tenant_id: str
    deleted: bool


def _to_response(workspace: Workspace) -> WorkspaceResponse:
    return WorkspaceResponse(
        tenant_id=workspace.tenant_id,
        checksum=workspace.checksum,
        created_at=workspace.created_at,
        updated_at=workspace.updated_at,
    )


@router.post("/sync", response_model=SuccessEnvelope[SyncResponse])
async def sync_workspace(
    request: Request,
    payload: SyncRequest,
    service: WorkspaceService = Depends(get_workspace_service),
) -> dict:
    metadata, warning = await service.sync_client_database(payload.db_url)
    response = SyncResponse(
        tenant_id=metadata.tenant_id if metadata is not None else generate_tenant_id(payload.db_url),
        ingestion_enqueued=metadata is not None,
        metadata=asdict(metadata) if metadata is not None else None,
        warning=warning,
    )
    return envelope(get_request_id(request), response)


@router.get("", response_model=SuccessEnvelope[list[WorkspaceResponse]])
async def list_workspaces(
    request: Request,
    service: WorkspaceService = Depends(get_workspace_service),
) -> dict:
    workspaces = await service.list_all()
    return envelope(get_request_id(request), [_to_response(workspace) for workspace in workspaces])


@router.get("/{tenant_id}", response_model=SuccessEnvelope[WorkspaceResponse])
async def get_workspace(
    tenant_id: str,
    request: Request,
    service: WorkspaceService = Depends(get_workspace_service),
) -> dict:
    workspace = await service.get_by_tenant_id(tenant_id)
    return envelope(get_request_id(request), _to_response(workspace))


@router.delete("/{tenant_id}", response_model=SuccessEnvelope[DeleteResponse])
async def delete_workspace(
    tenant_id: str,
    request: Request,
    service: WorkspaceService = Depends(get_workspace_service),
) -> dict:
    await service.delete(tenant_id)
    return envelope(get_request_id(request), DeleteResponse(tenant_id=tenant_id, deleted=True))


@router.get("/{tenant_id}/status", response_model=SuccessEnvelope[WorkspaceStatusResponse])
async def get_workspace_status(
    tenant_id: str,
    request: Request,
    service: WorkspaceService = Depends(get_workspace_service),
) -> dict:
    report = await service.get_status(tenant_id)
    response = WorkspaceStatusResponse(
        tenant_id=report.tenant_id,
        status=report.status.value,
        message=report.message,
        vectors_indexed=report.vectors_indexed,
    )
    return envelope(get_request_id(request), response)
