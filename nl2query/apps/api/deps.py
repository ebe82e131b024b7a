from __future__ import annotations

from fastapi import Request

from nl2query.apps.api.response import get_request_id
from nl2query.services.factory import build_query_service, build_workspace_service
from nl2query.services.query import QueryService
from nl2query.services.workspace import WorkspaceService


def get_workspace_service() -> WorkspaceService:
    return build_workspace_service()


def get_query_service(request: Request) -> QueryService:
    # The LLM provider is request-scoped so its logs carry the request id.
    return build_query_service(request_id=get_request_id(request))
