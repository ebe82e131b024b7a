from __future__ import annotations

import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from nl2query.apps.api.errors import (
    http_exception_handler,
    nl2query_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from nl2query.apps.api.response import API_VERSION
from nl2query.apps.api.routes.health import router as health_router
from nl2query.apps.api.routes.ops import router as ops_router
from nl2query.apps.api.routes.query import router as query_router
from nl2query.apps.api.routes.workspaces import router as workspaces_router
from nl2query.core.config import get_settings
from nl2query.core.errors import NL2QueryError
from nl2query.core.logging import configure_logging
from nl2query.services.factory import close_shared_resources
from nl2query.services.telemetry import record_request


def _route_class(path: str) -> str:
    # Coarse buckets keep the latency table small.
    if path.startswith(f"/{API_VERSION}/query"):
        return "query"
    if path.startswith(f"/{API_VERSION}/workspaces"):
        return "workspaces"
    if path.startswith(f"/{API_VERSION}/ops"):
        return "ops"
    return "other"


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    await close_shared_resources()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=f"{get_settings().app_name} API", version=API_VERSION, lifespan=_lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            route_class=_route_class(request.url.path),
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(NL2QueryError, nl2query_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(workspaces_router, prefix=f"/{API_VERSION}")
    app.include_router(query_router, prefix=f"/{API_VERSION}")
    app.include_router(ops_router, prefix=f"/{API_VERSION}")

    return app


app = create_app()
