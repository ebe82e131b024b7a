from __future__ import annotations

import argparse
import asyncio
import json
import sys

from nl2query.core.errors import (
    NL2QueryError,
    ProviderConfigError,
    StatusInProgressError,
    VertexAuthError,
    VertexTimeoutError,
)
from nl2query.core.logging import configure_logging
from nl2query.services.factory import build_query_service, close_shared_resources


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Translate a prompt into SQL for a registered tenant.")
    parser.add_argument("--tenant", required=True, help="Tenant id returned by sync_workspace.py")
    parser.add_argument("--prompt", required=True, help="Natural-language question")
    parser.add_argument("--with-data", action="store_true", help="Execute the query on the client database")
    return parser


def _format_error(exc: Exception) -> tuple[int, str]:
    if isinstance(exc, ProviderConfigError):
        return 2, f"CONFIG_ERROR: {exc}"
    if isinstance(exc, VertexAuthError):
        return 3, f"VERTEX_AUTH_ERROR: {exc}"
    if isinstance(exc, VertexTimeoutError):
        return 4, f"VERTEX_TIMEOUT: {exc}"
    if isinstance(exc, StatusInProgressError):
        return 5, f"INGESTION_IN_PROGRESS: {exc}"
    if isinstance(exc, NL2QueryError):
        return 1, f"{exc.__class__.__name__}: {exc}"
    return 1, f"UNKNOWN_ERROR: {exc}"


async def _run(args: argparse.Namespace) -> int:
    service = build_query_service()
    try:
        result, warning = await service.prompt_to_query_data(args.tenant, args.prompt, args.with_data)
    finally:
        await close_shared_resources()

    print(result.result_query or "")
    if result.result_data is not None:
        for row in result.result_data:
            print(json.dumps(row, default=str))
    if warning:
        print(f"warning: {warning}", file=sys.stderr)
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface actionable errors
        code, message = _format_error(exc)
        print(message, file=sys.stderr)
        return code


if __name__ == "__main__":
    raise SystemExit(main())
