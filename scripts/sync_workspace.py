from __future__ import annotations

import argparse
import asyncio
import sys

from nl2query.core.errors import (
    ClientDatabaseError,
    NL2QueryError,
    ProviderConfigError,
    StatusInProgressError,
    TaskQueueError,
)
from nl2query.core.logging import configure_logging
from nl2query.services.factory import build_workspace_service, close_shared_resources
from nl2query.services.hashing import generate_tenant_id


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Register a client database and enqueue schema ingestion when it changed."
    )
    parser.add_argument("--db-url", required=True, help="Client database URL")
    return parser


def _format_error(exc: Exception) -> tuple[int, str]:
    if isinstance(exc, ProviderConfigError):
        return 2, f"CONFIG_ERROR: {exc}"
    if isinstance(exc, StatusInProgressError):
        return 3, f"INGESTION_IN_PROGRESS: {exc}"
    if isinstance(exc, ClientDatabaseError):
        return 4, f"CLIENT_DATABASE_ERROR: {exc}"
    if isinstance(exc, TaskQueueError):
        return 5, f"QUEUE_UNAVAILABLE: {exc}"
    if isinstance(exc, NL2QueryError):
        return 1, f"{exc.__class__.__name__}: {exc}"
    return 1, f"UNKNOWN_ERROR: {exc}"


async def _run(args: argparse.Namespace) -> int:
    service = build_workspace_service()
    try:
        metadata, warning = await service.sync_client_database(args.db_url)
    finally:
        await close_shared_resources()

    tenant_id = generate_tenant_id(args.db_url)
    if metadata is None:
        print(f"tenant_id={tenant_id} ingestion_enqueued=false")
    else:
        print(
            f"tenant_id={tenant_id} ingestion_enqueued=true "
            f"tables={len(metadata.tables)} columns={metadata.column_count()} checksum={metadata.checksum}"
        )
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
