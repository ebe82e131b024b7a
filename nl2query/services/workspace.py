from __future__ import annotations

import logging
from dataclasses import dataclass

from nl2query.core.errors import (
    ClientDatabaseError,
    StatusInProgressError,
    WARN_USE_EXISTING_SCHEMA,
    WorkspaceNotFoundError,
)
from nl2query.domain.models import Workspace
from nl2query.domain.schema import SchemaMetadata, WorkspaceStatus
from nl2query.providers.client_db.base import ClientDatabaseFactory
from nl2query.providers.vectorstore.base import VectorStore
from nl2query.services.crypto.cipher import Cipher
from nl2query.services.hashing import generate_checksum, generate_tenant_id
from nl2query.services.ingest.queue import TaskQueue
from nl2query.services.status import StatusRegistry
from nl2query.services.telemetry import increment_counter
from nl2query.services.workspace_store import WorkspaceRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkspaceStatusReport:
    tenant_id: str
    status: WorkspaceStatus
    message: str | None
    vectors_indexed: bool


class WorkspaceService:
    def __init__(
        self,
        *,
        status: StatusRegistry,
        store: WorkspaceRepository,
        cipher: Cipher,
        client_db_factory: ClientDatabaseFactory,
        task_queue: TaskQueue,
        vector_store: VectorStore,
    ) -> None:
        self._status = status
        self._store = store
        self._cipher = cipher
        self._client_db_factory = client_db_factory
        self._task_queue = task_queue
        self._vector_store = vector_store

    async def _ensure_not_in_progress(self, tenant_id: str) -> WorkspaceStatus:
        current, _ = await self._status.get(tenant_id)
        if current == WorkspaceStatus.IN_PROGRESS:
            raise StatusInProgressError().add_additional_error_info(f"tenant_id={tenant_id}")
        return current

    async def sync_client_database(self, db_url: str) -> tuple[SchemaMetadata | None, str | None]:
        """Register a client database and schedule ingestion when its schema changed.

        Returns ``(metadata, None)`` when a job was enqueued and ``(None, None)``
        when nothing needs to happen: the schema is unchanged, or the client
        database is unreachable and the stored schema stays in use.
        """
        tenant_id = generate_tenant_id(db_url)
        current = await self._ensure_not_in_progress(tenant_id)

        encrypted_db_url = self._cipher.encrypt(db_url)
        await self._store.connect()
        workspace = await self._store.get_workspace_by_tenant_id(tenant_id)

        client_db = self._client_db_factory()
        try:
            try:
                await client_db.connect(db_url)
            except ClientDatabaseError as exc:
                increment_counter("sync_client_unreachable_total")
                logger.warning(
                    "sync_client_unreachable tenant_id=%s known=%s warning=%r error=%s",
                    tenant_id,
                    workspace is not None,
                    WARN_USE_EXISTING_SCHEMA,
                    exc,
                )
                return None, None

            metadata = await client_db.get_database_metadata()
        finally:
            await client_db.close()

        metadata.tenant_id = tenant_id
        metadata.checksum = generate_checksum(metadata)

        # A failed ingestion leaves the stored checksum ahead of the vectors.
        unchanged = workspace is not None and workspace.checksum == metadata.checksum
        if unchanged and current != WorkspaceStatus.ERROR:
            increment_counter("sync_unchanged_total")
            logger.info("sync_schema_unchanged tenant_id=%s", tenant_id)
            return None, None

        # Persist the checksum only once a job owns it; a failed enqueue keeps the old one.
        job_id = await self._task_queue.enqueue_ingestion_task(tenant_id, db_url)
        await self._store.upsert_workspace(
            tenant_id=tenant_id,
            encrypted_db_url=encrypted_db_url,
            checksum=metadata.checksum,
        )
        increment_counter("sync_enqueued_total")
        logger.info(
            "sync_ingestion_enqueued tenant_id=%s job_id=%s new=%s tables=%s",
            tenant_id,
            job_id,
            workspace is None,
            len(metadata.tables),
        )
        return metadata, None

    async def get_by_tenant_id(self, tenant_id: str) -> Workspace:
        await self._store.connect()
        workspace = await self._store.get_workspace_by_tenant_id(tenant_id)
        if workspace is None:
            raise WorkspaceNotFoundError().add_additional_error_info(f"tenant_id={tenant_id}")
        return workspace

    async def list_all(self) -> list[Workspace]:
        await self._store.connect()
        return await self._store.list_all_workspaces()

    async def delete(self, tenant_id: str) -> None:
        await self._ensure_not_in_progress(tenant_id)
        # Raises when the tenant is unknown.
        await self.get_by_tenant_id(tenant_id)
        await self._store.delete_workspace_by_tenant_id(tenant_id)
        await self._vector_store.delete(tenant_id)
        await self._status.clear(tenant_id)
        logger.info("workspace_removed tenant_id=%s", tenant_id)

    async def get_status(self, tenant_id: str) -> WorkspaceStatusReport:
        current, message = await self._status.get(tenant_id)
        vectors_indexed = await self._vector_store.exists(tenant_id)
        return WorkspaceStatusReport(
            tenant_id=tenant_id,
            status=current,
            message=message,
            vectors_indexed=vectors_indexed,
        )
