from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from nl2query.core.config import get_settings
from nl2query.core.errors import WorkspaceStoreError
from nl2query.domain.models import Workspace
from nl2query.persistence.db import build_engine, build_sessionmaker
from nl2query.persistence.repos import workspaces as workspaces_repo


logger = logging.getLogger(__name__)


class WorkspaceRepository(Protocol):
    async def connect(self, url: str | None = None) -> None:
        ...

    async def close(self) -> None:
        ...

    async def get_workspace_by_tenant_id(self, tenant_id: str) -> Workspace | None:
        ...

    async def list_all_workspaces(self) -> list[Workspace]:
        ...

    async def upsert_workspace(self, *, tenant_id: str, encrypted_db_url: str, checksum: str) -> Workspace:
        ...

    async def delete_workspace_by_tenant_id(self, tenant_id: str) -> None:
        ...


class WorkspaceStore:
    """SQLAlchemy-backed workspace records.

    ``connect`` is idempotent so request handlers can call it on every
    operation; the engine is shared by all callers of one store instance.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None
        self._lock = asyncio.Lock()

    async def connect(self, url: str | None = None) -> None:
        if self._engine is not None:
            return
        async with self._lock:
            if self._engine is not None:
                return
            database_url = url or self._database_url or get_settings().database_url
            try:
                engine = build_engine(database_url)
            except (SQLAlchemyError, ValueError) as exc:
                raise WorkspaceStoreError("Failed to open workspace store") from exc
            self._engine = engine
            self._sessionmaker = build_sessionmaker(engine)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    def _session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise WorkspaceStoreError("Workspace store is not connected")
        return self._sessionmaker()

    async def get_workspace_by_tenant_id(self, tenant_id: str) -> Workspace | None:
        try:
            async with self._session() as session:
                return await workspaces_repo.get_workspace(session, tenant_id)
        except SQLAlchemyError as exc:
            raise WorkspaceStoreError("Database error while fetching workspace") from exc

    async def list_all_workspaces(self) -> list[Workspace]:
        try:
            async with self._session() as session:
                return await workspaces_repo.list_workspaces(session)
        except SQLAlchemyError as exc:
            raise WorkspaceStoreError("Database error while listing workspaces") from exc

    async def upsert_workspace(self, *, tenant_id: str, encrypted_db_url: str, checksum: str) -> Workspace:
        try:
            async with self._session() as session:
                workspace = await workspaces_repo.upsert_workspace(
                    session,
                    tenant_id=tenant_id,
                    encrypted_db_url=encrypted_db_url,
                    checksum=checksum,
                )
                await session.commit()
                # Load server-side timestamps while the session is still open.
                await session.refresh(workspace)
                return workspace
        except SQLAlchemyError as exc:
            raise WorkspaceStoreError("Database error while saving workspace") from exc

    async def delete_workspace_by_tenant_id(self, tenant_id: str) -> None:
        try:
            async with self._session() as session:
                deleted = await workspaces_repo.delete_workspace(session, tenant_id)
                await session.commit()
        except SQLAlchemyError as exc:
            raise WorkspaceStoreError("Database error while deleting workspace") from exc
        logger.info("workspace_deleted tenant_id=%s rows=%s", tenant_id, deleted)
