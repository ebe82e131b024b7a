from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from nl2query.core.errors import WorkspaceStoreError
from nl2query.domain.models import Workspace
from nl2query.services.workspace_store import WorkspaceStore


@pytest.fixture
async def store(tmp_path: Path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'store.db'}"
    # Only the workspace table; schema vectors need pgvector.
    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Workspace.__table__.create)
    await engine.dispose()

    workspace_store = WorkspaceStore(url)
    await workspace_store.connect()
    yield workspace_store
    await workspace_store.close()


async def test_upsert_inserts_then_updates_in_place(store: WorkspaceStore) -> None:
    created = await store.upsert_workspace(tenant_id="tenant_a", encrypted_db_url="cipher-1", checksum="c1")
    updated = await store.upsert_workspace(tenant_id="tenant_a", encrypted_db_url="cipher-2", checksum="c2")

    assert created.created_at is not None
    assert updated.checksum == "c2"

    fetched = await store.get_workspace_by_tenant_id("tenant_a")
    assert fetched is not None
    assert fetched.encrypted_db_url == "cipher-2"
    assert fetched.checksum == "c2"
    assert len(await store.list_all_workspaces()) == 1


async def test_list_and_delete(store: WorkspaceStore) -> None:
    await store.upsert_workspace(tenant_id="tenant_a", encrypted_db_url="x", checksum="a")
    await store.upsert_workspace(tenant_id="tenant_b", encrypted_db_url="y", checksum="b")

    assert {workspace.tenant_id for workspace in await store.list_all_workspaces()} == {"tenant_a", "tenant_b"}

    await store.delete_workspace_by_tenant_id("tenant_a")
    # Deleting an absent tenant is a no-op.
    await store.delete_workspace_by_tenant_id("tenant_missing")

    assert await store.get_workspace_by_tenant_id("tenant_a") is None
    assert [workspace.tenant_id for workspace in await store.list_all_workspaces()] == ["tenant_b"]


async def test_connect_is_idempotent(store: WorkspaceStore) -> None:
    await store.connect()
    await store.connect("sqlite+aiosqlite:///ignored.db")

    assert await store.get_workspace_by_tenant_id("tenant_missing") is None


async def test_operations_require_connection() -> None:
    with pytest.raises(WorkspaceStoreError):
        await WorkspaceStore("sqlite+aiosqlite:///unused.db").list_all_workspaces()


async def test_missing_table_is_reported_as_store_error(tmp_path: Path) -> None:
    workspace_store = WorkspaceStore(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    await workspace_store.connect()
    try:
        with pytest.raises(WorkspaceStoreError):
            await workspace_store.get_workspace_by_tenant_id("tenant_a")
    finally:
        await workspace_store.close()
