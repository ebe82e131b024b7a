from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from nl2query.domain.models import Workspace


async def get_workspace(session: AsyncSession, tenant_id: str) -> Workspace | None:
    result = await session.execute(select(Workspace).where(Workspace.tenant_id == tenant_id))
    return result.scalar_one_or_none()


async def list_workspaces(session: AsyncSession) -> list[Workspace]:
    result = await session.execute(select(Workspace).order_by(Workspace.created_at, Workspace.tenant_id))
    return list(result.scalars().all())


async def upsert_workspace(
    session: AsyncSession,
    *,
    tenant_id: str,
    encrypted_db_url: str,
    checksum: str,
) -> Workspace:
    # Update in place when the tenant exists so created_at is preserved.
    workspace = await get_workspace(session, tenant_id)
    if workspace is None:
        workspace = Workspace(
            tenant_id=tenant_id,
            encrypted_db_url=encrypted_db_url,
            checksum=checksum,
        )
        session.add(workspace)
    else:
        workspace.encrypted_db_url = encrypted_db_url
        workspace.checksum = checksum
    return workspace


async def delete_workspace(session: AsyncSession, tenant_id: str) -> int:
    result = await session.execute(delete(Workspace).where(Workspace.tenant_id == tenant_id))
    return int(result.rowcount or 0)
