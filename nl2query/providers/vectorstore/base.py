from __future__ import annotations

from typing import Protocol

from nl2query.domain.schema import Vector


class VectorStore(Protocol):
    async def upsert(self, tenant_id: str, vectors: list[Vector]) -> None:
        ...

    async def search(self, tenant_id: str, query_embedding: list[float], limit: int) -> list[Vector]:
        ...

    async def delete(self, tenant_id: str) -> None:
        ...

    async def exists(self, tenant_id: str) -> bool:
        ...
