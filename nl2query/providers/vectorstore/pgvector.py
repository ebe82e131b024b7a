from __future__ import annotations

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from nl2query.core.config import EMBED_DIM, get_settings
from nl2query.core.errors import VectorStoreError
from nl2query.domain.models import SchemaVector
from nl2query.domain.schema import Vector
from nl2query.persistence.db import build_engine, build_sessionmaker


logger = logging.getLogger(__name__)

# Clamp searches to a small range to avoid unbounded queries.
_MAX_SEARCH_LIMIT = 50


class PgVectorStore:
    def __init__(
        self,
        database_url: str | None = None,
        *,
        sessionmaker: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._database_url = database_url
        self._engine: AsyncEngine | None = None
        self._sessionmaker = sessionmaker

    def _session(self) -> AsyncSession:
        if self._sessionmaker is None:
            self._engine = build_engine(self._database_url or get_settings().database_url)
            self._sessionmaker = build_sessionmaker(self._engine)
        return self._sessionmaker()

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None

    async def upsert(self, tenant_id: str, vectors: list[Vector]) -> None:
        for vector in vectors:
            if len(vector.embedding) != EMBED_DIM:
                raise VectorStoreError(f"Embedding dimension mismatch; expected {EMBED_DIM}.")
            if vector.tenant_id != tenant_id:
                raise VectorStoreError("Vector tenant does not match upsert tenant")
        try:
            async with self._session() as session:
                # Replace the tenant's vectors wholesale in one transaction.
                await session.execute(delete(SchemaVector).where(SchemaVector.tenant_id == tenant_id))
                session.add_all(
                    SchemaVector(
                        id=vector.id,
                        tenant_id=tenant_id,
                        content=vector.content,
                        embedding=vector.embedding,
                        metadata_json=dict(vector.metadata),
                    )
                    for vector in vectors
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise VectorStoreError("pgvector upsert failed") from exc
        logger.info("vectors_upserted tenant_id=%s count=%s", tenant_id, len(vectors))

    async def search(self, tenant_id: str, query_embedding: list[float], limit: int) -> list[Vector]:
        if len(query_embedding) != EMBED_DIM:
            # Retrieval must fail fast if the embedding dimension doesn't match the schema.
            raise VectorStoreError("query embedding dimension mismatch")

        limit = max(1, min(int(limit), _MAX_SEARCH_LIMIT))
        # Use cosine distance from pgvector; lower is more similar.
        distance_expr = SchemaVector.embedding.cosine_distance(query_embedding)
        stmt = (
            select(SchemaVector)
            .where(SchemaVector.tenant_id == tenant_id)
            # Secondary ordering keeps tie-breaking deterministic.
            .order_by(distance_expr.asc(), SchemaVector.id.asc())
            .limit(limit)
        )
        try:
            async with self._session() as session:
                result = await session.execute(stmt)
                rows = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise VectorStoreError("pgvector query failed") from exc

        return [
            Vector(
                id=row.id,
                tenant_id=row.tenant_id,
                embedding=[float(value) for value in row.embedding],
                content=row.content,
                metadata={str(k): str(v) for k, v in (row.metadata_json or {}).items()},
            )
            for row in rows
        ]

    async def delete(self, tenant_id: str) -> None:
        try:
            async with self._session() as session:
                await session.execute(delete(SchemaVector).where(SchemaVector.tenant_id == tenant_id))
                await session.commit()
        except SQLAlchemyError as exc:
            raise VectorStoreError("pgvector delete failed") from exc

    async def exists(self, tenant_id: str) -> bool:
        stmt = select(func.count()).select_from(SchemaVector).where(SchemaVector.tenant_id == tenant_id)
        try:
            async with self._session() as session:
                result = await session.execute(stmt)
                return int(result.scalar() or 0) > 0
        except SQLAlchemyError as exc:
            raise VectorStoreError("pgvector lookup failed") from exc
