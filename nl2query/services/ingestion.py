from __future__ import annotations

import logging
import time

from nl2query.core.errors import EmbeddingError, NL2QueryError
from nl2query.domain.schema import SchemaMetadata, Vector
from nl2query.ingestion.column_documents import column_documents
from nl2query.ingestion.embeddings import Embedder
from nl2query.providers.vectorstore.base import VectorStore
from nl2query.services.status import StatusRegistry
from nl2query.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

WARN_NO_COLUMNS = "Schema has no columns to index."


def vector_id(tenant_id: str, table_name: str, column_name: str) -> str:
    # Stable per (tenant, table, column) so re-ingestion replaces in place.
    return f"{tenant_id}:{table_name}.{column_name}"


class IngestionService:
    def __init__(self, *, status: StatusRegistry, embedder: Embedder, vector_store: VectorStore) -> None:
        self._status = status
        self._embedder = embedder
        self._vector_store = vector_store

    async def _record_failure(self, tenant_id: str, exc: Exception) -> None:
        # The original failure is what callers need; a status write error must not mask it.
        try:
            await self._status.set_error(tenant_id, str(exc))
        except NL2QueryError:
            logger.warning("ingestion_status_write_failed tenant_id=%s", tenant_id)

    async def vectorize_and_store(self, metadata: SchemaMetadata) -> int:
        """Embed one descriptor per column and replace the tenant's vectors.

        Status moves to IN_PROGRESS first and to DONE (or ERROR) last, so
        queries observe an ingestion that is underway. Returns the number of
        vectors written.
        """
        tenant_id = metadata.tenant_id
        await self._status.set_in_progress(tenant_id)
        logger.info("ingestion_started tenant_id=%s tables=%s", tenant_id, len(metadata.tables))

        documents = column_documents(metadata)
        contents = [content for _, _, content in documents]

        started = time.monotonic()
        try:
            embeddings = await self._embedder.embed_batch(contents) if contents else []
            if len(embeddings) != len(contents):
                raise EmbeddingError(
                    f"Embedder returned {len(embeddings)} vectors for {len(contents)} documents"
                )
        except Exception as exc:
            record_external_call(
                integration="embedder", latency_ms=(time.monotonic() - started) * 1000.0, success=False
            )
            await self._record_failure(tenant_id, exc)
            increment_counter("ingestion_failed_total")
            logger.warning("ingestion_embed_failed tenant_id=%s error=%s", tenant_id, exc)
            raise
        record_external_call(
            integration="embedder", latency_ms=(time.monotonic() - started) * 1000.0, success=True
        )

        # Embeddings line up with documents by position.
        vectors = [
            Vector(
                id=vector_id(tenant_id, table.name, column.name),
                tenant_id=tenant_id,
                embedding=embedding,
                content=content,
                metadata={"table": table.name, "column": column.name},
            )
            for (table, column, content), embedding in zip(documents, embeddings)
        ]

        started = time.monotonic()
        try:
            await self._vector_store.upsert(tenant_id, vectors)
        except Exception as exc:
            record_external_call(
                integration="vector_store", latency_ms=(time.monotonic() - started) * 1000.0, success=False
            )
            await self._record_failure(tenant_id, exc)
            increment_counter("ingestion_failed_total")
            logger.warning("ingestion_upsert_failed tenant_id=%s error=%s", tenant_id, exc)
            raise
        record_external_call(
            integration="vector_store", latency_ms=(time.monotonic() - started) * 1000.0, success=True
        )

        if vectors:
            await self._status.set_done(tenant_id)
        else:
            await self._status.set_warn(tenant_id, WARN_NO_COLUMNS)
        increment_counter("ingestion_succeeded_total")
        logger.info("ingestion_completed tenant_id=%s vectors=%s", tenant_id, len(vectors))
        return len(vectors)
