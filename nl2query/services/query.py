from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from nl2query.core.config import get_settings
from nl2query.core.errors import (
    ClientDatabaseError,
    StatusInProgressError,
    WARN_DDL_DML_DETECTED,
    WARN_QUERY_GENERATED_UNSAFE,
    WARN_WONT_EXECUTE_CLIENT_DATABASE,
)
from nl2query.domain.schema import QueryResult, WorkspaceStatus
from nl2query.ingestion.embeddings import Embedder
from nl2query.providers.client_db.base import ClientDatabase, ClientDatabaseFactory
from nl2query.providers.llm.base import QueryLLM
from nl2query.providers.vectorstore.base import VectorStore
from nl2query.services.crypto.cipher import Cipher
from nl2query.services.sql_validator import QueryValidator
from nl2query.services.status import StatusRegistry
from nl2query.services.telemetry import increment_counter, record_external_call
from nl2query.services.workspace_store import WorkspaceRepository


logger = logging.getLogger(__name__)

DEFAULT_UNSAFE_REASON = "query deemed unsafe by validator"


class QueryService:
    """Turns a prompt into SQL and optionally runs it on the tenant's database.

    Two bounded loops drive the LLM. The inner loop repairs queries the
    validator rejects (``query_fix_attempts`` repairs plus an initial and a
    final attempt). The outer loop regenerates after the client database
    rejects an execution (``execution_retry_limit`` extra attempts). Both
    kinds of failure are fed back to the LLM as ``[query, reason]`` pairs.
    """

    def __init__(
        self,
        *,
        status: StatusRegistry,
        store: WorkspaceRepository,
        cipher: Cipher,
        client_db_factory: ClientDatabaseFactory,
        embedder: Embedder,
        vector_store: VectorStore,
        llm: QueryLLM,
        validator: QueryValidator,
        query_fix_attempts: int | None = None,
        execution_retry_limit: int | None = None,
        context_limit: int | None = None,
    ) -> None:
        settings = get_settings()
        self._status = status
        self._store = store
        self._cipher = cipher
        self._client_db_factory = client_db_factory
        self._embedder = embedder
        self._vector_store = vector_store
        self._llm = llm
        self._validator = validator
        self._query_fix_attempts = max(
            0, settings.query_fix_attempts if query_fix_attempts is None else query_fix_attempts
        )
        self._execution_retry_limit = max(
            0, settings.execution_retry_limit if execution_retry_limit is None else execution_retry_limit
        )
        self._context_limit = context_limit or settings.query_context_limit

    def _check_safe(self, query: str) -> tuple[bool, str]:
        try:
            safe, reason = self._validator.is_safe(query)
        except Exception as exc:  # noqa: BLE001 - validator errors count as an unsafe verdict
            return False, str(exc) or DEFAULT_UNSAFE_REASON
        return safe, reason or DEFAULT_UNSAFE_REASON

    async def _generate(
        self,
        prompt: str,
        contexts: list[str],
        feedback: list[str],
        cancel_event: asyncio.Event | None,
    ) -> str:
        if cancel_event is not None and cancel_event.is_set():
            raise asyncio.CancelledError
        started = time.monotonic()
        success = False
        try:
            query = await self._llm.generate_query(prompt, contexts, *feedback)
            success = True
            return query
        finally:
            record_external_call(
                integration="llm", latency_ms=(time.monotonic() - started) * 1000.0, success=success
            )

    async def _connect_client(self, tenant_id: str, workspace_url: str) -> ClientDatabase | None:
        # Decryption failure is fatal; an unreachable client only means no data.
        db_url = self._cipher.decrypt(workspace_url)
        client_db = self._client_db_factory()
        try:
            await client_db.connect(db_url)
        except ClientDatabaseError as exc:
            await client_db.close()
            logger.warning("query_client_unreachable tenant_id=%s error=%s", tenant_id, exc)
            return None
        return client_db

    async def prompt_to_query_data(
        self,
        tenant_id: str,
        prompt: str,
        with_data: bool,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> tuple[QueryResult, str | None]:
        current, _ = await self._status.get(tenant_id)
        if current == WorkspaceStatus.IN_PROGRESS:
            raise StatusInProgressError().add_additional_error_info(f"tenant_id={tenant_id}")

        result = QueryResult(tenant_id=tenant_id)
        warn: str | None = None
        client_db: ClientDatabase | None = None

        await self._store.connect()
        workspace = await self._store.get_workspace_by_tenant_id(tenant_id)
        if with_data:
            if workspace is None:
                warn = WARN_WONT_EXECUTE_CLIENT_DATABASE
            else:
                client_db = await self._connect_client(tenant_id, workspace.encrypted_db_url)
                if client_db is None:
                    warn = WARN_WONT_EXECUTE_CLIENT_DATABASE

        try:
            embedding = await self._embedder.embed(prompt)
            contexts = [
                vector.content
                for vector in await self._vector_store.search(tenant_id, embedding, self._context_limit)
            ]
            logger.info(
                "query_started tenant_id=%s with_data=%s contexts=%s",
                tenant_id,
                with_data,
                len(contexts),
            )
            return await self._run(result, warn, prompt, contexts, with_data, client_db, cancel_event)
        finally:
            if client_db is not None:
                await client_db.close()

    async def _run(
        self,
        result: QueryResult,
        warn: str | None,
        prompt: str,
        contexts: list[str],
        with_data: bool,
        client_db: ClientDatabase | None,
        cancel_event: asyncio.Event | None,
    ) -> tuple[QueryResult, str | None]:
        tenant_id = result.tenant_id
        feedback: list[str] = []
        query = ""
        generations = self._query_fix_attempts + 2

        for execution_attempt in range(self._execution_retry_limit + 1):
            safe = False
            for _ in range(generations):
                query = await self._generate(prompt, contexts, feedback, cancel_event)
                safe, reason = self._check_safe(query)
                if safe:
                    break
                increment_counter("query_unsafe_generations_total")
                logger.info("query_unsafe tenant_id=%s reason=%s", tenant_id, reason)
                feedback = [query, reason]

            result.result_query = query
            if not safe:
                increment_counter("query_unsafe_total")
                return result, WARN_QUERY_GENERATED_UNSAFE

            if not with_data or client_db is None:
                return result, warn

            if self._validator.contains_ddl_dml(query):
                increment_counter("query_ddl_dml_total")
                logger.warning("query_ddl_dml_detected tenant_id=%s", tenant_id)
                return result, WARN_DDL_DML_DETECTED

            started = time.monotonic()
            try:
                rows = await client_db.execute(query)
            except ClientDatabaseError as exc:
                record_external_call(
                    integration="client_db", latency_ms=(time.monotonic() - started) * 1000.0, success=False
                )
                increment_counter("query_execution_failed_total")
                logger.info(
                    "query_execution_failed tenant_id=%s attempt=%s error=%s",
                    tenant_id,
                    execution_attempt,
                    exc,
                )
                feedback = [query, str(exc)]
                continue
            record_external_call(
                integration="client_db", latency_ms=(time.monotonic() - started) * 1000.0, success=True
            )

            result.result_data = rows
            result.updated_at = datetime.now(timezone.utc)
            increment_counter("query_executed_total")
            logger.info("query_executed tenant_id=%s rows=%s", tenant_id, len(rows))
            return result, warn

        return result, WARN_QUERY_GENERATED_UNSAFE
