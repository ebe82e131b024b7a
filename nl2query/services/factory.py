from __future__ import annotations

from functools import lru_cache

from nl2query.core.config import get_settings
from nl2query.core.errors import ProviderConfigError
from nl2query.ingestion.embeddings import Embedder, HashEmbedder
from nl2query.providers.client_db.base import ClientDatabase
from nl2query.providers.client_db.sqlalchemy_client import SqlAlchemyClientDatabase
from nl2query.providers.llm.base import QueryLLM
from nl2query.providers.llm.factory import get_llm_provider
from nl2query.providers.vectorstore.pgvector import PgVectorStore
from nl2query.services.crypto.cipher import UrlCipher
from nl2query.services.ingest.queue import ArqTaskQueue
from nl2query.services.ingestion import IngestionService
from nl2query.services.query import QueryService
from nl2query.services.sql_validator import SqlQueryValidator
from nl2query.services.status import RedisStatusRegistry
from nl2query.services.workspace import WorkspaceService
from nl2query.services.workspace_store import WorkspaceStore


# Process-wide collaborators; each owns a pool that outlives single requests.


@lru_cache
def get_status_registry() -> RedisStatusRegistry:
    return RedisStatusRegistry()


@lru_cache
def get_workspace_store() -> WorkspaceStore:
    return WorkspaceStore()


@lru_cache
def get_vector_store() -> PgVectorStore:
    return PgVectorStore()


@lru_cache
def get_cipher() -> UrlCipher:
    return UrlCipher.from_settings()


def get_embedder() -> Embedder:
    provider = (get_settings().embedder_provider or "hash").lower()
    if provider == "hash":
        return HashEmbedder()
    raise ProviderConfigError(f"Unknown embedder provider: {provider}")


def new_client_database() -> ClientDatabase:
    return SqlAlchemyClientDatabase()


def build_ingestion_service() -> IngestionService:
    return IngestionService(
        status=get_status_registry(),
        embedder=get_embedder(),
        vector_store=get_vector_store(),
    )


def build_task_queue() -> ArqTaskQueue:
    return ArqTaskQueue(
        ingestion=build_ingestion_service(),
        status=get_status_registry(),
        client_db_factory=new_client_database,
    )


def build_workspace_service() -> WorkspaceService:
    return WorkspaceService(
        status=get_status_registry(),
        store=get_workspace_store(),
        cipher=get_cipher(),
        client_db_factory=new_client_database,
        task_queue=build_task_queue(),
        vector_store=get_vector_store(),
    )


def build_query_service(*, request_id: str | None = None, llm: QueryLLM | None = None) -> QueryService:
    return QueryService(
        status=get_status_registry(),
        store=get_workspace_store(),
        cipher=get_cipher(),
        client_db_factory=new_client_database,
        embedder=get_embedder(),
        vector_store=get_vector_store(),
        llm=llm or get_llm_provider(request_id),
        validator=SqlQueryValidator(),
    )


async def close_shared_resources() -> None:
    # Dispose pools created by the cached collaborators.
    if get_workspace_store.cache_info().currsize:
        await get_workspace_store().close()
    if get_vector_store.cache_info().currsize:
        await get_vector_store().close()
