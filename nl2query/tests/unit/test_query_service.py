from __future__ import annotations

import asyncio

import pytest

from nl2query.core.errors import (
    ClientDatabaseError,
    DecryptionError,
    ProviderConfigError,
    StatusInProgressError,
    WARN_DDL_DML_DETECTED,
    WARN_QUERY_GENERATED_UNSAFE,
    WARN_WONT_EXECUTE_CLIENT_DATABASE,
)
from nl2query.domain.schema import Vector
from nl2query.providers.llm.fake import FakeLLMProvider
from nl2query.services.crypto.cipher import UrlCipher
from nl2query.services.query import DEFAULT_UNSAFE_REASON, QueryService
from nl2query.services.sql_validator import SqlQueryValidator
from nl2query.services.telemetry import counters_snapshot
from nl2query.tests.utils.fakes import (
    FakeClientDatabase,
    FakeEmbedder,
    FakeVectorStore,
    FakeWorkspaceStore,
    InMemoryStatusRegistry,
    ScriptedValidator,
)


TENANT = "tenant_0123456789abcdef"
DB_URL = "postgres://a"


class FailingLLM:
    def __init__(self) -> None:
        self.calls = 0

    async def generate_query(self, prompt: str, contexts: list[str], *additional_prompts: str) -> str:
        self.calls += 1
        raise ProviderConfigError("Vertex AI request failed")


@pytest.fixture
async def registered_store(store: FakeWorkspaceStore, cipher: UrlCipher) -> FakeWorkspaceStore:
    await store.upsert_workspace(tenant_id=TENANT, encrypted_db_url=cipher.encrypt(DB_URL), checksum="x")
    return store


def _service(
    *,
    llm,
    validator,
    store: FakeWorkspaceStore,
    cipher: UrlCipher,
    client_db: FakeClientDatabase,
    status: InMemoryStatusRegistry | None = None,
    vector_store: FakeVectorStore | None = None,
    embedder: FakeEmbedder | None = None,
    query_fix_attempts: int = 3,
    execution_retry_limit: int = 2,
) -> QueryService:
    return QueryService(
        status=status or InMemoryStatusRegistry(),
        store=store,
        cipher=cipher,
        client_db_factory=lambda: client_db,
        embedder=embedder or FakeEmbedder(),
        vector_store=vector_store or FakeVectorStore(),
        llm=llm,
        validator=validator,
        query_fix_attempts=query_fix_attempts,
        execution_retry_limit=execution_retry_limit,
        context_limit=10,
    )


async def test_happy_path_returns_rows(registered_store, cipher, client_db) -> None:
    client_db.execute_results = [[{"id": 1}]]
    llm = FakeLLMProvider("SELECT id FROM users")
    service = _service(llm=llm, validator=ScriptedValidator(), store=registered_store, cipher=cipher, client_db=client_db)

    result, warning = await service.prompt_to_query_data(TENANT, "list user ids", True)

    assert warning is None
    assert result.result_query == "SELECT id FROM users"
    assert result.result_data == [{"id": 1}]
    assert len(llm.calls) == 1
    assert client_db.connected_urls == [DB_URL]
    assert client_db.executed == ["SELECT id FROM users"]
    assert client_db.close_calls == 1


async def test_unsafe_then_ddl_is_never_executed(registered_store, cipher, client_db) -> None:
    llm = FakeLLMProvider(["SELEC id FROM users", "DELETE FROM users"])
    validator = ScriptedValidator([(False, "syntax"), (True, None)], ddl_dml={"DELETE FROM users"})
    service = _service(llm=llm, validator=validator, store=registered_store, cipher=cipher, client_db=client_db)

    result, warning = await service.prompt_to_query_data(TENANT, "remove users", True)

    assert warning == WARN_DDL_DML_DETECTED
    assert result.result_query == "DELETE FROM users"
    assert result.result_data is None
    assert len(llm.calls) == 2
    assert len(validator.checked) == 2
    # The rejected query and the reason are fed back to the second generation.
    assert llm.calls[1][2] == ("SELEC id FROM users", "syntax")
    assert client_db.executed == []


async def test_exhausted_generation_returns_last_query(registered_store, cipher, client_db) -> None:
    llm = FakeLLMProvider(["q1", "q2", "q3", "q4", "q5", "q6"])
    validator = ScriptedValidator([(False, None)])
    service = _service(llm=llm, validator=validator, store=registered_store, cipher=cipher, client_db=client_db)

    result, warning = await service.prompt_to_query_data(TENANT, "anything", True)

    assert warning == WARN_QUERY_GENERATED_UNSAFE
    # query_fix_attempts + 2 generations before giving up.
    assert len(llm.calls) == 5
    assert result.result_query == "q5"
    assert llm.calls[-1][2] == ("q4", DEFAULT_UNSAFE_REASON)
    assert client_db.executed == []
    assert counters_snapshot()["query_unsafe_total"] == 1


async def test_validator_exception_counts_as_unsafe(registered_store, cipher, client_db) -> None:
    llm = FakeLLMProvider(["SELECT 1", "SELECT 2"])
    validator = ScriptedValidator([ValueError("parser crashed"), (True, None)])
    service = _service(llm=llm, validator=validator, store=registered_store, cipher=cipher, client_db=client_db)

    result, warning = await service.prompt_to_query_data(TENANT, "anything", False)

    assert warning is None
    assert result.result_query == "SELECT 2"
    assert llm.calls[1][2] == ("SELECT 1", "parser crashed")


async def test_execution_failure_feeds_error_back(registered_store, cipher, client_db) -> None:
    client_db.execute_results = [ClientDatabaseError('column "nme" does not exist'), [{"name": "ada"}]]
    llm = FakeLLMProvider(["SELECT nme FROM users", "SELECT name FROM users"])
    service = _service(llm=llm, validator=ScriptedValidator(), store=registered_store, cipher=cipher, client_db=client_db)

    result, warning = await service.prompt_to_query_data(TENANT, "names", True)

    assert warning is None
    assert result.result_query == "SELECT name FROM users"
    assert result.result_data == [{"name": "ada"}]
    assert llm.calls[1][2] == ("SELECT nme FROM users", 'column "nme" does not exist')
    assert client_db.executed == ["SELECT nme FROM users", "SELECT name FROM users"]


async def test_execution_retries_are_bounded(registered_store, cipher, client_db) -> None:
    client_db.execute_results = [ClientDatabaseError("boom")] * 10
    llm = FakeLLMProvider("SELECT 1")
    service = _service(
        llm=llm,
        validator=ScriptedValidator(),
        store=registered_store,
        cipher=cipher,
        client_db=client_db,
        execution_retry_limit=2,
    )

    result, warning = await service.prompt_to_query_data(TENANT, "anything", True)

    assert warning == WARN_QUERY_GENERATED_UNSAFE
    assert result.result_query == "SELECT 1"
    assert result.result_data is None
    assert len(client_db.executed) == 3
    assert len(llm.calls) == 3
    assert client_db.close_calls == 1


async def test_llm_call_bound_holds(registered_store, cipher, client_db) -> None:
    # Every outer attempt exhausts repairs except the last, which never executes.
    client_db.execute_results = [ClientDatabaseError("boom")] * 10
    fix_attempts, retry_limit = 2, 1
    verdicts = ([(False, "bad")] * (fix_attempts + 1) + [(True, None)]) * (retry_limit + 1)
    llm = FakeLLMProvider("SELECT 1")
    service = _service(
        llm=llm,
        validator=ScriptedValidator(verdicts),
        store=registered_store,
        cipher=cipher,
        client_db=client_db,
        query_fix_attempts=fix_attempts,
        execution_retry_limit=retry_limit,
    )

    _, warning = await service.prompt_to_query_data(TENANT, "anything", True)

    assert warning == WARN_QUERY_GENERATED_UNSAFE
    assert len(llm.calls) == (retry_limit + 1) * (fix_attempts + 2)


async def test_without_data_never_connects(registered_store, cipher, client_db) -> None:
    llm = FakeLLMProvider("SELECT 1")
    service = _service(llm=llm, validator=ScriptedValidator(), store=registered_store, cipher=cipher, client_db=client_db)

    result, warning = await service.prompt_to_query_data(TENANT, "anything", False)

    assert warning is None
    assert result.result_query == "SELECT 1"
    assert result.result_data is None
    assert client_db.connected_urls == []


async def test_unreachable_client_still_generates(registered_store, cipher) -> None:
    client_db = FakeClientDatabase(connect_error=ClientDatabaseError("timeout"))
    llm = FakeLLMProvider("SELECT 1")
    service = _service(llm=llm, validator=ScriptedValidator(), store=registered_store, cipher=cipher, client_db=client_db)

    result, warning = await service.prompt_to_query_data(TENANT, "anything", True)

    assert warning == WARN_WONT_EXECUTE_CLIENT_DATABASE
    assert result.result_query == "SELECT 1"
    assert result.result_data is None
    assert client_db.executed == []


async def test_unknown_workspace_with_data_warns(store, cipher, client_db) -> None:
    llm = FakeLLMProvider("SELECT 1")
    service = _service(llm=llm, validator=ScriptedValidator(), store=store, cipher=cipher, client_db=client_db)

    result, warning = await service.prompt_to_query_data("tenant_unknown", "anything", True)

    assert warning == WARN_WONT_EXECUTE_CLIENT_DATABASE
    assert result.result_query == "SELECT 1"
    assert client_db.connected_urls == []


async def test_unreachable_client_still_reports_unsafe(registered_store, cipher) -> None:
    client_db = FakeClientDatabase(connect_error=ClientDatabaseError("timeout"))
    llm = FakeLLMProvider("DROP TABLE users")
    service = _service(
        llm=llm, validator=SqlQueryValidator(), store=registered_store, cipher=cipher, client_db=client_db
    )

    result, warning = await service.prompt_to_query_data(TENANT, "anything", True)

    assert warning == WARN_QUERY_GENERATED_UNSAFE
    assert result.result_query == "DROP TABLE users"


async def test_in_progress_rejects_without_side_effects(registered_store, cipher, client_db) -> None:
    status = InMemoryStatusRegistry()
    await status.set_in_progress(TENANT)
    llm = FakeLLMProvider("SELECT 1")
    store_calls = registered_store.connect_calls
    service = _service(
        llm=llm,
        validator=ScriptedValidator(),
        store=registered_store,
        cipher=cipher,
        client_db=client_db,
        status=status,
    )

    with pytest.raises(StatusInProgressError):
        await service.prompt_to_query_data(TENANT, "anything", True)

    assert llm.calls == []
    assert registered_store.connect_calls == store_calls
    assert client_db.connected_urls == []


async def test_llm_failure_is_fatal_and_closes_client(registered_store, cipher, client_db) -> None:
    llm = FailingLLM()
    service = _service(llm=llm, validator=ScriptedValidator(), store=registered_store, cipher=cipher, client_db=client_db)

    with pytest.raises(ProviderConfigError):
        await service.prompt_to_query_data(TENANT, "anything", True)

    assert llm.calls == 1
    assert client_db.close_calls == 1


async def test_decrypt_failure_is_fatal(registered_store, client_db) -> None:
    llm = FakeLLMProvider("SELECT 1")
    other_cipher = UrlCipher(b"\x09" * 32)
    service = _service(
        llm=llm, validator=ScriptedValidator(), store=registered_store, cipher=other_cipher, client_db=client_db
    )

    with pytest.raises(DecryptionError):
        await service.prompt_to_query_data(TENANT, "anything", True)

    assert llm.calls == []


async def test_cancel_event_stops_before_generation(registered_store, cipher, client_db) -> None:
    llm = FakeLLMProvider("SELECT 1")
    service = _service(llm=llm, validator=ScriptedValidator(), store=registered_store, cipher=cipher, client_db=client_db)
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(asyncio.CancelledError):
        await service.prompt_to_query_data(TENANT, "anything", True, cancel_event=cancel_event)

    assert llm.calls == []
    assert client_db.close_calls == 1


async def test_contexts_come_from_vector_search(registered_store, cipher, client_db) -> None:
    vector_store = FakeVectorStore()
    vector_store.vectors[TENANT] = [
        Vector(id=f"{TENANT}:users.c{i}", tenant_id=TENANT, embedding=[], content=f"doc {i}") for i in range(12)
    ]
    embedder = FakeEmbedder()
    llm = FakeLLMProvider("SELECT 1")
    service = _service(
        llm=llm,
        validator=ScriptedValidator(),
        store=registered_store,
        cipher=cipher,
        client_db=client_db,
        vector_store=vector_store,
        embedder=embedder,
    )

    await service.prompt_to_query_data(TENANT, "count users", False)

    assert embedder.single == ["count users"]
    assert vector_store.searches == [(TENANT, 10)]
    assert llm.calls[0][1] == [f"doc {i}" for i in range(10)]
