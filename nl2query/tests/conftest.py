from __future__ import annotations

import pytest

from nl2query.core.config import get_settings
from nl2query.services import telemetry
from nl2query.services.crypto.cipher import UrlCipher
from nl2query.tests.utils.fakes import (
    FakeClientDatabase,
    FakeEmbedder,
    FakeVectorStore,
    FakeWorkspaceStore,
    InMemoryStatusRegistry,
    RecordingTaskQueue,
)


@pytest.fixture(autouse=True)
def isolate_process_state():
    # Settings and counters are process-wide; reset them around every test.
    get_settings.cache_clear()
    telemetry.reset()
    yield
    get_settings.cache_clear()
    telemetry.reset()


@pytest.fixture
def cipher() -> UrlCipher:
    return UrlCipher(b"\x07" * 32)


@pytest.fixture
def status() -> InMemoryStatusRegistry:
    return InMemoryStatusRegistry()


@pytest.fixture
def store() -> FakeWorkspaceStore:
    return FakeWorkspaceStore()


@pytest.fixture
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def task_queue() -> RecordingTaskQueue:
    return RecordingTaskQueue()


@pytest.fixture
def client_db() -> FakeClientDatabase:
    return FakeClientDatabase()
