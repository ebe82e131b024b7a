from __future__ import annotations

import pytest

from nl2query.agent.prompts import build_query_messages, extract_sql
from nl2query.core.config import get_settings
from nl2query.core.errors import ProviderConfigError
from nl2query.providers.llm.factory import get_llm_provider
from nl2query.providers.llm.fake import FakeLLMProvider
from nl2query.providers.llm.gemini_vertex import GeminiVertexProvider


async def test_vertex_provider_missing_config(monkeypatch) -> None:
    # Force missing config and clear cached settings for deterministic behavior.
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
    monkeypatch.delenv("GOOGLE_CLOUD_LOCATION", raising=False)
    get_settings.cache_clear()

    provider = GeminiVertexProvider()
    with pytest.raises(ProviderConfigError):
        await provider.generate_query("count users", [])


def test_factory_selects_fake_provider(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "fake")
    get_settings.cache_clear()

    assert isinstance(get_llm_provider("req-1"), FakeLLMProvider)


async def test_fake_provider_replays_script_and_records_calls() -> None:
    provider = FakeLLMProvider(["SELECT 1", "SELECT 2"])

    first = await provider.generate_query("p", ["ctx"])
    second = await provider.generate_query("p", ["ctx"], "SELECT 1", "bad")
    third = await provider.generate_query("p", [])

    assert (first, second, third) == ("SELECT 1", "SELECT 2", "SELECT 2")
    assert provider.calls[1] == ("p", ["ctx"], ("SELECT 1", "bad"))


def test_build_query_messages_includes_context_and_feedback() -> None:
    messages = build_query_messages("count users", ["users.id INTEGER"], ["SELEC 1", "syntax error"])

    assert messages[0]["role"] == "system"
    assert "[1] users.id INTEGER" in messages[0]["content"]
    assert messages[1] == {"role": "user", "content": "count users"}
    assert messages[2] == {"role": "assistant", "content": "SELEC 1"}
    assert "syntax error" in messages[3]["content"]


def test_extract_sql_strips_fences_and_semicolons() -> None:
    assert extract_sql("```sql\nSELECT id FROM users;\n```") == "SELECT id FROM users"
    assert extract_sql("  SELECT 1;  ") == "SELECT 1"
    assert extract_sql("Here you go:\n```\nSELECT 2\n```\nDone.") == "SELECT 2"
