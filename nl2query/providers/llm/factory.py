from __future__ import annotations

from nl2query.core.config import get_settings
from nl2query.providers.llm.base import QueryLLM
from nl2query.providers.llm.fake import FakeLLMProvider
from nl2query.providers.llm.gemini_vertex import GeminiVertexProvider


def get_llm_provider(request_id: str | None = None) -> QueryLLM:
    settings = get_settings()
    provider = (settings.llm_provider or "vertex").lower()

    if provider == "fake":
        return FakeLLMProvider()
    return GeminiVertexProvider(request_id=request_id)
