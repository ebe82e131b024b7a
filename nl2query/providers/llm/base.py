from __future__ import annotations

from typing import Protocol


class QueryLLM(Protocol):
    async def generate_query(self, prompt: str, contexts: list[str], *additional_prompts: str) -> str:
        ...
