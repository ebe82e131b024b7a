from __future__ import annotations

from typing import Iterable


class FakeLLMProvider:
    """Replays scripted queries; the last one repeats once the script runs out."""

    def __init__(self, responses: Iterable[str] | str = "SELECT 1") -> None:
        # Deterministic responses keep tests stable without external calls.
        if isinstance(responses, str):
            responses = [responses]
        self._responses = list(responses) or ["SELECT 1"]
        self.calls: list[tuple[str, list[str], tuple[str, ...]]] = []

    async def generate_query(self, prompt: str, contexts: list[str], *additional_prompts: str) -> str:
        self.calls.append((prompt, list(contexts), tuple(additional_prompts)))
        index = min(len(self.calls) - 1, len(self._responses) - 1)
        return self._responses[index]
