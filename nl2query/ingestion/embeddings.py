from __future__ import annotations

import hashlib
import math
import re
from typing import Protocol

from nl2query.core.config import EMBED_DIM
from nl2query.core.errors import EmbeddingError

_TOKEN_RE = re.compile(r"[A-Za-z0-9_]+")


def _hash_token(token: str) -> tuple[int, float]:
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    # Hash to a stable index within the fixed embedding dimension.
    idx = int(digest[:8], 16) % EMBED_DIM
    sign = 1.0 if int(digest[8:12], 16) % 2 == 0 else -1.0
    magnitude = (int(digest[12:20], 16) % 1000) / 1000.0
    return idx, sign * (0.2 + magnitude)


def _tokens(text: str) -> list[str]:
    # Split snake_case identifiers too so "order_total" also matches "total".
    tokens: list[str] = []
    for token in _TOKEN_RE.findall(text.lower()):
        tokens.append(token)
        if "_" in token:
            tokens.extend(part for part in token.split("_") if part)
    return tokens


def embed_text(text: str) -> list[float]:
    # Always allocate the full embedding dimension to match the DB schema.
    vector = [0.0] * EMBED_DIM
    tokens = _tokens(text)
    if not tokens:
        return vector

    for token in tokens:
        idx, value = _hash_token(token)
        vector[idx] += value

    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector

    return [v / norm for v in vector]


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        ...


class HashEmbedder:
    """Deterministic bag-of-tokens embedder; no external calls."""

    async def embed(self, text: str) -> list[float]:
        return embed_text(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors = [embed_text(text) for text in texts]
        if any(len(vector) != EMBED_DIM for vector in vectors):
            raise EmbeddingError(f"Embedding dimension mismatch; expected {EMBED_DIM}.")
        return vectors
