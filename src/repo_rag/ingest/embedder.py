"""Embedding abstractions, HTTP/LangChain adapters and a deterministic baseline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from hashlib import blake2b
from math import sqrt
from typing import Any

import httpx
import structlog
from langchain_core.embeddings import Embeddings

logger = structlog.get_logger(__name__)

DEFAULT_OLLAMA_EMBED_MODEL = "nomic-embed-text:latest"


class EmbeddingError(RuntimeError):
    """The embedding service failed or returned unusable vectors."""


class Embedder(ABC):
    """Embedder interface used by ingest, retrieval and evaluation."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""
        vectors = self.embed([text])
        if not vectors:
            raise EmbeddingError("Query embedding failed (no vector returned).")
        return vectors[0]

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed `texts` in order, checking count and dimensionality."""
        if not texts:
            return []
        for text in texts:
            if not isinstance(text, str):
                raise TypeError("embed() expects a sequence of str")
        vectors = self.embed_documents(list(texts))
        return check_dimensions(vectors, expected_count=len(texts))


def check_dimensions(
    vectors: list[list[float]], *, expected_count: int | None = None
) -> list[list[float]]:
    if expected_count is not None and len(vectors) != expected_count:
        raise EmbeddingError(
            f"Embedding count mismatch: got {len(vectors)}, expected {expected_count}"
        )
    if not vectors:
        return vectors
    dim = len(vectors[0])
    for index, vector in enumerate(vectors):
        if len(vector) != dim:
            raise EmbeddingError(
                f"Inconsistent embedding dimension at index {index}: "
                f"expected {dim}, got {len(vector)}"
            )
    return vectors


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for tests and offline runs. Texts sharing tokens land close together,
    which is enough to exercise routing and selection end to end.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OllamaEmbedder(Embedder):
    """Calls Ollama's `/api/embeddings` once per text."""

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:11434",
        model: str = DEFAULT_OLLAMA_EMBED_MODEL,
        timeout: float = 120.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.model = model.strip()
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._embed_one(text) for text in texts]

    def _embed_one(self, text: str) -> list[float]:
        try:
            response = self._client.post(
                "/api/embeddings", json={"model": self.model, "prompt": text}
            )
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Ollama embeddings request failed: {exc}") from exc

        if response.is_error:
            raise EmbeddingError(
                "Ollama embeddings request failed: "
                f"{response.status_code} {response.reason_phrase}\n{response.text}"
            )

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise EmbeddingError(f"Ollama embeddings response is not JSON: {exc}") from exc
        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list):
            raise EmbeddingError("Ollama embeddings response missing `embedding` array.")
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingError(f"Ollama embedding has a non-numeric value: {exc}") from exc

    def close(self) -> None:
        self._client.close()


class LangChainEmbedder(Embedder):
    """Adapts any `langchain_core` embeddings model to `Embedder`."""

    def __init__(self, embeddings: Embeddings) -> None:
        if not isinstance(embeddings, Embeddings):
            raise TypeError("expected a langchain_core.embeddings.Embeddings instance")
        self._embeddings = embeddings

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        try:
            return [list(vector) for vector in self._embeddings.embed_documents(texts)]
        except Exception as exc:
            logger.warning("langchain_embedding_failed", error=str(exc), batch=len(texts))
            raise EmbeddingError(f"Embedding provider failed: {exc}") from exc
