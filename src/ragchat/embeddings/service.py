"""Embedding backends for ragchat."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import List, Protocol, Sequence

import httpx

from ragchat.errors import UpstreamError, upstream_errors
from ragchat.metrics.observability import PipelineMetrics
from ragchat.models import EmbeddingVector

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    model: str = "mistral"
    base_url: str = "http://localhost:11434"
    timeout_seconds: float = 30.0
    dim: int = 384
    normalize: bool = True


class Embedder(Protocol):
    """Protocol describing embedding behaviour."""

    async def embed(self, texts: Sequence[str]) -> List[EmbeddingVector]:
        """Return one vector per input text, in input order."""

    async def embed_one(self, text: str) -> EmbeddingVector:
        """Return the embedding vector for a single query string."""

    async def aclose(self) -> None:
        """Release any held connections."""


def _normalize(vector: Sequence[float]) -> EmbeddingVector:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


class HashEmbedder:
    """Deterministic lightweight embedding fallback used for testing."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _hash_to_vector(self, text: str) -> EmbeddingVector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    async def embed(self, texts: Sequence[str]) -> List[EmbeddingVector]:
        return [self._hash_to_vector(text) for text in texts]

    async def embed_one(self, text: str) -> EmbeddingVector:
        return self._hash_to_vector(text)

    async def aclose(self) -> None:
        return None


class OllamaEmbedder:
    """Embedding client for the Ollama ``/api/embed`` endpoint."""

    SERVICE = "embedding"

    def __init__(self, config: EmbeddingConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )

    async def embed(self, texts: Sequence[str]) -> List[EmbeddingVector]:
        if not texts:
            return []
        payload = {"model": self._config.model, "input": list(texts)}
        try:
            with upstream_errors(self.SERVICE):
                response = await self._client.post("/api/embed", json=payload)
        except Exception as exc:
            PipelineMetrics.observe_upstream_failure(self.SERVICE, type(exc).__name__)
            raise
        if response.status_code >= 400:
            PipelineMetrics.observe_upstream_failure(self.SERVICE, "UpstreamError")
            LOGGER.error("Embedding request failed with status %d", response.status_code)
            raise UpstreamError(self.SERVICE, response.status_code, response.text)
        try:
            vectors = response.json()["embeddings"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamError(self.SERVICE, response.status_code, "Malformed embedding response") from exc
        if len(vectors) != len(texts):
            LOGGER.error("Embedding backend returned %d vectors for %d texts", len(vectors), len(texts))
            raise UpstreamError(self.SERVICE, response.status_code, "Mismatch between inputs and embedding vectors")
        if self._config.normalize:
            return [_normalize(vector) for vector in vectors]
        return [tuple(vector) for vector in vectors]

    async def embed_one(self, text: str) -> EmbeddingVector:
        vectors = await self.embed([text])
        return vectors[0]

    async def aclose(self) -> None:
        await self._client.aclose()
