"""Retrieval orchestration built on top of the embedder and vector index."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Protocol

from ragchat.embeddings import Embedder, VectorIndex
from ragchat.metrics.observability import PipelineMetrics, get_logger
from ragchat.models import IndexState, RetrievedChunk


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 4
    max_top_k: int = 20


class Retriever(Protocol):
    """Retrieve relevant chunks for a query string."""

    @property
    def available(self) -> bool:
        """Whether retrieval can currently be served."""

    async def retrieve(self, query: str, *, top_k: int | None = None) -> List[RetrievedChunk]:
        """Return the top-k retrieved chunks, closest first."""


class IndexRetriever:
    """Embeds the question and asks the vector index for its nearest chunks."""

    def __init__(self, embedder: Embedder, index: VectorIndex, config: RetrievalConfig | None = None) -> None:
        self._embedder = embedder
        self._index = index
        self._config = config or RetrievalConfig()
        self._logger = get_logger("retrieval")

    @property
    def available(self) -> bool:
        return self._index.state is IndexState.READY

    async def retrieve(self, query: str, *, top_k: int | None = None) -> List[RetrievedChunk]:
        if not self.available:
            self._logger.warning("retrieval.unavailable", state=self._index.state.value)
            return []
        limit = max(1, min(top_k or self._config.top_k, self._config.max_top_k))
        start = time.perf_counter()
        vector = await self._embedder.embed_one(query)
        results = self._index.query(vector, limit)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(duration, len(results))
        self._logger.info(
            "retrieval.complete",
            chunk_count=len(results),
            duration_seconds=duration,
            top_k=limit,
        )
        return results
