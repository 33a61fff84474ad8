"""Embedding clients and the vector index."""

from .service import Embedder, EmbeddingConfig, HashEmbedder, OllamaEmbedder
from .store import ChromaIndex, VectorIndex, generate_document_id

__all__ = [
    "ChromaIndex",
    "Embedder",
    "EmbeddingConfig",
    "HashEmbedder",
    "OllamaEmbedder",
    "VectorIndex",
    "generate_document_id",
]
