"""Document loading and chunking."""

from .service import (
    Chunker,
    ChunkingConfig,
    DocumentLoader,
    IngestionError,
    TextChunker,
    UnsupportedFileTypeError,
)

__all__ = [
    "Chunker",
    "ChunkingConfig",
    "DocumentLoader",
    "IngestionError",
    "TextChunker",
    "UnsupportedFileTypeError",
]
