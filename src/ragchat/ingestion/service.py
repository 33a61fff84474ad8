"""Document loading and chunking for ragchat."""

from __future__ import annotations

import tempfile
from bisect import bisect_right
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Protocol, Sequence

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader
from langchain_core.document_loaders import BaseLoader
from langchain_text_splitters import RecursiveCharacterTextSplitter

from ragchat.metrics.observability import get_logger
from ragchat.models import Chunk, utcnow


class IngestionError(RuntimeError):
    """Raised when ingestion fails for a particular document."""


class UnsupportedFileTypeError(IngestionError):
    """Raised when a document extension is not supported by the loader."""


@dataclass(frozen=True)
class ChunkingConfig:
    """Sliding-window configuration for the chunker."""

    chunk_size: int = 1000
    chunk_overlap: int = 200

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be non-negative and smaller than chunk_size")


class Chunker(Protocol):
    """Protocol for chunking implementations."""

    def split(self, text: str, metadata: Mapping[str, Any] | None = None) -> Sequence[Chunk]:
        """Split text into overlapping chunks."""


class TextChunker:
    """Recursive character splitter that keeps every character of the input.

    Breaks are attempted at paragraph, line and word boundaries before falling
    back to a hard cut. Separators stay attached to the following chunk and
    whitespace is never stripped, so the ``start_index`` recorded on each
    chunk lets callers rebuild the original text exactly.
    """

    SEPARATORS = ["\n\n", "\n", " ", ""]

    _logger = get_logger("ingestion")

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self._config = config or ChunkingConfig()
        self._splitter = RecursiveCharacterTextSplitter(
            separators=self.SEPARATORS,
            chunk_size=self._config.chunk_size,
            chunk_overlap=self._config.chunk_overlap,
            length_function=len,
            keep_separator=True,
            strip_whitespace=False,
        )

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def split(self, text: str, metadata: Mapping[str, Any] | None = None) -> Sequence[Chunk]:
        if not text:
            return []
        created_at = utcnow()
        pieces = self._splitter.split_text(text)
        if not pieces:
            return []
        chunks: List[Chunk] = []
        for piece, start in zip(pieces, self._offsets(text, pieces)):
            chunk_metadata: dict[str, Any] = dict(metadata or {})
            chunk_metadata["start_index"] = start
            chunk_metadata["created_at"] = created_at.isoformat()
            chunks.append(Chunk(text=piece, metadata=chunk_metadata, created_at=created_at))
        self._logger.debug("chunking.complete", characters=len(text), chunk_count=len(chunks))
        return chunks

    def _offsets(self, text: str, pieces: Sequence[str]) -> List[int]:
        """Align every piece with its position in ``text``.

        The splitter emits contiguous substrings: each one starts after the
        previous start, no later than the previous end, shares at most
        ``chunk_overlap`` characters with it and reaches past it. The first
        starts the text and the last ends it. Repeated text can satisfy these
        rules at several positions, so every candidate start is kept per piece
        and the path that ends exactly at the end of the text is walked back,
        preferring the widest overlap the splitter allows.
        """

        overlap = self._config.chunk_overlap
        reachable: List[List[int]] = [[0] if text.startswith(pieces[0]) else []]
        parents: List[Dict[int, int]] = [{}]
        for previous_piece, piece in zip(pieces, pieces[1:]):
            previous = reachable[-1]
            previous_len, length = len(previous_piece), len(piece)
            starts: List[int] = []
            links: Dict[int, int] = {}
            if previous:
                low = previous[0] + max(1, previous_len - overlap)
                high = previous[-1] + previous_len
                position = text.find(piece, low, high + length)
                while position != -1:
                    ceiling = min(position - 1, position + length - previous_len - 1, position + overlap - previous_len)
                    candidate = bisect_right(previous, ceiling) - 1
                    if candidate >= 0 and previous[candidate] >= position - previous_len:
                        starts.append(position)
                        links[position] = previous[candidate]
                    position = text.find(piece, position + 1, high + length)
            reachable.append(starts)
            parents.append(links)

        ends = [start for start in reachable[-1] if start + len(pieces[-1]) == len(text)]
        if not ends:
            raise IngestionError("Chunk boundaries could not be aligned with the source text")
        offsets = [ends[-1]]
        for links in reversed(parents[1:]):
            offsets.append(links[offsets[-1]])
        offsets.reverse()
        return offsets


class DocumentLoader:
    """Extract plain text from uploaded files."""

    _TEXT_SUFFIXES = {".txt", ".md"}
    _LOADERS: Mapping[str, type[BaseLoader]] = {
        ".pdf": PyPDFLoader,
        ".docx": Docx2txtLoader,
    }

    @property
    def supported_suffixes(self) -> tuple[str, ...]:
        return tuple(sorted(self._TEXT_SUFFIXES | set(self._LOADERS)))

    def load(self, filename: str, data: bytes) -> str:
        suffix = Path(filename).suffix.lower()
        if suffix in self._TEXT_SUFFIXES:
            return data.decode("utf-8", errors="replace")
        loader_cls = self._LOADERS.get(suffix)
        if loader_cls is None:
            raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")
        # Loaders read from disk; the staged copy is gone once the block exits.
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / f"upload{suffix}"
            path.write_bytes(data)
            try:
                documents = loader_cls(str(path)).load()
            except Exception as exc:  # pragma: no cover - loader specific errors
                raise IngestionError(f"Failed to load {filename}: {exc}") from exc
        return "\n\n".join(document.page_content for document in documents)
