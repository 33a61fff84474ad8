"""Shared domain models used across the ragchat pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Tuple

EmbeddingVector = Tuple[float, ...]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Chunk:
    """Bounded span of a source document's text."""

    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def start_index(self) -> int | None:
        value = self.metadata.get("start_index")
        return int(value) if value is not None else None


@dataclass(frozen=True)
class DocumentInput:
    """Text, vector and metadata handed to the index for insertion."""

    text: str
    vector: EmbeddingVector
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IndexedDocument:
    """Document as stored in the vector index."""

    id: str
    vector: EmbeddingVector
    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetrievedChunk:
    """Nearest-neighbour match returned from the vector index."""

    id: str
    text: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    distance: float | None = None


class IndexState(str, enum.Enum):
    """Readiness of the vector index client."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DEGRADED = "degraded"


@dataclass
class ChatMessage:
    """Client-side chat entry."""

    content: str
    is_user: bool
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())
    is_streaming: bool = False
