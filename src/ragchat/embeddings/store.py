"""Vector index client backed by a Chroma collection."""

from __future__ import annotations

import itertools
import json
import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Sequence

import chromadb
import httpx
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection

from ragchat.errors import NotInitialized, upstream_errors
from ragchat.models import DocumentInput, IndexedDocument, IndexState, RetrievedChunk, utcnow

LOGGER = logging.getLogger(__name__)

_ID_COUNTER = itertools.count()
_PRIMITIVES = (str, int, float, bool)


def generate_document_id() -> str:
    """Return a collision-free id: nanosecond timestamp plus a process-wide counter."""

    return f"doc_{time.time_ns()}_{next(_ID_COUNTER)}"


class VectorIndex(Protocol):
    """Protocol for the similarity store used by the pipeline."""

    @property
    def state(self) -> IndexState:
        """Current readiness of the index."""

    @property
    def collection_name(self) -> str:
        """Name of the backing collection."""

    def ensure_collection(self, name: str | None = None) -> None:
        """Create or open the collection; never raises."""

    def add(self, documents: Sequence[DocumentInput]) -> List[str]:
        """Insert documents and return their generated ids in input order."""

    def query(self, query: Sequence[float] | str, k: int = 4) -> List[RetrievedChunk]:
        """Return up to k nearest documents, closest first."""

    def clear(self) -> None:
        """Delete the whole collection."""

    def count(self) -> int:
        """Return the number of stored documents."""


class ChromaIndex:
    """Chroma-backed vector index with an explicit readiness state."""

    SERVICE = "vector-store"

    def __init__(
        self,
        collection_name: str = "documents",
        *,
        client: ClientAPI | None = None,
        url: str | None = None,
        embedding_function: Any | None = None,
    ) -> None:
        self._collection_name = collection_name
        self._client = client
        self._url = url
        self._embedding_function = embedding_function
        self._collection: Collection | None = None
        self._state = IndexState.UNINITIALIZED

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is IndexState.READY

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _connect(self) -> ClientAPI:
        if self._client is not None:
            return self._client
        if self._url:
            parsed = httpx.URL(self._url)
            ssl = parsed.scheme == "https"
            self._client = chromadb.HttpClient(
                host=parsed.host or "localhost",
                port=parsed.port or (443 if ssl else 8000),
                ssl=ssl,
            )
        else:
            self._client = chromadb.EphemeralClient()
        return self._client

    def ensure_collection(self, name: str | None = None) -> None:
        if name and name != self._collection_name:
            self._collection_name = name
            self._collection = None
            self._state = IndexState.UNINITIALIZED
        if self._state is IndexState.READY and self._collection is not None:
            return
        try:
            client = self._connect()
            client.heartbeat()
            kwargs: Dict[str, Any] = {
                "name": self._collection_name,
                "metadata": {"hnsw:space": "cosine"},
            }
            if self._embedding_function is not None:
                kwargs["embedding_function"] = self._embedding_function
            self._collection = client.get_or_create_collection(**kwargs)
        except Exception as exc:
            # Keep serving without retrieval; /api/status reports the degraded state.
            LOGGER.warning("Vector store unavailable, continuing without RAG: %s", exc)
            self._collection = None
            self._state = IndexState.DEGRADED
            return
        self._state = IndexState.READY
        LOGGER.info("Vector store collection %r ready", self._collection_name)

    def add(self, documents: Sequence[DocumentInput]) -> List[str]:
        collection = self._require_collection()
        if not documents:
            return []
        indexed_at = utcnow().isoformat()
        records = [
            IndexedDocument(
                id=generate_document_id(),
                vector=tuple(document.vector),
                text=document.text,
                metadata=self._serialize_metadata(document.metadata, indexed_at),
            )
            for document in documents
        ]
        with upstream_errors(self.SERVICE):
            collection.add(
                ids=[record.id for record in records],
                embeddings=[list(record.vector) for record in records],
                documents=[record.text for record in records],
                metadatas=[dict(record.metadata) for record in records],
            )
        return [record.id for record in records]

    def query(self, query: Sequence[float] | str, k: int = 4) -> List[RetrievedChunk]:
        collection = self._require_collection()
        if k <= 0:
            return []
        with upstream_errors(self.SERVICE):
            total = collection.count()
            if total == 0:
                return []
            n_results = min(k, total)
            if isinstance(query, str):
                results = collection.query(query_texts=[query], n_results=n_results)
            else:
                results = collection.query(query_embeddings=[list(query)], n_results=n_results)
        return self._deserialize_results(results)

    def clear(self) -> None:
        self._require_collection()
        client = self._connect()
        with upstream_errors(self.SERVICE):
            client.delete_collection(name=self._collection_name)
        self._collection = None
        self._state = IndexState.UNINITIALIZED
        LOGGER.info("Vector store collection %r deleted", self._collection_name)

    def count(self) -> int:
        collection = self._require_collection()
        with upstream_errors(self.SERVICE):
            return int(collection.count())

    def _require_collection(self) -> Collection:
        if self._state is not IndexState.READY or self._collection is None:
            raise NotInitialized("Vector store not initialized. Please ensure ChromaDB is running.")
        return self._collection

    @staticmethod
    def _serialize_metadata(metadata: Mapping[str, Any], indexed_at: str) -> Dict[str, Any]:
        serialized: Dict[str, Any] = {}
        for key, value in metadata.items():
            if value is None:
                continue
            if isinstance(value, _PRIMITIVES):
                serialized[str(key)] = value
            else:
                serialized[str(key)] = json.dumps(value, default=str)
        serialized.setdefault("indexed_at", indexed_at)
        return serialized

    def _deserialize_results(self, results: Mapping[str, object]) -> List[RetrievedChunk]:
        ids = self._first(results.get("ids"))
        documents = self._first(results.get("documents"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        retrieved: List[RetrievedChunk] = []
        for index, doc_id in enumerate(ids):
            metadata = metadatas[index] if index < len(metadatas) else None
            distance = distances[index] if index < len(distances) else None
            retrieved.append(
                RetrievedChunk(
                    id=str(doc_id),
                    text=documents[index] if index < len(documents) else "",
                    metadata=dict(metadata or {}),
                    distance=float(distance) if distance is not None else None,
                ),
            )
        return retrieved

    @staticmethod
    def _first(value: object) -> List:
        if isinstance(value, list) and value:
            first = value[0]
            return list(first) if isinstance(first, Iterable) and not isinstance(first, str) else []
        return []
