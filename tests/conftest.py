"""Shared fixtures: an in-memory Chroma index, hash embeddings and a fake Ollama."""

from __future__ import annotations

import json
from typing import Callable, Iterable, List
from uuid import uuid4

import chromadb
import httpx
import pytest

from ragchat.embeddings import ChromaIndex, EmbeddingConfig, HashEmbedder


def ndjson(*objects: dict) -> bytes:
    return b"".join(json.dumps(obj).encode("utf-8") + b"\n" for obj in objects)


def split_every(data: bytes, size: int) -> List[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


async def _iter_chunks(chunks: Iterable[bytes]):
    for chunk in chunks:
        yield chunk


def streaming_response(chunks: Iterable[bytes], status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=_iter_chunks(list(chunks)))


class FakeOllama:
    """Records requests and answers ``/api/generate`` with canned NDJSON chunks."""

    def __init__(self, chunks: Iterable[bytes] = ()) -> None:
        self.chunks = list(chunks)
        self.requests: List[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content or b"{}"))
        return streaming_response(self.chunks)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), base_url="http://ollama.test")


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://ollama.test")


@pytest.fixture
def hash_embedder() -> HashEmbedder:
    return HashEmbedder(EmbeddingConfig(dim=16))


@pytest.fixture
def chroma_index() -> ChromaIndex:
    index = ChromaIndex(f"test-{uuid4().hex}", client=chromadb.EphemeralClient())
    index.ensure_collection()
    return index
