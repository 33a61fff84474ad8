from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import mock_client
from ragchat.embeddings.service import EmbeddingConfig, HashEmbedder, OllamaEmbedder
from ragchat.errors import UpstreamError, UpstreamTimeout, UpstreamUnavailable


def test_hash_embedding_dim_matches_config():
    backend = HashEmbedder(EmbeddingConfig(dim=64))
    vec = asyncio.run(backend.embed_one("hello world"))
    assert isinstance(vec, tuple)
    assert len(vec) == 64


def test_hash_embedding_batch_is_order_preserving():
    backend = HashEmbedder(EmbeddingConfig(dim=32))
    vectors = asyncio.run(backend.embed(["alpha", "beta"]))
    assert len(vectors) == 2
    assert vectors[0] == asyncio.run(backend.embed_one("alpha"))
    assert vectors[1] == asyncio.run(backend.embed_one("beta"))


def test_ollama_embedder_posts_batch_and_keeps_order():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        seen.append(payload)
        assert request.url.path == "/api/embed"
        vectors = [[float(len(text)), 1.0] for text in payload["input"]]
        return httpx.Response(200, json={"model": payload["model"], "embeddings": vectors})

    embedder = OllamaEmbedder(EmbeddingConfig(model="nomic-embed-text", normalize=False), client=mock_client(handler))
    vectors = asyncio.run(embedder.embed(["a", "bbb", "cc"]))

    assert vectors == [(1.0, 1.0), (3.0, 1.0), (2.0, 1.0)]
    assert seen == [{"model": "nomic-embed-text", "input": ["a", "bbb", "cc"]}]


def test_ollama_embedder_normalizes_query_vector():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"embeddings": [[3.0, 4.0]]})

    embedder = OllamaEmbedder(client=mock_client(handler))
    assert asyncio.run(embedder.embed_one("question")) == pytest.approx((0.6, 0.8))


def test_empty_batch_skips_the_network():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("unexpected request")

    embedder = OllamaEmbedder(client=mock_client(handler))
    assert asyncio.run(embedder.embed([])) == []


def test_connection_refused_is_upstream_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    embedder = OllamaEmbedder(client=mock_client(handler))
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(embedder.embed_one("question"))


def test_timeout_is_distinguishable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    embedder = OllamaEmbedder(client=mock_client(handler))
    with pytest.raises(UpstreamTimeout):
        asyncio.run(embedder.embed_one("question"))


def test_non_success_status_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "model 'mistral' not found"})

    embedder = OllamaEmbedder(client=mock_client(handler))
    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(embedder.embed(["text"]))
    assert excinfo.value.status_code == 404
    assert "not found" in excinfo.value.body


def test_vector_count_mismatch_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"embeddings": [[1.0, 0.0]]})

    embedder = OllamaEmbedder(client=mock_client(handler))
    with pytest.raises(UpstreamError):
        asyncio.run(embedder.embed(["one", "two"]))
