"""Tests for the sliding-window chunker and document loader."""

from __future__ import annotations

import random
from typing import Sequence

import pytest

from ragchat.ingestion import ChunkingConfig, DocumentLoader, TextChunker, UnsupportedFileTypeError
from ragchat.models import Chunk


def _prose(paragraphs: int = 12) -> str:
    blocks = []
    for p in range(paragraphs):
        sentences = [
            f"Paragraph {p} sentence {s} talks about topic {p * 7 + s} in some detail."
            for s in range(6)
        ]
        lines = [" ".join(sentences[:3]), " ".join(sentences[3:])]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def _reconstruct(chunks: Sequence[Chunk]) -> str:
    text = ""
    for chunk in chunks:
        start = chunk.start_index
        assert start is not None
        assert start <= len(text), "chunks must not leave gaps"
        text += chunk.text[len(text) - start :]
    return text


def test_spans_reconstruct_original_text():
    text = _prose()
    chunks = TextChunker().split(text)
    assert len(chunks) > 1
    assert _reconstruct(chunks) == text


@pytest.mark.parametrize("size,overlap", [(1000, 200), (300, 50), (120, 0), (64, 63)])
def test_chunks_never_exceed_configured_size(size: int, overlap: int):
    text = _prose(5) + "\n\n" + "x" * 700
    chunks = TextChunker(ChunkingConfig(chunk_size=size, chunk_overlap=overlap)).split(text)
    assert chunks
    assert all(len(chunk.text) <= size for chunk in chunks)
    assert _reconstruct(chunks) == text


@pytest.mark.parametrize(
    "text,size,overlap",
    [
        ("\n\n\n\n\n" + "x" * 30 + "\n", 26, 17),
        ("\n" * 40, 7, 3),
        ("a " * 60, 9, 4),
        ("word " * 20 + "\n\n" + "x" * 45 + "\n\n\n", 16, 11),
    ],
)
def test_repeated_separators_and_runs_reconstruct(text: str, size: int, overlap: int):
    chunks = TextChunker(ChunkingConfig(chunk_size=size, chunk_overlap=overlap)).split(text)
    for chunk in chunks:
        assert text[chunk.start_index : chunk.start_index + len(chunk.text)] == chunk.text
    assert _reconstruct(chunks) == text


@pytest.mark.parametrize("seed", range(300))
def test_random_texts_reconstruct(seed: int):
    rng = random.Random(seed)
    tokens = ["a", "b", " ", "\n", "\n\n", "word ", "x" * 30, "é"]
    text = "".join(rng.choice(tokens) for _ in range(rng.randint(1, 60)))
    size = rng.randint(4, 80)
    overlap = rng.randint(0, size - 1)

    chunks = TextChunker(ChunkingConfig(chunk_size=size, chunk_overlap=overlap)).split(text)

    assert _reconstruct(chunks) == text
    for previous, current in zip(chunks, chunks[1:]):
        assert text[current.start_index : current.start_index + len(current.text)] == current.text
        assert previous.start_index < current.start_index
        assert previous.start_index + len(previous.text) - current.start_index <= overlap


def test_2500_characters_give_three_chunks_with_declared_overlap():
    text = "abcdefghij" * 250
    chunks = TextChunker().split(text)

    assert len(chunks) == 3
    assert all(len(chunk.text) <= 1000 for chunk in chunks)
    for previous, current in zip(chunks, chunks[1:]):
        overlap = previous.start_index + len(previous.text) - current.start_index
        assert overlap == 200
        assert previous.text[-200:] == current.text[:200]


def test_short_text_yields_single_chunk():
    chunks = TextChunker().split("A short note.")
    assert len(chunks) == 1
    assert chunks[0].text == "A short note."
    assert chunks[0].start_index == 0


def test_whitespace_is_preserved():
    text = "  leading spaces\n\n\ttabbed line\n"
    chunks = TextChunker(ChunkingConfig(chunk_size=10, chunk_overlap=2)).split(text)
    assert _reconstruct(chunks) == text


def test_metadata_and_timestamp_are_carried():
    chunks = TextChunker(ChunkingConfig(chunk_size=200, chunk_overlap=20)).split(_prose(3), {"source": "notes.txt"})
    created = {chunk.created_at for chunk in chunks}
    assert len(created) == 1
    for chunk in chunks:
        assert chunk.metadata["source"] == "notes.txt"
        assert chunk.metadata["created_at"] == chunk.created_at.isoformat()


def test_empty_text_yields_nothing():
    assert TextChunker().split("") == []


def test_invalid_overlap_is_rejected():
    with pytest.raises(ValueError):
        ChunkingConfig(chunk_size=100, chunk_overlap=100)


def test_loader_decodes_text_files():
    loader = DocumentLoader()
    assert loader.load("notes.md", "héllo wörld".encode("utf-8")) == "héllo wörld"


def test_loader_rejects_unknown_extensions():
    with pytest.raises(UnsupportedFileTypeError):
        DocumentLoader().load("archive.zip", b"PK")
