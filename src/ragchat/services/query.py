"""Prompt assembly combining retrieval output with a fixed instruction template."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from ragchat.metrics.observability import get_logger
from ragchat.models import RetrievedChunk
from ragchat.retrieval.service import Retriever

FALLBACK_PHRASE = "I don't have enough information to answer that question."


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Templates used to render the final prompt."""

    fallback_phrase: str = FALLBACK_PHRASE
    context_instruction: str = (
        "You are a helpful assistant. Answer the question using only the information in the "
        "context below. Do not use prior knowledge. If the context does not contain the answer, "
        'reply exactly: "{fallback}"'
    )
    no_context_instruction: str = (
        "You are a helpful assistant. No reference documents are available for this question. "
        'If you cannot answer it reliably, reply exactly: "{fallback}"'
    )


class PromptBuilder:
    """Builds prompts for the generation backend.

    Rendering is pure string assembly: identical inputs always give the same
    prompt, and retrieved chunks are used in the order the index returned them.
    """

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()

    @property
    def fallback_phrase(self) -> str:
        return self._config.fallback_phrase

    def build_context(self, retrieved: Iterable[RetrievedChunk | str]) -> str:
        texts = [item if isinstance(item, str) else item.text for item in retrieved]
        return "\n\n".join(text for text in texts if text.strip())

    def build(self, query: str, retrieved: Sequence[RetrievedChunk | str]) -> str:
        context = self.build_context(retrieved)
        if not context:
            instruction = self._config.no_context_instruction.format(fallback=self._config.fallback_phrase)
            return f"{instruction}\n\nQuestion: {query}\n\nAnswer:"
        instruction = self._config.context_instruction.format(fallback=self._config.fallback_phrase)
        return f"{instruction}\n\nContext:\n{context}\n\nQuestion: {query}\n\nAnswer:"


@dataclass(frozen=True)
class PreparedPrompt:
    """Final prompt plus the chunks it was built from."""

    question: str
    prompt: str
    retrieved: Sequence[RetrievedChunk] = field(default_factory=tuple)


class QueryService:
    """Turns an incoming question into a retrieval-augmented prompt."""

    def __init__(
        self,
        retriever: Retriever,
        prompt_builder: PromptBuilder | None = None,
        *,
        top_k: int | None = None,
    ) -> None:
        self._retriever = retriever
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._top_k = top_k
        self._logger = get_logger("query")

    @property
    def prompt_builder(self) -> PromptBuilder:
        return self._prompt_builder

    async def prepare(self, question: str, *, top_k: int | None = None) -> PreparedPrompt:
        if not self._retriever.available:
            self._logger.warning("query.rag_unavailable")
            retrieved: Sequence[RetrievedChunk] = []
        else:
            retrieved = await self._retriever.retrieve(question, top_k=top_k or self._top_k)
        prompt = self._prompt_builder.build(question, retrieved)
        self._logger.info("query.prepared", chunk_count=len(retrieved), prompt_chars=len(prompt))
        return PreparedPrompt(question=question, prompt=prompt, retrieved=tuple(retrieved))
