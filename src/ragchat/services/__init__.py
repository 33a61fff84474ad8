"""Service layer orchestrations for ragchat."""

from .generation import GenerationConfig, NDJSONDecoder, OllamaStreamRelay, RelayStream, format_sse
from .query import FALLBACK_PHRASE, PreparedPrompt, PromptBuilder, PromptBuilderConfig, QueryService

__all__ = [
    "FALLBACK_PHRASE",
    "GenerationConfig",
    "NDJSONDecoder",
    "OllamaStreamRelay",
    "PreparedPrompt",
    "PromptBuilder",
    "PromptBuilderConfig",
    "QueryService",
    "RelayStream",
    "format_sse",
]
