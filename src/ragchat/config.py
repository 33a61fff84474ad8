"""Runtime configuration for the ragchat services."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="ragchat_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    log_level: str = "INFO"

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3001

    # Ollama serves both generation and embeddings
    ollama_url: str = "http://localhost:11434"
    generation_model: str = "mistral"
    embedding_model: str = "mistral"
    embedding_backend: Literal["ollama", "hash"] = "ollama"
    embedding_dim: int = 384  # hash backend only
    request_timeout_seconds: float = 30.0

    # Vector store
    chroma_url: str = "http://localhost:8000"
    chroma_collection: str = "documents"

    chunk_size: int = 1000
    chunk_overlap: int = 200
    top_k: int = 4

    # Decoding parameters sent with every generate request
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 512
    seed: int = 42
    repeat_penalty: float = 1.1
    presence_penalty: float = 0.0

    max_upload_size_mb: int = 25

    # CORS, the browser UI runs on a different origin than the API
    cors_allow_origins: tuple[str, ...] = ("http://localhost:5173", "http://localhost:3000")
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    @property
    def ollama_base_url(self) -> str:
        return self.ollama_url.rstrip("/")


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
