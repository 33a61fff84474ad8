"""Pydantic models for the ragchat API."""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field


class PromptRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="End-user question to answer")
    top_k: Optional[int] = Field(default=None, ge=1, le=20, description="Override the number of retrieved chunks")


class UploadResponse(BaseModel):
    message: str
    filename: str
    chunks: int = Field(..., ge=0, description="Number of chunks indexed for the upload")
    ids: List[str] = Field(default_factory=list, description="Generated document ids, in chunk order")


class StatusResponse(BaseModel):
    status: Literal["ok"] = "ok"
    vector_store: Literal["uninitialized", "ready", "degraded"]
    rag_available: bool
    collection: str
    documents: Optional[int] = None


class ClearStoreResponse(BaseModel):
    message: str
    vector_store: Literal["uninitialized", "ready", "degraded"]


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Optional[Any] = None
    correlation_id: Optional[str] = None
