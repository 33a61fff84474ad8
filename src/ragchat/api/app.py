"""FastAPI application exposing the ragchat services."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ragchat.api.schemas import (
    ClearStoreResponse,
    ErrorResponse,
    PromptRequest,
    StatusResponse,
    UploadResponse,
)
from ragchat.config import Settings, get_settings
from ragchat.embeddings import ChromaIndex, Embedder, EmbeddingConfig, HashEmbedder, OllamaEmbedder, VectorIndex
from ragchat.errors import NotInitialized, RagChatError, UpstreamError, UpstreamTimeout, UpstreamUnavailable
from ragchat.ingestion import ChunkingConfig, DocumentLoader, IngestionError, TextChunker, UnsupportedFileTypeError
from ragchat.metrics.observability import (
    PipelineMetrics,
    TimedSection,
    bind_correlation_id,
    clear_correlation_id,
    configure_logging,
    get_logger,
)
from ragchat.models import DocumentInput, IndexState
from ragchat.retrieval import IndexRetriever, RetrievalConfig
from ragchat.services.generation import GenerationConfig, OllamaStreamRelay, RelayStream
from ragchat.services.query import PromptBuilder, QueryService

SERVICE_LABELS = {
    OllamaStreamRelay.SERVICE: "Ollama service",
    OllamaEmbedder.SERVICE: "Embedding service",
    ChromaIndex.SERVICE: "Vector store",
}


@dataclass(frozen=True)
class AppDependencies:
    loader: DocumentLoader
    chunker: TextChunker
    embedder: Embedder
    index: VectorIndex
    query_service: QueryService
    relay: OllamaStreamRelay


def build_dependencies(settings: Settings) -> AppDependencies:
    embedding_config = EmbeddingConfig(
        model=settings.embedding_model,
        base_url=settings.ollama_base_url,
        timeout_seconds=settings.request_timeout_seconds,
        dim=settings.embedding_dim,
    )
    embedder: Embedder
    if settings.embedding_backend == "hash":
        embedder = HashEmbedder(embedding_config)
    else:
        embedder = OllamaEmbedder(embedding_config)
    index = ChromaIndex(settings.chroma_collection, url=settings.chroma_url)
    retriever = IndexRetriever(embedder, index, RetrievalConfig(top_k=settings.top_k))
    relay = OllamaStreamRelay(
        GenerationConfig(
            model=settings.generation_model,
            base_url=settings.ollama_base_url,
            timeout_seconds=settings.request_timeout_seconds,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_tokens,
            seed=settings.seed,
            repeat_penalty=settings.repeat_penalty,
            presence_penalty=settings.presence_penalty,
        ),
    )
    return AppDependencies(
        loader=DocumentLoader(),
        chunker=TextChunker(ChunkingConfig(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap)),
        embedder=embedder,
        index=index,
        query_service=QueryService(retriever, PromptBuilder(), top_k=settings.top_k),
        relay=relay,
    )


async def _correlated_frames(relay: RelayStream, correlation_id: str) -> AsyncIterator[str]:
    # The body is produced after the middleware has returned and cleared its binding.
    bind_correlation_id(correlation_id)
    try:
        async for frame in relay.frames():
            yield frame
    finally:
        clear_correlation_id()


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging(settings.log_level)
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # A missing vector store must not stop the chat endpoint from serving.
        deps.index.ensure_collection()
        logger.info("startup.complete", vector_store=deps.index.state.value, port=settings.port)
        try:
            yield
        finally:
            await deps.embedder.aclose()
            await deps.relay.aclose()

    app = FastAPI(title="ragchat API", version="0.1.0", lifespan=lifespan)
    app.state.dependencies = deps

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def error_response(request: Request, status_code: int, error: str, message: str, details: object = None) -> JSONResponse:
        body = ErrorResponse(
            error=error,
            message=message,
            details=details,
            correlation_id=getattr(request.state, "correlation_id", None),
        )
        return JSONResponse(status_code=status_code, content=body.model_dump())

    @app.exception_handler(UpstreamUnavailable)
    async def handle_unavailable(request: Request, exc: UpstreamUnavailable) -> JSONResponse:
        label = SERVICE_LABELS.get(exc.service, exc.service)
        logger.error("upstream.unavailable", service=exc.service, detail=exc.detail)
        return error_response(
            request,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            f"{label} is not ready yet",
            "Please wait a few moments and try again",
            exc.detail,
        )

    @app.exception_handler(UpstreamTimeout)
    async def handle_timeout(request: Request, exc: UpstreamTimeout) -> JSONResponse:
        label = SERVICE_LABELS.get(exc.service, exc.service)
        logger.error("upstream.timeout", service=exc.service, detail=exc.detail)
        return error_response(
            request,
            status.HTTP_504_GATEWAY_TIMEOUT,
            f"{label} timeout",
            "The request took too long to complete",
            exc.detail,
        )

    @app.exception_handler(UpstreamError)
    async def handle_upstream_error(request: Request, exc: UpstreamError) -> JSONResponse:
        label = SERVICE_LABELS.get(exc.service, exc.service)
        logger.error("upstream.error", service=exc.service, status_code=exc.status_code)
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Error communicating with {label}",
            str(exc),
            exc.body[:500] or None,
        )

    @app.exception_handler(NotInitialized)
    async def handle_not_initialized(request: Request, exc: NotInitialized) -> JSONResponse:
        logger.warning("vector_store.not_initialized")
        return error_response(
            request,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Vector store not initialized",
            str(exc),
        )

    @app.exception_handler(UnsupportedFileTypeError)
    async def handle_unsupported_file(request: Request, exc: UnsupportedFileTypeError) -> JSONResponse:
        return error_response(request, status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, "Unsupported file type", str(exc))

    @app.exception_handler(IngestionError)
    async def handle_ingestion_error(request: Request, exc: IngestionError) -> JSONResponse:
        logger.error("ingestion.error", detail=str(exc))
        return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Error processing document", str(exc))

    @app.exception_handler(RagChatError)
    async def handle_ragchat_error(request: Request, exc: RagChatError) -> JSONResponse:
        logger.error("ragchat.error", detail=str(exc))
        return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", "Request failed")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled.error", detail=str(exc))
        return error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", "Request failed")

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    max_upload_bytes = settings.max_upload_size_mb * 1024 * 1024

    @app.post("/api/upload", response_model=UploadResponse)
    async def upload_document(
        file: UploadFile = File(...),
        dep: AppDependencies = Depends(get_dependencies),
    ) -> UploadResponse:
        filename = file.filename or f"upload-{uuid4().hex}.txt"
        suffix = Path(filename).suffix.lower()
        if suffix not in dep.loader.supported_suffixes:
            await file.close()
            msg = f"Unsupported file type: {suffix or 'unknown'}"
            raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=msg)
        data = bytearray()
        while True:
            chunk = await file.read(1024 * 1024)
            if not chunk:
                break
            data.extend(chunk)
            if len(data) > max_upload_bytes:
                await file.close()
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=f"File too large (>{settings.max_upload_size_mb}MB): {filename}",
                )
        await file.close()
        if not data:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {filename}")
        if dep.index.state is not IndexState.READY:
            raise NotInitialized("Vector store not initialized. Please ensure ChromaDB is running.")

        with TimedSection(PipelineMetrics.ingestion_latency.observe) as timer:
            text = dep.loader.load(filename, bytes(data))
            chunks = dep.chunker.split(text, {"source": filename})
            if not chunks:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"No text found in {filename}")
            vectors = await dep.embedder.embed([chunk.text for chunk in chunks])
            ids = dep.index.add(
                [
                    DocumentInput(text=chunk.text, vector=vector, metadata=chunk.metadata)
                    for chunk, vector in zip(chunks, vectors)
                ],
            )
        PipelineMetrics.ingestion_chunks.observe(len(chunks))
        logger.info("upload.complete", filename=filename, chunk_count=len(chunks), duration_seconds=timer.duration)
        return UploadResponse(
            message="Document processed successfully",
            filename=filename,
            chunks=len(chunks),
            ids=ids,
        )

    @app.post("/api/ollama")
    async def generate(
        request: Request,
        payload: PromptRequest,
        dep: AppDependencies = Depends(get_dependencies),
    ) -> StreamingResponse:
        prepared = await dep.query_service.prepare(payload.prompt, top_k=payload.top_k)
        relay = await dep.relay.open(prepared.prompt)
        return StreamingResponse(
            _correlated_frames(relay, request.state.correlation_id),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.get("/api/status", response_model=StatusResponse)
    async def vector_store_status(dep: AppDependencies = Depends(get_dependencies)) -> StatusResponse:
        state = dep.index.state
        documents = None
        if state is IndexState.READY:
            try:
                documents = dep.index.count()
            except RagChatError as exc:
                logger.warning("status.count_failed", detail=str(exc))
        return StatusResponse(
            vector_store=state.value,
            rag_available=state is IndexState.READY,
            collection=dep.index.collection_name,
            documents=documents,
        )

    @app.post("/api/clear-store", response_model=ClearStoreResponse)
    async def clear_store(dep: AppDependencies = Depends(get_dependencies)) -> ClearStoreResponse:
        dep.index.clear()
        dep.index.ensure_collection()
        logger.info("vector_store.cleared", vector_store=dep.index.state.value)
        return ClearStoreResponse(message="Vector store cleared successfully", vector_store=dep.index.state.value)

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return "Hello from the backend!"

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from ragchat import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def main() -> None:
    """Run the API with uvicorn on the configured host and port."""

    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
