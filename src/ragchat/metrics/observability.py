"""Observability helpers for ragchat."""

from __future__ import annotations

import logging
import time

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False


def configure_logging(level: int | str = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "ragchat") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "ragchat_ingestion_duration_seconds",
        "Time spent chunking, embedding and indexing an upload.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    ingestion_chunks = Histogram(
        "ragchat_ingestion_chunk_count",
        "Chunks produced per upload.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    retrieval_latency = Histogram(
        "ragchat_retrieval_duration_seconds",
        "Time spent embedding the question and querying the index.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "ragchat_retrieved_chunk_count",
        "Number of chunks returned by retrieval.",
        buckets=(0, 1, 2, 3, 4, 5, 8),
    )
    first_frame_latency = Histogram(
        "ragchat_relay_first_frame_seconds",
        "Time from upstream request to the first relayed frame.",
        buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    )
    relayed_frames = Counter(
        "ragchat_relay_frames_total",
        "Event-stream frames forwarded to clients.",
    )
    parse_errors = Counter(
        "ragchat_relay_parse_errors_total",
        "Streamed lines skipped because they were not valid JSON.",
    )
    upstream_failures = Counter(
        "ragchat_upstream_failures_total",
        "Failed calls to upstream services.",
        ["service", "kind"],
    )

    @classmethod
    def observe_retrieval(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)

    @classmethod
    def observe_upstream_failure(cls, service: str, kind: str) -> None:
        cls.upstream_failures.labels(service=service, kind=kind).inc()


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0
        self.duration = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.duration = time.perf_counter() - self._start
        self._callback(self.duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]
