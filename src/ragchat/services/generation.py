"""Streaming relay between the Ollama generate endpoint and event-stream clients.

Ollama answers ``/api/generate`` with newline-delimited JSON objects, each
carrying a ``response`` fragment, and a final object flagged ``done`` that holds
the run metadata. The relay decodes that stream incrementally and forwards each
object as a ``data: <json>\\n\\n`` frame as soon as its line is complete.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping

import httpx

from ragchat.errors import ParseError, RagChatError, UpstreamError, upstream_errors
from ragchat.metrics.observability import PipelineMetrics, get_logger
from ragchat.services.query import FALLBACK_PHRASE

LOGGER = get_logger("generation")

STREAM_ERROR_MESSAGE = "The model stream was interrupted."


@dataclass(frozen=True)
class GenerationConfig:
    """Model and decoding parameters sent with every generate request."""

    model: str = "mistral"
    base_url: str = "http://localhost:11434"
    timeout_seconds: float = 30.0
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 512
    seed: int = 42
    repeat_penalty: float = 1.1
    presence_penalty: float = 0.0
    stop: tuple[str, ...] = field(default=(FALLBACK_PHRASE, "\nQuestion:"))

    def options(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "num_predict": self.max_tokens,
            "seed": self.seed,
            "repeat_penalty": self.repeat_penalty,
            "presence_penalty": self.presence_penalty,
            "stop": list(self.stop),
        }


def parse_line(line: str) -> Dict[str, Any]:
    try:
        value = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ParseError(line, str(exc)) from exc
    if not isinstance(value, dict):
        raise ParseError(line, "expected a JSON object")
    return value


class NDJSONDecoder:
    """Incremental newline-delimited JSON decoder.

    Bytes are buffered until a newline arrives, so an object split across two
    network reads is parsed once, whole. Blank lines are ignored and lines that
    are not JSON objects are logged and dropped without affecting the rest.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.skipped = 0

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        self._buffer.extend(data)
        events: List[Dict[str, Any]] = []
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            event = self._decode(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[Dict[str, Any]]:
        """Decode whatever is left once the upstream has finished."""

        line = bytes(self._buffer)
        self._buffer.clear()
        event = self._decode(line)
        return [event] if event is not None else []

    def _decode(self, raw: bytes) -> Dict[str, Any] | None:
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        try:
            return parse_line(text)
        except ParseError as exc:
            self.skipped += 1
            PipelineMetrics.parse_errors.inc()
            LOGGER.warning("relay.line_skipped", detail=str(exc))
            return None


def format_sse(payload: Mapping[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def should_forward(event: Mapping[str, Any]) -> bool:
    return bool(event.get("response")) or bool(event.get("done")) or "error" in event


class RelayStream:
    """An open upstream response that can be consumed exactly once as frames."""

    def __init__(self, response: httpx.Response, *, started: float | None = None) -> None:
        self._response = response
        self._started = started if started is not None else time.perf_counter()
        self.frame_count = 0

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def frames(self) -> AsyncIterator[str]:
        decoder = NDJSONDecoder()
        try:
            async for data in self._response.aiter_bytes():
                for event in decoder.feed(data):
                    if should_forward(event):
                        yield self._emit(event)
            for event in decoder.flush():
                if should_forward(event):
                    yield self._emit(event)
        except httpx.HTTPError as exc:
            PipelineMetrics.observe_upstream_failure(OllamaStreamRelay.SERVICE, type(exc).__name__)
            LOGGER.error("relay.upstream_failed", frame_count=self.frame_count, detail=str(exc))
            yield format_sse({"error": STREAM_ERROR_MESSAGE, "done": True})
        finally:
            await self._response.aclose()
            LOGGER.info(
                "relay.finished",
                frame_count=self.frame_count,
                skipped_lines=decoder.skipped,
                duration_seconds=time.perf_counter() - self._started,
            )

    def _emit(self, event: Mapping[str, Any]) -> str:
        if self.frame_count == 0:
            PipelineMetrics.first_frame_latency.observe(time.perf_counter() - self._started)
        self.frame_count += 1
        PipelineMetrics.relayed_frames.inc()
        return format_sse(event)


class OllamaStreamRelay:
    """Requests an incremental generation and relays it as an event stream."""

    SERVICE = "generation"

    def __init__(self, config: GenerationConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config or GenerationConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )

    @property
    def config(self) -> GenerationConfig:
        return self._config

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self._config.model,
            "prompt": prompt,
            "stream": True,
            "options": self._config.options(),
        }

    async def open(self, prompt: str) -> RelayStream:
        """Send the request and wait for response headers.

        Raises ``UpstreamUnavailable``, ``UpstreamTimeout`` or ``UpstreamError``
        before any frame exists, so callers can still choose the HTTP status.
        """

        request = self._client.build_request("POST", "/api/generate", json=self.build_payload(prompt))
        started = time.perf_counter()
        try:
            with upstream_errors(self.SERVICE):
                response = await self._client.send(request, stream=True)
                if response.status_code >= 400:
                    try:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                    finally:
                        await response.aclose()
                    raise UpstreamError(self.SERVICE, response.status_code, body)
        except RagChatError as exc:
            PipelineMetrics.observe_upstream_failure(self.SERVICE, type(exc).__name__)
            LOGGER.error("relay.request_failed", detail=str(exc))
            raise
        LOGGER.info("relay.started", model=self._config.model)
        return RelayStream(response, started=started)

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        relay = await self.open(prompt)
        async for frame in relay.frames():
            yield frame

    async def aclose(self) -> None:
        await self._client.aclose()
