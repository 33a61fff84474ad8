"""HTTPX-based chat client that consumes the relay's event stream."""

from __future__ import annotations

import codecs
import json
import logging
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from ragchat.models import ChatMessage

LOGGER = logging.getLogger(__name__)

DEFAULT_API_URL = os.getenv("RAGCHAT_API_URL", "http://localhost:3001")
ERROR_MESSAGE = "Sorry, I encountered an error. Please try again."
DATA_PREFIX = "data:"


class APIError(RuntimeError):
    """Raised when communication with the ragchat API fails."""


class SSEDecoder:
    """Incremental decoder for ``data: <json>`` event-stream lines.

    Multi-byte characters and lines split across reads are carried over to the
    next chunk. Lines without the data prefix and payloads that are not JSON
    objects are skipped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        self._buffer += self._decoder.decode(data)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [event for event in map(self._parse, lines) if event is not None]

    def flush(self) -> List[Dict[str, Any]]:
        self._buffer += self._decoder.decode(b"", final=True)
        line, self._buffer = self._buffer, ""
        event = self._parse(line)
        return [event] if event is not None else []

    @staticmethod
    def _parse(line: str) -> Optional[Dict[str, Any]]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX) :]
        if payload.startswith(" "):
            payload = payload[1:]
        try:
            event = json.loads(payload)
        except ValueError:
            return None
        return event if isinstance(event, dict) else None


@dataclass
class Conversation:
    """Messages and live reply state of one chat session."""

    messages: List[ChatMessage] = field(default_factory=list)
    streaming_message: str = ""
    is_loading: bool = False

    @property
    def display_messages(self) -> List[ChatMessage]:
        """Finalized messages followed by the in-progress reply, if any."""

        if not self.streaming_message:
            return list(self.messages)
        live = ChatMessage(content=self.streaming_message, is_user=False, is_streaming=True)
        return [*self.messages, live]


@dataclass
class ChatClient:
    """HTTP transport for the API plus the streaming read loop against ``/api/ollama``.

    Conversation state lives in a :class:`Conversation`. The client keeps a
    default one for single-user callers; shared clients pass one per session.
    """

    base_url: str = DEFAULT_API_URL
    timeout: float = 120.0
    transport: Optional[httpx.AsyncBaseTransport] = None
    conversation: Conversation = field(default_factory=Conversation)

    def __post_init__(self) -> None:
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    @property
    def messages(self) -> List[ChatMessage]:
        return self.conversation.messages

    @property
    def streaming_message(self) -> str:
        return self.conversation.streaming_message

    @property
    def is_loading(self) -> bool:
        return self.conversation.is_loading

    @property
    def display_messages(self) -> List[ChatMessage]:
        return self.conversation.display_messages

    async def stream_reply(
        self,
        content: str,
        on_update: Optional[Callable[[str], None]] = None,
        conversation: Optional[Conversation] = None,
    ) -> AsyncIterator[str]:
        """Yield the growing answer text; the last value is the finalized reply."""

        state = conversation if conversation is not None else self.conversation
        state.messages.append(ChatMessage(content=content, is_user=True))
        state.is_loading = True
        state.streaming_message = ""
        accumulated = ""
        failed = False
        try:
            async with self._client.stream(
                "POST",
                "/api/ollama",
                json={"prompt": content},
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code >= 400:
                    cid = response.headers.get("X-Correlation-ID", "-")
                    raise APIError(f"Chat failed ({response.status_code}) [cid={cid}]")
                decoder = SSEDecoder()
                async for data in response.aiter_bytes():
                    for event in decoder.feed(data):
                        updated = self._apply(event, accumulated)
                        if updated == accumulated:
                            continue
                        accumulated = updated
                        state.streaming_message = accumulated
                        if on_update is not None:
                            on_update(accumulated)
                        yield accumulated
                for event in decoder.flush():
                    accumulated = self._apply(event, accumulated)
        except (httpx.HTTPError, APIError) as exc:
            LOGGER.error("Error sending message: %s", exc)
            failed = True
        finally:
            state.streaming_message = ""
            state.is_loading = False
        reply = ChatMessage(content=ERROR_MESSAGE if failed else accumulated, is_user=False)
        state.messages.append(reply)
        yield reply.content

    async def send_message(
        self,
        content: str,
        on_update: Optional[Callable[[str], None]] = None,
        conversation: Optional[Conversation] = None,
    ) -> ChatMessage:
        state = conversation if conversation is not None else self.conversation
        async for _ in self.stream_reply(content, on_update=on_update, conversation=state):
            pass
        return state.messages[-1]

    @staticmethod
    def _apply(event: Dict[str, Any], accumulated: str) -> str:
        if "error" in event:
            raise APIError(f"Stream reported an error: {event['error']}")
        fragment = event.get("response")
        if isinstance(fragment, str) and fragment:
            return accumulated + fragment
        return accumulated

    async def upload(self, path: Path) -> Dict[str, Any]:
        mime, _ = mimetypes.guess_type(path.name)
        files = {"file": (path.name, path.read_bytes(), mime or "application/octet-stream")}
        response = await self._client.post("/api/upload", files=files)
        if response.status_code >= 400:
            cid = response.headers.get("X-Correlation-ID", "-")
            raise APIError(f"Upload failed ({response.status_code}) [cid={cid}]: {response.text}")
        return response.json()

    async def status(self) -> Dict[str, Any]:
        response = await self._client.get("/api/status")
        if response.status_code >= 400:
            raise APIError(f"Status failed ({response.status_code}): {response.text}")
        return response.json()

    async def clear_store(self) -> Dict[str, Any]:
        response = await self._client.post("/api/clear-store")
        if response.status_code >= 400:
            raise APIError(f"Clear failed ({response.status_code}): {response.text}")
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()
