"""Error taxonomy shared by the upstream clients and the HTTP layer."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import httpx


class RagChatError(RuntimeError):
    """Base class for ragchat failures."""


class UpstreamUnavailable(RagChatError):
    """Raised when an upstream service refuses or drops the connection."""

    def __init__(self, service: str, detail: str = "") -> None:
        self.service = service
        self.detail = detail
        super().__init__(f"{service} is not reachable" + (f": {detail}" if detail else ""))


class UpstreamTimeout(RagChatError):
    """Raised when an upstream call exceeds its time budget."""

    def __init__(self, service: str, detail: str = "") -> None:
        self.service = service
        self.detail = detail
        super().__init__(f"{service} timed out" + (f": {detail}" if detail else ""))


class UpstreamError(RagChatError):
    """Raised when an upstream service answers with a non-success response."""

    def __init__(self, service: str, status_code: int | None = None, body: str = "") -> None:
        self.service = service
        self.status_code = status_code
        self.body = body
        status = f" ({status_code})" if status_code is not None else ""
        super().__init__(f"{service} returned an error{status}")


class NotInitialized(RagChatError):
    """Raised when the vector index is used before its collection is ready."""


class ParseError(RagChatError):
    """Raised for a single malformed line in a streamed response."""

    def __init__(self, line: str, detail: str = "") -> None:
        self.line = line
        super().__init__(f"Malformed stream line: {detail or line[:80]}")


@contextmanager
def upstream_errors(service: str) -> Iterator[None]:
    """Translate httpx transport failures into the upstream error taxonomy."""

    try:
        yield
    except httpx.TimeoutException as exc:
        raise UpstreamTimeout(service, str(exc)) from exc
    except httpx.ConnectError as exc:
        raise UpstreamUnavailable(service, str(exc)) from exc
    except httpx.TransportError as exc:
        raise UpstreamError(service, body=str(exc)) from exc


__all__ = [
    "NotInitialized",
    "ParseError",
    "RagChatError",
    "UpstreamError",
    "UpstreamTimeout",
    "UpstreamUnavailable",
    "upstream_errors",
]
