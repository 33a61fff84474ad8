from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest

from conftest import split_every, streaming_response
from ragchat.ui.client import ERROR_MESSAGE, APIError, ChatClient, Conversation, SSEDecoder


def sse(*payloads: dict) -> bytes:
    return b"".join(f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8") for payload in payloads)


HELLO = sse({"response": "Hel"}, {"response": "lo"}, {"response": "", "done": True})


def _client(chunks: List[bytes], status_code: int = 200, requests: list | None = None) -> ChatClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(json.loads(request.content))
        return streaming_response(chunks, status_code=status_code)

    return ChatClient(base_url="http://api.test", transport=httpx.MockTransport(handler))


def _stream(client: ChatClient, content: str) -> List[str]:
    async def run() -> List[str]:
        return [text async for text in client.stream_reply(content)]

    return asyncio.run(run())


def test_fragments_accumulate_into_single_reply():
    requests: list = []
    client = _client([HELLO], requests=requests)
    updates = _stream(client, "Greet me")

    assert updates == ["Hel", "Hello", "Hello"]
    assert requests == [{"prompt": "Greet me"}]
    assert [(m.content, m.is_user) for m in client.messages] == [("Greet me", True), ("Hello", False)]


@pytest.mark.parametrize("size", [1, 3, 11])
def test_reply_is_independent_of_read_boundaries(size: int):
    payload = sse({"response": "Grüße"}, {"response": " aus"}, {"response": " Köln", "done": True})
    client = _client(split_every(payload, size))
    message = asyncio.run(client.send_message("hi"))
    assert message.content == "Grüße aus Köln"


def test_malformed_lines_are_skipped():
    body = b'data: {"response": "a"}\n\ndata: {oops\n\n: keep-alive\n\ndata: {"response": "b"}\n\n'
    message = asyncio.run(_client([body]).send_message("hi"))
    assert message.content == "ab"


def test_error_status_produces_fixed_error_message():
    client = _client([b'{"error": "model_unavailable"}'], status_code=503)
    message = asyncio.run(client.send_message("hi"))

    assert message.content == ERROR_MESSAGE
    assert not message.is_user
    assert client.is_loading is False


def test_error_event_produces_fixed_error_message():
    body = sse({"response": "partial"}, {"error": "The model stream was interrupted.", "done": True})
    message = asyncio.run(_client([body]).send_message("hi"))
    assert message.content == ERROR_MESSAGE


def test_unreachable_backend_produces_fixed_error_message():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    client = ChatClient(base_url="http://api.test", transport=httpx.MockTransport(handler))
    message = asyncio.run(client.send_message("hi"))
    assert message.content == ERROR_MESSAGE


def test_streaming_message_is_displayed_until_finalized():
    client = _client([HELLO])
    seen: List[List[tuple]] = []

    def on_update(text: str) -> None:
        seen.append([(m.content, m.is_streaming) for m in client.display_messages])

    asyncio.run(client.send_message("hi", on_update=on_update))

    assert seen[0] == [("hi", False), ("Hel", True)]
    assert seen[-1] == [("hi", False), ("Hello", True)]
    assert client.streaming_message == ""
    assert [m.is_streaming for m in client.display_messages] == [False, False]


def test_sse_decoder_holds_partial_line():
    decoder = SSEDecoder()
    assert decoder.feed(b'data: {"respo') == []
    assert decoder.feed(b'nse": "x"}\n') == [{"response": "x"}]
    assert decoder.feed(b'data: {"done": true}') == []
    assert decoder.flush() == [{"done": True}]


def test_admin_helpers_hit_their_endpoints(tmp_path):
    seen: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.url.path == "/api/upload":
            assert b'filename="notes.txt"' in request.content
            return httpx.Response(200, json={"filename": "notes.txt", "chunks": 1, "ids": ["doc_1_0"]})
        if request.url.path == "/api/status":
            return httpx.Response(200, json={"vector_store": "ready", "rag_available": True})
        return httpx.Response(503, json={"error": "Vector store not initialized"})

    document = tmp_path / "notes.txt"
    document.write_text("some notes")
    client = ChatClient(base_url="http://api.test", transport=httpx.MockTransport(handler))

    async def run():
        uploaded = await client.upload(document)
        status = await client.status()
        with pytest.raises(APIError):
            await client.clear_store()
        await client.aclose()
        return uploaded, status

    uploaded, status = asyncio.run(run())

    assert uploaded["chunks"] == 1
    assert status["vector_store"] == "ready"
    assert seen == [("POST", "/api/upload"), ("GET", "/api/status"), ("POST", "/api/clear-store")]


def test_sessions_sharing_a_client_keep_separate_conversations():
    client = _client([HELLO])
    first, second = Conversation(), Conversation()

    async def run():
        await asyncio.gather(
            client.send_message("from first", conversation=first),
            client.send_message("from second", conversation=second),
        )

    asyncio.run(run())

    assert [(m.content, m.is_user) for m in first.messages] == [("from first", True), ("Hello", False)]
    assert [(m.content, m.is_user) for m in second.messages] == [("from second", True), ("Hello", False)]
    assert client.messages == []
    assert not first.is_loading and not second.is_loading


def test_shared_client_does_not_accumulate_session_history():
    client = _client([HELLO])

    async def run():
        for turn in range(50):
            await client.send_message(f"turn {turn}", conversation=Conversation())

    asyncio.run(run())
    assert client.messages == []
