"""
Tests for the assistant streaming client, using httpx.MockTransport.
"""
import json

import httpx
import pytest

from expert_chat.core.exceptions import TransportError
from expert_chat.schemas.message import ExpertPersona, Message, Role
from expert_chat.services.streaming_client import StreamingClient

URL = "http://assistant.test/api/chat"


def _transcript():
    return [
        Message(role=Role.user, content="How do I price a condo?", order=1,
                user_id="user_1", chat_id="chat_1", message_id="m-1"),
    ]


def _client_for(handler):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return StreamingClient(url=URL, http_client=http_client)


def _chunked(*chunks, error=None):
    async def body():
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error
    return body()


async def _collect(client, persona=ExpertPersona.general):
    async with client.open_reply(_transcript(), persona) as deltas:
        return [d async for d in deltas]


async def test_multibyte_characters_split_across_chunks():
    text = "Prix: 250 000 € — très bien ✓"
    raw = text.encode("utf-8")
    euro = raw.index("€".encode("utf-8"))
    check = raw.index("✓".encode("utf-8"))
    # Cut inside the euro sign and inside the check mark
    pieces = [raw[:euro + 1], raw[euro + 1:check + 2], raw[check + 2:]]

    client = _client_for(lambda request: httpx.Response(200, content=_chunked(*pieces)))
    deltas = await _collect(client)

    assert "".join(deltas) == text
    assert all("\ufffd" not in d for d in deltas)


async def test_request_payload_carries_transcript_and_persona():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=_chunked(b"ok"))

    deltas = await _collect(_client_for(handler), ExpertPersona.real_estate)

    assert deltas == ["ok"]
    assert seen["method"] == "POST"
    assert seen["body"]["expert"] == "Real Estate"
    assert seen["body"]["chatbot"] == "real estate"
    assert seen["body"]["messages"][0]["message_id"] == "m-1"
    assert seen["body"]["messages"][0]["role"] == "user"


async def test_error_status_fails_before_any_delta():
    client = _client_for(lambda request: httpx.Response(503, content=b"overloaded"))

    with pytest.raises(TransportError) as exc_info:
        async with client.open_reply(_transcript(), ExpertPersona.sales):
            pytest.fail("context must not be entered on an error status")

    assert exc_info.value.status_code == 503


async def test_connection_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        await _collect(_client_for(handler))


async def test_mid_stream_failure_is_transport_error():
    received = []

    def handler(request):
        return httpx.Response(
            200, content=_chunked(b"one ", b"two ", error=httpx.ReadError("reset"))
        )

    client = _client_for(handler)
    with pytest.raises(TransportError):
        async with client.open_reply(_transcript(), ExpertPersona.general) as deltas:
            async for delta in deltas:
                received.append(delta)

    assert received == ["one ", "two "]


async def test_stream_cannot_be_replayed():
    client = _client_for(lambda request: httpx.Response(200, content=_chunked(b"a", b"b")))

    async with client.open_reply(_transcript(), ExpertPersona.general) as deltas:
        assert [d async for d in deltas] == ["a", "b"]
        with pytest.raises(RuntimeError):
            deltas.__aiter__()


async def test_response_released_when_consumer_fails():
    client = _client_for(lambda request: httpx.Response(200, content=_chunked(b"a", b"b")))

    with pytest.raises(ValueError):
        async with client.open_reply(_transcript(), ExpertPersona.general) as deltas:
            captured = deltas
            raise ValueError("consumer gave up")

    assert captured._response.is_closed


async def test_body_is_read_as_utf8_whatever_the_declared_charset():
    raw = "Négociation ✓".encode("utf-8")

    def handler(request):
        return httpx.Response(
            200,
            headers={"content-type": "text/plain; charset=latin-1"},
            content=_chunked(raw[:2], raw[2:]),
        )

    assert "".join(await _collect(_client_for(handler))) == "Négociation ✓"


async def test_configured_timeout_applies_to_borrowed_client():
    seen = {}

    def handler(request):
        seen["timeout"] = request.extensions["timeout"]
        return httpx.Response(200, content=_chunked(b"ok"))

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = StreamingClient(url=URL, timeout=2.5, http_client=http_client)

    assert await _collect(client) == ["ok"]
    assert seen["timeout"]["read"] == 2.5
    assert seen["timeout"]["connect"] == 2.5
