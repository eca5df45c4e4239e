"""
services/streaming_client.py
----------------------------
Client side of the assistant backend: POST the transcript, read the reply
back as a stream of UTF-8 text deltas.

Usage:
    client = StreamingClient()
    async with client.open_reply(transcript, persona) as deltas:
        async for delta in deltas:
            ...

Guarantees:
  - A non-success status raises TransportError when the context is entered,
    before any delta is produced.
  - Multi-byte characters split across network chunks are decoded correctly;
    the decoder carries the partial bytes over to the next chunk.
  - The HTTP response is released whenever the context exits: end of stream,
    an exception in the consumer, or the consumer walking away early.
  - The delta stream is a single forward-only cursor and cannot be replayed.
  - No timeout unless CHAT_REQUEST_TIMEOUT (or `timeout`) is configured. A
    configured timeout also applies to a borrowed `http_client`; without one
    the borrowed client keeps its own timeout settings.
"""

from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

import httpx

from expert_chat.core.config import settings
from expert_chat.core.exceptions import TransportError
from expert_chat.core.logging import get_logger
from expert_chat.schemas.message import ExpertPersona, Message

logger = get_logger(__name__)


def build_payload(transcript: Sequence[Message], persona: ExpertPersona) -> dict:
    return {
        "messages": [
            m.model_dump(mode="json", exclude={"created_at"}) for m in transcript
        ],
        "chatbot": persona.slug,
        "expert": persona.value,
    }


class DeltaStream:
    """Forward-only async iterator over the decoded text of one response."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("Delta stream has already been consumed")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        # The wire format is UTF-8 whatever the response headers claim
        self._response.encoding = "utf-8"
        try:
            async for text in self._response.aiter_text():
                yield text
        except httpx.HTTPError as exc:
            logger.error("Assistant stream broke", error=str(exc))
            raise TransportError(f"Assistant stream failed: {exc}") from exc


class StreamingClient:

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url or settings.CHAT_API_URL
        self._timeout = timeout if timeout is not None else settings.CHAT_REQUEST_TIMEOUT
        # A caller-supplied client is borrowed, never closed here
        self._http_client = http_client

    @asynccontextmanager
    async def open_reply(
        self,
        transcript: Sequence[Message],
        persona: ExpertPersona,
    ) -> AsyncIterator[DeltaStream]:
        payload = build_payload(transcript, persona)
        request_options = {}
        if self._timeout is not None:
            request_options["timeout"] = httpx.Timeout(self._timeout)

        async with AsyncExitStack() as stack:
            client = self._http_client
            if client is None:
                client = await stack.enter_async_context(
                    httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
                )

            try:
                response = await stack.enter_async_context(
                    client.stream("POST", self.url, json=payload, **request_options)
                )
            except httpx.HTTPError as exc:
                logger.error("Assistant request failed", url=self.url, error=str(exc))
                raise TransportError(f"Assistant request failed: {exc}") from exc

            if not response.is_success:
                logger.error(
                    "Assistant returned an error status",
                    url=self.url,
                    status_code=response.status_code,
                )
                raise TransportError(
                    f"HTTP error! status: {response.status_code}",
                    status_code=response.status_code,
                )

            logger.debug("Assistant stream opened", persona=persona.value, turns=len(transcript))
            yield DeltaStream(response)
