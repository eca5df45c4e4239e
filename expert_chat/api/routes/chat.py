"""
api/routes/chat.py
------------------
Assistant endpoint consumed by StreamingClient.

POST /api/chat  — Stream a persona-scoped reply as plain UTF-8 text

The response body is the reply itself, written as tokens arrive; the end of
the body is the end of the reply. A failure before the first token is a 502
with no body content. A failure after that aborts the connection, which the
client reports as a transport error.
"""

from typing import AsyncGenerator

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from expert_chat.core.logging import get_logger
from expert_chat.schemas.message import ChatRequest
from expert_chat.services.llm_service import llm_service

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Chat"])


async def _replay(first: str, rest: AsyncGenerator[str, None]) -> AsyncGenerator[str, None]:
    yield first
    async for token in rest:
        yield token


@router.post(
    "/chat",
    summary="Stream an expert reply token by token (plain text)",
    response_class=StreamingResponse,
)
async def chat(body: ChatRequest) -> StreamingResponse:
    """
    Stream the assistant's reply to the transcript in the request body.

    How to test with curl:
        curl -N -X POST http://localhost:8000/api/chat \\
          -H "Content-Type: application/json" \\
          -d '{"messages": [{"role": "user", "content": "Hi"}], "expert": "Sales"}'
    """
    tokens = llm_service.generate_stream(body.messages, body.expert)

    # Pull the first token here so upstream failures still get a status code
    try:
        first = await anext(tokens)
    except StopAsyncIteration:
        first = ""
    except RuntimeError as exc:
        logger.error("Assistant reply failed before streaming", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"LLM service error: {exc}",
        )

    return StreamingResponse(
        _replay(first, tokens),
        media_type="text/plain; charset=utf-8",
        headers={
            # Prevent proxy/browser buffering — essential for streaming to work
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
