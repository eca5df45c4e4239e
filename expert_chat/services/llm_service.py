"""
services/llm_service.py
-----------------------
Assistant backend: persona-scoped LLM replies, streamed as plain text.

Every reply is:
  1. Generated (mock or real OpenAI) with the persona's system prompt and
     the whole transcript as context
  2. Streamed token by token to the caller
  3. Tracked in MLflow once the stream has finished

To view tracked runs:
  mlflow ui --port 5001
  Open: http://localhost:5001
"""

import asyncio
import time
from typing import AsyncGenerator, Sequence

from expert_chat.core.config import settings
from expert_chat.core.logging import get_logger
from expert_chat.schemas.message import ChatTurn, ExpertPersona, Role

logger = get_logger(__name__)

PERSONA_PROMPTS = {
    ExpertPersona.general: (
        "You are a helpful business coach. Answer clearly and concisely."
    ),
    ExpertPersona.real_estate: (
        "You are an experienced real estate coach. Help with listings, "
        "pricing, client relationships and closing deals."
    ),
    ExpertPersona.sales: (
        "You are a seasoned sales coach. Give practical advice on prospecting, "
        "pitching, objection handling and closing."
    ),
    ExpertPersona.marketing: (
        "You are a marketing strategist. Advise on positioning, campaigns, "
        "content and lead generation."
    ),
    ExpertPersona.negotiation: (
        "You are a negotiation expert. Coach the user on preparation, "
        "anchoring, concessions and reaching agreement."
    ),
    ExpertPersona.motivation: (
        "You are a motivational coach. Encourage the user and help them turn "
        "goals into concrete next steps."
    ),
}

TABLE_HINT = "When comparing options, present them as a markdown table."


def build_chat_messages(turns: Sequence[ChatTurn], persona: ExpertPersona) -> list[dict]:
    system_prompt = f"{PERSONA_PROMPTS[persona]} {TABLE_HINT}"
    messages = [{"role": "system", "content": system_prompt}]
    for turn in turns:
        # The backend owns the system prompt
        if turn.role is Role.system or not turn.content:
            continue
        messages.append({"role": turn.role.value, "content": turn.content})
    return messages


class LLMService:

    def __init__(self) -> None:
        self._use_mock = not bool(settings.OPENAI_API_KEY)
        if not self._use_mock:
            import openai
            self._client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        else:
            logger.info("LLMService in MOCK mode — set OPENAI_API_KEY for real LLM")

    async def generate_stream(
        self,
        turns: Sequence[ChatTurn],
        persona: ExpertPersona = ExpertPersona.general,
    ) -> AsyncGenerator[str, None]:
        """
        Stream the reply token by token as plain text (no SSE framing); the
        end of the HTTP body is the end-of-stream signal.
        """
        start = time.monotonic()
        full_response = []
        messages = build_chat_messages(turns, persona)

        if self._use_mock:
            tokens = self._mock_stream(turns, persona)
        else:
            tokens = self._openai_stream(messages)

        async for token in tokens:
            full_response.append(token)
            yield token

        latency_ms = round((time.monotonic() - start) * 1000, 1)
        complete_response = "".join(full_response)

        logger.info(
            "LLM stream completed",
            latency_ms=latency_ms,
            persona=persona.value,
            mock=self._use_mock,
        )

        from expert_chat.services.mlflow_service import track_llm_call
        track_llm_call(
            prompt=messages[-1]["content"],
            response=complete_response,
            latency_ms=latency_ms,
            persona=persona.value,
            turns=len(turns),
            mock=self._use_mock,
        )

    # ── Mock implementation ───────────────────────────────────────────────────

    async def _mock_stream(
        self,
        turns: Sequence[ChatTurn],
        persona: ExpertPersona,
    ) -> AsyncGenerator[str, None]:
        """Simulates token-by-token streaming with realistic delays."""
        question = turns[-1].content if turns else ""
        tokens = [
            "[MOCK", f" {persona.value.upper()}", " COACH]\n\n",
            "You", " asked:", f" '{question[:60]}'\n\n",
            "| Option", " | Effort |\n", "|:--|--:|\n",
            "| Mock", " | Low |\n\n",
            "Set", " OPENAI_API_KEY", " in", " .env", " for", " live", " tokens.",
        ]
        for token in tokens:
            await asyncio.sleep(0.05)  # 50ms delay per token = realistic feel
            yield token

    # ── OpenAI implementation ─────────────────────────────────────────────────

    async def _openai_stream(self, messages: list[dict]) -> AsyncGenerator[str, None]:
        try:
            stream = await self._client.chat.completions.create(
                model=settings.LLM_MODEL,
                messages=messages,
                max_tokens=settings.LLM_MAX_TOKENS,
                temperature=settings.LLM_TEMPERATURE,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                token = chunk.choices[0].delta.content
                if token:
                    yield token
        except Exception as exc:
            logger.error("OpenAI stream error", error=str(exc))
            raise RuntimeError(f"LLM streaming failed: {exc}") from exc


# Singleton — shared across all requests
llm_service = LLMService()
