"""
services/conversation_engine.py
-------------------------------
One chat conversation: transcript state, message persistence and the
streamed assistant reply.

Exchange flow (submit):
  1. Build the user message with order = last_order + 1.
  2. Insert it. If the store fails the submission stops here: nothing is
     shown and the assistant is never called.
  3. Show the user message.
  4. Open the assistant stream with the whole transcript as context.
  5. Show an empty assistant message (order = last_order + 2).
  6. Append every delta to it, republishing the transcript each time.
  7. Insert the finished assistant message, once, whole.
  8. Release the single-flight flag, whatever happened above.

If anything fails in steps 4-7 the assistant message is replaced by the
fallback apology and only that fallback is inserted; a failure of that
insert is logged and dropped.

The engine runs on a single asyncio event loop. `sending` only guards this
instance: two engines bound to the same chat_id can still race, and the
store keeps whichever write lands last. There is no timeout of its own, so
a transport that never answers keeps `sending` set until it errors.
"""

from typing import Callable, Optional

from expert_chat.core.config import settings
from expert_chat.core.exceptions import PersistenceError, TransportError, ValidationError
from expert_chat.core.logging import get_logger
from expert_chat.schemas.message import ExpertPersona, Message, Role, new_message_id
from expert_chat.services.message_store import MessageStore
from expert_chat.services.reaction_manager import ReactionManager
from expert_chat.services.streaming_client import StreamingClient

logger = get_logger(__name__)

TranscriptListener = Callable[[list[Message]], None]
ErrorListener = Callable[[str, str], None]


class ConversationEngine:

    def __init__(
        self,
        store: MessageStore,
        client: StreamingClient,
        user_id: str,
        chat_id: str,
        persona: ExpertPersona = ExpertPersona.general,
        on_transcript_changed: Optional[TranscriptListener] = None,
        on_error: Optional[ErrorListener] = None,
        fallback_message: Optional[str] = None,
    ) -> None:
        self._store = store
        self._client = client
        self.user_id = user_id
        self.chat_id = chat_id
        self.persona = persona
        self._on_transcript_changed = on_transcript_changed
        self._on_error = on_error
        self._fallback_message = fallback_message or settings.FALLBACK_MESSAGE

        self._transcript: list[Message] = []
        self.sending = False
        self.reactions = ReactionManager(self, store)

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def transcript(self) -> list[Message]:
        return self.snapshot()

    @property
    def last_order(self) -> int:
        return max((m.order for m in self._transcript), default=0)

    def snapshot(self) -> list[Message]:
        """Copy of the transcript; later deltas do not change it."""
        return [m.model_copy() for m in self._transcript]

    def set_persona(self, persona: ExpertPersona) -> None:
        self.persona = persona

    def publish(self) -> None:
        if self._on_transcript_changed is not None:
            self._on_transcript_changed(self.snapshot())

    def report_error(self, kind: str, detail: str) -> None:
        if self._on_error is not None:
            self._on_error(kind, detail)

    def apply_reaction(self, message_id: str, value: int) -> bool:
        """Set `like` on the in-memory message. Returns False if it is not shown."""
        for message in self._transcript:
            if message.message_id == message_id:
                message.like = value
                self.publish()
                return True
        return False

    # ── History ───────────────────────────────────────────────────────────────

    async def load_history(
        self,
        chat_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[Message]:
        """
        Replace the transcript with the stored messages of the chat.

        The store returns rows unordered; they are sorted by their
        store-assigned created_at, falling back to order for ties and rows
        without a timestamp.
        """
        chat_id = chat_id or self.chat_id
        user_id = user_id or self.user_id

        try:
            messages = await self._store.query_by_chat_and_user(chat_id, user_id)
        except PersistenceError as exc:
            self.report_error("persistence", str(exc))
            raise

        messages.sort(
            key=lambda m: (
                m.created_at is None,
                m.created_at.timestamp() if m.created_at else 0.0,
                m.order,
            )
        )
        self.chat_id = chat_id
        self.user_id = user_id
        self._transcript = messages
        self.publish()

        logger.info("History loaded", chat_id=chat_id, messages=len(messages))
        return self.snapshot()

    # ── Exchange ──────────────────────────────────────────────────────────────

    async def submit(self, text: str) -> Optional[Message]:
        """
        Send one user message and stream the assistant's reply.

        Returns the final assistant message (the fallback on failure), or
        None when nothing was exchanged: blank input, an exchange already in
        flight, or the user message could not be stored.
        """
        if not text or not text.strip():
            return None

        if self.sending:
            logger.info("Submission rejected, exchange in flight", chat_id=self.chat_id)
            return None

        self.sending = True
        try:
            return await self._exchange(text)
        finally:
            self.sending = False

    async def _exchange(self, text: str) -> Optional[Message]:
        prev_order = self.last_order
        user_message = self._new_message(Role.user, text, prev_order + 1)

        logger.info(
            "Submitting message",
            chat_id=self.chat_id,
            persona=self.persona.value,
            order=user_message.order,
            prompt_length=len(text),
        )

        try:
            await self._store.insert(user_message)
        except PersistenceError as exc:
            logger.error("User message not stored, submission aborted", error=str(exc))
            self.report_error("persistence", str(exc))
            return None

        context = [*self._transcript, user_message]
        self._transcript.append(user_message)
        self.publish()

        reply: Optional[Message] = None
        try:
            async with self._client.open_reply(context, self.persona) as deltas:
                reply = self._new_message(Role.assistant, "", prev_order + 2)
                self._transcript.append(reply)
                self.publish()

                chunks = 0
                async for delta in deltas:
                    reply.content += delta
                    chunks += 1
                    self.publish()

            await self._store.insert(reply)
        except (TransportError, PersistenceError) as exc:
            return await self._fall_back(reply, prev_order, exc)

        logger.info(
            "Assistant reply stored",
            chat_id=self.chat_id,
            message_id=reply.message_id,
            chunks=chunks,
            response_length=len(reply.content),
        )
        return reply

    async def _fall_back(
        self,
        reply: Optional[Message],
        prev_order: int,
        exc: Exception,
    ) -> Message:
        kind = "transport" if isinstance(exc, TransportError) else "persistence"
        logger.error("Assistant reply failed, showing fallback", kind=kind, error=str(exc))

        fallback = self._new_message(Role.assistant, self._fallback_message, prev_order + 2)
        index = next(
            (i for i, m in enumerate(self._transcript) if m is reply),
            None,
        )
        if index is None:
            self._transcript.append(fallback)
        else:
            self._transcript[index] = fallback
        self.publish()

        try:
            await self._store.insert(fallback)
        except PersistenceError as persist_exc:
            logger.warning("Fallback message not stored", error=str(persist_exc))

        self.report_error(kind, str(exc))
        return fallback

    def _new_message(self, role: Role, content: str, order: int) -> Message:
        return Message(
            role=role,
            content=content,
            order=order,
            user_id=self.user_id,
            chat_id=self.chat_id,
            message_id=new_message_id(),
            like=0,
        )

    # ── New chat ──────────────────────────────────────────────────────────────

    @classmethod
    async def start_new_chat(
        cls,
        store: MessageStore,
        client: StreamingClient,
        user_id: str,
        persona: ExpertPersona,
        first_question: str,
        **kwargs,
    ) -> "ConversationEngine":
        """
        Create a chat tagged with `persona`, bind an engine to it and send
        the first question.
        """
        if not first_question or not first_question.strip():
            raise ValidationError("first question must not be empty")

        chat_id = new_message_id()
        await store.create_chat(chat_id, user_id, persona)

        engine = cls(store, client, user_id=user_id, chat_id=chat_id, persona=persona, **kwargs)
        await engine.submit(first_question)
        return engine
