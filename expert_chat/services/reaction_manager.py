"""
services/reaction_manager.py
----------------------------
Like / dislike edits on assistant messages.

The in-memory transcript is updated first, then the store. If the store
write fails the error is reported and re-raised, but the in-memory value is
kept: the screen and the store disagree until the next successful edit or
the next history load.
"""

from typing import TYPE_CHECKING

from expert_chat.core.exceptions import PersistenceError, ValidationError
from expert_chat.core.logging import get_logger

if TYPE_CHECKING:
    from expert_chat.services.conversation_engine import ConversationEngine
    from expert_chat.services.message_store import MessageStore

logger = get_logger(__name__)

LIKE = 1
NO_REACTION = 0
DISLIKE = -1

_VALID_REACTIONS = (DISLIKE, NO_REACTION, LIKE)


class ReactionManager:

    def __init__(self, engine: "ConversationEngine", store: "MessageStore") -> None:
        self._engine = engine
        self._store = store

    async def set_reaction(self, message_id: str, value: int) -> None:
        if value not in _VALID_REACTIONS:
            raise ValidationError(f"reaction must be one of {_VALID_REACTIONS}, got {value!r}")

        if not self._engine.apply_reaction(message_id, value):
            logger.warning("Reaction for message not in transcript", message_id=message_id)

        try:
            await self._store.update_like(message_id, value)
        except PersistenceError as exc:
            logger.error("Reaction not stored", message_id=message_id, error=str(exc))
            self._engine.report_error("persistence", str(exc))
            raise

        if value == LIKE:
            logger.info("Message liked", message_id=message_id)
        elif value == DISLIKE:
            logger.info("Message disliked", message_id=message_id)

    async def like(self, message_id: str) -> None:
        await self.set_reaction(message_id, LIKE)

    async def dislike(self, message_id: str) -> None:
        await self.set_reaction(message_id, DISLIKE)

    async def clear(self, message_id: str) -> None:
        await self.set_reaction(message_id, NO_REACTION)
