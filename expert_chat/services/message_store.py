"""
services/message_store.py
-------------------------
Durable storage for chat messages and chat threads.

MessageStore is the capability the conversation engine consumes; the engine
never touches SQLAlchemy directly. SQLAlchemyMessageStore implements it on
the async engine from db/session.py.

Every call is an independent round trip in its own session: there is no
transaction spanning a user message and its assistant reply. Any
SQLAlchemyError is re-raised as PersistenceError.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expert_chat.core.exceptions import PersistenceError
from expert_chat.core.logging import get_logger
from expert_chat.models.chat import ChatRecord
from expert_chat.models.message import MessageRecord
from expert_chat.schemas.message import ExpertPersona, Message

logger = get_logger(__name__)


class MessageStore(Protocol):

    async def insert(self, message: Message) -> Message: ...

    async def query_by_chat_and_user(self, chat_id: str, user_id: str) -> list[Message]: ...

    async def update_like(self, message_id: str, value: int) -> None: ...

    async def create_chat(self, chat_id: str, user_id: str, persona: ExpertPersona) -> None: ...


class SQLAlchemyMessageStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """
        Yield a session that commits on success and rolls back on error.
        Database errors leave here as PersistenceError.
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("Store operation failed", operation=operation, error=str(exc))
                raise PersistenceError(f"{operation} failed: {exc}") from exc

    async def insert(self, message: Message) -> Message:
        if not message.user_id:
            raise PersistenceError("insert failed: user_id must not be blank")

        async with self._session("insert") as session:
            record = MessageRecord(
                message_id=message.message_id,
                role=message.role.value,
                content=message.content,
                order=message.order,
                user_id=message.user_id,
                chat_id=message.chat_id,
                like=message.like,
            )
            session.add(record)
            await session.flush()
            await session.refresh(record)
            stored = Message.model_validate(record)

        logger.debug("Message stored", message_id=stored.message_id, role=stored.role.value)
        return stored

    async def query_by_chat_and_user(self, chat_id: str, user_id: str) -> list[Message]:
        """All messages of one chat owned by user_id, in no particular order."""
        async with self._session("query") as session:
            result = await session.execute(
                select(MessageRecord).where(
                    MessageRecord.chat_id == chat_id,
                    MessageRecord.user_id == user_id,
                )
            )
            return [Message.model_validate(r) for r in result.scalars().all()]

    async def update_like(self, message_id: str, value: int) -> None:
        # Overwrite, never increment: repeating the same value is a no-op
        async with self._session("update_like") as session:
            await session.execute(
                update(MessageRecord)
                .where(MessageRecord.message_id == message_id)
                .values(like=value)
            )

    async def create_chat(self, chat_id: str, user_id: str, persona: ExpertPersona) -> None:
        async with self._session("create_chat") as session:
            session.add(
                ChatRecord(chat_id=chat_id, user_id=user_id, coach_type=persona.value)
            )
        logger.info("Chat created", chat_id=chat_id, coach_type=persona.value)
