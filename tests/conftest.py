"""
Test configuration and fixtures.

Store-level tests run against an in-memory SQLite database through
aiosqlite. Engine tests use InMemoryStore and ScriptedClient so every
failure mode can be triggered without a database or a network.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from expert_chat.core.exceptions import PersistenceError, TransportError
from expert_chat.db.session import build_session_factory
from expert_chat.models import Base
from expert_chat.schemas.message import ExpertPersona, Message
from expert_chat.services.conversation_engine import ConversationEngine
from expert_chat.services.message_store import SQLAlchemyMessageStore

# Test database URL (in-memory SQLite)
SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class InMemoryStore:
    """MessageStore double that records every call."""

    def __init__(self) -> None:
        self.rows: dict[str, Message] = {}
        self.inserted: list[Message] = []
        self.like_updates: list[tuple[str, int]] = []
        self.chats: dict[str, tuple[str, ExpertPersona]] = {}
        self.fail_insert: Optional[Callable[[Message], bool]] = None
        self.fail_update = False
        self.fail_query = False

    @property
    def calls(self) -> int:
        return len(self.inserted) + len(self.like_updates)

    async def insert(self, message: Message) -> Message:
        if self.fail_insert is not None and self.fail_insert(message):
            raise PersistenceError("insert failed: connection refused")
        if message.message_id in self.rows:
            raise PersistenceError("insert failed: duplicate message_id")
        stored = message.model_copy()
        self.rows[stored.message_id] = stored
        self.inserted.append(stored)
        return stored

    async def query_by_chat_and_user(self, chat_id: str, user_id: str) -> list[Message]:
        if self.fail_query:
            raise PersistenceError("query failed: timeout")
        return [
            m.model_copy()
            for m in reversed(list(self.rows.values()))
            if m.chat_id == chat_id and m.user_id == user_id
        ]

    async def update_like(self, message_id: str, value: int) -> None:
        if self.fail_update:
            raise PersistenceError("update_like failed: connection refused")
        self.like_updates.append((message_id, value))
        if message_id in self.rows:
            self.rows[message_id].like = value

    async def create_chat(self, chat_id: str, user_id: str, persona: ExpertPersona) -> None:
        self.chats[chat_id] = (user_id, persona)


class ScriptedClient:
    """
    StreamingClient double. Replies with `chunks`; `fail_after=n` breaks the
    stream after n chunks, `open_error` fails before any chunk, and `gate`
    holds the first chunk back until the event is set.
    """

    def __init__(self, chunks=("Hel", "lo", " world")) -> None:
        self.chunks = list(chunks)
        self.fail_after: Optional[int] = None
        self.open_error = False
        self.gate: Optional[asyncio.Event] = None
        self.requests: list[tuple[list[Message], ExpertPersona]] = []

    @asynccontextmanager
    async def open_reply(self, transcript, persona):
        self.requests.append(([m.model_copy() for m in transcript], persona))
        if self.open_error:
            raise TransportError("HTTP error! status: 500", status_code=500)
        yield self._deltas()

    async def _deltas(self):
        if self.gate is not None:
            await self.gate.wait()
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise TransportError("Assistant stream failed: connection reset")
            yield chunk


class Recorder:
    def __init__(self) -> None:
        self.snapshots: list[list[Message]] = []
        self.errors: list[tuple[str, str]] = []

    def on_transcript_changed(self, snapshot):
        self.snapshots.append(snapshot)

    def on_error(self, kind, detail):
        self.errors.append((kind, detail))


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def scripted_client():
    return ScriptedClient()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def engine(memory_store, scripted_client, recorder):
    return ConversationEngine(
        memory_store,
        scripted_client,
        user_id="user_1",
        chat_id="chat_1",
        persona=ExpertPersona.sales,
        on_transcript_changed=recorder.on_transcript_changed,
        on_error=recorder.on_error,
    )


@pytest.fixture
async def sql_store():
    """SQLAlchemyMessageStore over a fresh in-memory database."""
    db_engine = create_async_engine(SQLALCHEMY_DATABASE_URL, poolclass=StaticPool)
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield SQLAlchemyMessageStore(build_session_factory(db_engine))
    finally:
        await db_engine.dispose()
