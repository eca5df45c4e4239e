"""
Tests for like / dislike edits.
"""
import pytest

from expert_chat.core.exceptions import PersistenceError, ValidationError
from expert_chat.schemas.message import ExpertPersona, Message, Role
from expert_chat.services.conversation_engine import ConversationEngine


async def test_reaction_overwrites_instead_of_accumulating(engine, memory_store):
    reply = await engine.submit("hello")

    await engine.reactions.set_reaction(reply.message_id, 1)
    await engine.reactions.set_reaction(reply.message_id, 1)
    assert memory_store.rows[reply.message_id].like == 1

    await engine.reactions.set_reaction(reply.message_id, -1)
    assert memory_store.rows[reply.message_id].like == -1
    assert engine.transcript[-1].like == -1


async def test_transcript_updated_before_store(engine, memory_store, recorder):
    reply = await engine.submit("hello")
    published = len(recorder.snapshots)

    await engine.reactions.like(reply.message_id)

    assert len(recorder.snapshots) == published + 1
    assert recorder.snapshots[-1][-1].like == 1
    assert memory_store.like_updates == [(reply.message_id, 1)]


async def test_store_failure_keeps_optimistic_value(engine, memory_store, recorder):
    reply = await engine.submit("hello")
    memory_store.fail_update = True

    with pytest.raises(PersistenceError):
        await engine.reactions.dislike(reply.message_id)

    assert engine.transcript[-1].like == -1
    assert memory_store.rows[reply.message_id].like == 0
    assert recorder.errors[-1][0] == "persistence"


@pytest.mark.parametrize("value", [2, -2, 10])
async def test_out_of_range_value_rejected(engine, memory_store, value):
    reply = await engine.submit("hello")

    with pytest.raises(ValidationError):
        await engine.reactions.set_reaction(reply.message_id, value)

    assert memory_store.like_updates == []
    assert engine.transcript[-1].like == 0


async def test_unknown_message_still_updates_store(engine, memory_store):
    await engine.reactions.clear("not-on-screen")
    assert memory_store.like_updates == [("not-on-screen", 0)]


async def test_reactions_round_trip_through_sql_store(sql_store, scripted_client):
    engine = ConversationEngine(
        sql_store, scripted_client, user_id="user_1", chat_id="chat_1",
        persona=ExpertPersona.motivation,
    )
    reply = await engine.submit("Keep me going")

    await engine.reactions.like(reply.message_id)
    await engine.reactions.like(reply.message_id)
    stored = await sql_store.query_by_chat_and_user("chat_1", "user_1")
    assert {m.message_id: m.like for m in stored}[reply.message_id] == 1

    await engine.reactions.dislike(reply.message_id)
    reloaded = await engine.load_history()
    assert [m.like for m in reloaded if m.role is Role.assistant] == [-1]
    assert isinstance(reloaded[0], Message)
