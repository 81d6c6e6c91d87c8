import pytest
from sqlalchemy import select

from budget_ai import models
from budget_ai.errors import SequenceConflict
from budget_ai.services.assistant.conversations import ConversationStore, TurnTokens, derive_title

from conftest import OTHER_USER_ID, USER_ID


class StaleSequenceStore(ConversationStore):
    """Hands out an already-used sequence number `stale_calls` times."""

    def __init__(self, stale_calls: int, max_attempts: int = 5):
        super().__init__(max_attempts=max_attempts)
        self.stale_calls = stale_calls
        self.calls = 0

    async def next_sequence(self, db, session_id):
        self.calls += 1
        if self.calls <= self.stale_calls:
            return 1
        return await super().next_sequence(db, session_id)


async def _sequences(db, session_id):
    rows = await db.execute(
        select(models.AIMessage.sequence_num)
        .where(models.AIMessage.session_id == session_id)
        .order_by(models.AIMessage.sequence_num)
    )
    return [row[0] for row in rows.all()]


def test_derive_title():
    assert derive_title("How much did I spend?") == "How much did I spend?"
    assert derive_title("  lots   of\n spaces ") == "lots of spaces"
    long_title = derive_title("x" * 80)
    assert len(long_title) == 50
    assert long_title.endswith("...")
    assert derive_title("   ") == "New Conversation"


async def test_ensure_session_creates_then_touches(db, store):
    created = await store.ensure_session(db, "s1", USER_ID, "What is my food budget?")
    first_update = created.updated_at

    again = await store.ensure_session(db, "s1", USER_ID, "A different first message")

    assert again.id == "s1"
    assert again.title == "What is my food budget?"
    assert again.updated_at >= first_update


async def test_ensure_session_refuses_foreign_session(db, store):
    await store.ensure_session(db, "s1", USER_ID, "mine")
    assert await store.ensure_session(db, "s1", OTHER_USER_ID, "theirs") is None


async def test_turns_get_consecutive_sequence_numbers(db, store):
    await store.ensure_session(db, "s1", USER_ID, "first")
    assert await store.next_sequence(db, "s1") == 1

    first = await store.append_turn(db, "s1", USER_ID, "first", "reply one")
    second = await store.append_turn(
        db, "s1", USER_ID, "second", "reply two",
        parent_message_id=first.assistant_message_id,
        tokens=TurnTokens(input_tokens=40, output_tokens=12, included_budget_context=True, response_time_ms=800),
    )

    assert first.user_sequence == 1
    assert second.user_sequence == 3
    assert await _sequences(db, "s1") == [1, 2, 3, 4]

    user_msg = await store.get_message(db, second.user_message_id, USER_ID)
    reply = await store.get_message(db, second.assistant_message_id, USER_ID)
    assert user_msg.parent_id == first.assistant_message_id
    assert reply.parent_id == second.user_message_id
    assert (user_msg.input_tokens, user_msg.output_tokens) == (40, 0)
    assert (reply.input_tokens, reply.output_tokens) == (0, 12)
    assert reply.included_budget_context is True
    assert reply.response_time_ms == 800


async def test_sequence_collision_is_retried(db):
    store = StaleSequenceStore(stale_calls=0)
    await store.ensure_session(db, "s1", USER_ID, "first")
    await store.append_turn(db, "s1", USER_ID, "first", "reply one")

    # Simulates a concurrent writer having taken numbers 1 and 2 after we read max()
    store.stale_calls = store.calls + 1
    ids = await store.append_turn(db, "s1", USER_ID, "second", "reply two")

    assert ids.user_sequence == 3
    assert await _sequences(db, "s1") == [1, 2, 3, 4]


async def test_sequence_conflict_after_max_attempts(db):
    store = StaleSequenceStore(stale_calls=100, max_attempts=3)
    await store.ensure_session(db, "s1", USER_ID, "first")
    await ConversationStore().append_turn(db, "s1", USER_ID, "first", "reply one")

    with pytest.raises(SequenceConflict):
        await store.append_turn(db, "s1", USER_ID, "second", "reply two")

    assert store.calls == 3
    assert await _sequences(db, "s1") == [1, 2]


async def test_edit_keeps_previous_version(db, store):
    await store.ensure_session(db, "s1", USER_ID, "v1")
    ids = await store.append_turn(db, "s1", USER_ID, "v1", "reply")

    assert await store.edit_message(db, ids.user_message_id, USER_ID, "v2") is True
    assert await store.edit_message(db, ids.user_message_id, USER_ID, "v3") is True

    message = await store.get_message(db, ids.user_message_id, USER_ID)
    await db.refresh(message)
    assert message.content == "v3"
    assert message.original_content == "v2"
    assert message.is_edited is True
    assert message.edited_at is not None


async def test_edit_unknown_or_foreign_message(db, store):
    await store.ensure_session(db, "s1", USER_ID, "hi")
    ids = await store.append_turn(db, "s1", USER_ID, "hi", "hello")

    assert await store.edit_message(db, "missing", USER_ID, "x") is False
    assert await store.edit_message(db, ids.user_message_id, OTHER_USER_ID, "x") is False


async def test_deactivate_from_cuts_the_timeline(db, store):
    await store.ensure_session(db, "s1", USER_ID, "one")
    await store.append_turn(db, "s1", USER_ID, "one", "r1")
    second = await store.append_turn(db, "s1", USER_ID, "two", "r2")
    third = await store.append_turn(db, "s1", USER_ID, "three", "r3")

    assert await store.deactivate_from(db, second.user_message_id, USER_ID) == 4

    active = await store.tail_active(db, "s1", USER_ID)
    assert [m.sequence_num for m in active] == [1, 2]

    # Already-deactivated suffix: nothing left to change
    assert await store.deactivate_from(db, third.user_message_id, USER_ID) == 0
    assert [m.sequence_num for m in await store.tail_active(db, "s1", USER_ID)] == [1, 2]

    assert await store.deactivate_from(db, "missing", USER_ID) is None


async def test_new_turn_after_deactivate_keeps_increasing(db, store):
    await store.ensure_session(db, "s1", USER_ID, "one")
    first = await store.append_turn(db, "s1", USER_ID, "one", "r1")
    await store.append_turn(db, "s1", USER_ID, "two", "r2")
    await store.deactivate_from(db, first.assistant_message_id, USER_ID)

    ids = await store.append_turn(db, "s1", USER_ID, "one again", "r1b", parent_message_id=first.user_message_id)

    assert ids.user_sequence == 5
    active = await store.tail_active(db, "s1", USER_ID)
    assert [m.content for m in active] == ["one", "one again", "r1b"]


async def test_tail_active_returns_latest_in_order(db, store):
    await store.ensure_session(db, "s1", USER_ID, "one")
    for i in range(3):
        await store.append_turn(db, "s1", USER_ID, f"q{i}", f"a{i}")

    tail = await store.tail_active(db, "s1", USER_ID, limit=3)

    assert [m.content for m in tail] == ["a1", "q2", "a2"]
    latest = await store.latest_active_message(db, "s1", USER_ID)
    assert latest.content == "a2"


async def test_list_sessions_counts_exchanges(db, store):
    await store.ensure_session(db, "s1", USER_ID, "older")
    await store.append_turn(db, "s1", USER_ID, "q", "a")
    await store.append_turn(db, "s1", USER_ID, "q", "a")
    await store.ensure_session(db, "s2", USER_ID, "newer")
    await store.append_turn(db, "s2", USER_ID, "q", "a")
    await store.ensure_session(db, "archived", USER_ID, "gone")
    await store.update_session(db, "archived", USER_ID, is_archived=True)
    await store.ensure_session(db, "theirs", OTHER_USER_ID, "not mine")

    sessions = await store.list_sessions(db, USER_ID)

    assert [(s.id, s.message_count) for s in sessions] == [("s2", 1), ("s1", 2)]


async def test_update_session_only_touches_own_rows(db, store):
    await store.ensure_session(db, "s1", USER_ID, "original")

    assert await store.update_session(db, "s1", OTHER_USER_ID, title="hijack") is False
    assert await store.update_session(db, "s1", USER_ID, title="Groceries plan") is True

    session = await store.get_session(db, "s1")
    await db.refresh(session)
    assert session.title == "Groceries plan"


async def test_delete_session_removes_messages(db, store):
    await store.ensure_session(db, "s1", USER_ID, "bye")
    await store.append_turn(db, "s1", USER_ID, "bye", "see you")

    await store.delete_session(db, "s1", USER_ID)

    assert await store.get_session(db, "s1") is None
    assert await _sequences(db, "s1") == []
