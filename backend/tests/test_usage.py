from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from budget_ai import models
from budget_ai.errors import UsageUnavailable
from budget_ai.services.assistant.conversations import TurnTokens
from budget_ai.services.assistant.usage import UsageLedger, start_of_month

from conftest import OTHER_USER_ID, USER_ID


class BrokenReader:
    async def tokens_since(self, db, user_id, since):
        raise OperationalError("SELECT sum(...)", {}, Exception("connection lost"))


def _message(session_id, user_id, sequence, input_tokens=0, output_tokens=0, **kwargs):
    return models.AIMessage(
        session_id=session_id,
        user_id=user_id,
        role="user" if sequence % 2 else "assistant",
        content="...",
        sequence_num=sequence,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        **kwargs,
    )


async def test_sums_active_messages_of_the_current_month(db):
    now = models.utcnow()
    db.add(models.AISession(id="s1", user_id=USER_ID, title="t"))
    db.add_all([
        _message("s1", USER_ID, 1, input_tokens=100),
        _message("s1", USER_ID, 2, output_tokens=50),
        _message("s1", USER_ID, 3, input_tokens=None, output_tokens=None),
        # Not counted: deactivated, last month, another user
        _message("s1", USER_ID, 4, input_tokens=1000, is_active=False),
        _message("s1", USER_ID, 5, input_tokens=2000, created_at=start_of_month(now) - timedelta(days=1)),
        _message("s9", OTHER_USER_ID, 1, input_tokens=3000),
    ])
    await db.commit()

    assert await UsageLedger().monthly_usage(db, USER_ID) == 150


async def test_legacy_rows_count_unless_session_was_migrated(db):
    db.add(models.AISession(id="migrated", user_id=USER_ID, title="t"))
    db.add_all([
        _message("migrated", USER_ID, 1, input_tokens=10, output_tokens=20),
        models.AIChatLog(user_id=USER_ID, session_id="migrated", user_message="a", assistant_response="b", input_tokens=10, output_tokens=20),
        models.AIChatLog(user_id=USER_ID, session_id="old-widget", user_message="a", assistant_response="b", input_tokens=5, output_tokens=5),
        models.AIChatLog(user_id=USER_ID, session_id=None, user_message="a", assistant_response="b", input_tokens=1, output_tokens=None),
    ])
    await db.commit()

    assert await UsageLedger().monthly_usage(db, USER_ID) == 30 + 10 + 1


async def test_usage_is_additive_over_appended_turns(db, store):
    ledger = UsageLedger()
    await store.ensure_session(db, "s1", USER_ID, "hello")
    before = await ledger.monthly_usage(db, USER_ID)

    await store.append_turn(db, "s1", USER_ID, "hi", "hello!", tokens=TurnTokens(input_tokens=120, output_tokens=30))

    assert await ledger.monthly_usage(db, USER_ID) == before + 150


async def test_read_failure_fails_open(db):
    ledger = UsageLedger(readers=[BrokenReader()], fail_open=True)
    assert await ledger.monthly_usage(db, USER_ID) == 0


async def test_read_failure_can_fail_closed(db):
    ledger = UsageLedger(readers=[BrokenReader()], fail_open=False)
    with pytest.raises(UsageUnavailable) as exc_info:
        await ledger.monthly_usage(db, USER_ID)
    assert exc_info.value.status_code == 503


def test_exhaustion_and_summary():
    ledger = UsageLedger(readers=[], limit=1_000_000)
    assert ledger.is_exhausted(999_999) is False
    assert ledger.is_exhausted(1_000_000) is True

    summary = ledger.summarize(250_000)
    assert summary.monthly_used == 250_000
    assert summary.monthly_limit == 1_000_000
    assert summary.monthly_percentage == 25.0
    assert summary.remaining == 750_000
