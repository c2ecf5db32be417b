"""
Unit tests for the quota ledger.

Tests record creation, capacity decisions, idempotent commits, limit
resolution and history ordering.
"""

from datetime import date, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from promptopt.errors import LedgerCommitFailed, QuotaRejected, ValidationError
from promptopt.models.usage import UsageCommit, UsageRecord
from promptopt.providers.catalog import RequestClass

DAY = date(2025, 3, 14)


def test_check_capacity_creates_zero_record(ledger, session_factory):
    decision = ledger.check_capacity("user-1", RequestClass.QUICK, DAY)

    assert decision.allowed is True
    assert decision.limits.tier == "free"

    db = session_factory()
    try:
        record = db.query(UsageRecord).filter_by(user_id="user-1", day=DAY).one()
        assert (record.quick_count, record.deep_count, record.tokens_used, record.api_calls) == (0, 0, 0, 0)
    finally:
        db.close()


def test_today_record_is_created_once(ledger, session_factory):
    first = ledger.today_record("user-1", DAY)
    second = ledger.today_record("user-1", DAY)

    assert first.id == second.id
    db = session_factory()
    try:
        assert db.query(UsageRecord).count() == 1
    finally:
        db.close()


def test_commit_increments_class_counter_tokens_and_calls(ledger):
    assert ledger.commit("user-1", RequestClass.QUICK, 120, "req-1", DAY) is True
    assert ledger.commit("user-1", RequestClass.DEEP, 300, "req-2", DAY) is True

    record = ledger.today_record("user-1", DAY)
    assert record.quick_count == 1
    assert record.deep_count == 1
    assert record.tokens_used == 420
    assert record.api_calls == 2


def test_commit_same_request_id_twice_changes_counters_once(ledger, session_factory):
    assert ledger.commit("user-1", RequestClass.QUICK, 50, "req-dup", DAY) is True
    assert ledger.commit("user-1", RequestClass.QUICK, 50, "req-dup", DAY) is False

    record = ledger.today_record("user-1", DAY)
    assert record.quick_count == 1
    assert record.tokens_used == 50
    assert record.api_calls == 1

    db = session_factory()
    try:
        assert db.query(UsageCommit).count() == 1
    finally:
        db.close()


def test_request_ids_are_scoped_per_user(ledger):
    assert ledger.commit("user-1", RequestClass.QUICK, 10, "shared-key", DAY) is True
    assert ledger.commit("user-2", RequestClass.DEEP, 20, "shared-key", DAY) is True

    assert ledger.today_record("user-1", DAY).tokens_used == 10
    record = ledger.today_record("user-2", DAY)
    assert (record.deep_count, record.tokens_used, record.api_calls) == (1, 20, 1)


def test_find_commit_returns_delivered_result(ledger):
    ledger.commit("user-1", RequestClass.DEEP, 75, "req-9", DAY, provider="openai", model="gpt-4o", text="Sharper prompt")

    prior = ledger.find_commit("user-1", "req-9")

    assert prior.request_class is RequestClass.DEEP
    assert (prior.tokens_used, prior.provider, prior.model, prior.text) == (75, "openai", "gpt-4o", "Sharper prompt")
    assert prior.day == DAY
    assert ledger.find_commit("user-2", "req-9") is None
    assert ledger.find_commit("user-1", "req-unknown") is None


def test_counters_never_decrease_within_day(ledger):
    seen = []
    for i in range(4):
        ledger.commit("user-1", RequestClass.QUICK, 10, f"req-{i}", DAY)
        seen.append(ledger.today_record("user-1", DAY).quick_count)

    assert seen == sorted(seen)
    assert seen[-1] == 4


def test_next_day_starts_fresh_record(ledger):
    ledger.commit("user-1", RequestClass.QUICK, 10, "req-1", DAY)

    tomorrow = ledger.today_record("user-1", DAY + timedelta(days=1))
    assert tomorrow.quick_count == 0
    assert ledger.today_record("user-1", DAY).quick_count == 1


def test_check_capacity_denies_exhausted_class_counter(ledger):
    ledger.set_limits("user-1", quick_daily_max=5)
    for i in range(5):
        ledger.commit("user-1", RequestClass.QUICK, 10, f"req-{i}", DAY)

    decision = ledger.check_capacity("user-1", RequestClass.QUICK, DAY)

    assert decision.allowed is False
    assert decision.dimension == "quick"
    assert decision.used == 5
    assert decision.limit == 5

    error = decision.to_error()
    assert isinstance(error, QuotaRejected)
    assert error.to_dict()["dimension"] == "quick"


def test_exhausted_quick_does_not_block_deep(ledger):
    ledger.set_limits("user-1", quick_daily_max=1)
    ledger.commit("user-1", RequestClass.QUICK, 10, "req-1", DAY)

    assert ledger.check_capacity("user-1", RequestClass.QUICK, DAY).allowed is False
    assert ledger.check_capacity("user-1", RequestClass.DEEP, DAY).allowed is True


def test_tokens_below_ceiling_are_allowed(ledger):
    ledger.set_limits("user-1", token_daily_max=100)
    ledger.commit("user-1", RequestClass.DEEP, 90, "req-1", DAY)

    assert ledger.check_capacity("user-1", RequestClass.DEEP, DAY).allowed is True

    ledger.commit("user-1", RequestClass.DEEP, 9, "req-2", DAY)
    assert ledger.check_capacity("user-1", RequestClass.DEEP, DAY).allowed is True


def test_check_capacity_denies_tokens_at_ceiling(ledger):
    ledger.set_limits("user-1", token_daily_max=100)
    ledger.commit("user-1", RequestClass.DEEP, 100, "req-1", DAY)

    decision = ledger.check_capacity("user-1", RequestClass.DEEP, DAY)
    assert decision.allowed is False
    assert decision.dimension == "tokens"
    assert (decision.used, decision.limit) == (100, 100)


def test_check_capacity_denies_calls(ledger):
    ledger.set_limits("user-1", api_calls_daily_max=2)
    ledger.commit("user-1", RequestClass.QUICK, 1, "req-1", DAY)
    ledger.commit("user-1", RequestClass.DEEP, 1, "req-2", DAY)

    decision = ledger.check_capacity("user-1", RequestClass.QUICK, DAY)
    assert decision.allowed is False
    assert decision.dimension == "calls"


def test_class_counter_is_reported_before_tokens(ledger):
    ledger.set_limits("user-1", quick_daily_max=1, token_daily_max=10)
    ledger.commit("user-1", RequestClass.QUICK, 10, "req-1", DAY)

    assert ledger.check_capacity("user-1", RequestClass.QUICK, DAY).dimension == "quick"


def test_allows_when_all_dimensions_strictly_below_ceiling(ledger):
    ledger.set_limits("user-1", quick_daily_max=3, token_daily_max=1000, api_calls_daily_max=3)
    ledger.commit("user-1", RequestClass.QUICK, 500, "req-1", DAY)
    ledger.commit("user-1", RequestClass.QUICK, 400, "req-2", DAY)

    assert ledger.check_capacity("user-1", RequestClass.QUICK, DAY).allowed is True


def test_limits_fall_back_to_tier_defaults(ledger):
    limits = ledger.get_limits("nobody")
    assert limits.tier == "free"
    assert limits.quick_daily_max == 10
    assert limits.deep_daily_max == 3

    ledger.set_limits("pro-user", tier="pro")
    pro = ledger.get_limits("pro-user")
    assert pro.quick_daily_max == 100
    assert pro.deep_daily_max == 20


def test_field_override_wins_over_tier(ledger):
    ledger.set_limits("user-1", tier="pro", deep_daily_max=50, updated_by="admin-1")
    limits = ledger.get_limits("user-1")

    assert limits.tier == "pro"
    assert limits.deep_daily_max == 50
    assert limits.quick_daily_max == 100


def test_set_limits_keeps_unspecified_overrides(ledger):
    ledger.set_limits("user-1", quick_daily_max=7)
    ledger.set_limits("user-1", deep_daily_max=2)

    limits = ledger.get_limits("user-1")
    assert limits.quick_daily_max == 7
    assert limits.deep_daily_max == 2


def test_set_limits_rejects_unknown_tier(ledger):
    with pytest.raises(ValidationError) as exc:
        ledger.set_limits("user-1", tier="platinum")
    assert exc.value.field == "tier"


def test_set_limits_rejects_negative_ceiling(ledger):
    with pytest.raises(ValidationError) as exc:
        ledger.set_limits("user-1", quick_daily_max=-1)
    assert exc.value.field == "quick_daily_max"


def test_history_is_chronological_and_inclusive(ledger):
    for offset in (3, 0, 1, 5):
        ledger.commit("user-1", RequestClass.QUICK, 10, f"req-{offset}", DAY - timedelta(days=offset))
    ledger.commit("user-2", RequestClass.QUICK, 10, "other", DAY)

    history = ledger.history("user-1", DAY - timedelta(days=3), DAY)

    assert [r.day for r in history] == [
        DAY - timedelta(days=3),
        DAY - timedelta(days=1),
        DAY,
    ]
    assert all(r.user_id == "user-1" for r in history)


def test_history_empty_for_inverted_range(ledger):
    ledger.commit("user-1", RequestClass.QUICK, 10, "req-1", DAY)
    assert ledger.history("user-1", DAY, DAY - timedelta(days=1)) == []


def test_commit_store_failure_raises_ledger_commit_failed(ledger):
    ledger.today_record("user-1", DAY)

    with patch("sqlalchemy.orm.Session.execute", side_effect=OperationalError("UPDATE", {}, Exception("disk I/O error"))):
        with pytest.raises(LedgerCommitFailed) as exc:
            ledger.commit("user-1", RequestClass.QUICK, 10, "req-1", DAY)

    assert exc.value.request_id == "req-1"
    record = ledger.today_record("user-1", DAY)
    assert record.api_calls == 0


def test_prune_commits_removes_old_keys(ledger, session_factory):
    ledger.commit("user-1", RequestClass.QUICK, 1, "old", DAY - timedelta(days=10))
    ledger.commit("user-1", RequestClass.QUICK, 1, "new", DAY)

    assert ledger.prune_commits(DAY - timedelta(days=7)) == 1

    db = session_factory()
    try:
        assert [c.request_id for c in db.query(UsageCommit).all()] == ["new"]
    finally:
        db.close()
