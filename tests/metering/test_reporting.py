from datetime import date, timedelta

import pytest

from promptopt.errors import ValidationError
from promptopt.metering.reporting import UsageReporter, render_markdown
from promptopt.providers.catalog import RequestClass

TODAY = date(2025, 3, 14)


@pytest.fixture
def reporter(ledger, metering_config):
    return UsageReporter(ledger, metering_config)


def seed(ledger, user_id, days_ago, request_class, tokens, request_id):
    ledger.commit(user_id, request_class, tokens, request_id, TODAY - timedelta(days=days_ago))


def test_totals_equal_sum_of_history(reporter, ledger):
    seed(ledger, "user-1", 0, RequestClass.QUICK, 100, "a")
    seed(ledger, "user-1", 0, RequestClass.DEEP, 400, "b")
    seed(ledger, "user-1", 2, RequestClass.QUICK, 50, "c")
    seed(ledger, "user-1", 29, RequestClass.DEEP, 70, "d")

    summary = reporter.summarize("user-1", days=30, today=TODAY)

    assert summary.totals["total_tokens"] == sum(h["tokens_used"] for h in summary.history) == 620
    assert summary.totals["total_quick"] == 2
    assert summary.totals["total_deep"] == 2
    assert summary.totals["total_api_calls"] == 4


def test_window_is_days_ending_today(reporter, ledger):
    seed(ledger, "user-1", 6, RequestClass.QUICK, 1, "inside")
    seed(ledger, "user-1", 7, RequestClass.QUICK, 1, "outside")

    summary = reporter.summarize("user-1", days=7, today=TODAY)

    assert [h["date"] for h in summary.history] == [(TODAY - timedelta(days=6)).isoformat()]


def test_today_and_remaining_quota(reporter, ledger):
    ledger.set_limits("user-1", tier="pro")
    seed(ledger, "user-1", 0, RequestClass.QUICK, 10, "a")
    seed(ledger, "user-1", 0, RequestClass.QUICK, 10, "b")
    seed(ledger, "user-1", 0, RequestClass.DEEP, 10, "c")

    summary = reporter.summarize("user-1", days=1, today=TODAY)

    assert summary.today["quick_count"] == 2
    assert summary.quota["tier"] == "pro"
    assert summary.quota["quick_remaining"] == 98
    assert summary.quota["deep_remaining"] == 19


def test_inactive_user_gets_zero_today_without_writes(reporter, ledger):
    summary = reporter.summarize("ghost", days=30, today=TODAY)

    assert summary.history == []
    assert summary.today["quick_count"] == 0
    assert summary.today["date"] == TODAY.isoformat()
    assert summary.quota["quick_remaining"] == 10
    assert ledger.history("ghost", TODAY, TODAY) == []


@pytest.mark.parametrize("days", [0, -1, 366, "30"])
def test_days_out_of_range_rejected(reporter, days):
    with pytest.raises(ValidationError) as exc:
        reporter.summarize("user-1", days=days, today=TODAY)
    assert exc.value.field == "days"


def test_days_bounds_accepted(reporter):
    assert reporter.summarize("user-1", days=1, today=TODAY).history == []
    assert reporter.summarize("user-1", days=365, today=TODAY).history == []


def test_render_markdown_lists_history(reporter, ledger):
    seed(ledger, "user-1", 1, RequestClass.QUICK, 12, "a")
    summary = reporter.summarize("user-1", days=7, today=TODAY)

    md = render_markdown("user-1", summary)

    assert "# Usage Report: user-1" in md
    assert f"| {(TODAY - timedelta(days=1)).isoformat()} | 1 | 0 | 12 | 1 |" in md
    assert "| **Total** | 1 | 0 | 12 | 1 |" in md
