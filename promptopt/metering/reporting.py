"""
Usage Reporting

Read-side aggregation over the quota ledger. Totals are summed from the
returned history at read time and never stored.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from promptopt.errors import ValidationError
from .config import MeteringConfig
from .ledger import QuotaLedger

MIN_DAYS = 1
MAX_DAYS = 365


@dataclass(frozen=True)
class UsageSummary:
    today: Dict[str, Any]
    quota: Dict[str, Any]
    history: List[Dict[str, Any]]
    totals: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "today": self.today,
            "quota": self.quota,
            "summary": self.totals,
            "history": self.history,
        }


def _empty_day(user_id: str, day: date) -> Dict[str, Any]:
    return {
        "user_id": user_id,
        "date": day.isoformat(),
        "quick_count": 0,
        "deep_count": 0,
        "tokens_used": 0,
        "api_calls": 0,
    }


class UsageReporter:
    def __init__(self, ledger: QuotaLedger, config: MeteringConfig):
        self.ledger = ledger
        self.config = config

    def summarize(self, user_id: str, days: int = 30, today: Optional[date] = None) -> UsageSummary:
        """
        Usage for the ``days`` calendar days ending today (inclusive).

        Never writes: a user with no activity today gets a zero-valued
        ``today`` entry that is not persisted.

        Raises:
            ValidationError: ``days`` outside 1..365
        """
        if isinstance(days, bool) or not isinstance(days, int) or not MIN_DAYS <= days <= MAX_DAYS:
            raise ValidationError("days", f"'days' must be between {MIN_DAYS} and {MAX_DAYS}")

        today = today or self.config.today()
        from_day = today - timedelta(days=days - 1)

        history = [record.to_dict() for record in self.ledger.history(user_id, from_day, today)]

        today_entry = _empty_day(user_id, today)
        if history and history[-1]["date"] == today.isoformat():
            today_entry = history[-1]

        totals = {
            "total_quick": sum(h["quick_count"] for h in history),
            "total_deep": sum(h["deep_count"] for h in history),
            "total_tokens": sum(h["tokens_used"] for h in history),
            "total_api_calls": sum(h["api_calls"] for h in history),
        }

        limits = self.ledger.get_limits(user_id)
        quota = limits.to_dict()
        quota.update({
            "quick_remaining": max(0, limits.quick_daily_max - today_entry["quick_count"]),
            "deep_remaining": max(0, limits.deep_daily_max - today_entry["deep_count"]),
            "tokens_remaining": max(0, limits.token_daily_max - today_entry["tokens_used"]),
            "api_calls_remaining": max(0, limits.api_calls_daily_max - today_entry["api_calls"]),
        })

        return UsageSummary(today=today_entry, quota=quota, history=history, totals=totals)


def render_markdown(user_id: str, summary: UsageSummary) -> str:
    """Plain-text usage report for the admin CLI."""
    quota = summary.quota
    totals = summary.totals

    md = f"# Usage Report: {user_id}\n\n"
    md += f"**Tier:** `{quota['tier']}`\n"
    md += (
        f"**Today:** quick {summary.today['quick_count']}/{quota['quick_daily_max']}, "
        f"deep {summary.today['deep_count']}/{quota['deep_daily_max']}, "
        f"tokens {summary.today['tokens_used']}/{quota['token_daily_max']}, "
        f"calls {summary.today['api_calls']}/{quota['api_calls_daily_max']}\n\n"
    )

    md += "## Daily History\n\n"
    md += "| Date | Quick | Deep | Tokens | API Calls |\n"
    md += "|------|-------|------|--------|-----------|\n"
    for h in summary.history:
        md += f"| {h['date']} | {h['quick_count']} | {h['deep_count']} | {h['tokens_used']} | {h['api_calls']} |\n"
    md += (
        f"| **Total** | {totals['total_quick']} | {totals['total_deep']} | "
        f"{totals['total_tokens']} | {totals['total_api_calls']} |\n"
    )
    return md
