"""Financial summary aggregation.

Everything here is a pure function of its arguments: callers pass the
transactions of one user plus the reference time and get back plain
dicts/lists that can be handed straight to a JSON encoder or a report
writer. Amounts are integer cents; ratios are floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from models import TransactionType
from periods import MONTH_LABELS, Period, summary_windows, trailing_months

TOP_CATEGORY_LIMIT = 5
TREND_MONTHS = 12


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    owner_id: int
    type: TransactionType
    category: str
    amount_cents: int
    date: date
    note: Optional[str] = None

    @classmethod
    def from_model(cls, txn) -> "LedgerEntry":
        return cls(
            id=txn.id,
            owner_id=txn.user_id,
            type=TransactionType(txn.type),
            category=txn.category,
            amount_cents=txn.amount_cents,
            date=txn.date,
            note=txn.note,
        )


def safe_ratio(
    numerator: float,
    denominator: float,
    *,
    scale: float = 1.0,
    fallback: float = 0.0,
) -> float:
    if not denominator:
        return fallback
    # multiply before dividing so exact percentages of whole cents stay exact
    return numerator * scale / denominator


def percent_change(current: float, previous: float) -> Optional[float]:
    """Change of ``current`` relative to ``previous`` in percent.

    Returns ``None`` when there is no base to compare against (``previous``
    is zero while ``current`` is not). Two zeros count as no change.
    """
    if not previous:
        return 0.0 if not current else None
    return safe_ratio(current - previous, previous, scale=100.0)


def compute_period_stats(entries: Iterable[LedgerEntry]) -> dict[str, object]:
    income = 0
    expense = 0
    count = 0
    for entry in entries:
        count += 1
        if entry.type == TransactionType.income:
            income += entry.amount_cents
        elif entry.type == TransactionType.expense:
            expense += entry.amount_cents
    return {
        "income_cents": income,
        "expense_cents": expense,
        "net_balance_cents": income - expense,
        "count": count,
        "avg_transaction_cents": safe_ratio(income + expense, count),
        "savings_rate": safe_ratio(income - expense, income, scale=100.0),
    }


def _within(entries: Sequence[LedgerEntry], period: Period) -> list[LedgerEntry]:
    return [e for e in entries if period.contains(e.date)]


def category_breakdown(
    entries: Iterable[LedgerEntry],
) -> dict[str, dict[str, int]]:
    # dict keeps first-seen order, which the top-N rankings rely on for ties
    breakdown: dict[str, dict[str, int]] = {}
    for entry in entries:
        row = breakdown.setdefault(
            entry.category, {"income_cents": 0, "expense_cents": 0, "count": 0}
        )
        if entry.type == TransactionType.income:
            row["income_cents"] += entry.amount_cents
        else:
            row["expense_cents"] += entry.amount_cents
        row["count"] += 1
    return breakdown


def monthly_trend(
    entries: Sequence[LedgerEntry], today: date, *, months: int = TREND_MONTHS
) -> list[dict[str, object]]:
    out: list[dict[str, object]] = []
    for bucket in trailing_months(today, months):
        row: dict[str, object] = {
            "year": bucket.start.year,
            "month": bucket.start.month,
            "label": MONTH_LABELS[bucket.start.month - 1],
        }
        row.update(compute_period_stats(_within(entries, bucket)))
        out.append(row)
    return out


def top_categories(
    breakdown: dict[str, dict[str, int]],
    transaction_type: TransactionType,
    *,
    limit: int = TOP_CATEGORY_LIMIT,
) -> list[dict[str, object]]:
    """Largest categories by income or expense total.

    Zero totals are skipped. Ties keep the breakdown's insertion order
    (``sorted`` is stable).
    """
    key = f"{transaction_type.value}_cents"
    ranked = [
        {"category": name, "amount_cents": row[key], "count": row["count"]}
        for name, row in breakdown.items()
        if row[key] > 0
    ]
    ranked.sort(key=lambda item: item["amount_cents"], reverse=True)
    return ranked[:limit]


def _change_line(label: str, change: Optional[float]) -> str:
    if change is None:
        return f"{label} is new this month (none recorded last month)"
    if change == 0:
        return f"{label} unchanged vs last month"
    direction = "increased" if change > 0 else "decreased"
    return f"{label} {direction} by {abs(change):.1f}% vs last month"


def savings_rate_message(savings_rate: float) -> str:
    if savings_rate > 20:
        return "Excellent savings rate this month (>20%)"
    if savings_rate > 10:
        return "Good savings rate this month (10-20%)"
    if savings_rate > 0:
        return "Positive savings this month (<10%)"
    return "Spending exceeded income this month - consider budget review"


def build_insights(periods: dict[str, dict[str, object]]) -> list[str]:
    this_month = periods["this_month"]
    last_month = periods["last_month"]
    insights: list[str] = []
    if this_month["count"] > 0 and last_month["count"] > 0:
        insights.append(
            _change_line(
                "Income",
                percent_change(
                    this_month["income_cents"], last_month["income_cents"]
                ),
            )
        )
        insights.append(
            _change_line(
                "Expenses",
                percent_change(
                    this_month["expense_cents"], last_month["expense_cents"]
                ),
            )
        )
    insights.append(savings_rate_message(this_month["savings_rate"]))
    return insights


def compute_financial_summary(
    entries: Sequence[LedgerEntry], now: datetime
) -> dict[str, object]:
    """Aggregate one user's transactions into the analytics/report payload.

    ``now`` fixes every window (current month, previous month, current
    year, trailing twelve months) and the ``report_date`` stamp, so equal
    inputs always give equal output. Callers are expected to short-circuit
    an empty ``entries`` list rather than report on it.
    """
    today = now.date() if isinstance(now, datetime) else now
    entries = list(entries)

    periods = {
        name: compute_period_stats(_within(entries, window))
        for name, window in summary_windows(today).items()
    }
    breakdown = category_breakdown(entries)

    return {
        "periods": periods,
        "category_breakdown": breakdown,
        "monthly_trends": monthly_trend(entries, today),
        "top_expense_categories": top_categories(breakdown, TransactionType.expense),
        "top_income_categories": top_categories(breakdown, TransactionType.income),
        "insights": build_insights(periods),
        "report_date": now.isoformat(),
        "total_transactions": len(entries),
    }
