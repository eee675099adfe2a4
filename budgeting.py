from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from analytics import safe_ratio
from periods import MONTH_NAMES

WARNING_THRESHOLD = 80.0
OVER_THRESHOLD = 100.0


@dataclass(frozen=True)
class GoalEntry:
    id: Optional[int]
    category: str
    amount_cents: int
    month: int  # 0-11
    year: int

    @classmethod
    def from_model(cls, goal) -> "GoalEntry":
        return cls(
            id=goal.id,
            category=goal.category,
            amount_cents=goal.amount_cents,
            month=goal.month,
            year=goal.year,
        )


@dataclass(frozen=True)
class SpendEntry:
    spent_cents: int = 0
    count: int = 0


NO_SPEND = SpendEntry()


def budget_status(percentage_used: float) -> str:
    if percentage_used > OVER_THRESHOLD:
        return "over"
    if percentage_used > WARNING_THRESHOLD:
        return "warning"
    return "good"


def match_progress(
    goals: Iterable[GoalEntry],
    actual_by_category: Mapping[str, SpendEntry],
    month: int,
    year: int,
) -> dict[str, object]:
    """Join the month's goals with actual spend per category.

    Goals for other months are ignored. Categories with spend but no goal
    get a synthesized ``no-budget`` row. Category names must match exactly.
    Neither input is modified.
    """
    month_goals = [g for g in goals if g.month == month and g.year == year]
    budgeted = {g.category for g in month_goals}

    progress: list[dict[str, object]] = []
    for goal in month_goals:
        actual = actual_by_category.get(goal.category, NO_SPEND)
        percentage_used = safe_ratio(
            actual.spent_cents, goal.amount_cents, scale=100.0
        )
        progress.append(
            {
                "id": goal.id,
                "category": goal.category,
                "budget_amount_cents": goal.amount_cents,
                "actual_spent_cents": actual.spent_cents,
                "remaining_cents": goal.amount_cents - actual.spent_cents,
                "percentage_used": percentage_used,
                "transaction_count": actual.count,
                "status": budget_status(percentage_used),
                "month": month,
                "year": year,
                "has_budget": True,
            }
        )

    without_budget = 0
    for category, actual in actual_by_category.items():
        if category in budgeted:
            continue
        without_budget += 1
        progress.append(
            {
                "id": None,
                "category": category,
                "budget_amount_cents": 0,
                "actual_spent_cents": actual.spent_cents,
                "remaining_cents": -actual.spent_cents,
                "percentage_used": 100.0,
                "transaction_count": actual.count,
                "status": "no-budget",
                "month": month,
                "year": year,
                "has_budget": False,
            }
        )

    total_budget = sum(g.amount_cents for g in month_goals)
    total_spent = sum(a.spent_cents for a in actual_by_category.values())
    return {
        "progress": progress,
        "summary": {
            "total_budget_cents": total_budget,
            "total_spent_cents": total_spent,
            "total_remaining_cents": total_budget - total_spent,
            "overall_percentage_used": safe_ratio(
                total_spent, total_budget, scale=100.0
            ),
            "categories_count": len(month_goals),
            "categories_without_budget_count": without_budget,
        },
        "month": month,
        "year": year,
    }


def summarize_month(
    goals: Iterable[GoalEntry],
    actual_by_category: Mapping[str, SpendEntry],
    month: int,
    year: int,
) -> dict[str, object]:
    month_goals = [g for g in goals if g.month == month and g.year == year]
    return {
        "total_budget_cents": sum(g.amount_cents for g in month_goals),
        "total_spent_cents": sum(
            a.spent_cents for a in actual_by_category.values()
        ),
        "goals_count": len(month_goals),
        "month": month,
        "year": year,
        "month_name": f"{MONTH_NAMES[month]} {year}",
    }
