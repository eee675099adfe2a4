from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rapidfuzz.distance import Levenshtein

from analytics import LedgerEntry, compute_financial_summary, compute_period_stats
from auth import hash_password, verify_password
from budgeting import GoalEntry, SpendEntry, match_progress, summarize_month
from cache import ResponseCache
from config import get_settings
from models import BudgetGoal, Transaction, TransactionType, User
from periods import Period, add_months, month_period
from schemas import BudgetGoalIn, LoginIn, TransactionIn, UserIn

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class UserExists(ValueError):
    pass


class InvalidCredentials(ValueError):
    pass


class BudgetGoalExists(ValueError):
    pass


class NoTransactions(ValueError):
    pass


def local_now() -> datetime:
    return datetime.now(ZoneInfo(get_settings().timezone)).replace(tzinfo=None)


SORT_FIELDS = {
    "date": Transaction.date,
    "amount": Transaction.amount_cents,
    "category": Transaction.category,
    "type": Transaction.type,
}


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    search: Optional[str] = None
    period: Optional[Period] = None
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None
    sort_by: str = "date"
    sort_order: str = "desc"


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: UserIn) -> User:
        existing = self.session.scalar(
            select(User).where(
                or_(
                    func.lower(User.email) == data.email.lower(),
                    func.lower(User.username) == data.username.lower(),
                )
            )
        )
        if existing:
            raise UserExists("User already exists")
        user = User(
            username=data.username,
            email=data.email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise UserExists("User already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        identifier = data.email.strip().lower()
        user = self.session.scalar(
            select(User).where(
                or_(
                    func.lower(User.email) == identifier,
                    func.lower(User.username) == identifier,
                )
            )
        )
        if not user or not verify_password(data.password, user.password_hash):
            logger.info("login_failed: invalid credentials")
            raise InvalidCredentials("Invalid credentials")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[ResponseCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache

    def _invalidate(self) -> None:
        if self.cache is not None:
            removed = self.cache.invalidate_user(self.user_id)
            logger.info(
                f"cache_invalidated: user_id={self.user_id} entries_removed={removed}"
            )

    def _filtered(self, filters: TransactionFilters):
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.search:
            like = f"%{filters.search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(func.coalesce(Transaction.note, "")).like(like),
                    func.lower(Transaction.category).like(like),
                )
            )
        if filters.period:
            stmt = stmt.where(
                Transaction.date.between(filters.period.start, filters.period.end)
            )
        if filters.min_amount_cents is not None:
            stmt = stmt.where(Transaction.amount_cents >= filters.min_amount_cents)
        if filters.max_amount_cents is not None:
            stmt = stmt.where(Transaction.amount_cents <= filters.max_amount_cents)
        return stmt

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        column = SORT_FIELDS.get(filters.sort_by, Transaction.date)
        ordering = [column.asc() if filters.sort_order == "asc" else column.desc()]
        if column is not Transaction.date:
            ordering.append(Transaction.date.desc())
        ordering.append(Transaction.id.desc())

        stmt = self._filtered(filters).order_by(*ordering).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def count(self, filters: Optional[TransactionFilters] = None) -> int:
        filters = filters or TransactionFilters()
        stmt = select(func.count()).select_from(self._filtered(filters).subquery())
        return int(self.session.execute(stmt).scalar_one() or 0)

    def page(
        self, filters: TransactionFilters, page: int, page_size: int
    ) -> dict[str, object]:
        page = max(page, 1)
        page_size = max(page_size, 1)
        offset = (page - 1) * page_size
        items = self.list(filters, limit=page_size, offset=offset)
        total = self.count(filters)
        return {
            "transactions": items,
            "pagination": {
                "page": page,
                "page_size": page_size,
                "total_count": total,
                "total_pages": math.ceil(total / page_size),
                "has_more": offset + len(items) < total,
            },
        }

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            category=data.category,
            amount_cents=data.amount_cents,
            note=data.note,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_created: user_id={self.user_id} id={txn.id}")
        self._invalidate()
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        txn.date = data.date
        txn.type = data.type
        txn.category = data.category
        txn.amount_cents = data.amount_cents
        txn.note = data.note
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_updated: user_id={self.user_id} id={txn.id}")
        self._invalidate()
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: user_id={self.user_id} id={transaction_id}")
        self._invalidate()

    def entries(self, filters: Optional[TransactionFilters] = None) -> list[LedgerEntry]:
        return [LedgerEntry.from_model(txn) for txn in self.list(filters)]

    def expense_by_category(self) -> list[dict[str, object]]:
        stmt = (
            select(
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
            )
            .group_by(Transaction.category)
            .order_by(Transaction.category)
        )
        return [
            {"name": row.category, "value": int(row.total)}
            for row in self.session.execute(stmt)
        ]


class BudgetGoalService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        cache: Optional[ResponseCache] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.cache = cache

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_user(self.user_id)

    def list(
        self, *, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[BudgetGoal]:
        stmt = (
            select(BudgetGoal)
            .where(BudgetGoal.user_id == self.user_id)
            .order_by(
                BudgetGoal.year.desc(),
                BudgetGoal.month.desc(),
                BudgetGoal.category,
            )
        )
        if month is not None:
            stmt = stmt.where(BudgetGoal.month == month)
        if year is not None:
            stmt = stmt.where(BudgetGoal.year == year)
        return self.session.scalars(stmt).all()

    def get(self, goal_id: int) -> BudgetGoal:
        goal = self.session.scalar(
            select(BudgetGoal).where(
                BudgetGoal.user_id == self.user_id, BudgetGoal.id == goal_id
            )
        )
        if not goal:
            raise NotFoundError("Budget goal not found or unauthorized.")
        return goal

    def _find(self, category: str, month: int, year: int) -> Optional[BudgetGoal]:
        return self.session.scalar(
            select(BudgetGoal).where(
                BudgetGoal.user_id == self.user_id,
                BudgetGoal.category == category,
                BudgetGoal.month == month,
                BudgetGoal.year == year,
            )
        )

    def _commit_or_duplicate(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise BudgetGoalExists(
                "Budget goal for this category and month already exists."
            ) from exc

    def create(self, data: BudgetGoalIn) -> BudgetGoal:
        if self._find(data.category, data.month, data.year):
            logger.info(
                f"budget_goal_rejected: user_id={self.user_id} "
                f"category={data.category!r} month={data.month} year={data.year}"
            )
            raise BudgetGoalExists(
                "Budget goal for this category and month already exists."
            )
        goal = BudgetGoal(
            user_id=self.user_id,
            category=data.category,
            amount_cents=data.amount_cents,
            month=data.month,
            year=data.year,
        )
        self.session.add(goal)
        self._commit_or_duplicate()
        self.session.refresh(goal)
        logger.info(f"budget_goal_created: user_id={self.user_id} id={goal.id}")
        self._invalidate()
        return goal

    def update(self, goal_id: int, data: BudgetGoalIn) -> BudgetGoal:
        goal = self.get(goal_id)
        clash = self._find(data.category, data.month, data.year)
        if clash is not None and clash.id != goal.id:
            raise BudgetGoalExists(
                "Budget goal for this category and month already exists."
            )
        goal.category = data.category
        goal.amount_cents = data.amount_cents
        goal.month = data.month
        goal.year = data.year
        self._commit_or_duplicate()
        self.session.refresh(goal)
        logger.info(f"budget_goal_updated: user_id={self.user_id} id={goal.id}")
        self._invalidate()
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()
        logger.info(f"budget_goal_deleted: user_id={self.user_id} id={goal_id}")
        self._invalidate()

    def spent_by_category_for_month(self, year: int, month: int) -> dict[str, SpendEntry]:
        """Expense totals per exact category name; ``month`` is 0-based."""
        period = month_period(date(year, month + 1, 1))
        stmt = (
            select(
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("spent"),
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.category)
            .order_by(Transaction.category)
        )
        return {
            row.category: SpendEntry(spent_cents=int(row.spent), count=int(row.count))
            for row in self.session.execute(stmt)
        }

    def progress_for_month(self, year: int, month: int) -> dict[str, object]:
        goals = [GoalEntry.from_model(g) for g in self.list(month=month, year=year)]
        actual = self.spent_by_category_for_month(year, month)
        return match_progress(goals, actual, month, year)

    def month_summary(self, year: int, month: int) -> dict[str, object]:
        goals = [GoalEntry.from_model(g) for g in self.list(month=month, year=year)]
        actual = self.spent_by_category_for_month(year, month)
        return summarize_month(goals, actual, month, year)


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def expense_categories(self) -> list[dict[str, object]]:
        stmt = (
            select(
                Transaction.category,
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
            )
            .group_by(Transaction.category)
            .order_by(func.count(Transaction.id).desc(), Transaction.category)
        )
        return [
            {"category": row.category, "transaction_count": int(row.count)}
            for row in self.session.execute(stmt)
        ]

    def suggest(self, query: str) -> list[dict[str, object]]:
        """Existing categories equal to ``query`` ignoring case, or one edit away."""
        input_lower = query.strip().lower()
        if not input_lower:
            return []
        out: list[dict[str, object]] = []
        for row in self.expense_categories():
            name_lower = row["category"].strip().lower()
            if int(Levenshtein.distance(input_lower, name_lower)) <= 1:
                out.append(row)
        return out


class AnalyticsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionService(session, user_id)

    def stats(self, today: date) -> dict[str, object]:
        entries = self.transactions.entries()
        current = month_period(today, "current_month")
        previous = month_period(add_months(today, -1), "previous_month")
        return {
            "all_time": compute_period_stats(entries),
            "current_month": compute_period_stats(
                e for e in entries if current.contains(e.date)
            ),
            "previous_month": compute_period_stats(
                e for e in entries if previous.contains(e.date)
            ),
            "transaction_count": len(entries),
        }

    def financial_summary(self, now: datetime) -> dict[str, object]:
        entries = self.transactions.entries()
        if not entries:
            raise NoTransactions("No transactions found to generate analytics.")
        return compute_financial_summary(entries, now)
