from dataclasses import dataclass
from datetime import date
from typing import Optional

MONTH_LABELS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True)
class Period:
    """Inclusive date range. ``date.min``/``date.max`` stand for an open bound."""

    slug: str
    start: date
    end: date

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_end(d: date) -> date:
    return add_months(d, 1) - date.resolution


def month_period(d: date, slug: str = "month") -> Period:
    first = month_start(d)
    return Period(slug, first, month_end(first))


def summary_windows(today: date) -> dict[str, Period]:
    """The four windows of a financial summary, keyed by name.

    ``this_month`` and ``this_year`` have no upper bound, so entries dated
    later than ``today`` still count toward them.
    """
    first_this = month_start(today)
    first_last = add_months(first_this, -1)
    return {
        "all_time": Period("all_time", date.min, date.max),
        "this_month": Period("this_month", first_this, date.max),
        "last_month": Period("last_month", first_last, first_this - date.resolution),
        "this_year": Period("this_year", date(today.year, 1, 1), date.max),
    }


def trailing_months(today: date, count: int = 12) -> list[Period]:
    """Calendar-month buckets ending with the month of ``today``, oldest first."""
    current = month_start(today)
    out: list[Period] = []
    for offset in range(count - 1, -1, -1):
        start = add_months(current, -offset)
        out.append(
            Period(
                f"{start.year:04d}-{start.month:02d}",
                start,
                add_months(start, 1) - date.resolution,
            )
        )
    return out


def resolve_date_range(
    date_from: Optional[str], date_to: Optional[str]
) -> Optional[Period]:
    if not date_from and not date_to:
        return None
    start = date.fromisoformat(date_from) if date_from else date.min
    end = date.fromisoformat(date_to) if date_to else date.max
    if start > end:
        raise ValueError("Start date must be before end date")
    return Period("custom", start, end)
