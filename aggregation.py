from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Mapping, Optional

from ledger import AccountLookup, EffectiveType, LedgerEntry, attributed_subcategory
from periods import local_day


Classifier = Callable[[LedgerEntry], EffectiveType]


@dataclass(frozen=True)
class PeriodTotals:
    total_income: int = 0
    total_expense: int = 0

    @property
    def net(self) -> int:
        return self.total_income - self.total_expense

    def __add__(self, other: "PeriodTotals") -> "PeriodTotals":
        return PeriodTotals(
            self.total_income + other.total_income,
            self.total_expense + other.total_expense,
        )


@dataclass
class DayAggregate:
    day: date
    total_income: int = 0
    total_expense: int = 0
    transactions: list[LedgerEntry] = field(default_factory=list)

    @property
    def net(self) -> int:
        return self.total_income - self.total_expense

    @property
    def totals(self) -> PeriodTotals:
        return PeriodTotals(self.total_income, self.total_expense)


@dataclass
class PeriodAggregate:
    days: list[DayAggregate]
    period: PeriodTotals
    effective: dict[int, EffectiveType]


@dataclass(frozen=True)
class MonthTotals:
    year: int
    month: int
    totals: PeriodTotals


@dataclass(frozen=True)
class ActualRow:
    subcategory_id: int
    year: int
    month: int
    type: EffectiveType
    total_cents: int
    count: int
    user_id: Optional[int] = None


def aggregate(
    entries: Iterable[LedgerEntry], classify: Classifier, *, tz: str
) -> PeriodAggregate:
    """Bucket entries by local calendar day and total their effective amounts.

    Transfer-like and update entries stay in their day's listing but never
    reach the income or expense sums.
    """
    buckets: dict[date, DayAggregate] = {}
    effective: dict[int, EffectiveType] = {}
    ordered = sorted(entries, key=lambda e: (e.occurred_at, e.id), reverse=True)
    for entry in ordered:
        kind = classify(entry)
        effective[entry.id] = kind
        day = local_day(entry.occurred_at, tz)
        bucket = buckets.get(day)
        if bucket is None:
            bucket = buckets[day] = DayAggregate(day=day)
        bucket.transactions.append(entry)
        if kind == EffectiveType.income:
            bucket.total_income += entry.amount_cents
        elif kind == EffectiveType.expense:
            bucket.total_expense += entry.amount_cents

    days = sorted(buckets.values(), key=lambda d: d.day, reverse=True)
    period = PeriodTotals()
    for day in days:
        period = period + day.totals
    return PeriodAggregate(days=days, period=period, effective=effective)


def latest_month_totals(result: PeriodAggregate) -> Optional[MonthTotals]:
    if not result.days:
        return None
    newest = result.days[0].day
    totals = PeriodTotals()
    for day in result.days:
        if (day.day.year, day.day.month) == (newest.year, newest.month):
            totals = totals + day.totals
    return MonthTotals(year=newest.year, month=newest.month, totals=totals)


def subcategory_actuals(
    entries: Iterable[LedgerEntry],
    classify: Classifier,
    lookup_account: AccountLookup,
    *,
    tz: str,
    per_member: bool = False,
) -> list[ActualRow]:
    """Effective income/expense per (subcategory, month, year).

    With ``per_member`` the rows are further split by ``user_id``, the way a
    shared group ledger reports them.
    """
    totals: dict[tuple, list[int]] = defaultdict(lambda: [0, 0])
    for entry in entries:
        kind = classify(entry)
        subcategory_id = attributed_subcategory(entry, kind, lookup_account)
        if subcategory_id is None:
            continue
        day = local_day(entry.occurred_at, tz)
        member = entry.user_id if per_member else None
        key = (subcategory_id, day.year, day.month, kind, member)
        totals[key][0] += entry.amount_cents
        totals[key][1] += 1

    rows = [
        ActualRow(
            subcategory_id=subcategory_id,
            year=year,
            month=month,
            type=kind,
            total_cents=total,
            count=count,
            user_id=member,
        )
        for (subcategory_id, year, month, kind, member), (total, count) in totals.items()
    ]
    rows.sort(key=lambda r: (r.year, r.month, r.subcategory_id, r.type.value))
    return rows


def annual_review(
    actuals: Iterable[ActualRow],
    year: int,
    *,
    subcategory_categories: Mapping[int, int],
    category_names: Mapping[int, str],
) -> dict[str, object]:
    income = [0] * 12
    expense = [0] * 12
    by_category: dict[int, int] = defaultdict(int)
    for row in actuals:
        if row.year != year:
            continue
        if row.type == EffectiveType.income:
            income[row.month - 1] += row.total_cents
        elif row.type == EffectiveType.expense:
            expense[row.month - 1] += row.total_cents
            category_id = subcategory_categories.get(row.subcategory_id)
            if category_id is not None:
                by_category[category_id] += row.total_cents

    monthly = [
        {
            "month": month,
            "income_cents": income[month - 1],
            "expense_cents": expense[month - 1],
            "net_cents": income[month - 1] - expense[month - 1],
        }
        for month in range(1, 13)
    ]
    total_income = sum(income)
    total_expense = sum(expense)
    breakdown = [
        {
            "category_id": category_id,
            "name": category_names.get(category_id, ""),
            "total_cents": total,
        }
        for category_id, total in by_category.items()
        if total > 0
    ]
    breakdown.sort(key=lambda item: item["total_cents"], reverse=True)
    return {
        "year": year,
        "monthly": monthly,
        "total_income_cents": total_income,
        "total_expense_cents": total_expense,
        "net_cents": total_income - total_expense,
        "expenses_by_category": breakdown,
    }
