"""Budget-versus-actual reconciliation.

Budget rows and actual rows are joined on ``(subcategory, month, year)``.
Missing budgets count as zero; several actual rows for one key (one per group
member) are summed before any status is derived.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional

from aggregation import ActualRow
from ledger import EffectiveType
from models import EntityType


MONTHS = range(1, 13)


class BudgetStatus(str, Enum):
    none = "NONE"
    on_track = "ON_TRACK"
    warning = "WARNING"
    over = "OVER"


@dataclass(frozen=True)
class BudgetLine:
    subcategory_id: int
    year: int
    month: int
    amount_cents: int
    type: EntityType

    @classmethod
    def from_row(cls, budget) -> "BudgetLine":
        return cls(
            subcategory_id=budget.subcategory_id,
            year=budget.year,
            month=budget.month,
            amount_cents=budget.amount_cents,
            type=EntityType(budget.type),
        )


@dataclass(frozen=True)
class BudgetCell:
    subcategory_id: int
    year: int
    month: int
    type: EntityType
    budgeted_cents: int
    actual_cents: int
    status: BudgetStatus


@dataclass(frozen=True)
class YearSummary:
    budgeted_total: int
    budgeted_average: float
    actual_total: int
    actual_average: float
    status: BudgetStatus


def percentage(budgeted: int, actual: int) -> float:
    # A zero budget counts as one currency unit (100 cents).
    return actual * 100 / (budgeted or 100)


def budget_status(budgeted: int, actual: int, entity_type: EntityType) -> BudgetStatus:
    if budgeted == 0 and actual == 0:
        return BudgetStatus.none
    pct = percentage(budgeted, actual)
    if entity_type == EntityType.income:
        if pct >= 100:
            return BudgetStatus.on_track
        if pct >= 85:
            return BudgetStatus.warning
        return BudgetStatus.over
    if entity_type == EntityType.expense:
        if pct <= 100:
            return BudgetStatus.on_track
        if pct < 120:
            return BudgetStatus.warning
        return BudgetStatus.over
    raise ValueError(f"Unknown entity type: {entity_type!r}")


def _entity_type(kind: EffectiveType) -> Optional[EntityType]:
    if kind == EffectiveType.income:
        return EntityType.income
    if kind == EffectiveType.expense:
        return EntityType.expense
    return None


def sum_actuals(actuals: Iterable[ActualRow]) -> dict[tuple[int, int, int], int]:
    summed: dict[tuple[int, int, int], int] = defaultdict(int)
    for row in actuals:
        summed[(row.subcategory_id, row.year, row.month)] += row.total_cents
    return dict(summed)


def reconcile(
    budgets: Iterable[BudgetLine],
    actuals: Iterable[ActualRow],
    *,
    subcategory_types: Optional[Mapping[int, EntityType]] = None,
) -> list[BudgetCell]:
    """One cell per key present in either input.

    The entity type used for the status comes from ``subcategory_types`` when
    given, then from the budget row, then from the actual rows, and defaults
    to expense.
    """
    subcategory_types = subcategory_types or {}
    actual_rows = list(actuals)
    budgeted: dict[tuple[int, int, int], BudgetLine] = {}
    for line in budgets:
        budgeted[(line.subcategory_id, line.year, line.month)] = line
    actual_by_key = sum_actuals(actual_rows)
    actual_types: dict[tuple[int, int, int], EntityType] = {}
    for row in actual_rows:
        entity = _entity_type(row.type)
        if entity is not None:
            actual_types.setdefault((row.subcategory_id, row.year, row.month), entity)

    cells: list[BudgetCell] = []
    for key in sorted(set(budgeted) | set(actual_by_key)):
        subcategory_id, year, month = key
        line = budgeted.get(key)
        amount = line.amount_cents if line else 0
        actual = actual_by_key.get(key, 0)
        entity_type = (
            subcategory_types.get(subcategory_id)
            or (line.type if line else None)
            or actual_types.get(key)
            or EntityType.expense
        )
        cells.append(
            BudgetCell(
                subcategory_id=subcategory_id,
                year=year,
                month=month,
                type=entity_type,
                budgeted_cents=amount,
                actual_cents=actual,
                status=budget_status(amount, actual, entity_type),
            )
        )
    return cells


def _summarize(
    cells: Iterable[BudgetCell], entity_type: EntityType
) -> YearSummary:
    budgeted = 0
    actual = 0
    for cell in cells:
        budgeted += cell.budgeted_cents
        actual += cell.actual_cents
    return YearSummary(
        budgeted_total=budgeted,
        budgeted_average=budgeted / 12,
        actual_total=actual,
        actual_average=actual / 12,
        status=budget_status(budgeted, actual, entity_type),
    )


def subcategory_year(
    cells: Iterable[BudgetCell], subcategory_id: int, entity_type: EntityType
) -> YearSummary:
    return _summarize(
        (
            c
            for c in cells
            if c.subcategory_id == subcategory_id and c.month in MONTHS
        ),
        entity_type,
    )


def category_rollup(
    cells: Iterable[BudgetCell],
    subcategory_ids: Iterable[int],
    entity_type: EntityType,
    *,
    month: Optional[int] = None,
) -> YearSummary:
    """Children's budgeted and actual sums, then the same status rule."""
    members = set(subcategory_ids)
    return _summarize(
        (
            c
            for c in cells
            if c.subcategory_id in members and (month is None or c.month == month)
        ),
        entity_type,
    )


def month_totals(
    cells: Iterable[BudgetCell], entity_type: EntityType
) -> dict[int, dict[str, int]]:
    totals = {month: {"budgeted_cents": 0, "actual_cents": 0} for month in MONTHS}
    for cell in cells:
        if cell.type != entity_type or cell.month not in totals:
            continue
        totals[cell.month]["budgeted_cents"] += cell.budgeted_cents
        totals[cell.month]["actual_cents"] += cell.actual_cents
    return totals
