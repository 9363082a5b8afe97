from datetime import date, datetime

from aggregation import (
    ActualRow,
    aggregate,
    annual_review,
    latest_month_totals,
    subcategory_actuals,
)
from ledger import AccountRef, EffectiveType, LedgerEntry, classify, registry_lookup
from models import AccountType, DebitMethod, TransactionType


ACCOUNTS = {
    1: AccountRef(id=1, type=AccountType.cash),
    2: AccountRef(
        id=2, type=AccountType.credit, debit_method=DebitMethod.invoice, subcategory_id=50
    ),
    3: AccountRef(id=3, type=AccountType.prepaid, subcategory_id=60),
}
lookup = registry_lookup(ACCOUNTS)


def classify_entry(entry):
    return classify(entry, lookup)


def _entries():
    return [
        LedgerEntry(1, TransactionType.income, 300_000, datetime(2025, 1, 5, 12), 1, subcategory_id=10),
        LedgerEntry(2, TransactionType.expense, 4_550, datetime(2025, 1, 5, 18), 1, subcategory_id=20),
        LedgerEntry(3, TransactionType.expense, 10_000, datetime(2025, 1, 6, 9), 2, subcategory_id=20),
        LedgerEntry(4, TransactionType.transfer, 80_000, datetime(2025, 1, 10, 9), 1, to_account_id=2),
        LedgerEntry(5, TransactionType.transfer, 20_000, datetime(2025, 1, 10, 15), 1, to_account_id=3),
        LedgerEntry(6, TransactionType.update, 999_999, datetime(2025, 1, 11, 8), 1),
        LedgerEntry(7, TransactionType.expense, 1_999, datetime(2025, 2, 1, 10), 1, subcategory_id=20),
    ]


def test_days_are_sorted_newest_first_and_totals_use_effective_type() -> None:
    result = aggregate(_entries(), classify_entry, tz="UTC")

    assert [d.day for d in result.days] == [
        date(2025, 2, 1),
        date(2025, 1, 11),
        date(2025, 1, 10),
        date(2025, 1, 6),
        date(2025, 1, 5),
    ]
    by_day = {d.day: d for d in result.days}
    assert by_day[date(2025, 1, 5)].total_income == 300_000
    assert by_day[date(2025, 1, 5)].total_expense == 4_550
    assert by_day[date(2025, 1, 5)].net == 295_450
    # Invoice card purchase stays visible but is not counted.
    assert by_day[date(2025, 1, 6)].total_expense == 0
    assert [t.id for t in by_day[date(2025, 1, 6)].transactions] == [3]
    # Paying the invoice and loading the prepaid card are the real outflows.
    assert by_day[date(2025, 1, 10)].total_expense == 100_000
    assert by_day[date(2025, 1, 11)].total_income == 0
    assert by_day[date(2025, 1, 11)].total_expense == 0
    assert result.effective[6] == EffectiveType.update


def test_day_totals_sum_to_period_totals() -> None:
    result = aggregate(_entries(), classify_entry, tz="UTC")

    assert sum(d.total_income for d in result.days) == result.period.total_income
    assert sum(d.total_expense for d in result.days) == result.period.total_expense
    assert result.period.total_income == 300_000
    assert result.period.total_expense == 4_550 + 100_000 + 1_999
    assert result.period.net == result.period.total_income - result.period.total_expense


def test_each_entry_lands_in_exactly_one_bucket() -> None:
    entries = _entries()
    result = aggregate(entries, classify_entry, tz="UTC")
    seen = [t.id for d in result.days for t in d.transactions]
    assert sorted(seen) == sorted(e.id for e in entries)


def test_day_bucketing_uses_viewer_timezone() -> None:
    late = LedgerEntry(1, TransactionType.expense, 500, datetime(2025, 1, 6, 1, 30), 1)
    result = aggregate([late], classify_entry, tz="America/Sao_Paulo")
    assert result.days[0].day == date(2025, 1, 5)


def test_empty_input_yields_no_days() -> None:
    result = aggregate([], classify_entry, tz="UTC")
    assert result.days == []
    assert result.period.total_income == 0
    assert latest_month_totals(result) is None


def test_latest_month_totals_cover_newest_month_only() -> None:
    result = aggregate(_entries(), classify_entry, tz="UTC")
    month = latest_month_totals(result)
    assert (month.year, month.month) == (2025, 2)
    assert month.totals.total_expense == 1_999
    assert month.totals.total_income == 0


def test_subcategory_actuals_use_effective_type_and_settlement_subcategory() -> None:
    rows = subcategory_actuals(_entries(), classify_entry, lookup, tz="UTC")
    by_key = {(r.subcategory_id, r.month, r.type): r for r in rows}

    assert by_key[(10, 1, EffectiveType.income)].total_cents == 300_000
    assert by_key[(20, 1, EffectiveType.expense)].total_cents == 4_550
    assert by_key[(20, 1, EffectiveType.expense)].count == 1
    assert by_key[(50, 1, EffectiveType.expense)].total_cents == 80_000
    assert by_key[(60, 1, EffectiveType.expense)].total_cents == 20_000
    assert by_key[(20, 2, EffectiveType.expense)].total_cents == 1_999


def test_subcategory_actuals_split_per_member() -> None:
    entries = [
        LedgerEntry(1, TransactionType.expense, 1_000, datetime(2025, 3, 2, 12), 1, subcategory_id=20, user_id=1),
        LedgerEntry(2, TransactionType.expense, 2_000, datetime(2025, 3, 3, 12), 1, subcategory_id=20, user_id=2),
    ]
    rows = subcategory_actuals(entries, classify_entry, lookup, tz="UTC", per_member=True)
    assert sorted((r.user_id, r.total_cents) for r in rows) == [(1, 1_000), (2, 2_000)]


def test_annual_review_trends_and_breakdown() -> None:
    actuals = [
        ActualRow(10, 2025, 1, EffectiveType.income, 300_000, 1),
        ActualRow(20, 2025, 1, EffectiveType.expense, 50_000, 3),
        ActualRow(21, 2025, 2, EffectiveType.expense, 70_000, 1),
        ActualRow(30, 2025, 2, EffectiveType.expense, 10_000, 1),
        ActualRow(20, 2024, 12, EffectiveType.expense, 99_999, 1),
    ]
    review = annual_review(
        actuals,
        2025,
        subcategory_categories={20: 100, 21: 100, 30: 200},
        category_names={100: "Housing", 200: "Food"},
    )

    assert len(review["monthly"]) == 12
    assert review["monthly"][0] == {
        "month": 1,
        "income_cents": 300_000,
        "expense_cents": 50_000,
        "net_cents": 250_000,
    }
    assert review["total_income_cents"] == 300_000
    assert review["total_expense_cents"] == 130_000
    assert review["net_cents"] == 170_000
    assert [c["name"] for c in review["expenses_by_category"]] == ["Housing", "Food"]
    assert review["expenses_by_category"][0]["total_cents"] == 120_000
