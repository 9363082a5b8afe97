from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache
from typing import Iterable, Optional

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session

from aggregation import (
    ActualRow,
    PeriodAggregate,
    aggregate,
    annual_review,
    latest_month_totals,
    subcategory_actuals,
)
from budgets import (
    BudgetCell,
    BudgetLine,
    category_rollup,
    month_totals,
    reconcile,
    subcategory_year,
)
from config import get_settings
from ledger import AccountRef, LedgerEntry, classify, registry_lookup
from models import (
    Account,
    AccountType,
    Budget,
    Category,
    DebitMethod,
    EntityType,
    Subcategory,
    Transaction,
    TransactionType,
)
from periods import Period, local_day, to_utc_naive
from replay import opening_balance, replay
from schemas import (
    AccountIn,
    BalanceIn,
    BudgetCellIn,
    CategoryIn,
    SubcategoryIn,
    TransactionIn,
)


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class InvalidTransaction(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


@dataclass
class TransactionFilters:
    group_id: Optional[int] = None
    account_id: Optional[int] = None
    type: Optional[TransactionType] = None
    subcategory_id: Optional[int] = None


@dataclass(frozen=True)
class CurrentBalance:
    amount_cents: int
    as_of: Optional[datetime]


def _classifier(accounts: tuple[AccountRef, ...]):
    lookup = registry_lookup({a.id: a for a in accounts})
    return lookup, lambda entry: classify(entry, lookup)


# Derivations are pure over their snapshot, so the snapshot itself is the key.
@lru_cache(maxsize=get_settings().cache_size)
def _cached_aggregate(
    entries: tuple[LedgerEntry, ...], accounts: tuple[AccountRef, ...], tz: str
) -> PeriodAggregate:
    _, classify_entry = _classifier(accounts)
    return aggregate(entries, classify_entry, tz=tz)


@lru_cache(maxsize=get_settings().cache_size)
def _cached_actuals(
    entries: tuple[LedgerEntry, ...],
    accounts: tuple[AccountRef, ...],
    tz: str,
    per_member: bool,
) -> tuple[ActualRow, ...]:
    lookup, classify_entry = _classifier(accounts)
    return tuple(
        subcategory_actuals(
            entries, classify_entry, lookup, tz=tz, per_member=per_member
        )
    )


@lru_cache(maxsize=get_settings().cache_size)
def _cached_replay(
    current_balance: int, history: tuple[LedgerEntry, ...], account_id: int
) -> tuple[tuple[tuple[int, int], ...], int]:
    balances = replay(current_balance, history, account_id)
    opening = opening_balance(current_balance, history, account_id)
    return tuple(balances.items()), opening


def clear_derivation_cache() -> None:
    _cached_aggregate.cache_clear()
    _cached_actuals.cache_clear()
    _cached_replay.cache_clear()


def serialize_entry(entry: LedgerEntry) -> dict[str, object]:
    return {
        "id": entry.id,
        "type": entry.type.value,
        "amount_cents": entry.amount_cents,
        "occurred_at": entry.occurred_at.isoformat(),
        "account_id": entry.account_id,
        "to_account_id": entry.to_account_id,
        "subcategory_id": entry.subcategory_id,
        "group_id": entry.group_id,
        "user_id": entry.user_id,
        "note": entry.note,
    }


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            user_id=self.user_id,
            group_id=data.group_id,
            name=data.name.strip(),
            type=data.type,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def create_subcategory(self, data: SubcategoryIn) -> Subcategory:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise NotFoundError("Category not found")
        sub = Subcategory(
            user_id=self.user_id,
            group_id=category.group_id,
            category_id=category.id,
            name=data.name.strip(),
            type=category.type,
        )
        self.session.add(sub)
        self.session.commit()
        self.session.refresh(sub)
        return sub

    def _scoped(self, model, group_id: Optional[int]):
        if group_id is not None:
            return model.group_id == group_id
        return and_(model.user_id == self.user_id, model.group_id.is_(None))

    def list_categories(
        self,
        *,
        entity_type: Optional[EntityType] = None,
        group_id: Optional[int] = None,
    ) -> list[Category]:
        stmt = select(Category).where(self._scoped(Category, group_id))
        if entity_type:
            stmt = stmt.where(Category.type == entity_type)
        return self.session.scalars(stmt.order_by(Category.name)).all()

    def list_subcategories(
        self,
        *,
        entity_type: Optional[EntityType] = None,
        group_id: Optional[int] = None,
    ) -> list[Subcategory]:
        stmt = select(Subcategory).where(self._scoped(Subcategory, group_id))
        if entity_type:
            stmt = stmt.where(Subcategory.type == entity_type)
        return self.session.scalars(stmt.order_by(Subcategory.name)).all()


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, *, group_id: Optional[int] = None) -> list[Account]:
        stmt = select(Account)
        if group_id is not None:
            stmt = stmt.where(Account.group_id == group_id)
        else:
            stmt = stmt.where(
                Account.user_id == self.user_id, Account.group_id.is_(None)
            )
        return self.session.scalars(stmt.order_by(Account.name)).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        debit_method = None
        due_day = None
        closing_day = None
        if data.type == AccountType.credit:
            debit_method = data.debit_method or DebitMethod.invoice
            due_day = data.credit_due_day
            closing_day = data.credit_closing_day

        settles_later = data.type == AccountType.prepaid or (
            debit_method == DebitMethod.invoice
        )
        subcategory_id = data.subcategory_id if settles_later else None
        if subcategory_id is not None and not self.session.get(
            Subcategory, subcategory_id
        ):
            raise NotFoundError("Subcategory not found")

        account = Account(
            user_id=self.user_id,
            group_id=data.group_id,
            name=data.name.strip(),
            type=data.type,
            debit_method=debit_method,
            subcategory_id=subcategory_id,
            credit_due_day=due_day,
            credit_closing_day=closing_day,
        )
        self.session.add(account)
        self.session.flush()

        if data.initial_balance_cents is not None:
            anchor_at = to_utc_naive(data.initial_balance_at or datetime.utcnow())
            self.session.add(
                Transaction(
                    user_id=self.user_id,
                    group_id=data.group_id,
                    occurred_at=anchor_at,
                    type=TransactionType.update,
                    amount_cents=data.initial_balance_cents,
                    account_id=account.id,
                    note="Initial balance",
                )
            )
        self.session.commit()
        self.session.refresh(account)
        logger.info(
            f"account_created: id={account.id} type={account.type.value} "
            f"debit_method={account.debit_method.value if account.debit_method else None}"
        )
        return account

    def registry_for(self, entries: Iterable[LedgerEntry]) -> tuple[AccountRef, ...]:
        ids: set[int] = set()
        for entry in entries:
            ids.add(entry.account_id)
            if entry.to_account_id is not None:
                ids.add(entry.to_account_id)
        if not ids:
            return ()
        rows = self.session.scalars(
            select(Account).where(Account.id.in_(ids)).order_by(Account.id)
        ).all()
        return tuple(AccountRef.from_row(row) for row in rows)


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def create(self, data: TransactionIn) -> Transaction:
        account = self.session.get(Account, data.account_id)
        if not account:
            raise NotFoundError("Account not found")
        if data.to_account_id is not None and not self.session.get(
            Account, data.to_account_id
        ):
            raise NotFoundError("Destination account not found")
        if data.subcategory_id is not None:
            sub = self.session.get(Subcategory, data.subcategory_id)
            if not sub:
                raise NotFoundError("Subcategory not found")
            if sub.type.value != data.type.value:
                raise InvalidTransaction(
                    f"Subcategory {sub.name!r} does not accept {data.type.value} entries"
                )

        txn = Transaction(
            user_id=self.user_id,
            group_id=data.group_id,
            occurred_at=to_utc_naive(data.occurred_at),
            type=data.type,
            amount_cents=data.amount_cents,
            account_id=data.account_id,
            to_account_id=data.to_account_id,
            subcategory_id=data.subcategory_id,
            note=data.note,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} type={txn.type.value} "
            f"amount_cents={txn.amount_cents} account_id={txn.account_id}"
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise NotFoundError("Transaction not found")
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id}")

    def list(self, period: Period, filters: TransactionFilters) -> list[Transaction]:
        lower, upper = period.bounds(get_settings().timezone)
        stmt = select(Transaction).where(Transaction.occurred_at.between(lower, upper))
        if filters.group_id is not None:
            stmt = stmt.where(Transaction.group_id == filters.group_id)
        else:
            stmt = stmt.where(
                Transaction.user_id == self.user_id, Transaction.group_id.is_(None)
            )
        if filters.account_id is not None:
            stmt = stmt.where(
                or_(
                    Transaction.account_id == filters.account_id,
                    Transaction.to_account_id == filters.account_id,
                )
            )
        if filters.type is not None:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.subcategory_id is not None:
            stmt = stmt.where(Transaction.subcategory_id == filters.subcategory_id)
        stmt = stmt.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        return self.session.scalars(stmt).all()

    def snapshot(
        self, period: Period, filters: TransactionFilters
    ) -> tuple[LedgerEntry, ...]:
        return tuple(LedgerEntry.from_row(t) for t in self.list(period, filters))

    def account_history(
        self, account_id: int, *, since: Optional[datetime] = None
    ) -> tuple[LedgerEntry, ...]:
        stmt = select(Transaction).where(
            or_(
                Transaction.account_id == account_id,
                Transaction.to_account_id == account_id,
            )
        )
        if since is not None:
            stmt = stmt.where(Transaction.occurred_at >= since)
        stmt = stmt.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        return tuple(LedgerEntry.from_row(t) for t in self.session.scalars(stmt))


class BalanceService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _latest_anchor(
        self, account_id: int, as_of: Optional[datetime]
    ) -> Optional[Transaction]:
        stmt = select(Transaction).where(
            Transaction.account_id == account_id,
            Transaction.type == TransactionType.update,
        )
        if as_of is not None:
            stmt = stmt.where(Transaction.occurred_at <= as_of)
        stmt = stmt.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        return self.session.scalar(stmt.limit(1))

    def current_balance(
        self, account_id: int, as_of: Optional[datetime] = None
    ) -> CurrentBalance:
        """Latest anchor plus the signed effect of everything recorded after it."""
        if not self.session.get(Account, account_id):
            raise NotFoundError("Account not found")
        as_of = to_utc_naive(as_of) if as_of else None
        anchor = self._latest_anchor(account_id, as_of)

        outgoing = (Transaction.account_id == account_id) & Transaction.type.in_(
            [TransactionType.expense, TransactionType.transfer]
        )
        incoming = (
            (Transaction.account_id == account_id)
            & (Transaction.type == TransactionType.income)
        ) | (
            (Transaction.to_account_id == account_id)
            & (Transaction.type == TransactionType.transfer)
        )
        stmt = select(
            func.coalesce(
                func.sum(case((incoming, Transaction.amount_cents), else_=0)), 0
            ).label("incoming"),
            func.coalesce(
                func.sum(case((outgoing, Transaction.amount_cents), else_=0)), 0
            ).label("outgoing"),
            func.max(Transaction.occurred_at).label("latest"),
        ).where(
            or_(
                Transaction.account_id == account_id,
                Transaction.to_account_id == account_id,
            ),
            Transaction.type != TransactionType.update,
        )
        if anchor is not None:
            stmt = stmt.where(
                or_(
                    Transaction.occurred_at > anchor.occurred_at,
                    and_(
                        Transaction.occurred_at == anchor.occurred_at,
                        Transaction.id > anchor.id,
                    ),
                )
            )
        if as_of is not None:
            stmt = stmt.where(Transaction.occurred_at <= as_of)
        row = self.session.execute(stmt).one()

        baseline = int(anchor.amount_cents) if anchor else 0
        amount = baseline + int(row.incoming) - int(row.outgoing)
        observed = as_of or row.latest or (anchor.occurred_at if anchor else None)
        return CurrentBalance(amount_cents=amount, as_of=observed)

    def record_balance(self, account_id: int, data: BalanceIn) -> Transaction:
        account = self.session.get(Account, account_id)
        if not account:
            raise NotFoundError("Account not found")
        anchor = Transaction(
            user_id=self.user_id,
            group_id=account.group_id,
            occurred_at=to_utc_naive(data.as_of or datetime.utcnow()),
            type=TransactionType.update,
            amount_cents=data.amount_cents,
            account_id=account_id,
            note=data.note,
        )
        self.session.add(anchor)
        self.session.commit()
        self.session.refresh(anchor)
        logger.info(
            f"balance_recorded: account_id={account_id} amount_cents={anchor.amount_cents}"
        )
        return anchor


class LedgerService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.tz = get_settings().timezone
        self.transactions = TransactionService(session, self.user_id)
        self.accounts = AccountService(session, self.user_id)

    def day_view(self, period: Period, filters: TransactionFilters) -> dict[str, object]:
        entries = self.transactions.snapshot(period, filters)
        accounts = self.accounts.registry_for(entries)
        result = _cached_aggregate(entries, accounts, self.tz)
        month = latest_month_totals(result)
        logger.info(
            f"day_view: period={period.slug} entries={len(entries)} days={len(result.days)}"
        )
        return {
            "period": {
                "slug": period.slug,
                "start": period.start.isoformat(),
                "end": period.end.isoformat(),
                "total_income_cents": result.period.total_income,
                "total_expense_cents": result.period.total_expense,
                "net_cents": result.period.net,
            },
            "latest_month": None
            if month is None
            else {
                "year": month.year,
                "month": month.month,
                "total_income_cents": month.totals.total_income,
                "total_expense_cents": month.totals.total_expense,
                "net_cents": month.totals.net,
            },
            "days": [
                {
                    "date": day.day.isoformat(),
                    "total_income_cents": day.total_income,
                    "total_expense_cents": day.total_expense,
                    "net_cents": day.net,
                    "transactions": [
                        {
                            **serialize_entry(entry),
                            "effective_type": result.effective[entry.id].value,
                        }
                        for entry in day.transactions
                    ],
                }
                for day in result.days
            ],
        }

    def account_history(self, account_id: int, period: Period) -> dict[str, object]:
        self.accounts.get(account_id)
        lower, upper = period.bounds(self.tz)
        current = BalanceService(self.session, self.user_id).current_balance(account_id)
        # Everything newer than the period start is needed to walk back to it.
        history = self.transactions.account_history(account_id, since=lower)
        pairs, opening = _cached_replay(current.amount_cents, history, account_id)
        balances = dict(pairs)
        visible = [e for e in history if e.occurred_at <= upper]
        return {
            "account_id": account_id,
            "current_balance_cents": current.amount_cents,
            "as_of": current.as_of.isoformat() if current.as_of else None,
            "opening_balance_cents": opening,
            "items": [
                {
                    **serialize_entry(entry),
                    "date": local_day(entry.occurred_at, self.tz).isoformat(),
                    "balance_after_cents": balances[entry.id],
                }
                for entry in visible
            ],
        }

    def year_snapshot(
        self, year: int, group_id: Optional[int]
    ) -> tuple[tuple[LedgerEntry, ...], tuple[AccountRef, ...]]:
        period = Period("year", date(year, 1, 1), date(year, 12, 31))
        entries = self.transactions.snapshot(
            period, TransactionFilters(group_id=group_id)
        )
        return entries, self.accounts.registry_for(entries)

    def actuals(self, year: int, *, group_id: Optional[int] = None) -> list[ActualRow]:
        entries, accounts = self.year_snapshot(year, group_id)
        return list(
            _cached_actuals(entries, accounts, self.tz, group_id is not None)
        )

    def annual_review(
        self, year: int, *, group_id: Optional[int] = None
    ) -> dict[str, object]:
        categories = CategoryService(self.session, self.user_id)
        subcategory_categories = {
            sub.id: sub.category_id
            for sub in categories.list_subcategories(group_id=group_id)
        }
        category_names = {
            cat.id: cat.name for cat in categories.list_categories(group_id=group_id)
        }
        return annual_review(
            self.actuals(year, group_id=group_id),
            year,
            subcategory_categories=subcategory_categories,
            category_names=category_names,
        )


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_budgets(
        self,
        year: int,
        month: Optional[int] = None,
        group_id: Optional[int] = None,
        entity_type: Optional[EntityType] = None,
    ) -> list[Budget]:
        stmt = select(Budget).where(Budget.year == year)
        if group_id is not None:
            stmt = stmt.where(Budget.group_id == group_id)
        else:
            stmt = stmt.where(Budget.user_id == self.user_id, Budget.group_id.is_(None))
        if month is not None:
            stmt = stmt.where(Budget.month == month)
        if entity_type is not None:
            stmt = stmt.where(Budget.type == entity_type)
        stmt = stmt.order_by(Budget.subcategory_id, Budget.month)
        return self.session.scalars(stmt).all()

    def upsert_cell(self, data: BudgetCellIn) -> Budget:
        """Last write wins; no version check against concurrent editors."""
        sub = self.session.get(Subcategory, data.subcategory_id)
        if not sub:
            raise NotFoundError("Subcategory not found")

        stmt = select(Budget).where(
            Budget.subcategory_id == data.subcategory_id,
            Budget.year == data.year,
            Budget.month == data.month,
            Budget.group_id.is_(None)
            if data.group_id is None
            else Budget.group_id == data.group_id,
        )
        if data.group_id is None:
            stmt = stmt.where(Budget.user_id == self.user_id)
        existing = self.session.scalar(stmt)
        if existing:
            existing.amount_cents = data.amount_cents
            self.session.commit()
            self.session.refresh(existing)
            logger.info(
                f"budget_updated: id={existing.id} amount_cents={existing.amount_cents}"
            )
            return existing

        budget = Budget(
            user_id=self.user_id,
            group_id=data.group_id,
            name=f"{sub.name} - {data.month}/{data.year}",
            subcategory_id=sub.id,
            year=data.year,
            month=data.month,
            amount_cents=data.amount_cents,
            type=sub.type,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(f"budget_created: id={budget.id} name={budget.name!r}")
        return budget

    def reconcile_year(
        self,
        year: int,
        entity_type: EntityType,
        *,
        group_id: Optional[int] = None,
    ) -> list[BudgetCell]:
        subs = CategoryService(self.session, self.user_id).list_subcategories(
            entity_type=entity_type, group_id=group_id
        )
        types = {sub.id: sub.type for sub in subs}
        lines = [
            BudgetLine.from_row(b)
            for b in self.list_budgets(year, group_id=group_id, entity_type=entity_type)
        ]
        actuals = [
            row
            for row in LedgerService(self.session, self.user_id).actuals(
                year, group_id=group_id
            )
            if row.subcategory_id in types
        ]
        return reconcile(lines, actuals, subcategory_types=types)

    def grid(
        self,
        year: int,
        entity_type: EntityType,
        *,
        group_id: Optional[int] = None,
    ) -> dict[str, object]:
        categories = CategoryService(self.session, self.user_id)
        subs = categories.list_subcategories(entity_type=entity_type, group_id=group_id)
        cats = categories.list_categories(entity_type=entity_type, group_id=group_id)
        cells = self.reconcile_year(year, entity_type, group_id=group_id)
        by_key = {(c.subcategory_id, c.month): c for c in cells}

        def cell_dict(sub_id: int, month: int) -> dict[str, object]:
            cell = by_key.get((sub_id, month))
            if cell is None:
                return {
                    "month": month,
                    "budgeted_cents": 0,
                    "actual_cents": 0,
                    "status": "NONE",
                }
            return {
                "month": month,
                "budgeted_cents": cell.budgeted_cents,
                "actual_cents": cell.actual_cents,
                "status": cell.status.value,
            }

        def summary_dict(summary) -> dict[str, object]:
            return {
                "budgeted_total_cents": summary.budgeted_total,
                "budgeted_average_cents": summary.budgeted_average,
                "actual_total_cents": summary.actual_total,
                "actual_average_cents": summary.actual_average,
                "status": summary.status.value,
            }

        def month_dict(month: int, summary) -> dict[str, object]:
            return {
                "month": month,
                "budgeted_cents": summary.budgeted_total,
                "actual_cents": summary.actual_total,
                "status": summary.status.value,
            }

        rows = []
        for cat in cats:
            children = [s for s in subs if s.category_id == cat.id]
            child_ids = [s.id for s in children]
            rows.append(
                {
                    "category_id": cat.id,
                    "name": cat.name,
                    "year": summary_dict(
                        category_rollup(cells, child_ids, entity_type)
                    ),
                    "months": [
                        month_dict(
                            month,
                            category_rollup(cells, child_ids, entity_type, month=month),
                        )
                        for month in range(1, 13)
                    ],
                    "subcategories": [
                        {
                            "subcategory_id": sub.id,
                            "name": sub.name,
                            "cells": [cell_dict(sub.id, m) for m in range(1, 13)],
                            "year": summary_dict(
                                subcategory_year(cells, sub.id, entity_type)
                            ),
                        }
                        for sub in children
                    ],
                }
            )
        logger.info(
            f"budget_grid: year={year} type={entity_type.value} cells={len(cells)}"
        )
        return {
            "year": year,
            "type": entity_type.value,
            "categories": rows,
            "month_totals": month_totals(cells, entity_type),
        }
