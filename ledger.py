"""Ledger snapshot records and the effective-type classifier.

Everything here works on immutable snapshots handed in by the service layer.
Nothing reads from or writes to the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Mapping, Optional

from models import (
    AccountType,
    DebitMethod,
    TransactionType,
    UnrecognizedAccountType,
    UnrecognizedDebitMethod,
    UnrecognizedTransactionType,
    parse_account_type,
    parse_debit_method,
    parse_transaction_type,
)


class EffectiveType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"
    transfer_like = "TRANSFER_LIKE"
    update = "UPDATE"


@dataclass(frozen=True)
class AccountRef:
    id: int
    type: AccountType
    debit_method: Optional[DebitMethod] = None
    subcategory_id: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", parse_account_type(self.type))
        object.__setattr__(
            self, "debit_method", parse_debit_method(self.debit_method)
        )

    @classmethod
    def from_row(cls, account) -> "AccountRef":
        return cls(
            id=account.id,
            type=account.type,
            debit_method=account.debit_method,
            subcategory_id=account.subcategory_id,
        )


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    type: TransactionType
    amount_cents: int
    occurred_at: datetime
    account_id: int
    to_account_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    group_id: Optional[int] = None
    user_id: Optional[int] = None
    note: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", parse_transaction_type(self.type))

    @classmethod
    def from_row(cls, txn) -> "LedgerEntry":
        return cls(
            id=txn.id,
            type=txn.type,
            amount_cents=txn.amount_cents,
            occurred_at=txn.occurred_at,
            account_id=txn.account_id,
            to_account_id=txn.to_account_id,
            subcategory_id=txn.subcategory_id,
            group_id=txn.group_id,
            user_id=txn.user_id,
            note=txn.note,
        )


AccountLookup = Callable[[Optional[int]], Optional[AccountRef]]


def registry_lookup(accounts: Mapping[int, AccountRef]) -> AccountLookup:
    def lookup(account_id: Optional[int]) -> Optional[AccountRef]:
        if account_id is None:
            return None
        return accounts.get(account_id)

    return lookup


def _settles_later(account: Optional[AccountRef]) -> bool:
    """True when money spent from ``account`` was already counted on the way in."""
    if account is None:
        return False
    if account.type == AccountType.prepaid:
        return True
    if account.type == AccountType.credit:
        return account.debit_method == DebitMethod.invoice
    if account.type == AccountType.cash:
        return False
    raise UnrecognizedAccountType(f"Unrecognized account type: {account.type!r}")


def classify(entry: LedgerEntry, lookup_account: AccountLookup) -> EffectiveType:
    if entry.type == TransactionType.update:
        return EffectiveType.update
    if entry.type == TransactionType.income:
        return EffectiveType.income
    if entry.type == TransactionType.expense:
        if _settles_later(lookup_account(entry.account_id)):
            return EffectiveType.transfer_like
        return EffectiveType.expense
    if entry.type == TransactionType.transfer:
        # Loading a prepaid card or paying an invoice is the real outflow.
        if _settles_later(lookup_account(entry.to_account_id)):
            return EffectiveType.expense
        return EffectiveType.transfer_like
    raise UnrecognizedTransactionType(f"Unrecognized transaction type: {entry.type!r}")


def attributed_subcategory(
    entry: LedgerEntry, effective: EffectiveType, lookup_account: AccountLookup
) -> Optional[int]:
    if effective not in (EffectiveType.income, EffectiveType.expense):
        return None
    if entry.type == TransactionType.transfer:
        destination = lookup_account(entry.to_account_id)
        return destination.subcategory_id if destination else None
    return entry.subcategory_id
