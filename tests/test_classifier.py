from datetime import datetime

import pytest

from ledger import (
    AccountRef,
    EffectiveType,
    LedgerEntry,
    UnrecognizedAccountType,
    UnrecognizedDebitMethod,
    UnrecognizedTransactionType,
    attributed_subcategory,
    classify,
    registry_lookup,
)
from models import AccountType, DebitMethod, TransactionType


CASH = AccountRef(id=1, type=AccountType.cash)
INVOICE_CARD = AccountRef(
    id=2, type=AccountType.credit, debit_method=DebitMethod.invoice, subcategory_id=70
)
PER_PURCHASE_CARD = AccountRef(
    id=3, type=AccountType.credit, debit_method=DebitMethod.per_purchase
)
PREPAID = AccountRef(id=4, type=AccountType.prepaid, subcategory_id=80)
BARE_CREDIT = AccountRef(id=5, type=AccountType.credit)

lookup = registry_lookup(
    {a.id: a for a in (CASH, INVOICE_CARD, PER_PURCHASE_CARD, PREPAID, BARE_CREDIT)}
)


def _entry(type_, account_id=1, to_account_id=None, amount=10_000, subcategory_id=None):
    return LedgerEntry(
        id=1,
        type=type_,
        amount_cents=amount,
        occurred_at=datetime(2025, 3, 1, 12, 0),
        account_id=account_id,
        to_account_id=to_account_id,
        subcategory_id=subcategory_id,
    )


def test_update_and_income_keep_their_type() -> None:
    assert classify(_entry(TransactionType.update), lookup) == EffectiveType.update
    assert classify(_entry(TransactionType.income, 2), lookup) == EffectiveType.income


@pytest.mark.parametrize(
    ("account_id", "expected"),
    [
        (1, EffectiveType.expense),
        (2, EffectiveType.transfer_like),
        (3, EffectiveType.expense),
        (4, EffectiveType.transfer_like),
        (5, EffectiveType.expense),
        (999, EffectiveType.expense),
    ],
)
def test_expense_follows_source_account(account_id, expected) -> None:
    entry = _entry(TransactionType.expense, account_id=account_id)
    assert classify(entry, lookup) == expected


@pytest.mark.parametrize(
    ("to_account_id", "expected"),
    [
        (4, EffectiveType.expense),
        (2, EffectiveType.expense),
        (3, EffectiveType.transfer_like),
        (5, EffectiveType.transfer_like),
        (999, EffectiveType.transfer_like),
    ],
)
def test_transfer_follows_destination_account(to_account_id, expected) -> None:
    entry = _entry(TransactionType.transfer, account_id=1, to_account_id=to_account_id)
    assert classify(entry, lookup) == expected


def test_cash_destination_transfer_is_neutral() -> None:
    entry = _entry(TransactionType.transfer, account_id=4, to_account_id=1)
    assert classify(entry, lookup) == EffectiveType.transfer_like


def test_invoice_card_purchase_and_cash_purchase_differ() -> None:
    on_card = _entry(TransactionType.expense, account_id=INVOICE_CARD.id, amount=10_000)
    in_cash = _entry(TransactionType.expense, account_id=CASH.id, amount=10_000)
    assert classify(on_card, lookup) == EffectiveType.transfer_like
    assert classify(in_cash, lookup) == EffectiveType.expense


def test_unknown_enum_values_fail_fast() -> None:
    with pytest.raises(UnrecognizedAccountType):
        AccountRef(id=9, type="SAVINGS")
    with pytest.raises(UnrecognizedDebitMethod):
        AccountRef(id=9, type="CREDIT", debit_method="MONTHLY")
    with pytest.raises(UnrecognizedTransactionType):
        _entry("REFUND")


def test_raw_values_are_coerced_to_enums() -> None:
    ref = AccountRef(id=9, type="CREDIT", debit_method="INVOICE")
    assert ref.type is AccountType.credit
    assert ref.debit_method is DebitMethod.invoice
    assert _entry("EXPENSE").type is TransactionType.expense


def test_settlement_transfer_is_booked_to_destination_subcategory() -> None:
    load = _entry(TransactionType.transfer, account_id=1, to_account_id=PREPAID.id)
    kind = classify(load, lookup)
    assert attributed_subcategory(load, kind, lookup) == 80

    groceries = _entry(TransactionType.expense, account_id=1, subcategory_id=12)
    kind = classify(groceries, lookup)
    assert attributed_subcategory(groceries, kind, lookup) == 12

    card_purchase = _entry(TransactionType.expense, account_id=2, subcategory_id=12)
    kind = classify(card_purchase, lookup)
    assert attributed_subcategory(card_purchase, kind, lookup) is None
