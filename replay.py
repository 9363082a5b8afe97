from __future__ import annotations

from typing import Iterable, Iterator

from ledger import LedgerEntry
from models import TransactionType


def account_effect(entry: LedgerEntry, account_id: int) -> int:
    """Signed change ``entry`` made to ``account_id``'s balance (anchors excluded)."""
    if entry.type in (TransactionType.income, TransactionType.expense):
        if entry.account_id != account_id:
            return 0
        if entry.type == TransactionType.income:
            return entry.amount_cents
        return -entry.amount_cents
    if entry.type == TransactionType.transfer:
        if entry.account_id == account_id:
            return -entry.amount_cents
        if entry.to_account_id == account_id:
            return entry.amount_cents
    return 0


def _walk_backward(
    current_balance: int, history: Iterable[LedgerEntry], account_id: int
) -> Iterator[tuple[LedgerEntry, int, int]]:
    """Yield ``(entry, balance_after, balance_before)`` newest to oldest."""
    running = current_balance
    newest_first = sorted(history, key=lambda e: (e.occurred_at, e.id), reverse=True)
    for entry in newest_first:
        if entry.type == TransactionType.update:
            # An anchor restates the balance whatever the replay had reached.
            running = entry.amount_cents
            yield entry, running, running
            continue
        after = running
        running = running - account_effect(entry, account_id)
        yield entry, after, running


def replay(
    current_balance: int, history: Iterable[LedgerEntry], account_id: int
) -> dict[int, int]:
    return {
        entry.id: after
        for entry, after, _ in _walk_backward(current_balance, history, account_id)
    }


def opening_balance(
    current_balance: int, history: Iterable[LedgerEntry], account_id: int
) -> int:
    """Balance implied immediately before the oldest entry of ``history``."""
    before = current_balance
    for _, _, before in _walk_backward(current_balance, history, account_id):
        pass
    return before
