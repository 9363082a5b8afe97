from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from database import Base


class AccountType(str, Enum):
    cash = "CASH"
    credit = "CREDIT"
    prepaid = "PREPAID"


class DebitMethod(str, Enum):
    invoice = "INVOICE"
    per_purchase = "PER_PURCHASE"


class TransactionType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"
    transfer = "TRANSFER"
    update = "UPDATE"


class EntityType(str, Enum):
    """Kind of category, subcategory and budget row."""

    income = "INCOME"
    expense = "EXPENSE"


class UnrecognizedAccountType(ValueError):
    pass


class UnrecognizedDebitMethod(UnrecognizedAccountType):
    pass


class UnrecognizedTransactionType(ValueError):
    pass


def parse_account_type(value: object) -> AccountType:
    try:
        return AccountType(value)
    except ValueError as exc:
        raise UnrecognizedAccountType(f"Unrecognized account type: {value!r}") from exc


def parse_debit_method(value: object) -> Optional[DebitMethod]:
    if value is None:
        return None
    try:
        return DebitMethod(value)
    except ValueError as exc:
        raise UnrecognizedDebitMethod(f"Unrecognized debit method: {value!r}") from exc


def parse_transaction_type(value: object) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError as exc:
        raise UnrecognizedTransactionType(
            f"Unrecognized transaction type: {value!r}"
        ) from exc


class ValueEnum(TypeDecorator):
    """Enum stored by its value; stored values go back through ``parse``."""

    impl = String
    cache_ok = True

    def __init__(self, parse, length: int = 20) -> None:
        super().__init__(length=length)
        self.parse = parse

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return self.parse(value).value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self.parse(value)


ACCOUNT_TYPE_ENUM = ValueEnum(parse_account_type)
DEBIT_METHOD_ENUM = ValueEnum(parse_debit_method)
TRANSACTION_TYPE_ENUM = ValueEnum(parse_transaction_type)
ENTITY_TYPE_ENUM = ValueEnum(EntityType)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    group_id: Mapped[Optional[int]] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[EntityType] = mapped_column(ENTITY_TYPE_ENUM, nullable=False)

    subcategories: Mapped[list["Subcategory"]] = relationship(
        "Subcategory", back_populates="category"
    )


class Subcategory(Base, TimestampMixin):
    __tablename__ = "subcategories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    group_id: Mapped[Optional[int]] = mapped_column(Integer)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[EntityType] = mapped_column(ENTITY_TYPE_ENUM, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="subcategories"
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    group_id: Mapped[Optional[int]] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(ACCOUNT_TYPE_ENUM, nullable=False)
    debit_method: Mapped[Optional[DebitMethod]] = mapped_column(DEBIT_METHOD_ENUM)
    # Settlement subcategory for prepaid and invoice-style credit accounts.
    subcategory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id")
    )
    credit_due_day: Mapped[Optional[int]] = mapped_column(Integer)
    credit_closing_day: Mapped[Optional[int]] = mapped_column(Integer)

    subcategory: Mapped[Optional["Subcategory"]] = relationship("Subcategory")

    __table_args__ = (
        CheckConstraint(
            "credit_due_day IS NULL OR (credit_due_day BETWEEN 1 AND 31)",
            name="ck_account_due_day_range",
        ),
        CheckConstraint(
            "credit_closing_day IS NULL OR (credit_closing_day BETWEEN 1 AND 31)",
            name="ck_account_closing_day_range",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    group_id: Mapped[Optional[int]] = mapped_column(Integer)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    to_account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))
    subcategory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id")
    )
    note: Mapped[Optional[str]] = mapped_column(Text)

    account: Mapped["Account"] = relationship("Account", foreign_keys=[account_id])
    to_account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[to_account_id]
    )
    subcategory: Mapped[Optional["Subcategory"]] = relationship("Subcategory")

    __table_args__ = (
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index("ix_transactions_group_occurred", "group_id", "occurred_at"),
        Index("ix_transactions_account_occurred", "account_id", "occurred_at"),
        Index("ix_transactions_to_account_occurred", "to_account_id", "occurred_at"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "to_account_id IS NULL OR to_account_id != account_id",
            name="ck_transactions_transfer_distinct",
        ),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    group_id: Mapped[Optional[int]] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    subcategory_id: Mapped[int] = mapped_column(
        ForeignKey("subcategories.id"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[EntityType] = mapped_column(ENTITY_TYPE_ENUM, nullable=False)

    subcategory: Mapped["Subcategory"] = relationship("Subcategory")

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
        UniqueConstraint(
            "user_id",
            "group_id",
            "subcategory_id",
            "year",
            "month",
            name="uq_budget_scope_cell",
        ),
        Index("ix_budget_user_year", "user_id", "year"),
        Index("ix_budget_group_year", "group_id", "year"),
    )
