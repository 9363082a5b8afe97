from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from models import AccountType, DebitMethod, EntityType, TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: EntityType
    group_id: Optional[int] = None


class SubcategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category_id: int


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    debit_method: Optional[DebitMethod] = None
    subcategory_id: Optional[int] = None
    credit_due_day: Optional[int] = Field(default=None, ge=1, le=31)
    credit_closing_day: Optional[int] = Field(default=None, ge=1, le=31)
    group_id: Optional[int] = None
    initial_balance_cents: Optional[int] = Field(default=None, ge=0)
    initial_balance_at: Optional[datetime] = None


class TransactionIn(BaseModel):
    occurred_at: datetime
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    account_id: int
    to_account_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    group_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def _check_shape(self) -> "TransactionIn":
        if self.type == TransactionType.transfer:
            if self.to_account_id is None:
                raise ValueError("Transfers require a destination account")
            if self.to_account_id == self.account_id:
                raise ValueError("Transfer accounts must differ")
        elif self.to_account_id is not None:
            raise ValueError("Only transfers have a destination account")
        if self.subcategory_id is not None and self.type not in (
            TransactionType.income,
            TransactionType.expense,
        ):
            raise ValueError("Only income and expense carry a subcategory")
        return self


class BalanceIn(BaseModel):
    amount_cents: int = Field(..., ge=0)
    as_of: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=200)


class BudgetCellIn(BaseModel):
    subcategory_id: int
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    amount_cents: int = Field(..., ge=0)
    group_id: Optional[int] = None
