from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from app.utils.periods import to_iso


# Largest amount accepted for incomes, expenses, principals and payments
MAX_AMOUNT = 1_000_000_000_000


def _require_title(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("title is required")
    return value


class BaseIncomeRequest(BaseModel):
    amount: float = Field(..., ge=0, le=MAX_AMOUNT, allow_inf_nan=False)
    year: int = Field(..., gt=0)
    month: int = Field(..., ge=1, le=12)


class ExpenseCreate(BaseModel):
    title: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False)
    year: int = Field(..., gt=0)
    month: int = Field(..., ge=1, le=12)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        return _require_title(value)


class ExpenseUpdate(BaseModel):
    title: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        return _require_title(value)


class ExpenseInDB(BaseModel):
    expense_id: str = Field(default_factory=lambda: uuid4().hex)
    title: str
    amount: float
    created_at: str = Field(default_factory=to_iso)


class ExpensePublic(BaseModel):
    expense_id: str
    title: str
    amount: float
    created_at: str


class BudgetPublic(BaseModel):
    year: int
    month: int
    month_name: str
    base_income: Optional[float] = None
    expenses: List[ExpensePublic] = []
    total_expenses: float = 0.0
    remaining: Optional[float] = None
