from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from app.models.budget import MAX_AMOUNT


class FundType(str, Enum):
    BORROWED = "BORROWED"
    GIVEN = "GIVEN"


class FundRequest(BaseModel):
    person_name: str = Field(..., min_length=1)
    type: FundType
    principal_amount: float = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False)
    # Now on create; the stored date on update
    start_date: Optional[datetime] = None
    notes: Optional[str] = ""

    @field_validator("person_name")
    @classmethod
    def person_name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("person name is required")
        return value


class TransactionRequest(BaseModel):
    amount: float = Field(..., gt=0, le=MAX_AMOUNT, allow_inf_nan=False)
    date: Optional[datetime] = None
    note: Optional[str] = ""


class TransactionPublic(BaseModel):
    transaction_id: str
    fund_id: str
    amount: float
    date: str
    note: Optional[str] = ""
    created_at: str


class FundPublic(BaseModel):
    fund_id: str
    person_name: str
    type: FundType
    principal_amount: float
    start_date: str
    notes: Optional[str] = ""
    total_paid: float
    outstanding: float
    status: str
    transactions: List[TransactionPublic] = []
    created_at: str
    updated_at: str


def new_id() -> str:
    return uuid4().hex
