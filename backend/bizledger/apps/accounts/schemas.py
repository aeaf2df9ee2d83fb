# backend/bizledger/apps/accounts/schemas.py

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .models import TransactionDirection


class IdentityRead(BaseModel):
    id: str
    email: str


class BusinessRead(BaseModel):
    id: str
    name: str
    account_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MembershipRead(BaseModel):
    business: BusinessRead
    role: str

    class Config:
        from_attributes = True


class TransactionCreate(BaseModel):
    txn_date: date
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    direction: TransactionDirection = TransactionDirection.DEBIT
    description: str = Field("", max_length=255)
    category: str = Field("", max_length=64)


class TransactionRead(BaseModel):
    id: str
    business_id: str
    txn_date: date
    amount: Decimal
    direction: str
    description: str
    category: str
    created_at: datetime

    class Config:
        from_attributes = True
