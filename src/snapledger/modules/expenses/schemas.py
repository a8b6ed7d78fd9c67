from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

from snapledger.modules.expenses.models import ExpenseStatus
from snapledger.modules.extraction.schemas import MAX_AMOUNT


class ExpenseCreateIn(BaseModel):
    receipt_id: uuid.UUID | None = None
    merchant: str
    date: dt.date
    amount: Decimal = Field(ge=0, le=MAX_AMOUNT)
    currency: str
    category: str
    vat_number: str | None = None
    vat_rate: Decimal | None = Field(default=None, ge=0, le=100)
    vat_amount: Decimal | None = Field(default=None, ge=0, le=MAX_AMOUNT)
    confidence: float | None = Field(default=None, ge=0, le=1)
    notes: str | None = None


class ExpenseUpdateIn(BaseModel):
    merchant: str | None = None
    date: dt.date | None = None
    amount: Decimal | None = Field(default=None, ge=0, le=MAX_AMOUNT)
    currency: str | None = None
    category: str | None = None
    vat_number: str | None = None
    vat_rate: Decimal | None = Field(default=None, ge=0, le=100)
    vat_amount: Decimal | None = Field(default=None, ge=0, le=MAX_AMOUNT)
    notes: str | None = None


class ExpenseOut(BaseModel):
    id: uuid.UUID
    receipt_id: uuid.UUID | None
    merchant: str
    date: dt.date
    amount: Decimal
    currency: str
    category: str
    vat_number: str | None
    vat_rate: Decimal | None
    vat_amount: Decimal | None
    confidence: float | None
    notes: str | None
    status: ExpenseStatus
    receipt_url: str | None = None
    receipt_filename: str | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class ReprocessOut(BaseModel):
    expense_id: uuid.UUID
    scheduled: bool
