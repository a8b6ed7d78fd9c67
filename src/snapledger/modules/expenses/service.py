from __future__ import annotations

import datetime as dt
import re
import uuid
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from snapledger.modules.expenses.models import Expense, ExpenseStatus
from snapledger.modules.extraction.categories import PLACEHOLDER_CATEGORY, normalize_category
from snapledger.modules.extraction.schemas import ExtractedReceipt

DEFAULT_LIST_LIMIT = 20

PLACEHOLDER_MERCHANT = "Processing..."
PLACEHOLDER_CURRENCY = "USD"

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_CENTS = Decimal("0.01")


def _money(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(value).quantize(_CENTS)


def _clean_merchant(value: Any) -> str:
    merchant = str(value or "").strip()
    if not merchant:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Merchant is required")
    return merchant[:200]


def _clean_currency(value: Any) -> str:
    currency = str(value or "").strip().upper()
    if not _CURRENCY_RE.match(currency):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Currency must be a 3-letter ISO-4217 code",
        )
    return currency


def _clean_category(value: Any) -> str:
    category = normalize_category(value)
    if category is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown category")
    return category


def _clean_optional_text(value: Any) -> str | None:
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def build_placeholder_expense(*, receipt_id: uuid.UUID, today: dt.date | None = None) -> Expense:
    """Unsaved expense holding placeholder values until extraction lands."""
    return Expense(
        receipt_id=receipt_id,
        merchant=PLACEHOLDER_MERCHANT,
        date=today or dt.date.today(),
        amount=Decimal("0.00"),
        currency=PLACEHOLDER_CURRENCY,
        category=PLACEHOLDER_CATEGORY,
        status=ExpenseStatus.PROCESSING,
    )


def create_expense(
    session: Session,
    *,
    merchant: str,
    date: dt.date,
    amount: Decimal,
    currency: str,
    category: str,
    receipt_id: uuid.UUID | None = None,
    vat_number: str | None = None,
    vat_rate: Decimal | None = None,
    vat_amount: Decimal | None = None,
    confidence: float | None = None,
    notes: str | None = None,
) -> Expense:
    if amount < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be >= 0")
    expense = Expense(
        receipt_id=receipt_id,
        merchant=_clean_merchant(merchant),
        date=date,
        amount=_money(amount),
        currency=_clean_currency(currency),
        category=_clean_category(category),
        vat_number=_clean_optional_text(vat_number),
        vat_rate=vat_rate,
        vat_amount=_money(vat_amount),
        confidence=confidence,
        notes=_clean_optional_text(notes),
        status=ExpenseStatus.APPROVED,
    )
    session.add(expense)
    session.commit()
    session.refresh(expense)
    return expense


def get_expense(session: Session, *, expense_id: uuid.UUID) -> Expense | None:
    return session.scalar(select(Expense).where(Expense.id == expense_id))


def get_expense_or_404(session: Session, *, expense_id: uuid.UUID) -> Expense:
    expense = get_expense(session, expense_id=expense_id)
    if not expense:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
    return expense


def list_recent_expenses(session: Session, *, limit: int = DEFAULT_LIST_LIMIT) -> list[Expense]:
    return list(
        session.scalars(select(Expense).order_by(Expense.created_at.desc()).limit(limit))
    )


def update_expense(session: Session, *, expense: Expense, changes: dict[str, Any]) -> Expense:
    """
    Apply a user edit.

    An edited expense counts as reviewed: it moves to APPROVED, and the pipeline
    will no longer write extraction results into it.
    """
    if "merchant" in changes:
        expense.merchant = _clean_merchant(changes["merchant"])
    if "date" in changes:
        if changes["date"] is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Date is required")
        expense.date = changes["date"]
    if "amount" in changes:
        amount = changes["amount"]
        if amount is None or amount < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST, detail="Amount must be >= 0"
            )
        expense.amount = _money(amount)
    if "currency" in changes:
        expense.currency = _clean_currency(changes["currency"])
    if "category" in changes:
        expense.category = _clean_category(changes["category"])
    if "vat_number" in changes:
        expense.vat_number = _clean_optional_text(changes["vat_number"])
    if "vat_rate" in changes:
        expense.vat_rate = changes["vat_rate"]
    if "vat_amount" in changes:
        expense.vat_amount = _money(changes["vat_amount"])
    if "notes" in changes:
        expense.notes = _clean_optional_text(changes["notes"])

    expense.status = ExpenseStatus.APPROVED
    session.add(expense)
    session.commit()
    session.refresh(expense)
    return expense


def delete_expense(session: Session, *, expense: Expense) -> None:
    session.delete(expense)
    session.commit()


def apply_processing_result(expense: Expense, *, fields: ExtractedReceipt) -> None:
    """Stage extracted values on the expense and approve it. The caller commits."""
    expense.merchant = fields.merchant[:200]
    expense.date = fields.date
    expense.amount = _money(fields.amount)
    expense.currency = fields.currency
    expense.category = fields.category
    expense.vat_number = fields.vat_number
    expense.vat_rate = fields.vat_rate
    expense.vat_amount = _money(fields.vat_amount)
    expense.confidence = fields.confidence
    expense.status = ExpenseStatus.APPROVED


def set_expense_status(expense: Expense, *, status: ExpenseStatus, notes: str | None) -> None:
    expense.status = status
    expense.notes = notes
