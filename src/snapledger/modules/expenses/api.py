from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from snapledger.api.deps import get_current_user
from snapledger.core.db import db_session
from snapledger.modules.expenses.models import Expense
from snapledger.modules.expenses.schemas import (
    ExpenseCreateIn,
    ExpenseOut,
    ExpenseUpdateIn,
    ReprocessOut,
)
from snapledger.modules.expenses.service import (
    create_expense,
    delete_expense,
    get_expense_or_404,
    list_recent_expenses,
    update_expense,
)
from snapledger.modules.identity.models import User
from snapledger.modules.processing.service import reprocess_expense
from snapledger.modules.receipts.service import get_receipt, receipt_url

router = APIRouter(tags=["expenses"])


def _to_out(session: Session, expense: Expense) -> ExpenseOut:
    out = ExpenseOut.model_validate(expense, from_attributes=True)
    if expense.receipt_id is None:
        return out
    receipt = get_receipt(session, receipt_id=expense.receipt_id)
    if receipt is None:
        return out
    return out.model_copy(
        update={"receipt_url": receipt_url(receipt), "receipt_filename": receipt.filename}
    )


@router.get("/expenses", response_model=list[ExpenseOut])
def list_expenses_endpoint(
    limit: int = Query(20, ge=1, le=200),
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> list[ExpenseOut]:
    return [_to_out(session, e) for e in list_recent_expenses(session, limit=limit)]


@router.post("/expenses", response_model=ExpenseOut)
def create_expense_endpoint(
    payload: ExpenseCreateIn,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> ExpenseOut:
    expense = create_expense(session, **payload.model_dump())
    return _to_out(session, expense)


@router.get("/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense_endpoint(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> ExpenseOut:
    return _to_out(session, get_expense_or_404(session, expense_id=expense_id))


@router.patch("/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense_endpoint(
    expense_id: uuid.UUID,
    payload: ExpenseUpdateIn,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> ExpenseOut:
    expense = get_expense_or_404(session, expense_id=expense_id)
    expense = update_expense(
        session, expense=expense, changes=payload.model_dump(exclude_unset=True)
    )
    return _to_out(session, expense)


@router.delete("/expenses/{expense_id}")
def delete_expense_endpoint(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> Response:
    expense = get_expense_or_404(session, expense_id=expense_id)
    delete_expense(session, expense=expense)
    return Response(status_code=204)


@router.post("/expenses/{expense_id}/reprocess", response_model=ReprocessOut)
def reprocess_expense_endpoint(
    expense_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> ReprocessOut:
    expense = get_expense_or_404(session, expense_id=expense_id)
    scheduled = reprocess_expense(session, expense=expense)
    return ReprocessOut(expense_id=expense_id, scheduled=scheduled)
