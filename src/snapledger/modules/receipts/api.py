from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from sqlalchemy.orm import Session

from snapledger.api.deps import get_current_user
from snapledger.core.db import db_session
from snapledger.core.logging import get_logger, log_event
from snapledger.core.storage import StorageError, get_storage
from snapledger.modules.identity.models import User
from snapledger.modules.processing.service import start_job, start_job_for_receipt
from snapledger.modules.receipts.schemas import ReceiptOut, ReceiptUploadOut
from snapledger.modules.receipts.service import (
    create_receipt,
    delete_receipt,
    get_receipt_or_404,
    list_recent_receipts,
)

router = APIRouter(tags=["receipts"])
logger = get_logger(__name__)


@router.post("/receipts", response_model=ReceiptUploadOut)
async def upload_receipt(
    file: UploadFile = File(...),
    process: bool = True,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> ReceiptUploadOut:
    body = await file.read()
    if not body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing file.")
    filename = file.filename or "receipt"
    log_event(
        logger,
        "upload.received",
        filename=filename,
        content_type=file.content_type,
        byte_size=len(body),
        process=process,
    )
    if not process:
        receipt = await run_in_threadpool(
            create_receipt, session, body=body, filename=filename, mime_type=file.content_type
        )
        return ReceiptUploadOut(receipt=ReceiptOut.model_validate(receipt, from_attributes=True))

    receipt, expense = await run_in_threadpool(
        start_job, session, body=body, filename=filename, mime_type=file.content_type
    )
    return ReceiptUploadOut(
        receipt=ReceiptOut.model_validate(receipt, from_attributes=True),
        expense_id=expense.id,
    )


@router.get("/receipts", response_model=list[ReceiptOut])
def list_receipts(
    limit: int = Query(20, ge=1, le=200),
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> list[ReceiptOut]:
    receipts = list_recent_receipts(session, limit=limit)
    return [ReceiptOut.model_validate(r, from_attributes=True) for r in receipts]


@router.get("/receipts/{receipt_id}", response_model=ReceiptOut)
def get_receipt_endpoint(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> ReceiptOut:
    receipt = get_receipt_or_404(session, receipt_id=receipt_id)
    return ReceiptOut.model_validate(receipt, from_attributes=True)


@router.post("/receipts/{receipt_id}/process", response_model=ReceiptUploadOut)
def process_receipt_endpoint(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> ReceiptUploadOut:
    receipt = get_receipt_or_404(session, receipt_id=receipt_id)
    receipt, expense = start_job_for_receipt(session, receipt=receipt)
    return ReceiptUploadOut(
        receipt=ReceiptOut.model_validate(receipt, from_attributes=True),
        expense_id=expense.id,
    )


@router.get("/receipts/{receipt_id}/download")
def download_receipt(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> Response:
    receipt = get_receipt_or_404(session, receipt_id=receipt_id)
    if not receipt.storage_key:
        return Response(status_code=404)
    try:
        body = get_storage().get(key=receipt.storage_key)
    except StorageError:
        return Response(status_code=404)
    return Response(content=body, media_type=receipt.mime_type or "application/octet-stream")


@router.delete("/receipts/{receipt_id}")
def delete_receipt_endpoint(
    receipt_id: uuid.UUID,
    session: Session = Depends(db_session),
    _: User = Depends(get_current_user),
) -> Response:
    receipt = get_receipt_or_404(session, receipt_id=receipt_id)
    delete_receipt(session, receipt=receipt)
    return Response(status_code=204)
