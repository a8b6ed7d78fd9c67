from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from snapledger.core.logging import get_logger, log_event
from snapledger.core.storage import StorageError, get_storage
from snapledger.modules.expenses.models import Expense
from snapledger.modules.receipts.models import Receipt, ReceiptStatus

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 20


def _sanitize_filename(name: str) -> str:
    name = name.replace("\\", "/").split("/")[-1].strip()
    return " ".join(name.split())


def build_receipt(
    *,
    body: bytes,
    filename: str,
    mime_type: str | None,
    status: ReceiptStatus = ReceiptStatus.UPLOADED,
) -> Receipt:
    """Store the blob and return an unsaved receipt pointing at it."""
    clean_name = _sanitize_filename(filename) or "receipt"
    key = f"receipts/{uuid.uuid4()}-{clean_name}"
    stored = get_storage().put(key=key, body=body)
    return Receipt(
        storage_key=stored.key,
        filename=clean_name,
        mime_type=mime_type or "application/octet-stream",
        byte_size=stored.byte_size,
        sha256=hashlib.sha256(body).hexdigest(),
        status=status,
        retry_count=0,
        last_result=None,
        generation=0,
    )


def create_receipt(
    session: Session, *, body: bytes, filename: str, mime_type: str | None
) -> Receipt:
    receipt = build_receipt(body=body, filename=filename, mime_type=mime_type)
    session.add(receipt)
    session.commit()
    session.refresh(receipt)
    return receipt


def get_receipt(session: Session, *, receipt_id: uuid.UUID) -> Receipt | None:
    return session.scalar(select(Receipt).where(Receipt.id == receipt_id))


def get_receipt_or_404(session: Session, *, receipt_id: uuid.UUID) -> Receipt:
    receipt = get_receipt(session, receipt_id=receipt_id)
    if not receipt:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    return receipt


def list_recent_receipts(session: Session, *, limit: int = DEFAULT_LIST_LIMIT) -> list[Receipt]:
    return list(
        session.scalars(select(Receipt).order_by(Receipt.created_at.desc()).limit(limit))
    )


def receipt_url(receipt: Receipt) -> str | None:
    if not receipt.storage_key:
        return None
    try:
        return get_storage().url(key=receipt.storage_key)
    except StorageError:
        return None


# The three state writers below only stage changes; the caller commits so a
# receipt patch can share a transaction with its expense patch.


def set_extraction_result(
    receipt: Receipt, *, status: ReceiptStatus, result: dict[str, Any] | None
) -> None:
    receipt.status = status
    receipt.last_result = result


def update_processing_state(
    receipt: Receipt,
    *,
    status: ReceiptStatus,
    retry_count: int,
    result: dict[str, Any] | None,
) -> None:
    receipt.status = status
    receipt.retry_count = retry_count
    receipt.last_result = result


def reset_for_reprocess(receipt: Receipt) -> None:
    receipt.status = ReceiptStatus.PROCESSING
    receipt.retry_count = 0
    receipt.last_result = None
    receipt.generation = (receipt.generation or 0) + 1


def delete_receipt(session: Session, *, receipt: Receipt) -> None:
    """Delete a receipt and its blob. Linked expenses keep their values and lose the link."""
    receipt_id = receipt.id
    storage_key = receipt.storage_key
    session.execute(
        update(Expense).where(Expense.receipt_id == receipt_id).values(receipt_id=None)
    )
    session.delete(receipt)
    session.commit()

    if storage_key:
        try:
            get_storage().delete(key=storage_key)
        except (StorageError, OSError):
            log_event(
                logger,
                "receipt.blob.orphaned",
                level=logging.WARNING,
                receipt_id=str(receipt_id),
                storage_key=storage_key,
            )
    log_event(logger, "receipt.deleted", receipt_id=str(receipt_id))
