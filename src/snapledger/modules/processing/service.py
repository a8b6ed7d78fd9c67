from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from snapledger.core.config import settings
from snapledger.core.db import SessionLocal
from snapledger.core.logging import get_logger, log_event, log_exception, monotonic_ms
from snapledger.core.storage import StorageError, get_storage
from snapledger.modules.expenses.models import Expense, ExpenseStatus
from snapledger.modules.expenses.service import (
    apply_processing_result,
    build_placeholder_expense,
    set_expense_status,
)
from snapledger.modules.extraction.schemas import (
    ExtractionFailure,
    ExtractionResult,
    MissingCredentials,
)
from snapledger.modules.extraction.service import get_extraction_client
from snapledger.modules.processing.scheduler import get_scheduler
from snapledger.modules.receipts.models import Receipt, ReceiptStatus
from snapledger.modules.receipts.service import (
    build_receipt,
    reset_for_reprocess,
    set_extraction_result,
    update_processing_state,
)

logger = get_logger(__name__)

FAILED_NOTE = "Auto-processing failed. Please edit the expense."
REPROCESS_NOTE = "Reprocessing receipt."

_DEFAULT_BACKOFF_SECONDS = (10, 30, 120, 300)


@dataclass(frozen=True)
class AttemptFailure:
    message: str
    kind: str


def max_attempts() -> int:
    return int(settings.processing_max_attempts)


def backoff_seconds(attempt: int) -> int:
    """Delay before re-running after failed attempt number `attempt` (1-based)."""
    table = list(settings.processing_backoff_seconds or _DEFAULT_BACKOFF_SECONDS)
    idx = min(max(attempt, 1), len(table)) - 1
    return int(table[idx])


def start_job(
    session: Session, *, body: bytes, filename: str, mime_type: str | None
) -> tuple[Receipt, Expense]:
    """Store an upload, create its receipt and placeholder expense, and enqueue processing."""
    receipt = build_receipt(
        body=body, filename=filename, mime_type=mime_type, status=ReceiptStatus.PROCESSING
    )
    session.add(receipt)
    session.flush()
    return _open_job(session, receipt=receipt)


def start_job_for_receipt(session: Session, *, receipt: Receipt) -> tuple[Receipt, Expense]:
    """Start processing a receipt that was uploaded without it."""
    if receipt.status != ReceiptStatus.UPLOADED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Receipt has already been processed"
        )
    receipt.status = ReceiptStatus.PROCESSING
    session.add(receipt)
    return _open_job(session, receipt=receipt)


def _open_job(session: Session, *, receipt: Receipt) -> tuple[Receipt, Expense]:
    expense = build_placeholder_expense(receipt_id=receipt.id)
    session.add(expense)
    session.commit()
    session.refresh(receipt)
    session.refresh(expense)

    log_event(
        logger,
        "processing.job.created",
        receipt_id=str(receipt.id),
        expense_id=str(expense.id),
        filename=receipt.filename,
        mime_type=receipt.mime_type,
        byte_size=receipt.byte_size,
    )
    _enqueue_first_attempt(session, receipt=receipt, expense=expense)
    return receipt, expense


def _schedule(receipt: Receipt, *, expense_uuid: uuid.UUID, delay: int) -> None:
    # The task carries the attempt it is meant to run; a redelivered copy
    # finds retry_count already moved on and is dropped.
    get_scheduler().schedule_after(
        delay,
        receipt_id=str(receipt.id),
        expense_id=str(expense_uuid),
        generation=receipt.generation,
        attempt=receipt.retry_count + 1,
    )


def _enqueue_first_attempt(session: Session, *, receipt: Receipt, expense: Expense) -> None:
    try:
        _schedule(receipt, expense_uuid=expense.id, delay=0)
    except Exception as e:
        log_exception(logger, "processing.enqueue_failed", receipt_id=str(receipt.id))
        _mark_failed(
            session,
            receipt=receipt,
            expense_uuid=expense.id,
            descriptor={
                "error": "Unable to schedule processing.",
                "kind": "SCHEDULE_FAILED",
                "attempt": receipt.retry_count + 1,
                "willRetry": False,
            },
            retry_count=receipt.retry_count,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Processing queue unavailable",
        ) from e


def run_attempt(
    *,
    receipt_id: str,
    expense_id: str,
    generation: int | None = None,
    attempt: int | None = None,
) -> None:
    """
    Run one extraction attempt for a receipt.

    Safe to deliver more than once: a task whose generation or attempt number
    no longer matches the receipt is dropped. Every failure ends in a state
    transition on the records; nothing is raised to the task runner.
    """
    receipt_uuid = uuid.UUID(receipt_id)
    expense_uuid = uuid.UUID(expense_id)

    with SessionLocal() as session:
        receipt = session.get(Receipt, receipt_uuid)
        if receipt is None:
            _fail_missing_receipt(session, receipt_id=receipt_id, expense_uuid=expense_uuid)
            return

        if generation is not None and receipt.generation != generation:
            log_event(
                logger,
                "processing.attempt.stale",
                receipt_id=receipt_id,
                expense_id=expense_id,
                task_generation=generation,
                record_generation=receipt.generation,
            )
            return
        if receipt.status != ReceiptStatus.PROCESSING:
            log_event(
                logger,
                "processing.attempt.stale",
                receipt_id=receipt_id,
                expense_id=expense_id,
                receipt_status=receipt.status.value,
            )
            return
        if attempt is not None and receipt.retry_count + 1 != attempt:
            log_event(
                logger,
                "processing.attempt.stale",
                receipt_id=receipt_id,
                expense_id=expense_id,
                task_attempt=attempt,
                record_attempt=receipt.retry_count + 1,
            )
            return

        current = receipt.retry_count + 1
        start = time.monotonic()
        log_event(
            logger,
            "processing.attempt.start",
            receipt_id=receipt_id,
            expense_id=expense_id,
            attempt=current,
            generation=receipt.generation,
        )

        outcome = _extract(receipt)
        if isinstance(outcome, AttemptFailure):
            fail_and_maybe_retry(
                session, receipt=receipt, expense_uuid=expense_uuid, failure=outcome
            )
            return

        try:
            _record_success(session, receipt=receipt, expense_uuid=expense_uuid, result=outcome)
        except Exception:  # noqa: BLE001
            session.rollback()
            log_exception(logger, "processing.result.save_failed", receipt_id=receipt_id)
            receipt = session.get(Receipt, receipt_uuid)
            if receipt is None:
                return
            fail_and_maybe_retry(
                session,
                receipt=receipt,
                expense_uuid=expense_uuid,
                failure=AttemptFailure("Saving extraction result failed.", "STORAGE_WRITE"),
            )
            return

        log_event(
            logger,
            "processing.attempt.success",
            receipt_id=receipt_id,
            expense_id=expense_id,
            attempt=current,
            confidence=outcome.fields.confidence,
            duration_ms=monotonic_ms(start),
        )


def _extract(receipt: Receipt) -> ExtractionResult | AttemptFailure:
    if not receipt.storage_key:
        return AttemptFailure("Receipt file is missing.", "MISSING_DOCUMENT")
    try:
        client = get_extraction_client()
    except MissingCredentials as e:
        return AttemptFailure(str(e), MissingCredentials.kind.value)

    with client:
        storage = get_storage()
        try:
            storage.url(key=receipt.storage_key)
        except StorageError:
            return AttemptFailure("Unable to fetch receipt.", "DOCUMENT_UNAVAILABLE")
        try:
            body = storage.get(key=receipt.storage_key)
        except (StorageError, OSError):
            return AttemptFailure("Receipt download failed.", "DOCUMENT_UNAVAILABLE")

        try:
            result = client.extract(
                body=body, filename=receipt.filename, mime_type=receipt.mime_type
            )
        except Exception as e:  # noqa: BLE001
            log_exception(logger, "processing.extract.error", receipt_id=str(receipt.id))
            return AttemptFailure(f"Unexpected extraction error: {e}", "UNEXPECTED")

    if isinstance(result, ExtractionFailure):
        return AttemptFailure(result.describe(), result.kind.value)
    return result


def _record_success(
    session: Session, *, receipt: Receipt, expense_uuid: uuid.UUID, result: ExtractionResult
) -> None:
    expense = session.get(Expense, expense_uuid)
    if expense is not None and expense.status == ExpenseStatus.PROCESSING:
        apply_processing_result(expense, fields=result.fields)
    else:
        log_event(
            logger,
            "processing.result.expense_skipped",
            receipt_id=str(receipt.id),
            expense_id=str(expense_uuid),
            expense_status=expense.status.value if expense else None,
        )
    set_extraction_result(receipt, status=ReceiptStatus.PROCESSED, result=result.raw)
    session.commit()


def fail_and_maybe_retry(
    session: Session,
    *,
    receipt: Receipt,
    expense_uuid: uuid.UUID,
    failure: AttemptFailure,
) -> None:
    """Record a failed attempt, then either schedule the next one or give up."""
    cap = max_attempts()
    attempt = receipt.retry_count + 1
    will_retry = attempt <= cap
    descriptor = {
        "error": failure.message,
        "kind": failure.kind,
        "attempt": attempt,
        "willRetry": will_retry,
    }

    log_event(
        logger,
        "processing.attempt.failure",
        level=logging.WARNING,
        receipt_id=str(receipt.id),
        expense_id=str(expense_uuid),
        attempt=attempt,
        kind=failure.kind,
        error=failure.message,
        will_retry=will_retry,
    )

    if will_retry:
        update_processing_state(
            receipt, status=ReceiptStatus.PROCESSING, retry_count=attempt, result=descriptor
        )
        session.commit()
        delay = backoff_seconds(attempt)
        try:
            _schedule(receipt, expense_uuid=expense_uuid, delay=delay)
        except Exception:  # noqa: BLE001
            log_exception(
                logger, "processing.retry.schedule_failed", receipt_id=str(receipt.id)
            )
            _mark_failed(
                session,
                receipt=receipt,
                expense_uuid=expense_uuid,
                descriptor={**descriptor, "willRetry": False},
                retry_count=attempt,
            )
            return
        log_event(
            logger,
            "processing.retry.scheduled",
            receipt_id=str(receipt.id),
            expense_id=str(expense_uuid),
            attempt=attempt,
            delay_s=delay,
        )
        return

    _mark_failed(
        session,
        receipt=receipt,
        expense_uuid=expense_uuid,
        descriptor=descriptor,
        retry_count=min(attempt, cap),
    )


def _mark_failed(
    session: Session,
    *,
    receipt: Receipt,
    expense_uuid: uuid.UUID,
    descriptor: dict,
    retry_count: int,
) -> None:
    update_processing_state(
        receipt, status=ReceiptStatus.FAILED, retry_count=retry_count, result=descriptor
    )
    expense = session.get(Expense, expense_uuid)
    if expense is not None and expense.status == ExpenseStatus.PROCESSING:
        set_expense_status(expense, status=ExpenseStatus.FAILED, notes=FAILED_NOTE)
    session.commit()
    log_event(
        logger,
        "processing.failed",
        level=logging.WARNING,
        receipt_id=str(receipt.id),
        expense_id=str(expense_uuid),
        attempts=descriptor.get("attempt"),
        error=descriptor.get("error"),
    )


def _fail_missing_receipt(session: Session, *, receipt_id: str, expense_uuid: uuid.UUID) -> None:
    log_event(
        logger,
        "processing.attempt.failure",
        level=logging.WARNING,
        receipt_id=receipt_id,
        expense_id=str(expense_uuid),
        attempt=1,
        kind="MISSING_RECORD",
        error="Receipt record is missing.",
        will_retry=False,
    )
    expense = session.get(Expense, expense_uuid)
    if expense is not None and expense.status == ExpenseStatus.PROCESSING:
        set_expense_status(expense, status=ExpenseStatus.FAILED, notes=FAILED_NOTE)
        session.commit()


def reprocess_expense(session: Session, *, expense: Expense) -> bool:
    """
    Reset the expense's receipt and run the pipeline again from attempt 1.

    Returns False (and does nothing) when the expense has no linked receipt.
    """
    if expense.receipt_id is None:
        return False
    receipt = session.get(Receipt, expense.receipt_id)
    if receipt is None:
        return False

    set_expense_status(expense, status=ExpenseStatus.PROCESSING, notes=REPROCESS_NOTE)
    reset_for_reprocess(receipt)
    session.commit()
    session.refresh(receipt)

    log_event(
        logger,
        "processing.reprocess",
        receipt_id=str(receipt.id),
        expense_id=str(expense.id),
        generation=receipt.generation,
    )
    _enqueue_first_attempt(session, receipt=receipt, expense=expense)
    return True
