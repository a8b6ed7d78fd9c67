from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import snapledger.models  # noqa: F401
# isort: on

import time

from snapledger.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    task_context,
)
from snapledger.worker.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="process_receipt", bind=True)
def process_receipt_task(
    self,
    receipt_id: str,
    expense_id: str,
    generation: int | None = None,
    attempt: int | None = None,
) -> None:
    from snapledger.modules.processing.service import run_attempt

    task_id = getattr(self.request, "id", None)
    with task_context(task_id):
        start = time.monotonic()
        log_event(
            logger,
            "celery.task.start",
            task_name="process_receipt",
            receipt_id=receipt_id,
            expense_id=expense_id,
            generation=generation,
            attempt=attempt,
        )
        try:
            run_attempt(
                receipt_id=receipt_id,
                expense_id=expense_id,
                generation=generation,
                attempt=attempt,
            )
        except Exception:
            log_exception(
                logger,
                "celery.task.error",
                task_name="process_receipt",
                receipt_id=receipt_id,
                expense_id=expense_id,
                duration_ms=monotonic_ms(start),
            )
            raise
        log_event(
            logger,
            "celery.task.finish",
            task_name="process_receipt",
            receipt_id=receipt_id,
            expense_id=expense_id,
            duration_ms=monotonic_ms(start),
        )
