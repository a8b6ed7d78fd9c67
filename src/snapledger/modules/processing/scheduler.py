from __future__ import annotations

from snapledger.core.logging import get_logger, log_event

logger = get_logger(__name__)


class TaskScheduler:
    """Runs one processing attempt for a receipt, now or after a delay."""

    def schedule_after(
        self,
        delay_seconds: float,
        *,
        receipt_id: str,
        expense_id: str,
        generation: int,
        attempt: int,
    ) -> str | None:  # pragma: no cover
        raise NotImplementedError


class CeleryTaskScheduler(TaskScheduler):
    def schedule_after(
        self,
        delay_seconds: float,
        *,
        receipt_id: str,
        expense_id: str,
        generation: int,
        attempt: int,
    ) -> str | None:
        from snapledger.worker.tasks import process_receipt_task

        async_result = process_receipt_task.apply_async(
            kwargs={
                "receipt_id": receipt_id,
                "expense_id": expense_id,
                "generation": generation,
                "attempt": attempt,
            },
            countdown=delay_seconds if delay_seconds > 0 else None,
        )
        log_event(
            logger,
            "celery.task.enqueued",
            task_name="process_receipt",
            enqueued_task_id=async_result.id,
            receipt_id=receipt_id,
            expense_id=expense_id,
            generation=generation,
            attempt=attempt,
            delay_s=delay_seconds,
        )
        return async_result.id


_scheduler: TaskScheduler | None = None


def get_scheduler() -> TaskScheduler:
    global _scheduler  # noqa: PLW0603
    if _scheduler is None:
        _scheduler = CeleryTaskScheduler()
    return _scheduler
