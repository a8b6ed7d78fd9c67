from __future__ import annotations

from celery import Celery

from snapledger.core.config import settings


def make_celery() -> Celery:
    app = Celery(
        "snapledger",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["snapledger.worker.tasks"],
    )
    app.conf.update(
        task_always_eager=settings.environment == "dev",
        task_eager_propagates=True,
        task_track_started=True,
        # Attempts are redelivered if a worker dies mid-run.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
    )
    return app


celery_app = make_celery()
