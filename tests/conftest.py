from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any snapledger imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.snapledger_test.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")


class RecordingScheduler:
    """Captures scheduled attempts instead of dispatching them to Celery."""

    def __init__(self) -> None:
        self.calls: list[dict] = []

    def schedule_after(self, delay_seconds, *, receipt_id, expense_id, generation, attempt):
        self.calls.append(
            {
                "delay": delay_seconds,
                "receipt_id": receipt_id,
                "expense_id": expense_id,
                "generation": generation,
                "attempt": attempt,
            }
        )
        return f"task-{len(self.calls)}"

    @property
    def delays(self) -> list[float]:
        return [c["delay"] for c in self.calls]

    def last(self) -> dict:
        return self.calls[-1]


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import snapledger.models  # noqa: F401
    from snapledger.core.db import engine
    from snapledger.core.models import Base

    # Reset storage cache and directory
    import snapledger.core.storage as storage_mod

    storage_mod._storage = None

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture(autouse=True)
def scheduler(monkeypatch) -> RecordingScheduler:
    import snapledger.modules.processing.scheduler as scheduler_mod

    recording = RecordingScheduler()
    monkeypatch.setattr(scheduler_mod, "_scheduler", recording)
    return recording
