from __future__ import annotations

import enum
from typing import Any

from sqlalchemy import JSON, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from snapledger.core.models import Base, Timestamped, UUIDPrimaryKey


class ReceiptStatus(str, enum.Enum):
    UPLOADED = "UPLOADED"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class Receipt(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "receipts_receipt"

    storage_key: Mapped[str | None] = mapped_column(String(1024), unique=True, nullable=True)
    filename: Mapped[str] = mapped_column(String(512))
    mime_type: Mapped[str] = mapped_column(String(200))
    byte_size: Mapped[int] = mapped_column(Integer, default=0)
    sha256: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)

    status: Mapped[ReceiptStatus] = mapped_column(
        Enum(ReceiptStatus, native_enum=False), index=True
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    # Extraction payload on success, {"error", "kind", "attempt", "willRetry"} on failure.
    last_result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # Bumped on every reprocess; scheduled attempts from older generations are dropped.
    generation: Mapped[int] = mapped_column(Integer, default=0)
