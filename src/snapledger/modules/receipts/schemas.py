from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from snapledger.modules.receipts.models import ReceiptStatus


class ReceiptOut(BaseModel):
    id: uuid.UUID
    filename: str
    mime_type: str
    byte_size: int
    status: ReceiptStatus
    retry_count: int
    last_result: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


class ReceiptUploadOut(BaseModel):
    receipt: ReceiptOut
    expense_id: uuid.UUID | None = None
