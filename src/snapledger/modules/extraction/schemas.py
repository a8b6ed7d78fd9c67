from __future__ import annotations

import datetime as dt
import enum
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from snapledger.modules.extraction.categories import DEFAULT_CATEGORIES, normalize_category

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

EXCERPT_CHARS = 500

RECEIPT_JSON_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "merchant": {"type": "string"},
        "date": {"type": "string", "description": "ISO date (YYYY-MM-DD)"},
        "amount": {"type": "number"},
        "currency": {"type": "string"},
        "category": {"type": "string", "enum": list(DEFAULT_CATEGORIES)},
        "vatNumber": {"type": ["string", "null"]},
        "vatRate": {"type": ["number", "null"]},
        "vatAmount": {"type": ["number", "null"]},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
    "required": [
        "merchant",
        "date",
        "amount",
        "currency",
        "category",
        "vatNumber",
        "vatRate",
        "vatAmount",
        "confidence",
    ],
    "additionalProperties": False,
}


# Largest value a Numeric(12, 2) money column holds.
MAX_AMOUNT = Decimal("9999999999.99")


class ExtractedReceipt(BaseModel):
    """Validated extraction payload. Nullable fields are still required keys."""

    model_config = ConfigDict(populate_by_name=True)

    merchant: str = Field(min_length=1, max_length=200)
    date: dt.date
    amount: Decimal = Field(ge=0, le=MAX_AMOUNT)
    currency: str
    category: str
    vat_number: str | None = Field(alias="vatNumber")
    vat_rate: Decimal | None = Field(alias="vatRate", ge=0, le=100)
    vat_amount: Decimal | None = Field(alias="vatAmount", ge=0, le=MAX_AMOUNT)
    confidence: float = Field(ge=0, le=1)

    @field_validator("merchant")
    @classmethod
    def _strip_merchant(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("merchant must not be blank")
        return value

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if not _CURRENCY_RE.match(code):
            raise ValueError("currency must be an ISO-4217 code")
        return code

    @field_validator("category")
    @classmethod
    def _known_category(cls, value: str) -> str:
        category = normalize_category(value)
        if category is None:
            raise ValueError(f"category must be one of: {', '.join(DEFAULT_CATEGORIES)}")
        return category

    @field_validator("vat_number")
    @classmethod
    def _blank_vat_number(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class ExtractionErrorKind(str, enum.Enum):
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    REQUEST_FAILED = "REQUEST_FAILED"
    EMPTY_OUTPUT = "EMPTY_OUTPUT"
    MALFORMED_OUTPUT = "MALFORMED_OUTPUT"


@dataclass(frozen=True)
class ExtractionResult:
    fields: ExtractedReceipt
    raw: dict[str, Any]


@dataclass(frozen=True)
class ExtractionFailure:
    kind: ExtractionErrorKind
    message: str
    http_status: int | None = None
    detail: str | None = None

    def describe(self) -> str:
        if self.http_status is not None:
            return f"{self.message} (HTTP {self.http_status})"
        return self.message


class MissingCredentials(RuntimeError):
    kind = ExtractionErrorKind.MISSING_CREDENTIALS


def excerpt(text: str | None) -> str | None:
    if text is None:
        return None
    return text[:EXCERPT_CHARS]
