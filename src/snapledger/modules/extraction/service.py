from __future__ import annotations

from fastapi import HTTPException, status

from snapledger.core.logging import get_logger, log_event
from snapledger.modules.extraction.client import ExtractionClient
from snapledger.modules.extraction.schemas import (
    ExtractionFailure,
    ExtractionResult,
    MissingCredentials,
)

logger = get_logger(__name__)


def get_extraction_client() -> ExtractionClient:
    """Build a client from settings. Raises MissingCredentials when no API key is configured."""
    return ExtractionClient.from_settings()


def extract_document(
    *, body: bytes, filename: str, mime_type: str | None
) -> ExtractionResult | ExtractionFailure:
    with get_extraction_client() as client:
        return client.extract(body=body, filename=filename, mime_type=mime_type)


def analyze_document(*, body: bytes, filename: str, mime_type: str | None) -> ExtractionResult:
    """One-shot extraction without persisting anything; maps failures to HTTP errors."""
    if not body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing file.")
    try:
        result = extract_document(body=body, filename=filename, mime_type=mime_type)
    except MissingCredentials as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e

    if isinstance(result, ExtractionFailure):
        log_event(
            logger,
            "extraction.analyze.failure",
            filename=filename,
            kind=result.kind.value,
            http_status=result.http_status,
        )
        detail: dict = {"error": result.message, "kind": result.kind.value}
        if result.http_status is not None:
            detail["status"] = result.http_status
        if result.detail:
            detail["details"] = result.detail
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
    return result
