from __future__ import annotations

import base64
import json
import time
from typing import Any

import httpx
from pydantic import ValidationError

from snapledger.core.config import settings
from snapledger.core.logging import get_logger, log_event, monotonic_ms
from snapledger.modules.extraction.categories import DEFAULT_CATEGORIES
from snapledger.modules.extraction.schemas import (
    RECEIPT_JSON_SCHEMA,
    ExtractedReceipt,
    ExtractionErrorKind,
    ExtractionFailure,
    ExtractionResult,
    MissingCredentials,
    excerpt,
)

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "image/png"


def is_pdf_document(*, filename: str, mime_type: str | None) -> bool:
    return (mime_type or "").lower() == "application/pdf" or filename.lower().endswith(".pdf")


def build_prompt(filename: str) -> str:
    return "\n".join(
        [
            "You extract fields from receipts.",
            "Return JSON that matches the provided schema exactly.",
            "If VAT number is missing, return null for vatNumber.",
            "If VAT rate is missing, return null for vatRate.",
            "If VAT amount is missing, return null for vatAmount.",
            "If currency is missing, infer from receipt locale or use USD.",
            "Confidence is your overall extraction confidence from 0 to 1.",
            "Category must be one of: " + ", ".join(DEFAULT_CATEGORIES),
            f"Filename: {filename}",
        ]
    )


def first_output_text(data: Any) -> str | None:
    """
    Pick the first non-empty text segment of a responses-API payload.

    Walks output[].content[].text in order and falls back to the top-level
    output_text convenience field.
    """
    if not isinstance(data, dict):
        return None
    output = data.get("output")
    if isinstance(output, list):
        for item in output:
            contents = item.get("content") if isinstance(item, dict) else None
            if not isinstance(contents, list):
                continue
            for content in contents:
                text = content.get("text") if isinstance(content, dict) else None
                if isinstance(text, str) and text.strip():
                    return text
    fallback = data.get("output_text")
    if isinstance(fallback, str) and fallback.strip():
        return fallback
    return None


def parse_extraction_output(text: str) -> ExtractionResult | ExtractionFailure:
    try:
        raw = json.loads(text)
    except ValueError:
        return ExtractionFailure(
            kind=ExtractionErrorKind.MALFORMED_OUTPUT,
            message="Invalid JSON from OpenAI.",
            detail=excerpt(text),
        )
    if not isinstance(raw, dict):
        return ExtractionFailure(
            kind=ExtractionErrorKind.MALFORMED_OUTPUT,
            message="OpenAI output is not a JSON object.",
            detail=excerpt(text),
        )
    try:
        fields = ExtractedReceipt.model_validate(raw)
    except ValidationError as e:
        return ExtractionFailure(
            kind=ExtractionErrorKind.MALFORMED_OUTPUT,
            message="OpenAI output does not match the receipt schema.",
            detail=excerpt(f"{e.error_count()} error(s): {text}"),
        )
    return ExtractionResult(fields=fields, raw=raw)


class ExtractionClient:
    """
    Request/response mapper for the document-understanding service.

    Service errors come back as ExtractionFailure values; nothing here retries.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-5.1",
        timeout: float = 60.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise MissingCredentials("OPENAI_API_KEY is not set.")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._http = http_client or httpx.Client(timeout=timeout, follow_redirects=True)

    @classmethod
    def from_settings(cls, *, http_client: httpx.Client | None = None) -> ExtractionClient:
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            timeout=float(settings.extraction_timeout_seconds or 60.0),
            http_client=http_client,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> ExtractionClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def extract(
        self, *, body: bytes, filename: str, mime_type: str | None
    ) -> ExtractionResult | ExtractionFailure:
        content_type = mime_type or DEFAULT_MIME_TYPE
        if is_pdf_document(filename=filename, mime_type=content_type):
            uploaded = self._upload_file(
                body=body, filename=filename or "receipt.pdf", content_type=content_type
            )
            if isinstance(uploaded, ExtractionFailure):
                return uploaded
            attachment = {"type": "input_file", "file_id": uploaded}
        else:
            # Images go inline; the service accepts them as data URIs.
            encoded = base64.b64encode(body).decode("ascii")
            attachment = {
                "type": "input_image",
                "image_url": f"data:{content_type};base64,{encoded}",
            }

        payload = self.build_request(filename=filename, attachment=attachment)
        return self._request_extraction(payload=payload, filename=filename)

    def build_request(self, *, filename: str, attachment: dict[str, Any]) -> dict[str, Any]:
        return {
            "model": self._model,
            "input": [
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": build_prompt(filename)},
                        attachment,
                    ],
                }
            ],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "receipt_extract",
                    "schema": RECEIPT_JSON_SCHEMA,
                    "strict": True,
                }
            },
        }

    def _upload_file(
        self, *, body: bytes, filename: str, content_type: str
    ) -> str | ExtractionFailure:
        start = time.monotonic()
        try:
            resp = self._http.post(
                f"{self._base_url}/files",
                headers={"Authorization": f"Bearer {self._api_key}"},
                data={"purpose": "assistants"},
                files={"file": (filename, body, content_type)},
            )
        except httpx.HTTPError as e:
            log_event(
                logger,
                "extraction.upload.failure",
                filename=filename,
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            return ExtractionFailure(
                kind=ExtractionErrorKind.UPLOAD_FAILED,
                message="OpenAI file upload failed.",
                detail=excerpt(str(e)),
            )

        if not resp.is_success:
            log_event(
                logger,
                "extraction.upload.failure",
                filename=filename,
                http_status=resp.status_code,
                duration_ms=monotonic_ms(start),
            )
            return ExtractionFailure(
                kind=ExtractionErrorKind.UPLOAD_FAILED,
                message="OpenAI file upload failed.",
                http_status=resp.status_code,
                detail=excerpt(resp.text),
            )

        try:
            file_id = resp.json().get("id")
        except (ValueError, AttributeError):
            file_id = None
        if not isinstance(file_id, str) or not file_id:
            return ExtractionFailure(
                kind=ExtractionErrorKind.UPLOAD_FAILED,
                message="OpenAI file upload returned no file ID.",
                http_status=resp.status_code,
                detail=excerpt(resp.text),
            )

        log_event(
            logger,
            "extraction.upload.success",
            filename=filename,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        return file_id

    def _request_extraction(
        self, *, payload: dict[str, Any], filename: str
    ) -> ExtractionResult | ExtractionFailure:
        start = time.monotonic()
        try:
            resp = self._http.post(
                f"{self._base_url}/responses",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
        except httpx.HTTPError as e:
            log_event(
                logger,
                "extraction.request.failure",
                filename=filename,
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            return ExtractionFailure(
                kind=ExtractionErrorKind.REQUEST_FAILED,
                message="OpenAI request failed.",
                detail=excerpt(str(e)),
            )

        if not resp.is_success:
            log_event(
                logger,
                "extraction.request.failure",
                filename=filename,
                http_status=resp.status_code,
                duration_ms=monotonic_ms(start),
            )
            return ExtractionFailure(
                kind=ExtractionErrorKind.REQUEST_FAILED,
                message="OpenAI request failed.",
                http_status=resp.status_code,
                detail=excerpt(resp.text),
            )

        try:
            data = resp.json()
        except ValueError:
            return ExtractionFailure(
                kind=ExtractionErrorKind.REQUEST_FAILED,
                message="OpenAI response was not JSON.",
                http_status=resp.status_code,
                detail=excerpt(resp.text),
            )

        text = first_output_text(data)
        if not text:
            return ExtractionFailure(
                kind=ExtractionErrorKind.EMPTY_OUTPUT,
                message="OpenAI response missing output.",
                detail=excerpt(json.dumps(data, default=str)),
            )

        result = parse_extraction_output(text)
        log_event(
            logger,
            "extraction.request.success"
            if isinstance(result, ExtractionResult)
            else "extraction.request.malformed",
            filename=filename,
            duration_ms=monotonic_ms(start),
        )
        return result
