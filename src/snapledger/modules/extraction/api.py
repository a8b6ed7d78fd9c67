from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool

from snapledger.api.deps import get_current_user
from snapledger.modules.extraction.service import analyze_document
from snapledger.modules.identity.models import User

router = APIRouter(tags=["extraction"])


@router.post("/analyze")
async def analyze_endpoint(
    file: UploadFile = File(...),
    _: User = Depends(get_current_user),
) -> dict[str, Any]:
    body = await file.read()
    result = await run_in_threadpool(
        analyze_document,
        body=body,
        filename=file.filename or "receipt",
        mime_type=file.content_type,
    )
    return result.raw
