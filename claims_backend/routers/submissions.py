"""Router for claim submissions."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from claims_backend.db.records import RecordStore
from claims_backend.dependencies import (
    get_orchestrator,
    get_pending_registry,
    get_record_store,
    require_requester,
)
from claims_backend.errors import SessionError
from claims_backend.models import Failed, RateLimited, SubmissionRequest, SubmissionResult, UploadedFile
from claims_backend.pending import PendingRegistry
from claims_backend.pipeline import SubmissionOrchestrator, SubmissionStage
from claims_backend.rate_limit import EXPENSIVE_LIMIT, limiter

LOG = logging.getLogger(__name__)

router = APIRouter(tags=["submissions"])

_STATUS_CODES = {
    "success": 201,
    "rejected": 400,
    "rate_limited": 429,
    "timed_out": 504,
}


def _status_code(result: SubmissionResult) -> int:
    if isinstance(result, Failed):
        # Upstream (AI provider) failures are a bad gateway; our own I/O is a 500
        return 502 if result.stage == SubmissionStage.ANALYZING.value else 500
    return _STATUS_CODES[result.status]


def _respond(result: SubmissionResult, registry: PendingRegistry) -> JSONResponse:
    headers = {}
    if isinstance(result, RateLimited):
        headers["Retry-After"] = str(result.retry_after_seconds)
    if isinstance(result, Failed) and result.pending is not None:
        registry.add(result.pending)
    return JSONResponse(status_code=_status_code(result), content=result.to_dict(), headers=headers)


async def _read(upload: UploadFile) -> UploadedFile:
    return UploadedFile(
        filename=upload.filename or "upload",
        mime_type=upload.content_type or "application/octet-stream",
        data=await upload.read(),
    )


# -----------------------------------------------------------------------
# POST /submissions: run the full pipeline
# -----------------------------------------------------------------------

@router.post("/submissions")
@limiter.limit(EXPENSIVE_LIMIT)
async def create_submission(
    request: Request,
    media: List[UploadFile] = File(...),
    policy: Optional[UploadFile] = File(None),
    policy_file_id: Optional[str] = Form(None),
    enhanced: bool = Form(False),
    requester_id: str = Depends(require_requester),
    orchestrator: SubmissionOrchestrator = Depends(get_orchestrator),
    registry: PendingRegistry = Depends(get_pending_registry),
):
    """Analyze uploaded media (and optional policy) and store the report."""
    submission = SubmissionRequest(
        requester_id=requester_id,
        media_files=[await _read(m) for m in media],
        policy_document=await _read(policy) if policy is not None else None,
        policy_file_id=policy_file_id or None,
        wants_enhanced_analysis=enhanced,
    )
    try:
        result = await orchestrator.submit(submission)
    except SessionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return _respond(result, registry)


# -----------------------------------------------------------------------
# POST /submissions/{pending_id}/persist: retry persistence only
# -----------------------------------------------------------------------

@router.post("/submissions/{pending_id}/persist")
async def retry_persist(
    pending_id: str,
    requester_id: str = Depends(require_requester),
    orchestrator: SubmissionOrchestrator = Depends(get_orchestrator),
    registry: PendingRegistry = Depends(get_pending_registry),
):
    pending = registry.get(pending_id)
    if pending is None or pending.requester_id != requester_id:
        raise HTTPException(status_code=404, detail="Pending submission not found")

    result = await orchestrator.persist(pending)
    if not isinstance(result, Failed):
        registry.pop(pending_id)
    return _respond(result, registry)


# -----------------------------------------------------------------------
# GET /submissions/{record_id}: stored report with children
# -----------------------------------------------------------------------

@router.get("/submissions/{record_id}")
async def get_submission(
    record_id: str,
    requester_id: str = Depends(require_requester),
    records: RecordStore = Depends(get_record_store),
):
    record = await records.get_record(record_id)
    if record is None or record.get("requester_id") != requester_id:
        raise HTTPException(status_code=404, detail="Report not found")
    return record
