"""Submission orchestrator: validate, convert, scan, analyze, upload, persist.

Every run keeps an ordered step log (``{name, status, started_at,
finished_at, message}``) that is attached to the result so the frontend
can show where a submission stopped.

Cleanup rules:

- Before analysis nothing has been written, so nothing is cleaned up.
- Uploads happen only after a successful analysis. If one upload fails,
  every artifact uploaded by this run is deleted (best effort, in reverse
  order) and the result is ``Failed``.
- If persistence fails, uploads are kept on purpose. The ``Failed``
  result carries a ``PendingRecord`` that ``persist()`` can retry without
  uploading again.

A reused policy document (``policy_file_id``) belongs to an earlier
submission and is never deleted by compensation.
"""
from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from claims_backend.analysis.invoker import AnalysisInvoker, InvocationResult, estimate_tokens
from claims_backend.analysis.validation import validate_analysis
from claims_backend.audit import audit_submission
from claims_backend.config import MAX_IMAGES_PER_REQUEST, MAX_UPLOAD_BYTES
from claims_backend.db.records import RecordStore, generate_report_number, save_report
from claims_backend.errors import (
    AnalysisTimeoutError,
    MalformedResponse,
    PersistError,
    ProviderUnavailable,
    QuotaExceeded,
    RateLimitedError,
    SecurityWarning,
    SessionError,
    SubmissionValidationError,
    UploadError,
    is_rate_limit_error,
    sanitize_error,
)
from claims_backend.models import (
    EncodedFile,
    Failed,
    PendingRecord,
    RateLimited,
    Rejected,
    StoredArtifact,
    SubmissionRequest,
    SubmissionResult,
    Success,
    TimedOut,
    UploadedFile,
)
from claims_backend.quota.selector import ModelSelector
from claims_backend.security.content_scanner import ContentSecurityScanner
from claims_backend.storage.object_storage import ObjectStorage

LOG = logging.getLogger(__name__)

MEDIA_KINDS = ("image", "video")


class SubmissionStage(str, Enum):
    VALIDATING = "validating"
    CONVERTING = "converting_to_transfer_format"
    SECURITY_SCANNING = "security_scanning"
    SELECTING_MODEL = "selecting_model"
    ANALYZING = "analyzing"
    UPLOADING = "uploading_artifacts"
    PERSISTING = "persisting_record"
    DONE = "done"


class StepLog:
    """Ordered record of the stages a submission went through."""

    def __init__(self, clock: Callable[[], float]):
        self._clock = clock
        self.steps: List[Dict[str, Any]] = []
        self.current: Optional[SubmissionStage] = None
        # Provider-reported usage of the successful analysis call
        self.tokens: Optional[int] = None

    def _now_iso(self) -> str:
        return datetime.fromtimestamp(self._clock(), timezone.utc).isoformat()

    def start(self, stage: SubmissionStage) -> Dict[str, Any]:
        step = {"name": stage.value, "status": "running", "started_at": self._now_iso(), "finished_at": None, "message": None}
        self.steps.append(step)
        self.current = stage
        LOG.info("Submission stage: %s", stage.value)
        return step

    def finish(self, step: Dict[str, Any], ok: bool = True, message: Optional[str] = None) -> None:
        step["finished_at"] = self._now_iso()
        step["status"] = "done" if ok else "failed"
        step["message"] = message

    def fail_current(self, message: str) -> None:
        if self.steps and self.steps[-1]["status"] == "running":
            self.finish(self.steps[-1], ok=False, message=message)

    def snapshot(self) -> List[Dict[str, Any]]:
        return [dict(step) for step in self.steps]


def validate_request(request: SubmissionRequest) -> None:
    """Raise ``SubmissionValidationError`` with the rejection reason. No I/O."""
    if not request.media_files:
        raise SubmissionValidationError("At least one media file (image or video) is required")
    if request.wants_enhanced_analysis and not request.has_policy:
        raise SubmissionValidationError("Policy file is required for enhanced analysis")

    for upload in request.media_files:
        if upload.kind not in MEDIA_KINDS:
            raise SubmissionValidationError(f"Unsupported media type for {upload.filename}: {upload.mime_type}")
        if upload.size == 0:
            raise SubmissionValidationError(f"{upload.filename} is empty")
        if upload.size > MAX_UPLOAD_BYTES:
            raise SubmissionValidationError(
                f"{upload.filename} exceeds the maximum upload size of {MAX_UPLOAD_BYTES // (1024 * 1024)} MB"
            )

    images = sum(1 for m in request.media_files if m.kind == "image")
    if images > MAX_IMAGES_PER_REQUEST:
        raise SubmissionValidationError(f"At most {MAX_IMAGES_PER_REQUEST} images can be analyzed per request")

    policy = request.policy_document
    if policy is not None:
        if policy.kind != "pdf":
            raise SubmissionValidationError("Policy document must be a PDF")
        if policy.size == 0 or policy.size > MAX_UPLOAD_BYTES:
            raise SubmissionValidationError("Policy document is empty or too large")


def _validation_warnings(report) -> List[SecurityWarning]:
    risk = "medium" if report.requires_manual_review else "low"
    return [
        SecurityWarning("validation", risk, message, [reason])
        for reason, message in zip(report.flagged_reasons, report.warnings)
    ]


class SubmissionOrchestrator:
    """End-to-end submission workflow. ``submit`` always returns a result value."""

    def __init__(
        self,
        selector: ModelSelector,
        invoker: AnalysisInvoker,
        scanner: ContentSecurityScanner,
        storage: ObjectStorage,
        records: RecordStore,
        clock: Callable[[], float] = time.time,
    ):
        self.selector = selector
        self.invoker = invoker
        self.scanner = scanner
        self.storage = storage
        self.records = records
        self.clock = clock

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def submit(self, request: SubmissionRequest) -> SubmissionResult:
        """Run the whole workflow for one request.

        A missing requester id raises ``SessionError``: identity is a
        precondition, not a pipeline state. Everything else comes back as
        one of the ``SubmissionResult`` variants.
        """
        if not request.requester_id:
            raise SessionError("A valid session is required to submit a claim")

        started = self.clock()
        log = StepLog(self.clock)
        hashes: List[str] = []
        try:
            result, hashes = await self._run(request, log)
        except Exception as exc:
            LOG.exception("Unexpected failure during %s", log.current.value if log.current else "submission")
            log.fail_current(str(exc))
            result = Failed(reason=str(exc), stage=log.current.value if log.current else None)

        result.steps = log.snapshot()
        model = getattr(result, "model", None)
        if isinstance(result, Failed) and result.pending:
            model = result.pending.model
        audit_submission(
            request.requester_id,
            result.status,
            hashes,
            self.clock() - started,
            model=model,
            warnings_count=len(getattr(result, "warnings", [])),
            tokens=log.tokens,
        )
        return result

    async def persist(self, pending: PendingRecord) -> SubmissionResult:
        """Retry only the persistence step for a previously analyzed and uploaded submission."""
        log = StepLog(self.clock)
        result = await self._persist(pending, log)
        result.steps = log.snapshot()
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(self, request: SubmissionRequest, log: StepLog) -> Tuple[SubmissionResult, List[str]]:
        # Validating
        step = log.start(SubmissionStage.VALIDATING)
        try:
            validate_request(request)
        except SubmissionValidationError as exc:
            reason = str(exc)
            log.finish(step, ok=False, message=reason)
            LOG.info("Submission rejected: %s", reason)
            return Rejected(reason=reason), []
        log.finish(step)

        # ConvertingToTransferFormat
        step = log.start(SubmissionStage.CONVERTING)
        try:
            media = [EncodedFile.from_upload(m) for m in request.media_files]
            policy = await self._load_policy(request)
        except KeyError:
            message = "Failed to load existing policy. It may have been deleted."
            log.finish(step, ok=False, message=message)
            return Failed(reason=message, stage=SubmissionStage.CONVERTING.value), []
        except Exception as exc:
            message = f"Failed to process files: {exc}"
            log.finish(step, ok=False, message=message)
            return Failed(reason=message, stage=SubmissionStage.CONVERTING.value), []
        log.finish(step)
        hashes = [m.sha256 for m in media] + ([policy.sha256] if policy else [])

        # SecurityScanning (informs, never halts)
        step = log.start(SubmissionStage.SECURITY_SCANNING)
        try:
            warnings = await self.scanner.scan_submission(media, policy)
        except Exception:
            LOG.exception("Security scan failed; continuing without scan results")
            warnings = []
        log.finish(step, message=f"{len(warnings)} warning(s)" if warnings else None)

        # SelectingModel + Analyzing
        outcome = await self._analyze(media, policy, warnings, log)
        if not isinstance(outcome, InvocationResult):
            return outcome, hashes
        invocation = outcome

        report = validate_analysis(invocation.analysis)
        all_warnings = [w.to_dict() for w in warnings + _validation_warnings(report)]

        # UploadingArtifacts
        step = log.start(SubmissionStage.UPLOADING)
        try:
            artifacts, policy_file_id = await self._upload(request, media, policy)
        except UploadError as exc:
            log.finish(step, ok=False, message=str(exc))
            return Failed(reason=str(exc), stage=SubmissionStage.UPLOADING.value), hashes
        log.finish(step, message=f"{len(artifacts)} artifact(s)")

        pending = PendingRecord(
            pending_id=uuid.uuid4().hex,
            requester_id=request.requester_id,
            analysis=invocation.analysis,
            model=invocation.model,
            media_artifacts=artifacts,
            policy_file_id=policy_file_id,
            total_tokens=invocation.usage.total_tokens,
            warnings=all_warnings,
            validation=report.to_dict(),
        )
        return await self._persist(pending, log), hashes

    async def _load_policy(self, request: SubmissionRequest) -> Optional[EncodedFile]:
        if request.policy_document is not None:
            return EncodedFile.from_upload(request.policy_document)
        if request.policy_file_id:
            blob = await self.storage.get(request.policy_file_id)
            LOG.info("Loaded existing policy %s from storage", request.policy_file_id)
            return EncodedFile.from_upload(
                UploadedFile(filename=blob.filename or "policy.pdf", mime_type=blob.mime_type, data=blob.data)
            )
        return None

    async def _analyze(
        self,
        media: List[EncodedFile],
        policy: Optional[EncodedFile],
        warnings: List[SecurityWarning],
        log: StepLog,
    ):
        """Select a model and analyze, falling back to the next model on provider errors."""
        estimated = estimate_tokens(media, policy is not None)
        notes = [f"{w.source}: {w.risk_level} risk. {w.reasoning}" for w in warnings]
        tried: List[str] = []
        last_error: Optional[Exception] = None

        while True:
            step = log.start(SubmissionStage.SELECTING_MODEL)
            try:
                selection = self.selector.select(estimated, exclude=tried)
            except RateLimitedError as exc:
                log.finish(step, ok=False, message=str(exc))
                if last_error is not None and not is_rate_limit_error(last_error):
                    return Failed(reason=sanitize_error(last_error), stage=SubmissionStage.ANALYZING.value)
                return RateLimited(
                    retry_after_seconds=exc.retry_after_seconds,
                    exhausted_models=exc.exhausted_models,
                )
            log.finish(step, message=selection.model)

            step = log.start(SubmissionStage.ANALYZING)
            try:
                invocation = await self.invoker.analyze(media, policy, selection.model, notes or None)
            except AnalysisTimeoutError as exc:
                log.finish(step, ok=False, message=str(exc))
                return TimedOut(message=str(exc))
            except (QuotaExceeded, ProviderUnavailable) as exc:
                log.finish(step, ok=False, message=str(exc))
                LOG.warning("Model %s failed (%s); trying next candidate", selection.model, exc)
                tried.append(selection.model)
                last_error = exc
                continue
            except MalformedResponse as exc:
                log.finish(step, ok=False, message=str(exc))
                LOG.warning("Unusable analysis from %s: %s", selection.model, exc)
                return Failed(reason=sanitize_error(exc), stage=SubmissionStage.ANALYZING.value)

            self.selector.record_actual_usage(selection.model, invocation.usage.total_tokens)
            log.tokens = invocation.usage.total_tokens
            log.finish(step, message=selection.model)
            return invocation

    async def _upload(
        self,
        request: SubmissionRequest,
        media: List[EncodedFile],
        policy: Optional[EncodedFile],
    ) -> Tuple[List[StoredArtifact], Optional[str]]:
        """Upload media (and a new policy); on any failure delete what this call uploaded."""
        uploaded: List[str] = []
        artifacts: List[StoredArtifact] = []
        try:
            for encoded in media:
                artifact_id = await self.storage.put(encoded.raw(), encoded.mime_type, encoded.filename)
                uploaded.append(artifact_id)
                artifacts.append(
                    StoredArtifact(artifact_id, encoded.filename, encoded.mime_type, encoded.kind, encoded.sha256)
                )

            policy_file_id = request.policy_file_id
            if request.policy_document is not None and policy is not None:
                policy_file_id = await self.storage.put(policy.raw(), policy.mime_type, policy.filename)
                uploaded.append(policy_file_id)
        except Exception as exc:
            LOG.error("Upload failed after %d artifact(s): %s", len(uploaded), exc)
            await self._compensate(uploaded)
            raise UploadError(f"Failed to upload files: {exc}") from exc
        return artifacts, policy_file_id

    async def _compensate(self, artifact_ids: List[str]) -> None:
        for artifact_id in reversed(artifact_ids):
            try:
                await self.storage.delete(artifact_id)
                LOG.info("Rolled back artifact %s", artifact_id)
            except Exception:
                LOG.error("Failed to delete artifact %s during rollback", artifact_id, exc_info=True)

    async def _persist(self, pending: PendingRecord, log: StepLog) -> SubmissionResult:
        step = log.start(SubmissionStage.PERSISTING)
        report_number = generate_report_number(self.clock)
        try:
            record_id = await save_report(self.records, pending, report_number)
        except Exception as exc:
            message = str(exc) if isinstance(exc, PersistError) else f"Failed to save report: {exc}"
            log.finish(step, ok=False, message=message)
            LOG.error("Persisting report failed; keeping %d uploaded artifact(s) for retry", len(pending.media_artifacts))
            return Failed(reason=message, stage=SubmissionStage.PERSISTING.value, pending=pending)
        log.finish(step, message=record_id)

        done = log.start(SubmissionStage.DONE)
        log.finish(done)
        LOG.info("Report %s saved as %s", report_number, record_id)
        return Success(
            record_id=record_id,
            record_number=report_number,
            analysis=pending.analysis,
            warnings=pending.warnings,
            model=pending.model,
        )


__all__ = [
    "StepLog",
    "SubmissionOrchestrator",
    "SubmissionStage",
    "validate_request",
]
