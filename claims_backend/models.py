"""Request/result types shared by the pipeline and the routers."""
from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union

from claims_backend.analysis.schemas import EnhancedAnalysis
from claims_backend.audit import file_hash


def media_kind(mime_type: str) -> str:
    """Return ``image``, ``video``, ``pdf`` or ``other`` for a MIME type."""
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    if mime == "application/pdf":
        return "pdf"
    return "other"


@dataclass
class UploadedFile:
    """A raw file as received from the client."""
    filename: str
    mime_type: str
    data: bytes

    @property
    def kind(self) -> str:
        return media_kind(self.mime_type)

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class EncodedFile:
    """A file converted to its transfer encoding (base64)."""
    filename: str
    mime_type: str
    base64: str
    size: int
    sha256: str

    @classmethod
    def from_upload(cls, upload: UploadedFile) -> "EncodedFile":
        return cls(
            filename=upload.filename,
            mime_type=upload.mime_type,
            base64=base64.b64encode(upload.data).decode("ascii"),
            size=upload.size,
            sha256=file_hash(upload.data),
        )

    @property
    def kind(self) -> str:
        return media_kind(self.mime_type)

    def raw(self) -> bytes:
        return base64.b64decode(self.base64)


@dataclass
class SubmissionRequest:
    requester_id: str
    media_files: List[UploadedFile]
    policy_document: Optional[UploadedFile] = None
    policy_file_id: Optional[str] = None
    wants_enhanced_analysis: bool = False

    @property
    def has_policy(self) -> bool:
        return self.policy_document is not None or bool(self.policy_file_id)


@dataclass
class StoredArtifact:
    artifact_id: str
    filename: str
    mime_type: str
    kind: str
    sha256: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_id": self.artifact_id,
            "filename": self.filename,
            "mime_type": self.mime_type,
            "kind": self.kind,
            "sha256": self.sha256,
        }


@dataclass
class PendingRecord:
    """Everything needed to retry persistence without re-uploading."""
    pending_id: str
    requester_id: str
    analysis: EnhancedAnalysis
    model: str
    media_artifacts: List[StoredArtifact]
    policy_file_id: Optional[str] = None
    total_tokens: int = 0
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    validation: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pending_id": self.pending_id,
            "model": self.model,
            "media_artifacts": [a.to_dict() for a in self.media_artifacts],
            "policy_file_id": self.policy_file_id,
        }


# ---------------------------------------------------------------------------
# Terminal results
# ---------------------------------------------------------------------------

@dataclass
class Success:
    record_id: str
    record_number: str
    analysis: EnhancedAnalysis
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    model: Optional[str] = None
    steps: List[Dict[str, Any]] = field(default_factory=list)

    status: ClassVar[str] = "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "record_id": self.record_id,
            "record_number": self.record_number,
            "analysis": self.analysis.to_dict(),
            "warnings": self.warnings,
            "model": self.model,
            "steps": self.steps,
        }


@dataclass
class Rejected:
    reason: str
    steps: List[Dict[str, Any]] = field(default_factory=list)

    status: ClassVar[str] = "rejected"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "reason": self.reason, "steps": self.steps}


@dataclass
class RateLimited:
    retry_after_seconds: int
    exhausted_models: List[str] = field(default_factory=list)
    steps: List[Dict[str, Any]] = field(default_factory=list)

    status: ClassVar[str] = "rate_limited"

    @property
    def message(self) -> str:
        return (
            "All AI models are currently at capacity. "
            f"Please wait {self.retry_after_seconds} seconds and try again."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "retry_after_seconds": self.retry_after_seconds,
            "exhausted_models": self.exhausted_models,
            "message": self.message,
            "steps": self.steps,
        }


@dataclass
class TimedOut:
    message: str
    steps: List[Dict[str, Any]] = field(default_factory=list)

    status: ClassVar[str] = "timed_out"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "message": self.message, "steps": self.steps}


@dataclass
class Failed:
    reason: str
    stage: Optional[str] = None
    pending: Optional[PendingRecord] = None
    steps: List[Dict[str, Any]] = field(default_factory=list)

    status: ClassVar[str] = "failed"

    @property
    def retryable_persist(self) -> bool:
        return self.pending is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "stage": self.stage,
            "pending": self.pending.to_dict() if self.pending else None,
            "steps": self.steps,
        }


SubmissionResult = Union[Success, Rejected, RateLimited, TimedOut, Failed]


__all__ = [
    "EncodedFile",
    "Failed",
    "PendingRecord",
    "RateLimited",
    "Rejected",
    "StoredArtifact",
    "SubmissionRequest",
    "SubmissionResult",
    "Success",
    "TimedOut",
    "UploadedFile",
    "media_kind",
]
