"""Audit trail for submissions.

One structured INFO record per terminal outcome. Files are identified by
their sha256 digest so the log never holds any content.
"""
from __future__ import annotations

import hashlib
import json
import logging
from typing import Optional, Sequence

LOG = logging.getLogger("claims_backend.audit")


def file_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def audit_submission(
    requester_id: str,
    outcome: str,
    file_hashes: Sequence[str],
    duration_seconds: float,
    model: Optional[str] = None,
    warnings_count: int = 0,
    tokens: Optional[int] = None,
) -> None:
    """Log the outcome of one submission. Never raises."""
    entry = {
        "requester_id": requester_id,
        "outcome": outcome,
        "model": model,
        "file_hashes": [h[:16] for h in file_hashes],
        "duration_ms": int(duration_seconds * 1000),
        "warnings": warnings_count,
        "tokens": tokens,
    }
    try:
        LOG.info("AUDIT %s", json.dumps(entry, sort_keys=True))
    except (TypeError, ValueError):
        LOG.warning("Could not serialise audit entry for %s", requester_id, exc_info=True)


__all__ = ["audit_submission", "file_hash"]
