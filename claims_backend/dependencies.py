"""FastAPI dependencies and lazily-built process-wide services.

Collaborators that open network connections (Gemini, MongoDB) are built
on first use, not at import time, so the app imports without
credentials and tests can swap them through ``app.dependency_overrides``.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

from claims_backend.analysis.invoker import AnalysisInvoker
from claims_backend.db.mongodb_handler import MongoDBHandler
from claims_backend.db.records import MongoRecordStore, RecordStore
from claims_backend.gemini_client import GeminiAnalysisBackend
from claims_backend.pending import PendingRegistry
from claims_backend.pipeline import SubmissionOrchestrator
from claims_backend.quota.selector import ModelSelector
from claims_backend.quota.store import get_rate_store
from claims_backend.security.content_scanner import ContentSecurityScanner
from claims_backend.security.extractors import TextExtractor
from claims_backend.session import MongoSessionProvider, SessionProvider, bearer_token
from claims_backend.storage.object_storage import GridFSObjectStorage

LOG = logging.getLogger(__name__)

_selector: Optional[ModelSelector] = None
_handler: Optional[MongoDBHandler] = None
_records: Optional[RecordStore] = None
_orchestrator: Optional[SubmissionOrchestrator] = None
_sessions: Optional[SessionProvider] = None

# Failed-persist submissions waiting for a retry.
# In-process only, like the rate windows.
_pending = PendingRegistry()


def get_selector() -> ModelSelector:
    global _selector
    if _selector is None:
        _selector = ModelSelector(get_rate_store())
    return _selector


def _get_handler() -> MongoDBHandler:
    global _handler
    if _handler is None:
        _handler = MongoDBHandler()
    return _handler


def get_record_store() -> RecordStore:
    global _records
    if _records is None:
        _records = MongoRecordStore(_get_handler())
    return _records


def get_orchestrator() -> SubmissionOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        backend = GeminiAnalysisBackend()
        _orchestrator = SubmissionOrchestrator(
            selector=get_selector(),
            invoker=AnalysisInvoker(backend),
            scanner=ContentSecurityScanner(TextExtractor(backend)),
            storage=GridFSObjectStorage(),
            records=get_record_store(),
        )
        LOG.info("Submission orchestrator initialised")
    return _orchestrator


def get_session_provider() -> SessionProvider:
    global _sessions
    if _sessions is None:
        _sessions = MongoSessionProvider(_get_handler())
    return _sessions


def get_pending_registry() -> PendingRegistry:
    return _pending


async def require_requester(
    authorization: Optional[str] = Header(None),
    sessions: SessionProvider = Depends(get_session_provider),
) -> str:
    """Resolve the bearer token to a requester id or fail with 401."""
    requester_id = await sessions.resolve(bearer_token(authorization))
    if not requester_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return requester_id


__all__ = [
    "get_orchestrator",
    "get_pending_registry",
    "get_record_store",
    "get_selector",
    "get_session_provider",
    "require_requester",
]
