"""Shared fixtures and in-memory fakes for the claims backend test suite."""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest

from claims_backend.config import ModelLimits
from claims_backend.db.records import CHILD_COLLECTIONS, RecordStore
from claims_backend.errors import PersistError
from claims_backend.llm_base import AnalysisBackend, BackendResponse, UsageStats
from claims_backend.models import EncodedFile, UploadedFile
from claims_backend.session import SessionProvider
from claims_backend.storage.object_storage import ObjectStorage, StoredBlob


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

START = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc).timestamp()


class FakeClock:
    """Manually advanced time source (epoch seconds)."""

    def __init__(self, start: float = START):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Sample analysis payloads (as the model emits them)
# ---------------------------------------------------------------------------

BASIC_PAYLOAD: Dict[str, Any] = {
    "damagedParts": [
        {"part": "front bumper", "severity": "severe", "description": "Crushed"},
        {"part": "left mirror", "severity": "minor", "description": "Scratched", "estimatedRepairCost": 150},
    ],
    "overallSeverity": "severe",
    "estimatedRepairComplexity": "moderate",
    "safetyConcerns": [],
    "recommendedActions": ["Replace front bumper"],
    "confidence": 0.9,
    "confidenceReasoning": "Clear photos",
}

ENHANCED_PAYLOAD: Dict[str, Any] = {
    **BASIC_PAYLOAD,
    "estimatedTotalRepairCost": 2150,
    "damageType": "collision",
    "damageCause": "Rear-ended at low speed",
    "vehicleVerification": {
        "videoVehicle": {"licensePlate": "KX-4821", "make": "Toyota", "model": "Corolla", "year": 2019, "color": "blue"},
        "policyVehicle": {"licensePlate": "KX-4821", "make": "Toyota", "model": "Corolla", "year": 2019, "color": "blue"},
        "verificationStatus": "matched",
        "mismatches": [],
        "confidenceScore": 0.92,
        "notes": "Plate and model match",
    },
    "policyAnalysis": {
        "coverageTypes": ["collision"],
        "deductibles": [{"type": "collision", "amount": 500}],
        "exclusions": [],
        "coverageLimits": {"collision": 25000, "comprehensive": 25000, "liability": 50000},
        "relevantPolicySections": ["4.2"],
    },
    "claimAssessment": {
        "status": "approved",
        "coveredDamages": ["front bumper", "left mirror"],
        "excludedDamages": [],
        "financialBreakdown": {
            "totalRepairEstimate": 2150,
            "coveredAmount": 2150,
            "deductible": 500,
            "nonCoveredItems": 0,
            "estimatedPayout": 1650,
        },
        "reasoning": "Collision damage is covered",
        "policyReferences": ["4.2"],
    },
    "investigationNeeded": False,
    "investigationReason": None,
}


@pytest.fixture
def basic_payload() -> Dict[str, Any]:
    return json.loads(json.dumps(BASIC_PAYLOAD))


@pytest.fixture
def enhanced_payload() -> Dict[str, Any]:
    return json.loads(json.dumps(ENHANCED_PAYLOAD))


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def make_upload(name: str = "car.jpg", mime: str = "image/jpeg", data: bytes = b"\xff\xd8jpeg-bytes") -> UploadedFile:
    return UploadedFile(filename=name, mime_type=mime, data=data)


def make_encoded(name: str = "car.jpg", mime: str = "image/jpeg", data: bytes = b"\xff\xd8jpeg-bytes") -> EncodedFile:
    return EncodedFile.from_upload(make_upload(name, mime, data))


def make_pdf(name: str = "policy.pdf") -> UploadedFile:
    return make_upload(name, "application/pdf", b"%PDF-1.4 policy")


# ---------------------------------------------------------------------------
# AI backend
# ---------------------------------------------------------------------------

class FakeBackend(AnalysisBackend):
    """Scripted backend.

    ``responses`` is consumed one item per ``invoke``: a string is returned
    as the model text, an exception instance is raised. ``extract_texts``
    maps filename -> OCR/PDF text (or exception). ``delay`` makes ``invoke``
    sleep before answering.
    """

    def __init__(
        self,
        responses: Optional[List[Any]] = None,
        extract_texts: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
        total_tokens: int = 1200,
    ):
        self.responses = list(responses or [])
        self.extract_texts = dict(extract_texts or {})
        self.delay = delay
        self.total_tokens = total_tokens
        self.invoke_calls: List[Dict[str, Any]] = []
        self.extract_calls: List[str] = []

    async def invoke(self, model, prompt, media, policy=None, *, max_output_tokens=2048, temperature=0.0):
        self.invoke_calls.append({"model": model, "prompt": prompt, "media": list(media), "policy": policy})
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0) if self.responses else json.dumps(BASIC_PAYLOAD)
        if isinstance(item, BaseException):
            raise item
        return BackendResponse(text=item, usage=UsageStats(total_tokens=self.total_tokens, model=model))

    async def extract_text(self, model, document, prompt, *, max_output_tokens=2048):
        self.extract_calls.append(document.filename)
        item = self.extract_texts.get(document.filename, "NO_TEXT_FOUND")
        if isinstance(item, BaseException):
            raise item
        return item


# ---------------------------------------------------------------------------
# Object storage
# ---------------------------------------------------------------------------

class FakeObjectStorage(ObjectStorage):
    """Dict-backed storage. ``fail_on_put`` lists 1-based put calls that raise."""

    def __init__(self, fail_on_put: Sequence[int] = (), fail_delete: bool = False):
        self.blobs: Dict[str, StoredBlob] = {}
        self.fail_on_put = set(fail_on_put)
        self.fail_delete = fail_delete
        self.put_calls = 0
        self.get_calls: List[str] = []
        self.deleted: List[str] = []
        self._next_id = 0

    def seed(self, data: bytes, mime_type: str, filename: str = "") -> str:
        self._next_id += 1
        artifact_id = f"seed-{self._next_id}"
        self.blobs[artifact_id] = StoredBlob(artifact_id, data, mime_type, filename)
        return artifact_id

    async def put(self, data, mime_type, filename=""):
        self.put_calls += 1
        if self.put_calls in self.fail_on_put:
            raise ConnectionError("storage unavailable")
        self._next_id += 1
        artifact_id = f"art-{self._next_id}"
        self.blobs[artifact_id] = StoredBlob(artifact_id, data, mime_type, filename)
        return artifact_id

    async def get(self, artifact_id):
        self.get_calls.append(artifact_id)
        if artifact_id not in self.blobs:
            raise KeyError(artifact_id)
        return self.blobs[artifact_id]

    async def delete(self, artifact_id):
        if self.fail_delete:
            raise ConnectionError("delete failed")
        self.deleted.append(artifact_id)
        return self.blobs.pop(artifact_id, None) is not None


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------

class FakeRecordStore(RecordStore):
    """In-memory records. ``fail_create`` / ``fail_children`` inject PersistError."""

    def __init__(self, fail_create: bool = False, fail_children: bool = False):
        self.fail_create = fail_create
        self.fail_children = fail_children
        self.records: Dict[str, Dict[str, Any]] = {}
        self.children: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
        self.create_calls = 0
        self.deleted: List[str] = []

    async def create_record(self, parent):
        self.create_calls += 1
        if self.fail_create:
            raise PersistError("database unavailable")
        record_id = f"rec-{self.create_calls}"
        self.records[record_id] = {"_id": record_id, **parent}
        self.children[record_id] = {c: [] for c in CHILD_COLLECTIONS}
        return record_id

    async def create_child_records(self, parent_id, collection, children):
        if self.fail_children:
            raise PersistError(f"failed writing {collection}")
        docs = [{**child, "report_id": parent_id} for child in children]
        self.children[parent_id][collection].extend(docs)
        return [f"{collection}-{i}" for i in range(len(docs))]

    async def get_record(self, record_id):
        record = self.records.get(record_id)
        if record is None:
            return None
        return {**record, **self.children[record_id]}

    async def delete_record(self, record_id):
        self.deleted.append(record_id)
        self.records.pop(record_id, None)
        self.children.pop(record_id, None)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class FakeSessionProvider(SessionProvider):
    def __init__(self, sessions: Optional[Dict[str, str]] = None):
        self.sessions = dict(sessions or {"good-token": "user-1"})

    async def resolve(self, token):
        return self.sessions.get(token) if token else None


# ---------------------------------------------------------------------------
# Model limits used across quota tests
# ---------------------------------------------------------------------------

TEST_LIMITS = {
    "fast": ModelLimits(requests_per_minute=2, tokens_per_minute=10_000, requests_per_day=5),
    "capable": ModelLimits(requests_per_minute=1, tokens_per_minute=20_000, requests_per_day=5),
}


@pytest.fixture
def test_limits() -> Dict[str, ModelLimits]:
    return dict(TEST_LIMITS)
