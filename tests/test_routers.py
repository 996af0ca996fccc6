"""Router-level tests for the submission and quota endpoints.

Every external collaborator is replaced through ``app.dependency_overrides``
so the app never reaches Gemini or MongoDB.
"""
from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from claims_backend.analysis.invoker import AnalysisInvoker
from claims_backend.config import ModelLimits
from claims_backend.dependencies import (
    get_orchestrator,
    get_pending_registry,
    get_record_store,
    get_selector,
    get_session_provider,
)
from claims_backend.main import app
from claims_backend.pending import PendingRegistry
from claims_backend.pipeline import SubmissionOrchestrator
from claims_backend.quota.selector import ModelSelector
from claims_backend.quota.store import RateWindowStore
from claims_backend.security.content_scanner import ContentSecurityScanner
from claims_backend.security.extractors import TextExtractor
from tests.conftest import (
    ENHANCED_PAYLOAD,
    FakeBackend,
    FakeClock,
    FakeObjectStorage,
    FakeRecordStore,
    FakeSessionProvider,
)

client = TestClient(app, raise_server_exceptions=False)

AUTH = {"Authorization": "Bearer good-token"}
OTHER_AUTH = {"Authorization": "Bearer other-token"}
IMAGE = ("media", ("car.jpg", b"\xff\xd8jpeg-bytes", "image/jpeg"))
POLICY = ("policy", ("policy.pdf", b"%PDF-1.4 policy", "application/pdf"))

ROOMY = ModelLimits(requests_per_minute=10, tokens_per_minute=100_000, requests_per_day=100)


@pytest.fixture(autouse=True)
def _reset_http_rate_limits():
    """Clear slowapi's in-memory counters so EXPENSIVE_LIMIT never fires between tests."""
    from claims_backend.rate_limit import limiter
    storage = getattr(limiter, "_storage", None)
    if storage is not None and hasattr(storage, "storage"):
        storage.storage.clear()
    yield


@pytest.fixture
def install():
    """Return a factory that wires fakes into the app; overrides are removed afterwards."""

    def _install(backend=None, records=None, storage=None, limits=None, timeout_seconds=None):
        backend = backend or FakeBackend()
        records = records or FakeRecordStore()
        storage = storage or FakeObjectStorage()
        limits = limits or {"fast": ROOMY, "capable": ROOMY}
        selector = ModelSelector(
            RateWindowStore(clock=FakeClock()), limits=limits, priority=list(limits), forced_model=None
        )
        orchestrator = SubmissionOrchestrator(
            selector=selector,
            invoker=AnalysisInvoker(backend, timeout_seconds=timeout_seconds),
            scanner=ContentSecurityScanner(TextExtractor(backend, model="cheap")),
            storage=storage,
            records=records,
        )
        registry = PendingRegistry(clock=FakeClock())
        sessions = FakeSessionProvider({"good-token": "user-1", "other-token": "user-2"})

        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        app.dependency_overrides[get_record_store] = lambda: records
        app.dependency_overrides[get_selector] = lambda: selector
        app.dependency_overrides[get_session_provider] = lambda: sessions
        app.dependency_overrides[get_pending_registry] = lambda: registry
        return SimpleNamespace(
            backend=backend, records=records, storage=storage, selector=selector, registry=registry
        )

    yield _install
    app.dependency_overrides.clear()


# =====================================================================
# Authentication
# =====================================================================

class TestAuthentication:

    def test_missing_token(self, install):
        install()
        resp = client.post("/submissions", files=[IMAGE])
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Authentication required"

    def test_unknown_token(self, install):
        install()
        resp = client.post("/submissions", files=[IMAGE], headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_wrong_scheme(self, install):
        install()
        resp = client.post("/submissions", files=[IMAGE], headers={"Authorization": "Basic good-token"})
        assert resp.status_code == 401


# =====================================================================
# POST /submissions
# =====================================================================

class TestCreateSubmission:

    def test_success(self, install):
        fakes = install()
        resp = client.post("/submissions", files=[IMAGE], headers=AUTH)

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "success"
        assert body["record_id"] == "rec-1"
        assert body["model"] == "fast"
        assert body["analysis"]["claimAssessment"]["status"] == "needs_investigation"
        assert [s["name"] for s in body["steps"]][-1] == "done"
        assert fakes.records.records["rec-1"]["requester_id"] == "user-1"

    def test_enhanced_with_policy(self, install):
        fakes = install(backend=FakeBackend(responses=[json.dumps(ENHANCED_PAYLOAD)]))
        resp = client.post("/submissions", files=[IMAGE, POLICY], data={"enhanced": "true"}, headers=AUTH)

        assert resp.status_code == 201
        assert resp.json()["analysis"]["claimAssessment"]["status"] == "approved"
        assert fakes.storage.put_calls == 2

    def test_rejected(self, install):
        install()
        resp = client.post("/submissions", files=[IMAGE], data={"enhanced": "true"}, headers=AUTH)
        assert resp.status_code == 400
        body = resp.json()
        assert body["status"] == "rejected"
        assert body["reason"] == "Policy file is required for enhanced analysis"

    def test_unsupported_media(self, install):
        install()
        files = [("media", ("notes.txt", b"hello", "text/plain"))]
        resp = client.post("/submissions", files=files, headers=AUTH)
        assert resp.status_code == 400

    def test_rate_limited_sets_retry_after(self, install):
        install(limits={"fast": ModelLimits(requests_per_minute=1, tokens_per_minute=100_000, requests_per_day=100)})
        assert client.post("/submissions", files=[IMAGE], headers=AUTH).status_code == 201

        resp = client.post("/submissions", files=[IMAGE], headers=AUTH)
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "60"
        body = resp.json()
        assert body["retry_after_seconds"] == 60
        assert body["exhausted_models"] == ["fast"]

    def test_provider_failure_is_bad_gateway(self, install):
        install(backend=FakeBackend(responses=["not json"]))
        resp = client.post("/submissions", files=[IMAGE], headers=AUTH)
        assert resp.status_code == 502
        assert resp.json()["stage"] == "analyzing"

    def test_timeout(self, install):
        install(backend=FakeBackend(delay=1.0), timeout_seconds=0.05)
        resp = client.post("/submissions", files=[IMAGE], headers=AUTH)
        assert resp.status_code == 504
        assert resp.json()["status"] == "timed_out"

    def test_upload_failure_is_server_error(self, install):
        install(storage=FakeObjectStorage(fail_on_put=(1,)))
        resp = client.post("/submissions", files=[IMAGE], headers=AUTH)
        assert resp.status_code == 500
        assert resp.json()["stage"] == "uploading_artifacts"
        assert resp.json()["pending"] is None


# =====================================================================
# POST /submissions/{pending_id}/persist
# =====================================================================

class TestRetryPersist:

    def test_failed_persist_then_retry(self, install):
        fakes = install(records=FakeRecordStore(fail_create=True))
        resp = client.post("/submissions", files=[IMAGE], headers=AUTH)

        assert resp.status_code == 500
        pending_id = resp.json()["pending"]["pending_id"]
        assert pending_id in fakes.registry

        fakes.records.fail_create = False
        retry = client.post(f"/submissions/{pending_id}/persist", headers=AUTH)

        assert retry.status_code == 201
        assert retry.json()["status"] == "success"
        assert len(fakes.registry) == 0
        assert fakes.storage.put_calls == 1

    def test_retry_still_failing_keeps_pending(self, install):
        fakes = install(records=FakeRecordStore(fail_create=True))
        pending_id = client.post("/submissions", files=[IMAGE], headers=AUTH).json()["pending"]["pending_id"]

        retry = client.post(f"/submissions/{pending_id}/persist", headers=AUTH)
        assert retry.status_code == 500
        assert pending_id in fakes.registry

    def test_expired_pending_id(self, install):
        fakes = install(records=FakeRecordStore(fail_create=True))
        pending_id = client.post("/submissions", files=[IMAGE], headers=AUTH).json()["pending"]["pending_id"]

        fakes.registry.clock.advance(25 * 3600)
        fakes.records.fail_create = False

        assert client.post(f"/submissions/{pending_id}/persist", headers=AUTH).status_code == 404
        assert len(fakes.registry) == 0

    def test_unknown_pending_id(self, install):
        install()
        assert client.post("/submissions/nope/persist", headers=AUTH).status_code == 404

    def test_other_requester_cannot_retry(self, install):
        install(records=FakeRecordStore(fail_create=True))
        pending_id = client.post("/submissions", files=[IMAGE], headers=AUTH).json()["pending"]["pending_id"]
        assert client.post(f"/submissions/{pending_id}/persist", headers=OTHER_AUTH).status_code == 404


# =====================================================================
# GET /submissions/{record_id}
# =====================================================================

class TestGetSubmission:

    def test_owner_sees_record_with_children(self, install):
        install()
        record_id = client.post("/submissions", files=[IMAGE], headers=AUTH).json()["record_id"]

        resp = client.get(f"/submissions/{record_id}", headers=AUTH)
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "pending"
        assert len(body["damage_details"]) == 2
        assert body["vehicle_verifications"][0]["verification_status"] == "insufficient_data"

    def test_other_requester_gets_404(self, install):
        install()
        record_id = client.post("/submissions", files=[IMAGE], headers=AUTH).json()["record_id"]
        assert client.get(f"/submissions/{record_id}", headers=OTHER_AUTH).status_code == 404

    def test_missing_record(self, install):
        install()
        assert client.get("/submissions/rec-404", headers=AUTH).status_code == 404


# =====================================================================
# GET /quotas, /health, /
# =====================================================================

class TestQuotas:

    def test_fresh_quotas(self, install):
        install()
        body = client.get("/quotas").json()
        assert body["any_available"] is True
        assert [m["model"] for m in body["models"]] == ["fast", "capable"]

    def test_usage_reflected(self, install):
        install()
        client.post("/submissions", files=[IMAGE], headers=AUTH)
        fast = client.get("/quotas").json()["models"][0]
        assert fast["requests_last_minute"] == 1
        assert fast["requests_today"] == 1

    def test_nothing_available(self, install):
        install(limits={"fast": ModelLimits(requests_per_minute=1, tokens_per_minute=100_000, requests_per_day=100)})
        client.post("/submissions", files=[IMAGE], headers=AUTH)
        assert client.get("/quotas").json()["any_available"] is False


class TestMeta:

    def test_health(self):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_root_lists_endpoints(self):
        paths = {e["path"] for e in client.get("/").json()["endpoints"]}
        assert "/submissions" in paths
        assert "/quotas" in paths
