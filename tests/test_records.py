"""Tests for claims_backend.db.records: document building and the report write."""
from __future__ import annotations

import asyncio
import re

import pytest
from unittest.mock import MagicMock

from claims_backend.analysis.schemas import BasicAnalysis, EnhancedAnalysis, upgrade_to_enhanced
from claims_backend.db.records import (
    ASSESSMENTS,
    CHILD_COLLECTIONS,
    DAMAGE_DETAILS,
    FRAUD_ASSESSMENTS,
    VEHICLE_VERIFICATIONS,
    MongoRecordStore,
    build_child_documents,
    build_report_document,
    generate_report_number,
    save_report,
)
from claims_backend.errors import PersistError
from claims_backend.models import PendingRecord, StoredArtifact
from tests.conftest import FakeClock, FakeRecordStore


def _pending(analysis, **overrides):
    fields = dict(
        pending_id="p-1",
        requester_id="user-1",
        analysis=analysis,
        model="fast",
        media_artifacts=[StoredArtifact("art-1", "car.jpg", "image/jpeg", "image", "ab" * 32)],
        policy_file_id=None,
        total_tokens=1200,
        warnings=[{"source": "images", "risk_level": "high", "reasoning": "x", "matched_categories": []}],
        validation={"requires_manual_review": True, "flagged_reasons": ["low_confidence"], "warnings": ["Low"]},
    )
    fields.update(overrides)
    return PendingRecord(**fields)


@pytest.fixture
def enhanced_pending(enhanced_payload):
    return _pending(EnhancedAnalysis.model_validate(enhanced_payload))


@pytest.fixture
def basic_pending(basic_payload):
    return _pending(upgrade_to_enhanced(BasicAnalysis.model_validate(basic_payload)))


# =====================================================================
# Report number
# =====================================================================

class TestReportNumber:

    def test_format(self):
        clock = FakeClock(1_700_000_000.5)
        number = generate_report_number(clock)
        assert re.fullmatch(r"RPT-1700000000500-[0-9A-Z]{9}", number)

    def test_unique(self):
        clock = FakeClock()
        assert generate_report_number(clock) != generate_report_number(clock)


# =====================================================================
# Document builders
# =====================================================================

class TestBuildDocuments:

    def test_parent(self, enhanced_pending):
        doc = build_report_document(enhanced_pending, "RPT-1-ABC")
        assert doc["report_number"] == "RPT-1-ABC"
        assert doc["status"] == "pending"
        assert doc["requester_id"] == "user-1"
        assert doc["damage_type"] == "collision"
        assert doc["media_files"] == [{"id": "art-1", "kind": "image"}]
        assert doc["ai_model_used"] == "fast"
        assert doc["security_warnings"][0]["risk_level"] == "high"

    def test_children_cover_every_collection(self, enhanced_pending):
        children = build_child_documents(enhanced_pending)
        assert set(children) == set(CHILD_COLLECTIONS)
        assert len(children[VEHICLE_VERIFICATIONS]) == 1
        assert len(children[ASSESSMENTS]) == 1
        assert len(children[FRAUD_ASSESSMENTS]) == 1

    def test_damage_details_are_ordered(self, enhanced_pending):
        damage = build_child_documents(enhanced_pending)[DAMAGE_DETAILS]
        assert [(d["part_name"], d["sort_order"]) for d in damage] == [("front bumper", 0), ("left mirror", 1)]
        assert damage[0]["pre_existing"] is False

    def test_assessment_fields(self, enhanced_pending):
        assessment = build_child_documents(enhanced_pending)[ASSESSMENTS][0]
        assert assessment["assessment_status"] == "approved"
        assert assessment["estimated_payout"] == 1650
        assert assessment["deductible_amounts"] == [500]
        assert assessment["coverage_limit_liability"] == 50000

    def test_placeholder_year_dropped(self, basic_pending):
        vehicle = build_child_documents(basic_pending)[VEHICLE_VERIFICATIONS][0]
        assert vehicle["video_year"] is None
        assert vehicle["verification_status"] == "insufficient_data"

    def test_fraud_assessment_carries_validation(self, basic_pending):
        fraud = build_child_documents(basic_pending)[FRAUD_ASSESSMENTS][0]
        assert fraud["investigation_needed"] is True
        assert fraud["requires_manual_review"] is True
        assert fraud["flagged_reasons"] == ["low_confidence"]


# =====================================================================
# save_report
# =====================================================================

class TestSaveReport:

    def test_writes_parent_and_children(self, enhanced_pending):
        store = FakeRecordStore()
        record_id = asyncio.run(save_report(store, enhanced_pending, "RPT-1-ABC"))

        record = asyncio.run(store.get_record(record_id))
        assert record["report_number"] == "RPT-1-ABC"
        assert all(d["report_id"] == record_id for d in record[DAMAGE_DETAILS])
        assert len(record[FRAUD_ASSESSMENTS]) == 1

    def test_child_failure_deletes_parent(self, enhanced_pending):
        store = FakeRecordStore(fail_children=True)
        with pytest.raises(PersistError):
            asyncio.run(save_report(store, enhanced_pending, "RPT-1-ABC"))
        assert store.deleted == ["rec-1"]
        assert store.records == {}

    def test_parent_failure_writes_nothing(self, enhanced_pending):
        store = FakeRecordStore(fail_create=True)
        with pytest.raises(PersistError):
            asyncio.run(save_report(store, enhanced_pending, "RPT-1-ABC"))
        assert store.deleted == []


# =====================================================================
# MongoRecordStore
# =====================================================================

class TestMongoRecordStore:

    def test_create_record(self):
        handler = MagicMock()
        handler.insert_one.return_value = "64b000000000000000000001"
        store = MongoRecordStore(handler, reports_collection="reports")

        record_id = asyncio.run(store.create_record({"report_number": "RPT-1"}))

        assert record_id == "64b000000000000000000001"
        handler.insert_one.assert_called_once_with("reports", {"report_number": "RPT-1"})

    def test_create_record_failure(self):
        handler = MagicMock()
        handler.insert_one.return_value = None
        with pytest.raises(PersistError):
            asyncio.run(MongoRecordStore(handler).create_record({}))

    def test_children_get_report_id(self):
        handler = MagicMock()
        handler.insert_many.return_value = ["c1", "c2"]
        store = MongoRecordStore(handler)

        ids = asyncio.run(store.create_child_records("r1", DAMAGE_DETAILS, [{"part_name": "a"}, {"part_name": "b"}]))

        assert ids == ["c1", "c2"]
        handler.insert_many.assert_called_once_with(
            DAMAGE_DETAILS, [{"part_name": "a", "report_id": "r1"}, {"part_name": "b", "report_id": "r1"}]
        )

    def test_children_failure(self):
        handler = MagicMock()
        handler.insert_many.return_value = None
        with pytest.raises(PersistError, match="damage_details"):
            asyncio.run(MongoRecordStore(handler).create_child_records("r1", DAMAGE_DETAILS, [{}]))

    def test_get_record_attaches_children(self):
        handler = MagicMock()
        handler.find_by_id.return_value = {"_id": "r1", "status": "pending"}
        handler.find_all.return_value = [{"report_id": "r1"}]
        store = MongoRecordStore(handler, reports_collection="reports")

        record = asyncio.run(store.get_record("r1"))

        assert record["status"] == "pending"
        for collection in CHILD_COLLECTIONS:
            assert record[collection] == [{"report_id": "r1"}]
        handler.find_all.assert_any_call(DAMAGE_DETAILS, {"report_id": "r1"}, "sort_order")
        handler.find_all.assert_any_call(ASSESSMENTS, {"report_id": "r1"}, None)

    def test_get_missing_record(self):
        handler = MagicMock()
        handler.find_by_id.return_value = None
        assert asyncio.run(MongoRecordStore(handler).get_record("nope")) is None
        handler.find_all.assert_not_called()

    def test_delete_record_removes_children_first(self):
        handler = MagicMock()
        asyncio.run(MongoRecordStore(handler, reports_collection="reports").delete_record("r1"))

        assert [c.args[0] for c in handler.delete_many.call_args_list] == list(CHILD_COLLECTIONS)
        handler.delete_by_id.assert_called_once_with("reports", "r1")
