"""Claim report persistence.

A report is one parent document in the reports collection plus child
documents that point back to it through ``report_id``:

- ``damage_details``: one per damaged part, ordered by ``sort_order``
- ``vehicle_verifications``: the media/policy vehicle cross-check
- ``assessments``: coverage and the financial breakdown
- ``fraud_assessments``: investigation flags and validation findings

MongoDB gives no cross-collection transaction here, so the write is a
logical unit only: when a child insert fails, the parent and any
children already written are removed before ``PersistError`` is raised.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from claims_backend.config import MONGODB_REPORTS_COLLECTION
from claims_backend.db.mongodb_handler import MongoDBHandler
from claims_backend.errors import PersistError
from claims_backend.models import PendingRecord

LOG = logging.getLogger(__name__)

DAMAGE_DETAILS = "damage_details"
VEHICLE_VERIFICATIONS = "vehicle_verifications"
ASSESSMENTS = "assessments"
FRAUD_ASSESSMENTS = "fraud_assessments"
CHILD_COLLECTIONS = (DAMAGE_DETAILS, VEHICLE_VERIFICATIONS, ASSESSMENTS, FRAUD_ASSESSMENTS)

_BASE36 = string.digits + string.ascii_uppercase


def generate_report_number(clock: Callable[[], float] = time.time) -> str:
    """Return ``RPT-<epoch ms>-<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"RPT-{int(clock() * 1000)}-{suffix}"


# ---------------------------------------------------------------------------
# Document builders
# ---------------------------------------------------------------------------

def build_report_document(pending: PendingRecord, report_number: str) -> Dict[str, Any]:
    analysis = pending.analysis
    return {
        "report_number": report_number,
        "requester_id": pending.requester_id,
        "status": "pending",
        "created_at": datetime.now(timezone.utc).isoformat(),
        "damage_type": analysis.damage_type,
        "damage_cause": analysis.damage_cause,
        "overall_severity": analysis.overall_severity,
        "estimated_repair_complexity": analysis.estimated_repair_complexity,
        "estimated_total_repair_cost": analysis.estimated_total_repair_cost,
        "confidence_score": analysis.confidence,
        "confidence_reasoning": analysis.confidence_reasoning,
        "vehicle_verification_status": analysis.vehicle_verification.verification_status,
        "investigation_needed": analysis.investigation_needed,
        "investigation_reason": analysis.investigation_reason,
        "safety_concerns": list(analysis.safety_concerns),
        "recommended_actions": list(analysis.recommended_actions),
        "media_files": [{"id": a.artifact_id, "kind": a.kind} for a in pending.media_artifacts],
        "policy_file_id": pending.policy_file_id,
        "ai_model_used": pending.model,
        "total_tokens": pending.total_tokens,
        "security_warnings": list(pending.warnings),
    }


def _vehicle_fields(prefix: str, vehicle) -> Dict[str, Any]:
    return {
        f"{prefix}_license_plate": vehicle.license_plate,
        f"{prefix}_vin": vehicle.vin,
        f"{prefix}_make": vehicle.make,
        f"{prefix}_model": vehicle.model,
        f"{prefix}_year": vehicle.year if vehicle.year and 1900 <= vehicle.year <= 2100 else None,
        f"{prefix}_color": vehicle.color,
    }


def build_child_documents(pending: PendingRecord) -> Dict[str, List[Dict[str, Any]]]:
    """Return child documents keyed by collection (without ``report_id``)."""
    analysis = pending.analysis
    verification = analysis.vehicle_verification
    policy = analysis.policy_analysis
    assessment = analysis.claim_assessment
    breakdown = assessment.financial_breakdown

    damage = [
        {
            "part_name": part.part,
            "severity": part.severity,
            "description": part.description,
            "estimated_repair_cost": part.estimated_repair_cost,
            "damage_age": part.damage_age,
            "pre_existing": bool(part.pre_existing),
            "sort_order": index,
        }
        for index, part in enumerate(analysis.damaged_parts)
    ]

    vehicle = {
        **_vehicle_fields("video", verification.video_vehicle),
        **_vehicle_fields("policy", verification.policy_vehicle),
        "verification_status": verification.verification_status,
        "mismatches": ", ".join(verification.mismatches),
        "confidence_score": verification.confidence_score,
        "notes": verification.notes,
    }

    coverage = {
        "coverage_types": list(policy.coverage_types),
        "deductible_types": [d.type for d in policy.deductibles],
        "deductible_amounts": [d.amount for d in policy.deductibles],
        "exclusions": list(policy.exclusions),
        "coverage_limit_collision": policy.coverage_limits.get("collision", 0.0),
        "coverage_limit_comprehensive": policy.coverage_limits.get("comprehensive", 0.0),
        "coverage_limit_liability": policy.coverage_limits.get("liability", 0.0),
        "relevant_policy_sections": list(policy.relevant_policy_sections),
        "assessment_status": assessment.status,
        "covered_damages": list(assessment.covered_damages),
        "excluded_damages": list(assessment.excluded_damages),
        "total_repair_estimate": breakdown.total_repair_estimate,
        "covered_amount": breakdown.covered_amount,
        "deductible": breakdown.deductible,
        "non_covered_items": breakdown.non_covered_items,
        "estimated_payout": breakdown.estimated_payout,
        "reasoning": assessment.reasoning,
        "policy_references": list(assessment.policy_references),
    }

    validation = pending.validation or {}
    fraud = {
        "investigation_needed": analysis.investigation_needed,
        "investigation_reason": analysis.investigation_reason,
        "pre_existing_detected": any(p.pre_existing for p in analysis.damaged_parts),
        "requires_manual_review": bool(validation.get("requires_manual_review")),
        "flagged_reasons": list(validation.get("flagged_reasons", [])),
        "validation_warnings": list(validation.get("warnings", [])),
    }

    return {
        DAMAGE_DETAILS: damage,
        VEHICLE_VERIFICATIONS: [vehicle],
        ASSESSMENTS: [coverage],
        FRAUD_ASSESSMENTS: [fraud],
    }


# ---------------------------------------------------------------------------
# Store contract
# ---------------------------------------------------------------------------

class RecordStore(ABC):
    """Document database contract. Write failures raise ``PersistError``."""

    @abstractmethod
    async def create_record(self, parent: Dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def create_child_records(
        self, parent_id: str, collection: str, children: List[Dict[str, Any]]
    ) -> List[str]:
        ...

    @abstractmethod
    async def get_record(self, record_id: str) -> Optional[Dict[str, Any]]:
        """Return the parent with its children attached, or None."""

    @abstractmethod
    async def delete_record(self, record_id: str) -> None:
        """Remove the parent and every child pointing at it."""


async def save_report(store: RecordStore, pending: PendingRecord, report_number: str) -> str:
    """Write the parent and all child documents; returns the parent id."""
    record_id = await store.create_record(build_report_document(pending, report_number))
    try:
        for collection, children in build_child_documents(pending).items():
            await store.create_child_records(record_id, collection, children)
    except PersistError:
        try:
            await store.delete_record(record_id)
        except Exception:
            LOG.error("Could not remove partial report %s", record_id, exc_info=True)
        raise
    return record_id


class MongoRecordStore(RecordStore):
    """``RecordStore`` on top of ``MongoDBHandler``; driver calls run in a thread."""

    def __init__(self, handler: Optional[MongoDBHandler] = None, reports_collection: Optional[str] = None):
        self.handler = handler or MongoDBHandler()
        self.reports_collection = reports_collection or MONGODB_REPORTS_COLLECTION

    async def create_record(self, parent: Dict[str, Any]) -> str:
        record_id = await asyncio.to_thread(self.handler.insert_one, self.reports_collection, parent)
        if record_id is None:
            raise PersistError("Failed to create report record")
        LOG.info("Created report %s (%s)", record_id, parent.get("report_number"))
        return record_id

    async def create_child_records(
        self, parent_id: str, collection: str, children: List[Dict[str, Any]]
    ) -> List[str]:
        docs = [{**child, "report_id": parent_id} for child in children]
        ids = await asyncio.to_thread(self.handler.insert_many, collection, docs)
        if ids is None:
            raise PersistError(f"Failed to create {collection} records for report {parent_id}")
        return ids

    def _get_record_sync(self, record_id: str) -> Optional[Dict[str, Any]]:
        report = self.handler.find_by_id(self.reports_collection, record_id)
        if report is None:
            return None
        for collection in CHILD_COLLECTIONS:
            sort_field = "sort_order" if collection == DAMAGE_DETAILS else None
            report[collection] = self.handler.find_all(collection, {"report_id": record_id}, sort_field)
        return report

    async def get_record(self, record_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get_record_sync, record_id)

    def _delete_record_sync(self, record_id: str) -> None:
        for collection in CHILD_COLLECTIONS:
            self.handler.delete_many(collection, {"report_id": record_id})
        self.handler.delete_by_id(self.reports_collection, record_id)

    async def delete_record(self, record_id: str) -> None:
        await asyncio.to_thread(self._delete_record_sync, record_id)


__all__ = [
    "CHILD_COLLECTIONS",
    "MongoRecordStore",
    "RecordStore",
    "build_child_documents",
    "build_report_document",
    "generate_report_number",
    "save_report",
]
