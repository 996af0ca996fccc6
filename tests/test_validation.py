"""Tests for claims_backend.analysis.validation: post-analysis business rules."""
from __future__ import annotations

import pytest

from claims_backend.analysis.schemas import BasicAnalysis, EnhancedAnalysis, upgrade_to_enhanced
from claims_backend.analysis.validation import validate_analysis


@pytest.fixture
def enhanced(enhanced_payload):
    return enhanced_payload


def _validate(payload):
    return validate_analysis(EnhancedAnalysis.model_validate(payload))


class TestCleanAnalysis:

    def test_consistent_enhanced_result_is_valid(self, enhanced):
        report = _validate(enhanced)
        assert report.is_valid
        assert report.warnings == []
        assert not report.requires_manual_review

    def test_upgraded_basic_result_needs_review(self, basic_payload):
        report = validate_analysis(upgrade_to_enhanced(BasicAnalysis.model_validate(basic_payload)))
        assert "insufficient_vehicle_data" in report.flagged_reasons
        assert "ai_flagged_investigation" in report.flagged_reasons
        assert report.requires_manual_review
        assert not report.is_valid


class TestRules:

    def test_low_confidence(self, enhanced):
        enhanced["confidence"] = 0.2
        report = _validate(enhanced)
        assert "low_confidence" in report.flagged_reasons
        assert "Low confidence score: 20%" in report.warnings

    def test_no_damage_is_informational(self, basic_payload):
        basic_payload["damagedParts"] = []
        report = validate_analysis(BasicAnalysis.model_validate(basic_payload))
        assert report.flagged_reasons == ["no_damage_detected"]
        assert not report.requires_manual_review
        assert not report.is_valid

    def test_severity_mismatch(self, basic_payload):
        basic_payload["overallSeverity"] = "minor"
        report = validate_analysis(BasicAnalysis.model_validate(basic_payload))
        assert "severity_mismatch" in report.flagged_reasons
        assert report.requires_manual_review

    @pytest.mark.parametrize("plate", ["ABC123", "xyz-789", "[PLATE NUMBER]"])
    def test_placeholder_plate(self, enhanced, plate):
        enhanced["vehicleVerification"]["videoVehicle"]["licensePlate"] = plate
        report = _validate(enhanced)
        assert "placeholder_hallucination" in report.flagged_reasons
        assert any("video license plate" in w for w in report.warnings)

    def test_high_cost(self, enhanced):
        enhanced["estimatedTotalRepairCost"] = 150_000
        report = _validate(enhanced)
        assert "high_repair_cost" in report.flagged_reasons
        assert "High repair cost: $150,000. Exceeds threshold of $100,000." in report.warnings

    def test_mismatch_without_details(self, enhanced):
        enhanced["vehicleVerification"]["verificationStatus"] = "mismatched"
        report = _validate(enhanced)
        assert report.flagged_reasons[:2] == ["vehicle_mismatch", "missing_mismatch_details"]

    def test_mismatch_with_details(self, enhanced):
        enhanced["vehicleVerification"]["verificationStatus"] = "mismatched"
        enhanced["vehicleVerification"]["mismatches"] = ["color differs"]
        report = _validate(enhanced)
        assert "vehicle_mismatch" in report.flagged_reasons
        assert "missing_mismatch_details" not in report.flagged_reasons

    def test_low_match_confidence(self, enhanced):
        enhanced["vehicleVerification"]["confidenceScore"] = 0.5
        report = _validate(enhanced)
        assert "low_verification_confidence" in report.flagged_reasons

    def test_match_with_too_few_fields(self, enhanced):
        enhanced["vehicleVerification"]["videoVehicle"] = {"color": "blue", "make": "Toyota"}
        report = _validate(enhanced)
        assert "insufficient_match_criteria" in report.flagged_reasons

    def test_payout_exceeds_coverage(self, enhanced):
        enhanced["claimAssessment"]["financialBreakdown"]["estimatedPayout"] = 60_000
        report = _validate(enhanced)
        assert "payout_exceeds_coverage" in report.flagged_reasons

    def test_cost_without_parts(self, enhanced):
        enhanced["damagedParts"] = []
        report = _validate(enhanced)
        assert "inconsistent_cost" in report.flagged_reasons

    def test_ai_flagged_investigation(self, enhanced):
        enhanced["investigationNeeded"] = True
        report = _validate(enhanced)
        assert "ai_flagged_investigation" in report.flagged_reasons

    def test_high_confidence_denial_is_informational(self, enhanced):
        enhanced["claimAssessment"]["status"] = "denied"
        enhanced["confidence"] = 0.95
        report = _validate(enhanced)
        assert report.flagged_reasons == ["high_confidence_denial"]
        assert not report.requires_manual_review

    def test_to_dict(self, enhanced):
        enhanced["confidence"] = 0.1
        data = _validate(enhanced).to_dict()
        assert data["is_valid"] is False
        assert data["requires_manual_review"] is True
        assert data["flagged_reasons"] == ["low_confidence"]
