"""Business-rule checks on a finished analysis.

Video is never security-scanned, so these checks are the safety net for
manipulated or hallucinated output. They only produce warnings; a result
is never blocked here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from claims_backend.analysis.normalizer import DAMAGE_TYPES
from claims_backend.analysis.schemas import BasicAnalysis, EnhancedAnalysis
from claims_backend.config import HIGH_COST_THRESHOLD, LOW_CONFIDENCE_THRESHOLD

LOG = logging.getLogger(__name__)

MATCH_CONFIDENCE_THRESHOLD = 0.7
HIGH_CONFIDENCE_DENIAL = 0.8

# Example values from prompt templates that sometimes leak into answers
_PLACEHOLDER_PATTERNS = (
    "ABC123",
    "ABC-123",
    "XYZ789",
    "XYZ-789",
    "1HGBH41JXMN109186",
    "[PLATE",
    "[VIN",
    "[MAKE",
)


@dataclass
class ValidationReport:
    is_valid: bool = True
    warnings: List[str] = field(default_factory=list)
    flagged_reasons: List[str] = field(default_factory=list)
    requires_manual_review: bool = False

    def flag(self, reason: str, message: str, review: bool = True) -> None:
        self.warnings.append(message)
        self.flagged_reasons.append(reason)
        if review:
            self.requires_manual_review = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "warnings": list(self.warnings),
            "flagged_reasons": list(self.flagged_reasons),
            "requires_manual_review": self.requires_manual_review,
        }


def _placeholder_warnings(analysis: EnhancedAnalysis) -> List[str]:
    found = []
    checks = (
        (analysis.vehicle_verification.video_vehicle.license_plate, "video license plate"),
        (analysis.vehicle_verification.video_vehicle.vin, "video VIN"),
        (analysis.vehicle_verification.policy_vehicle.license_plate, "policy license plate"),
        (analysis.vehicle_verification.policy_vehicle.vin, "policy VIN"),
    )
    for value, label in checks:
        if not isinstance(value, str):
            continue
        upper = value.upper()
        if any(p in upper for p in _PLACEHOLDER_PATTERNS):
            found.append(
                f'Suspicious {label}: "{value}" matches example pattern. '
                "This may be hallucinated data. Manual review required."
            )
    return found


def validate_analysis(analysis: Union[BasicAnalysis, EnhancedAnalysis]) -> ValidationReport:
    """Run every rule and return the collected warnings."""
    report = ValidationReport()
    parts = analysis.damaged_parts

    if analysis.confidence is not None and analysis.confidence < LOW_CONFIDENCE_THRESHOLD:
        report.flag("low_confidence", f"Low confidence score: {analysis.confidence * 100:.0f}%")

    if not parts:
        report.flag(
            "no_damage_detected",
            "No damaged parts identified. This may indicate the vehicle has no visible "
            "damage or the analysis failed.",
            review=False,
        )
    elif analysis.overall_severity == "minor" and any(p.severity == "severe" for p in parts):
        report.flag(
            "severity_mismatch",
            "Inconsistency: Severe damage to individual parts but overall severity is minor.",
        )

    if isinstance(analysis, EnhancedAnalysis):
        _validate_enhanced(analysis, report)

    report.is_valid = not report.warnings and not report.requires_manual_review
    if report.requires_manual_review:
        LOG.warning("Analysis requires manual review: %s", ", ".join(report.flagged_reasons))
    return report


def _validate_enhanced(analysis: EnhancedAnalysis, report: ValidationReport) -> None:
    placeholders = _placeholder_warnings(analysis)
    if placeholders:
        report.warnings.extend(placeholders)
        report.flagged_reasons.append("placeholder_hallucination")
        report.requires_manual_review = True

    total = analysis.estimated_total_repair_cost
    if total > HIGH_COST_THRESHOLD:
        report.flag(
            "high_repair_cost",
            f"High repair cost: ${total:,.0f}. Exceeds threshold of ${HIGH_COST_THRESHOLD:,}.",
        )

    verification = analysis.vehicle_verification
    status = verification.verification_status
    if status == "mismatched":
        report.flag(
            "vehicle_mismatch",
            "Vehicle mismatch detected between video/images and policy. Possible fraud attempt.",
        )
        if not verification.mismatches:
            report.flag(
                "missing_mismatch_details",
                'Verification status is "mismatched" but no specific mismatches were listed. '
                "Analysis may be incomplete.",
            )
    elif status == "insufficient_data":
        report.flag(
            "insufficient_vehicle_data",
            "Insufficient vehicle details to verify identity. License plate or VIN not visible.",
            review=False,
        )
    elif status == "matched":
        score = verification.confidence_score or 0.0
        if score < MATCH_CONFIDENCE_THRESHOLD:
            report.flag(
                "low_verification_confidence",
                f'Vehicle marked as "matched" but verification confidence is only {score * 100:.0f}%. '
                "Requires manual review to confirm vehicle identity.",
            )
        video = verification.video_vehicle
        visible = sum(1 for v in (video.license_plate, video.vin, video.make, video.model) if v is not None)
        if visible < 2:
            report.flag(
                "insufficient_match_criteria",
                f'Vehicle marked as "matched" but only {visible} identification field(s) visible. '
                "Insufficient data for confident match - requires manual verification.",
            )

    if analysis.damage_type not in DAMAGE_TYPES:
        report.flag(
            "invalid_damage_type",
            f'Invalid damage_type value "{analysis.damage_type}".',
            review=False,
        )

    payout = analysis.claim_assessment.financial_breakdown.estimated_payout
    limits = analysis.policy_analysis.coverage_limits
    if limits and payout > max(limits.values()):
        report.flag(
            "payout_exceeds_coverage",
            f"Estimated payout (${payout:,.0f}) exceeds maximum coverage limit (${max(limits.values()):,.0f}).",
        )

    if not analysis.damaged_parts and total > 1000:
        report.flag(
            "inconsistent_cost",
            f"No damaged parts listed but repair cost is ${total:,.0f}. This is inconsistent.",
        )

    if analysis.investigation_needed or analysis.claim_assessment.status == "needs_investigation":
        report.flag("ai_flagged_investigation", "Analysis flagged for investigation by AI model.")

    if analysis.claim_assessment.status == "denied" and (analysis.confidence or 0) > HIGH_CONFIDENCE_DENIAL:
        report.flag(
            "high_confidence_denial",
            "Claim denied by AI with high confidence. Verify denial reasons are valid.",
            review=False,
        )


__all__ = ["ValidationReport", "validate_analysis"]
