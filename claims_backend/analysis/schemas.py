"""Analysis result shapes.

``AnalysisOutput`` is a tagged union over ``BasicAnalysis`` (damage
findings only) and ``EnhancedAnalysis`` (damage + policy coverage +
vehicle cross-check + financial breakdown). Field names are snake_case
in Python and camelCase on the wire, matching what the model emits.

A basic result is always promoted with ``upgrade_to_enhanced`` before it
is stored, so persistence only ever sees the enhanced shape.
"""
from __future__ import annotations

from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from claims_backend.analysis.normalizer import (
    coverage_amount,
    normalize_damage_type,
    normalize_repair_complexity,
    normalize_severity,
    parse_cost,
)

# Per-part fallback when the model gives no (or a zero) cost estimate.
# Anything that is not severe or moderate, total_loss included, costs as minor.
SEVERITY_DEFAULT_COST = {
    "minor": 300.0,
    "moderate": 800.0,
    "severe": 2000.0,
}
CONFIDENCE_PENALTY_NO_POLICY = 0.2


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class DamagedPart(_WireModel):
    part: str
    severity: str = "moderate"
    description: str = ""
    estimated_repair_cost: Optional[float] = None
    damage_age: Optional[str] = None
    pre_existing: Optional[bool] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v):
        return normalize_severity(v)

    @field_validator("estimated_repair_cost", mode="before")
    @classmethod
    def _cost(cls, v):
        return parse_cost(v)


class BasicAnalysis(_WireModel):
    kind: Literal["basic"] = "basic"
    damaged_parts: List[DamagedPart] = Field(default_factory=list)
    overall_severity: str = "moderate"
    estimated_repair_complexity: str = "moderate"
    safety_concerns: List[str] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)
    confidence: Optional[float] = None
    confidence_reasoning: Optional[str] = None

    @field_validator("overall_severity", mode="before")
    @classmethod
    def _overall(cls, v):
        return normalize_severity(v)

    @field_validator("estimated_repair_complexity", mode="before")
    @classmethod
    def _complexity(cls, v):
        return normalize_repair_complexity(v)


class VehicleDetails(_WireModel):
    license_plate: Optional[str] = None
    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None

    @field_validator("year", mode="before")
    @classmethod
    def _year(cls, v):
        try:
            return int(v) if v is not None else None
        except (TypeError, ValueError):
            return None


class VehicleVerification(_WireModel):
    video_vehicle: VehicleDetails = Field(default_factory=VehicleDetails)
    policy_vehicle: VehicleDetails = Field(default_factory=VehicleDetails)
    verification_status: Literal["matched", "mismatched", "insufficient_data"] = "insufficient_data"
    mismatches: List[str] = Field(default_factory=list)
    confidence_score: float = 0.0
    notes: str = ""


class Deductible(_WireModel):
    type: str
    amount: float = 0.0

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return coverage_amount(v)


class PolicyAnalysis(_WireModel):
    coverage_types: List[str] = Field(default_factory=list)
    deductibles: List[Deductible] = Field(default_factory=list)
    exclusions: List[str] = Field(default_factory=list)
    coverage_limits: Dict[str, float] = Field(default_factory=dict)
    relevant_policy_sections: List[str] = Field(default_factory=list)

    @field_validator("coverage_limits", mode="before")
    @classmethod
    def _limits(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): coverage_amount(amount) for k, amount in v.items()}


class FinancialBreakdown(_WireModel):
    total_repair_estimate: float = 0.0
    covered_amount: float = 0.0
    deductible: float = 0.0
    non_covered_items: float = 0.0
    estimated_payout: float = 0.0

    @field_validator("*", mode="before")
    @classmethod
    def _money(cls, v):
        return coverage_amount(v)


class ClaimAssessment(_WireModel):
    status: Literal["approved", "denied", "partial", "needs_investigation"] = "needs_investigation"
    covered_damages: List[str] = Field(default_factory=list)
    excluded_damages: List[str] = Field(default_factory=list)
    financial_breakdown: FinancialBreakdown = Field(default_factory=FinancialBreakdown)
    reasoning: str = ""
    policy_references: List[str] = Field(default_factory=list)


class EnhancedAnalysis(BasicAnalysis):
    kind: Literal["enhanced"] = "enhanced"  # type: ignore[assignment]
    estimated_total_repair_cost: float = 0.0
    damage_type: str = "unknown"
    damage_cause: str = ""
    vehicle_verification: VehicleVerification = Field(default_factory=VehicleVerification)
    policy_analysis: PolicyAnalysis = Field(default_factory=PolicyAnalysis)
    claim_assessment: ClaimAssessment = Field(default_factory=ClaimAssessment)
    investigation_needed: bool = False
    investigation_reason: Optional[str] = None

    @field_validator("damage_type", mode="before")
    @classmethod
    def _damage_type(cls, v):
        return normalize_damage_type(v)

    @field_validator("estimated_total_repair_cost", mode="before")
    @classmethod
    def _total(cls, v):
        return coverage_amount(v)


AnalysisOutput = Annotated[Union[BasicAnalysis, EnhancedAnalysis], Field(discriminator="kind")]


def estimate_total_cost(parts: List[DamagedPart]) -> float:
    """Sum per-part costs, using the severity default where a part has none."""
    return sum(
        part.estimated_repair_cost or SEVERITY_DEFAULT_COST.get(part.severity, SEVERITY_DEFAULT_COST["minor"])
        for part in parts
    )


def upgrade_to_enhanced(basic: BasicAnalysis) -> EnhancedAnalysis:
    """Promote a basic result to the enhanced shape with explicit placeholders.

    Used when no policy document was provided: coverage and vehicle fields
    are marked as insufficient data, the claim goes to manual review and
    confidence drops by a fixed penalty.
    """
    if isinstance(basic, EnhancedAnalysis):
        return basic

    total = estimate_total_cost(basic.damaged_parts)
    unknown_vehicle = VehicleDetails(year=0)
    carried = set(BasicAnalysis.model_fields) - {"kind", "confidence", "confidence_reasoning"}
    base = basic.model_dump(include=carried)

    return EnhancedAnalysis(
        **base,
        estimated_total_repair_cost=total,
        damage_type="unknown",
        damage_cause="Unknown - requires manual review",
        vehicle_verification=VehicleVerification(
            video_vehicle=unknown_vehicle,
            policy_vehicle=unknown_vehicle.model_copy(),
            verification_status="insufficient_data",
            mismatches=[],
            confidence_score=0.0,
            notes="No policy provided - vehicle verification not performed",
        ),
        policy_analysis=PolicyAnalysis(
            coverage_limits={"collision": 0.0, "comprehensive": 0.0, "liability": 0.0},
        ),
        claim_assessment=ClaimAssessment(
            status="needs_investigation",
            financial_breakdown=FinancialBreakdown(
                total_repair_estimate=total,
                covered_amount=0.0,
                deductible=0.0,
                non_covered_items=total,
                estimated_payout=0.0,
            ),
            reasoning=(
                "No insurance policy provided. Report requires manual review by "
                "adjuster to determine coverage and payout."
            ),
        ),
        investigation_needed=True,
        investigation_reason=(
            "No insurance policy provided - requires manual review to verify "
            "coverage and calculate payout"
        ),
        confidence=round(max(0.0, (basic.confidence or 0.5) - CONFIDENCE_PENALTY_NO_POLICY), 4),
        confidence_reasoning=(
            basic.confidence_reasoning
            or "Analysis based on visual damage only. Policy verification not performed."
        ),
    )


__all__ = [
    "AnalysisOutput",
    "BasicAnalysis",
    "ClaimAssessment",
    "DamagedPart",
    "Deductible",
    "EnhancedAnalysis",
    "FinancialBreakdown",
    "PolicyAnalysis",
    "VehicleDetails",
    "VehicleVerification",
    "SEVERITY_DEFAULT_COST",
    "estimate_total_cost",
    "upgrade_to_enhanced",
]
