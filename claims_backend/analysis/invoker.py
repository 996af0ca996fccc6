"""Single AI analysis call with a hard timeout and output normalization.

The call is abandoned (not cancelled at the provider) when the timeout
fires, so the provider may still bill for it.

Env vars
--------
ANALYSIS_TIMEOUT_SECONDS : float
    Wall-clock budget for one analysis call (default 60).
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import jsonschema
from pydantic import ValidationError

from claims_backend.analysis.normalizer import clean_json_response
from claims_backend.analysis.prompts import build_analysis_prompt
from claims_backend.analysis.schemas import BasicAnalysis, EnhancedAnalysis, upgrade_to_enhanced
from claims_backend.config import (
    ANALYSIS_TEMPERATURE,
    ANALYSIS_TIMEOUT_SECONDS,
    BASIC_MAX_TOKENS,
    ENHANCED_MAX_TOKENS,
    TOKEN_ESTIMATE_ENHANCED,
    TOKEN_ESTIMATE_IMAGES,
    TOKEN_ESTIMATE_VIDEO,
)
from claims_backend.errors import AnalysisTimeoutError, MalformedResponse
from claims_backend.llm_base import AnalysisBackend, UsageStats
from claims_backend.models import EncodedFile

LOG = logging.getLogger(__name__)

_NULLABLE_STRING = {"type": ["string", "null"]}
_NUMBER_LIKE = {"type": ["number", "string", "null"]}

# Structural checks only; vocabularies are folded by the pydantic validators.
DAMAGED_PART_SCHEMA = {
    "type": "object",
    "required": ["part"],
    "properties": {
        "part": {"type": "string"},
        "severity": _NULLABLE_STRING,
        "description": _NULLABLE_STRING,
        "estimatedRepairCost": _NUMBER_LIKE,
    },
}

BASIC_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["damagedParts"],
    "properties": {
        "damagedParts": {"type": "array", "items": DAMAGED_PART_SCHEMA},
        "overallSeverity": _NULLABLE_STRING,
        "estimatedRepairComplexity": _NULLABLE_STRING,
        "safetyConcerns": {"type": "array", "items": {"type": "string"}},
        "recommendedActions": {"type": "array", "items": {"type": "string"}},
        "confidence": {"type": ["number", "null"]},
        "confidenceReasoning": _NULLABLE_STRING,
    },
}

ENHANCED_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["damagedParts", "claimAssessment"],
    "properties": {
        **BASIC_SCHEMA["properties"],
        "estimatedTotalRepairCost": _NUMBER_LIKE,
        "damageType": _NULLABLE_STRING,
        "damageCause": _NULLABLE_STRING,
        "vehicleVerification": {"type": "object"},
        "policyAnalysis": {"type": "object"},
        "claimAssessment": {
            "type": "object",
            "properties": {"financialBreakdown": {"type": "object"}},
        },
        "investigationNeeded": {"type": ["boolean", "null"]},
        "investigationReason": _NULLABLE_STRING,
    },
}


def parse_analysis(text: str, enhanced: bool) -> BasicAnalysis:
    """Parse raw model text into ``BasicAnalysis`` or ``EnhancedAnalysis``.

    Raises ``MalformedResponse`` when the text is not JSON, does not match
    the expected structure, or fails model validation.
    """
    cleaned = clean_json_response(text or "")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Model output is not valid JSON: {e}") from e

    schema = ENHANCED_SCHEMA if enhanced else BASIC_SCHEMA
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        raise MalformedResponse(f"Model output failed schema validation: {e.message}") from e

    data.pop("kind", None)
    model_cls = EnhancedAnalysis if enhanced else BasicAnalysis
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise MalformedResponse(f"Model output could not be normalized: {e}") from e


def estimate_tokens(media: Sequence[EncodedFile], enhanced: bool) -> int:
    """Pre-call token reservation for a submission."""
    if enhanced:
        return TOKEN_ESTIMATE_ENHANCED
    if any(m.kind == "video" for m in media):
        return TOKEN_ESTIMATE_VIDEO
    return TOKEN_ESTIMATE_IMAGES


def timeout_message(media: Sequence[EncodedFile]) -> str:
    kinds = {m.kind for m in media}
    if "video" in kinds:
        return "AI analysis timed out. Please try again with a shorter video."
    if "image" in kinds:
        return "AI analysis timed out. Please try again with fewer images."
    return "AI analysis timed out. Please try again with a shorter video or fewer images."


@dataclass
class InvocationResult:
    analysis: EnhancedAnalysis
    usage: UsageStats
    model: str
    enhanced: bool = False


class AnalysisInvoker:
    """Runs one analysis call against a chosen model."""

    def __init__(self, backend: AnalysisBackend, timeout_seconds: Optional[float] = None):
        self.backend = backend
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else ANALYSIS_TIMEOUT_SECONDS

    async def analyze(
        self,
        media: Sequence[EncodedFile],
        policy: Optional[EncodedFile],
        model: str,
        security_notes: Optional[List[str]] = None,
    ) -> InvocationResult:
        enhanced = policy is not None
        prompt = build_analysis_prompt([m.kind for m in media], enhanced, security_notes)

        call = self.backend.invoke(
            model,
            prompt,
            media,
            policy,
            max_output_tokens=ENHANCED_MAX_TOKENS if enhanced else BASIC_MAX_TOKENS,
            temperature=ANALYSIS_TEMPERATURE,
        )
        try:
            response = await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            LOG.warning("Analysis on %s exceeded %ss; abandoning call", model, self.timeout_seconds)
            raise AnalysisTimeoutError(timeout_message(media)) from e

        analysis = parse_analysis(response.text, enhanced)
        if not enhanced:
            analysis = upgrade_to_enhanced(analysis)

        LOG.info(
            "Analysis complete: model=%s enhanced=%s parts=%d tokens=%d",
            model,
            enhanced,
            len(analysis.damaged_parts),
            response.usage.total_tokens,
        )
        return InvocationResult(analysis=analysis, usage=response.usage, model=model, enhanced=enhanced)


__all__ = [
    "AnalysisInvoker",
    "InvocationResult",
    "estimate_tokens",
    "parse_analysis",
    "timeout_message",
]
