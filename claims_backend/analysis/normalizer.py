"""Value normalization for raw model output.

The model is asked for fixed vocabularies but routinely answers with
synonyms ("heavy", "totaled", "hail"). These helpers fold such answers
onto the values the record store accepts.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Optional

LOG = logging.getLogger(__name__)

SEVERITIES = ("minor", "moderate", "severe", "total_loss")
DAMAGE_TYPES = ("collision", "comprehensive", "weather", "vandalism", "unknown")
REPAIR_COMPLEXITIES = ("simple", "moderate", "complex", "extensive")

_SEVERITY_ALIASES = {
    "minor": "minor",
    "light": "minor",
    "low": "minor",
    "minimal": "minor",
    "slight": "minor",
    "moderate": "moderate",
    "medium": "moderate",
    "average": "moderate",
    "standard": "moderate",
    "unknown": "moderate",
    "severe": "severe",
    "high": "severe",
    "heavy": "severe",
    "critical": "severe",
    "major": "severe",
    "extensive": "severe",
    "total_loss": "total_loss",
    "totalloss": "total_loss",
    "total loss": "total_loss",
    "total": "total_loss",
    "totaled": "total_loss",
    "write-off": "total_loss",
    "writeoff": "total_loss",
    "write off": "total_loss",
    "destroyed": "total_loss",
}

_DAMAGE_TYPE_ALIASES = {
    "collision": "collision",
    "impact": "collision",
    "crash": "collision",
    "accident": "collision",
    "rear-end": "collision",
    "rear end": "collision",
    "frontal": "collision",
    "front-end": "collision",
    "front end": "collision",
    "side": "collision",
    "side-impact": "collision",
    "rollover": "collision",
    "t-bone": "collision",
    "comprehensive": "comprehensive",
    "fire": "comprehensive",
    "animal": "comprehensive",
    "weather": "weather",
    "hail": "weather",
    "storm": "weather",
    "precipitation": "weather",
    "flood": "weather",
    "wind": "weather",
    "lightning": "weather",
    "ice": "weather",
    "snow": "weather",
    "vandalism": "vandalism",
    "malicious": "vandalism",
    "intentional": "vandalism",
    "criminal": "vandalism",
    "unknown": "unknown",
    "theft": "unknown",
    "mechanical": "unknown",
    "wear and tear": "unknown",
    "wear-and-tear": "unknown",
}

_COMPLEXITY_ALIASES = {
    "simple": "simple",
    "easy": "simple",
    "basic": "simple",
    "minor": "simple",
    "low": "simple",
    "moderate": "moderate",
    "medium": "moderate",
    "average": "moderate",
    "complex": "complex",
    "complicated": "complex",
    "difficult": "complex",
    "high": "complex",
    "extensive": "extensive",
    "severe": "extensive",
    "major": "extensive",
    "significant": "extensive",
    "total_loss": "extensive",
    "total loss": "extensive",
}

_UNLIMITED_TERMS = {
    "unlimited",
    "nolimit",
    "marketvalue",
    "actualmarketvalue",
    "amv",
    "actualcashvalue",
    "acv",
    "replacementcost",
    "rcv",
    "fullcoverage",
    "statedvalue",
    "agreedvalue",
}
UNLIMITED_COVERAGE = 999_999_999.0

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")


def clean_json_response(text: str) -> str:
    """Strip Markdown code fences the model sometimes wraps JSON in."""
    return _FENCE_RE.sub("", (text or "").strip()).strip()


def normalize_severity(value: Optional[str]) -> str:
    if not value:
        return "moderate"
    key = str(value).strip().lower()
    mapped = _SEVERITY_ALIASES.get(key)
    if mapped is None:
        LOG.warning("Unknown severity %r, defaulting to moderate", value)
        return "moderate"
    return mapped


def normalize_damage_type(value: Optional[str]) -> str:
    if not value:
        return "unknown"
    key = str(value).strip().lower()
    if key in _DAMAGE_TYPE_ALIASES:
        return _DAMAGE_TYPE_ALIASES[key]
    # compound answers like "rear collision with barrier"
    if any(word in key for word in ("collision", "crash", "impact")):
        return "collision"
    if any(word in key for word in ("weather", "hail", "storm")):
        return "weather"
    if "vandal" in key:
        return "vandalism"
    return "unknown"


def normalize_repair_complexity(value: Optional[str]) -> str:
    if not value:
        return "moderate"
    key = str(value).strip().lower()
    if key in _COMPLEXITY_ALIASES:
        return _COMPLEXITY_ALIASES[key]
    if any(word in key for word in ("simple", "minor", "easy")):
        return "simple"
    if any(word in key for word in ("extensive", "severe", "major")):
        return "extensive"
    if any(word in key for word in ("complex", "difficult")):
        return "complex"
    return "moderate"


def parse_cost(value: Any) -> Optional[float]:
    """Parse a cost the model may give as a number, "$1,200" or "$500 - $800".

    Ranges resolve to their midpoint. Returns None when nothing numeric is found.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return max(0.0, float(value))
    text = str(value).replace(",", "").replace("$", "")
    numbers = [float(n) for n in _NUMBER_RE.findall(text)]
    if not numbers:
        return None
    if len(numbers) >= 2:
        return max(0.0, (numbers[0] + numbers[1]) / 2)
    return max(0.0, numbers[0])


def coverage_amount(value: Any) -> float:
    """Coerce a coverage limit to a non-negative float (unlimited terms map high)."""
    if isinstance(value, str):
        compact = re.sub(r"[$,\s]", "", value).lower()
        if compact in _UNLIMITED_TERMS or compact == "none":
            return UNLIMITED_COVERAGE
        if compact in ("n/a", "na", ""):
            return 0.0
    parsed = parse_cost(value)
    return parsed if parsed is not None else 0.0


__all__ = [
    "SEVERITIES",
    "DAMAGE_TYPES",
    "REPAIR_COMPLEXITIES",
    "UNLIMITED_COVERAGE",
    "clean_json_response",
    "normalize_severity",
    "normalize_damage_type",
    "normalize_repair_complexity",
    "parse_cost",
    "coverage_amount",
]
