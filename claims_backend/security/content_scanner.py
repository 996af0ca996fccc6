"""Prompt-injection scanning of uploaded documents and images.

Text is read out of policy PDFs and images (OCR through the AI backend),
normalised, and matched against a fixed, ordered rule set. The scanner
informs; it never blocks a submission. Image OCR runs concurrently and a
failed image is skipped; only when every extraction fails does the scan degrade
to a clean, low-risk result.

Video is not scanned (frame OCR is too costly); response validation
after the model call covers it instead.

Risk aggregation:
1. **high** – any high-severity match, or two or more medium matches.
2. **medium** – exactly one medium match.
3. **low** – everything else.
"""
from __future__ import annotations

import asyncio
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from claims_backend.config import MAX_IMAGES_PER_REQUEST
from claims_backend.errors import SecurityWarning
from claims_backend.models import EncodedFile
from claims_backend.security.extractors import TextExtractor

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class InjectionRule:
    pattern: re.Pattern
    severity: str
    category: str


# ---------------------------------------------------------------------------
# Known injection patterns (case-insensitive, evaluated in order)
# ---------------------------------------------------------------------------

_INJECTION_RULES: List[InjectionRule] = [
    InjectionRule(re.compile(p, re.IGNORECASE), severity, category)
    for p, severity, category in [
        # Direct instruction overrides
        (r"(ignore|disregard|override|forget).*(previous|all|these|earlier).*(instructions?|prompts?|rules?|directives?)",
         "high", "instruction_override"),
        (r"new\s+(instructions?|rules?|directives?):\s*", "high", "instruction_override"),
        # Fabricated role delimiters
        (r"(system|assistant|user|ai):\s*[^\n]{15,}", "medium", "system_prompt"),
        (r"---\s*(END|START|SYSTEM|ASSISTANT|USER)\s*---", "medium", "system_prompt"),
        (r"</(prompt|system|instruction)>", "medium", "system_prompt"),
        # Role-play / jailbreak keywords
        (r"(you are now|act as|pretend to be|assume\s+the\s+role)", "low", "suspicious_keywords"),
        (r"(jailbreak|bypass|circumvent).*(filter|safety|restriction)", "low", "suspicious_keywords"),
    ]
]

CATEGORY_LABELS = {
    "instruction_override": "Instruction Override",
    "system_prompt": "System Prompt Manipulation",
    "suspicious_keywords": "Suspicious Keywords",
}

_SEVERITY_DESCRIPTIONS = (
    ("high", "instruction override attempts"),
    ("medium", "system prompt manipulation"),
    ("low", "suspicious keywords"),
)

CLEAN_REASONING = "No suspicious patterns detected. Content appears safe."
VIDEO_REASONING = "Video content not scanned (OCR too expensive). Relying on response validation."

# Characters that should be stripped (invisible/control characters)
_CONTROL_CHAR_RE = re.compile(
    r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f"
    r"\u200b-\u200f"           # Zero-width chars
    r"\u202a-\u202e"           # Bidi overrides
    r"\u2060-\u2064"           # Invisible formatters
    r"\ufeff"                  # BOM
    r"]"
)


@dataclass
class SecurityScanResult:
    is_suspicious: bool = False
    matched_patterns: List[Tuple[str, str]] = field(default_factory=list)
    risk_level: str = "low"
    reasoning: str = CLEAN_REASONING

    @property
    def labels(self) -> List[str]:
        return [f"{CATEGORY_LABELS[c]} ({s})" for c, s in self.matched_patterns]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_suspicious": self.is_suspicious,
            "matched_patterns": [{"category": c, "severity": s} for c, s in self.matched_patterns],
            "risk_level": self.risk_level,
            "reasoning": self.reasoning,
        }


def _clean(reasoning: str) -> SecurityScanResult:
    return SecurityScanResult(reasoning=reasoning)


def _normalise(text: str) -> str:
    """Strip invisible characters and fold to NFC so hidden payloads still match."""
    return unicodedata.normalize("NFC", _CONTROL_CHAR_RE.sub("", text))


def calculate_risk_level(matches: Sequence[Tuple[str, str]]) -> str:
    severities = [s for _, s in matches]
    medium = severities.count("medium")
    if "high" in severities or medium >= 2:
        return "high"
    if medium == 1:
        return "medium"
    return "low"


def _reasoning(matches: Sequence[Tuple[str, str]]) -> str:
    if not matches:
        return CLEAN_REASONING
    severities = [s for _, s in matches]
    parts = [
        f"{severities.count(sev)} {sev}-severity pattern(s) detected ({description})"
        for sev, description in _SEVERITY_DESCRIPTIONS
        if severities.count(sev)
    ]
    return ". ".join(parts) + ". Manual review recommended for high/medium risk content."


def scan_text(text: Optional[str]) -> SecurityScanResult:
    """Match *text* against every rule and classify the overall risk."""
    if not text or not text.strip():
        return _clean(CLEAN_REASONING)

    normalised = _normalise(text)
    matches = [(rule.category, rule.severity) for rule in _INJECTION_RULES if rule.pattern.search(normalised)]
    if not matches:
        return _clean(CLEAN_REASONING)
    return SecurityScanResult(
        is_suspicious=True,
        matched_patterns=matches,
        risk_level=calculate_risk_level(matches),
        reasoning=_reasoning(matches),
    )


class ContentSecurityScanner:
    """Extracts text from untrusted uploads and scans it."""

    def __init__(self, extractor: TextExtractor, max_images: int = MAX_IMAGES_PER_REQUEST):
        self.extractor = extractor
        self.max_images = max_images

    async def _image_text(self, image: EncodedFile) -> Optional[str]:
        """OCR one image; ``None`` means the extraction failed."""
        try:
            return await self.extractor.image_text(image)
        except Exception as exc:
            LOG.warning("OCR failed for %s, image not validated: %s", image.filename, exc)
            return None

    async def scan_images(self, images: Sequence[EncodedFile]) -> SecurityScanResult:
        selected = list(images)[: self.max_images]
        results = await asyncio.gather(*(self._image_text(image) for image in selected))

        if selected and all(text is None for text in results):
            LOG.warning("Image scanning failed for all %d image(s), content not validated", len(selected))
            return _clean("Image scanning failed. Content not validated.")

        texts = [text for text in results if text]
        if not texts:
            return _clean("No text detected in images. Content appears safe.")
        return scan_text("\n\n".join(texts))

    async def scan_document(self, document: EncodedFile) -> SecurityScanResult:
        try:
            text = await self.extractor.pdf_text(document)
        except Exception as exc:
            LOG.warning("PDF scanning failed, content not validated: %s", exc)
            return _clean("PDF scanning failed. Content not validated.")

        if not text:
            return _clean("No text extracted from PDF (empty document or extraction failed).")
        return scan_text(text)

    async def scan_video(self) -> SecurityScanResult:
        return _clean(VIDEO_REASONING)

    async def scan_submission(
        self,
        media: Sequence[EncodedFile],
        policy: Optional[EncodedFile] = None,
    ) -> List[SecurityWarning]:
        """Scan every scannable upload and return warnings for suspicious ones."""
        warnings: List[SecurityWarning] = []

        images = [m for m in media if m.kind == "image"]
        if images:
            result = await self.scan_images(images)
            if result.is_suspicious:
                warnings.append(SecurityWarning("images", result.risk_level, result.reasoning, result.labels))

        if any(m.kind == "video" for m in media):
            result = await self.scan_video()
            LOG.debug(result.reasoning)

        if policy is not None:
            result = await self.scan_document(policy)
            if result.is_suspicious:
                warnings.append(SecurityWarning("policy", result.risk_level, result.reasoning, result.labels))

        for w in warnings:
            LOG.warning("Security scan flagged %s: risk=%s (%s)", w.source, w.risk_level, w.reasoning)
        return warnings


__all__ = [
    "ContentSecurityScanner",
    "SecurityScanResult",
    "calculate_risk_level",
    "scan_text",
]
