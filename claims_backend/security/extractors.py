"""Text extraction (OCR / PDF) for security scanning.

Extraction goes through the AI backend with the cheapest model. These
calls are made outside the submission quota reservation.

Env vars
--------
EXTRACTION_MODEL : str
    Model used for OCR and PDF text (default ``gemini-2.5-flash-lite``).
"""
from __future__ import annotations

import logging
from typing import Optional

from claims_backend.analysis.prompts import OCR_PROMPT, PDF_TEXT_PROMPT
from claims_backend.config import EXTRACTION_MODEL, OCR_MAX_TOKENS, PDF_MAX_TOKENS
from claims_backend.llm_base import AnalysisBackend
from claims_backend.models import EncodedFile

LOG = logging.getLogger(__name__)

NO_TEXT_SENTINEL = "NO_TEXT_FOUND"


class TextExtractor:
    """Reads text out of images and PDFs. Errors propagate to the caller."""

    def __init__(self, backend: AnalysisBackend, model: Optional[str] = None):
        self.backend = backend
        self.model = model or EXTRACTION_MODEL

    async def image_text(self, image: EncodedFile) -> str:
        text = await self.backend.extract_text(
            self.model, image, OCR_PROMPT, max_output_tokens=OCR_MAX_TOKENS
        )
        text = (text or "").strip()
        if text == NO_TEXT_SENTINEL:
            return ""
        return text

    async def pdf_text(self, document: EncodedFile) -> str:
        text = await self.backend.extract_text(
            self.model, document, PDF_TEXT_PROMPT, max_output_tokens=PDF_MAX_TOKENS
        )
        return (text or "").strip()


__all__ = ["TextExtractor", "NO_TEXT_SENTINEL"]
