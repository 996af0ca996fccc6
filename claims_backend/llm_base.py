"""Abstract base class for AI analysis backends.

Every backend (Gemini today) implements this thin async interface so the
quota, scanning and orchestration code stays provider-agnostic and can be
driven by fakes in tests.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from claims_backend.models import EncodedFile


@dataclass
class UsageStats:
    """Token usage reported by the provider for one call."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    model: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "model": self.model,
            **{k: v for k, v in self.extra.items()},
        }


@dataclass
class BackendResponse:
    text: str
    usage: UsageStats = field(default_factory=UsageStats)


class AnalysisBackend(ABC):
    """Minimal contract that all AI backends must satisfy.

    Implementations raise ``ProviderUnavailable``, ``QuotaExceeded`` or
    ``MalformedResponse`` from ``claims_backend.errors``.
    """

    @abstractmethod
    async def invoke(
        self,
        model: str,
        prompt: str,
        media: Sequence[EncodedFile],
        policy: Optional[EncodedFile] = None,
        *,
        max_output_tokens: int = 2048,
        temperature: float = 0.0,
    ) -> BackendResponse:
        """Run one multimodal analysis call and return the raw JSON text."""

    @abstractmethod
    async def extract_text(
        self,
        model: str,
        document: EncodedFile,
        prompt: str,
        *,
        max_output_tokens: int = 2048,
    ) -> str:
        """Return plain text read from an image or PDF."""


__all__ = ["AnalysisBackend", "BackendResponse", "UsageStats"]
