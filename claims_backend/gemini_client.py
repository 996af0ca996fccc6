"""Gemini (Google GenAI) analysis backend.

Uses the async surface of the official ``google-genai`` SDK
(``client.aio.models.generate_content``) so a slow model call never
blocks the event loop.

Transient provider errors (5xx, dropped connections) are retried in place
with exponential backoff. Quota errors (429 / RESOURCE_EXHAUSTED) are not
retried here: they surface as ``QuotaExceeded`` so the orchestrator can
fall back to the next model in the priority list.

Env vars
--------
GEMINI_API_KEY : str
    Required.
GEMINI_MAX_RETRIES : int
    Attempts per call, including the first (default 3).
GEMINI_BACKOFF_MIN / GEMINI_BACKOFF_MAX : float
    Bounds of the exponential backoff in seconds (default 1 / 20).
"""
from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from claims_backend.config import GEMINI_API_KEY
from claims_backend.errors import (
    MalformedResponse,
    ProviderUnavailable,
    QuotaExceeded,
    is_rate_limit_error,
)
from claims_backend.llm_base import AnalysisBackend, BackendResponse, UsageStats
from claims_backend.models import EncodedFile

LOG = logging.getLogger(__name__)

GEMINI_MAX_RETRIES = int(os.environ.get("GEMINI_MAX_RETRIES", "3"))
GEMINI_BACKOFF_MIN = float(os.environ.get("GEMINI_BACKOFF_MIN", "1"))
GEMINI_BACKOFF_MAX = float(os.environ.get("GEMINI_BACKOFF_MAX", "20"))

SAFETY_SETTINGS = [
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    ),
    types.SafetySetting(
        category=types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    ),
]


def _is_retryable(exc: BaseException) -> bool:
    """Return True for transient errors worth retrying on the same model."""
    if is_rate_limit_error(exc):
        return False
    if isinstance(exc, genai_errors.ServerError):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return True
    exc_str = str(exc).lower()
    return any(code in exc_str for code in ("500", "502", "503", "504", "unavailable", "overloaded"))


def _map_error(exc: BaseException, model: str) -> Exception:
    """Translate SDK/transport errors into the pipeline taxonomy."""
    if is_rate_limit_error(exc):
        return QuotaExceeded(f"{model}: {exc}")
    return ProviderUnavailable(f"{model}: {exc}")


def _usage_from(response, model: str) -> UsageStats:
    meta = getattr(response, "usage_metadata", None)
    if meta is None:
        return UsageStats(model=model)
    input_tokens = getattr(meta, "prompt_token_count", None) or 0
    output_tokens = getattr(meta, "candidates_token_count", None) or 0
    total = getattr(meta, "total_token_count", None) or (input_tokens + output_tokens)
    return UsageStats(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total,
        model=model,
    )


def _part(document: EncodedFile):
    return types.Part.from_bytes(data=document.raw(), mime_type=document.mime_type)


class GeminiAnalysisBackend(AnalysisBackend):
    """Async Gemini backend with retry and error mapping."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or GEMINI_API_KEY or os.environ.get("GEMINI_API_KEY")
        if not self.api_key:
            raise RuntimeError("GEMINI_API_KEY is not set; cannot create the Gemini client")
        self._client = genai.Client(api_key=self.api_key)

    async def _generate(self, model: str, contents: List, config) -> BackendResponse:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(GEMINI_MAX_RETRIES),
                wait=wait_exponential(min=GEMINI_BACKOFF_MIN, max=GEMINI_BACKOFF_MAX),
                retry=retry_if_exception(_is_retryable),
                before_sleep=before_sleep_log(LOG, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.aio.models.generate_content(
                        model=model,
                        contents=contents,
                        config=config,
                    )
        except Exception as exc:
            raise _map_error(exc, model) from exc

        text = getattr(response, "text", None)
        if not text:
            raise MalformedResponse(f"{model} returned an empty response (possibly blocked by safety filters)")
        return BackendResponse(text=text, usage=_usage_from(response, model))

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
        contents: List = [_part(m) for m in media]
        if policy is not None:
            contents.append(_part(policy))
        contents.append(prompt)

        config = types.GenerateContentConfig(
            max_output_tokens=max_output_tokens,
            temperature=temperature,
            response_mime_type="application/json",
            safety_settings=SAFETY_SETTINGS,
        )
        LOG.debug("Gemini invoke model=%s parts=%d", model, len(contents))
        return await self._generate(model, contents, config)

    async def extract_text(
        self,
        model: str,
        document: EncodedFile,
        prompt: str,
        *,
        max_output_tokens: int = 2048,
    ) -> str:
        config = types.GenerateContentConfig(
            max_output_tokens=max_output_tokens,
            temperature=0.0,
        )
        response = await self._generate(model, [_part(document), prompt], config)
        return response.text


__all__ = ["GeminiAnalysisBackend"]
