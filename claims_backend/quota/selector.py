"""Pick the first model with spare quota, in priority order.

Selection reserves capacity immediately (one request plus the estimated
tokens). After the call, the real token count reported by the provider
is recorded on top of the reservation, so accounting errs on the side of
over-reservation.

Env vars
--------
AI_MODEL_PRIORITY : str
    Comma-separated candidate order (default: cheap/fast first).
FORCE_AI_MODEL : str
    Restrict selection to a single model.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from claims_backend.config import (
    FORCE_AI_MODEL,
    MODEL_LIMITS,
    MODEL_PRIORITY,
    SWEEP_INTERVAL_SECONDS,
    ModelLimits,
)
from claims_backend.errors import RateLimitedError
from claims_backend.quota.checker import RateLimitChecker
from claims_backend.quota.store import RateWindowStore

LOG = logging.getLogger(__name__)


@dataclass
class ModelSelection:
    model: str
    limits: ModelLimits
    reserved_tokens: int


class ModelSelector:
    """Iterates the candidate list and reserves quota on the first admissible model."""

    def __init__(
        self,
        store: RateWindowStore,
        limits: Optional[Mapping[str, ModelLimits]] = None,
        priority: Optional[Sequence[str]] = None,
        forced_model: Optional[str] = FORCE_AI_MODEL,
    ):
        self.store = store
        self.checker = RateLimitChecker(store)
        self.limits = dict(limits or MODEL_LIMITS)
        self.priority = list(priority or MODEL_PRIORITY)
        self.forced_model = forced_model

        unknown = [m for m in self.candidates() if m not in self.limits]
        if unknown:
            raise ValueError(f"No quota configured for model(s): {', '.join(unknown)}")

    def candidates(self) -> List[str]:
        if self.forced_model:
            return [self.forced_model]
        return list(self.priority)

    def select(self, estimated_tokens: int, exclude: Iterable[str] = ()) -> ModelSelection:
        """Return the first admissible model and reserve capacity on it.

        Raises ``RateLimitedError`` carrying every candidate that was
        considered and the shortest wait among them.
        """
        excluded = set(exclude)
        candidates = [m for m in self.candidates() if m not in excluded]

        for model in candidates:
            limits = self.limits[model]
            if self.checker.is_admissible(model, estimated_tokens, limits):
                self.store.record_request(model)
                self.store.record_tokens(model, estimated_tokens)
                LOG.info("Selected model %s (reserved %d tokens)", model, estimated_tokens)
                return ModelSelection(model=model, limits=limits, reserved_tokens=estimated_tokens)
            LOG.debug("Model %s not admissible", model)

        exhausted = [m for m in self.candidates() if m in excluded] + candidates
        retry_after = min(
            (self.checker.seconds_until_retry(m) for m in self.candidates()),
            default=1,
        )
        LOG.warning("All models exhausted (%s); retry after %ds", ", ".join(exhausted), retry_after)
        raise RateLimitedError(retry_after_seconds=retry_after, exhausted_models=exhausted)

    def record_actual_usage(self, model: str, actual_tokens: int) -> None:
        """Record provider-reported usage as a correction on top of the reservation."""
        if actual_tokens > 0:
            self.store.record_tokens(model, actual_tokens)

    def status(self) -> List[Dict[str, Any]]:
        """Per-model usage snapshot for monitoring."""
        snapshot = []
        for model in self.candidates():
            limits = self.limits[model]
            self.checker.within_daily_budget(model, limits)
            window = self.store.get_or_create(model)
            snapshot.append({
                "model": model,
                "requests_last_minute": len(self.checker.prune(model).request_timestamps),
                "tokens_last_minute": self.checker.tokens_in_window(model),
                "requests_today": window.daily_request_count,
                "limits": {
                    "requests_per_minute": limits.requests_per_minute,
                    "tokens_per_minute": limits.tokens_per_minute,
                    "requests_per_day": limits.requests_per_day,
                },
                "available": self.checker.is_admissible(model, 0, limits),
            })
        return snapshot


class QuotaSweeper:
    """Background asyncio task that periodically calls ``store.sweep()``.

    Anything else with a ``sweep()`` method (the pending-retry registry)
    can ride along on the same tick.
    """

    def __init__(
        self,
        store: RateWindowStore,
        interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        extra: Sequence[Any] = (),
    ):
        self.store = store
        self.extra = list(extra)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.sweep_once()

    def sweep_once(self) -> None:
        for target in [self.store, *self.extra]:
            try:
                target.sweep()
            except Exception:
                LOG.exception("Sweep failed for %s", type(target).__name__)

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run())
            LOG.info("Quota sweeper started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        LOG.info("Quota sweeper stopped")


__all__ = ["ModelSelection", "ModelSelector", "QuotaSweeper"]
