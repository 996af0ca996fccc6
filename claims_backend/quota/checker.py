"""Admission decisions over a ``RateWindowStore``.

Every check prunes the entries it reads before deciding, so a decision
is never made from data older than the sliding window.
"""
from __future__ import annotations

import math

from claims_backend.config import ModelLimits, RATE_WINDOW_SECONDS
from claims_backend.quota.store import RateWindowStore, next_utc_midnight


class RateLimitChecker:
    """Pure allow/deny logic; the only side effects are pruning and daily resets."""

    def __init__(self, store: RateWindowStore, window_seconds: int = RATE_WINDOW_SECONDS):
        self.store = store
        self.window_seconds = window_seconds

    def prune(self, model_name: str):
        window = self.store.get_or_create(model_name)
        cutoff = self.store.now() - self.window_seconds
        window.request_timestamps = [ts for ts in window.request_timestamps if ts > cutoff]
        window.token_usage_log = [(ts, n) for ts, n in window.token_usage_log if ts > cutoff]
        return window

    def can_admit_request(self, model_name: str, limits: ModelLimits) -> bool:
        window = self.prune(model_name)
        return len(window.request_timestamps) < limits.requests_per_minute

    def tokens_in_window(self, model_name: str) -> int:
        window = self.prune(model_name)
        return sum(n for _, n in window.token_usage_log)

    def can_admit_tokens(self, model_name: str, estimated_tokens: int, limits: ModelLimits) -> bool:
        return self.tokens_in_window(model_name) + estimated_tokens <= limits.tokens_per_minute

    def within_daily_budget(self, model_name: str, limits: ModelLimits) -> bool:
        window = self.store.get_or_create(model_name)
        now = self.store.now()
        if now >= window.daily_reset_at:
            window.daily_request_count = 0
            window.daily_reset_at = next_utc_midnight(now)
        return window.daily_request_count < limits.requests_per_day

    def is_admissible(self, model_name: str, estimated_tokens: int, limits: ModelLimits) -> bool:
        return (
            self.can_admit_request(model_name, limits)
            and self.can_admit_tokens(model_name, estimated_tokens, limits)
            and self.within_daily_budget(model_name, limits)
        )

    def seconds_until_retry(self, model_name: str) -> int:
        """Seconds until the oldest in-window entry expires, in ``[1, window]``.

        A window with no entries is excluded from the minimum; if neither
        log has entries the answer is 1.
        """
        window = self.prune(model_name)
        now = self.store.now()
        waits = []
        if window.request_timestamps:
            waits.append(self.window_seconds - (now - min(window.request_timestamps)))
        if window.token_usage_log:
            waits.append(self.window_seconds - (now - min(ts for ts, _ in window.token_usage_log)))
        if not waits:
            return 1
        return max(1, min(self.window_seconds, math.ceil(min(waits))))


__all__ = ["RateLimitChecker"]
