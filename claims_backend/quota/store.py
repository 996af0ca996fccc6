"""In-memory sliding-window counters, one window per model name.

The store is process-local: every submission handled by this process
shares the same windows. There is no locking. Each method runs to
completion on the event loop, but a capacity check and the matching
``record_*`` call are separate steps, so two concurrent submissions can
both pass a check before either records (transient over-admission).

Env vars
--------
SWEEP_INTERVAL_SECONDS : int
    How often the background sweeper evicts stale entries (default 300).
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from claims_backend.config import SWEEP_MAX_AGE_SECONDS

LOG = logging.getLogger(__name__)

Clock = Callable[[], float]


def next_utc_midnight(now: float) -> float:
    """Return the epoch timestamp of the first UTC midnight strictly after *now*."""
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    midnight = datetime(current.year, current.month, current.day, tzinfo=timezone.utc)
    return (midnight + timedelta(days=1)).timestamp()


@dataclass
class RateWindow:
    """Usage of a single model."""
    model_name: str
    daily_reset_at: float
    request_timestamps: List[float] = field(default_factory=list)
    token_usage_log: List[Tuple[float, int]] = field(default_factory=list)
    daily_request_count: int = 0

    def is_empty(self, now: float) -> bool:
        # A window still holding today's daily count is not empty.
        daily_pending = self.daily_request_count > 0 and now < self.daily_reset_at
        return not self.request_timestamps and not self.token_usage_log and not daily_pending


class RateWindowStore:
    """Per-model request/token windows, created lazily on first reference."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock: Clock = clock or time.time
        self._windows: Dict[str, RateWindow] = {}

    def now(self) -> float:
        return self.clock()

    def get_or_create(self, model_name: str) -> RateWindow:
        window = self._windows.get(model_name)
        if window is None:
            window = RateWindow(model_name=model_name, daily_reset_at=next_utc_midnight(self.now()))
            self._windows[model_name] = window
        return window

    def record_request(self, model_name: str) -> None:
        window = self.get_or_create(model_name)
        window.request_timestamps.append(self.now())
        window.daily_request_count += 1

    def record_tokens(self, model_name: str, count: int) -> None:
        window = self.get_or_create(model_name)
        window.token_usage_log.append((self.now(), int(count)))

    def sweep(self, max_age_seconds: float = SWEEP_MAX_AGE_SECONDS) -> int:
        """Drop entries older than *max_age_seconds* and evict empty windows.

        Returns the number of windows evicted.
        """
        now = self.now()
        cutoff = now - max_age_seconds
        evicted = 0
        for name in list(self._windows):
            window = self._windows[name]
            window.request_timestamps = [ts for ts in window.request_timestamps if ts > cutoff]
            window.token_usage_log = [(ts, n) for ts, n in window.token_usage_log if ts > cutoff]
            if window.is_empty(now):
                del self._windows[name]
                evicted += 1
        if evicted:
            LOG.debug("Rate window sweep evicted %d window(s)", evicted)
        return evicted

    def model_names(self) -> List[str]:
        return list(self._windows)

    def __contains__(self, model_name: str) -> bool:
        return model_name in self._windows

    def clear(self) -> None:
        self._windows.clear()


# ---------------------------------------------------------------------------
# Process-wide store
# ---------------------------------------------------------------------------

_global_store: Optional[RateWindowStore] = None


def get_rate_store() -> RateWindowStore:
    """Get or create the process-wide store shared by every submission."""
    global _global_store
    if _global_store is None:
        _global_store = RateWindowStore()
    return _global_store


__all__ = ["RateWindow", "RateWindowStore", "get_rate_store", "next_utc_midnight"]
