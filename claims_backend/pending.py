"""In-process registry of submissions whose report write failed.

A ``Failed`` result from the persisting stage carries a ``PendingRecord``
that can be retried without re-uploading. Entries expire after
``max_age_hours`` and the registry holds at most ``max_entries``; the
oldest entry is dropped first. Uploaded artifacts of an evicted entry are
left in object storage.
"""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from claims_backend.config import PENDING_MAX_AGE_HOURS, PENDING_MAX_ENTRIES
from claims_backend.models import PendingRecord

LOG = logging.getLogger(__name__)

Clock = Callable[[], float]


class PendingRegistry:
    def __init__(
        self,
        max_age_hours: float = PENDING_MAX_AGE_HOURS,
        max_entries: int = PENDING_MAX_ENTRIES,
        clock: Optional[Clock] = None,
    ):
        self.max_age_seconds = max_age_hours * 3600
        self.max_entries = max_entries
        self.clock = clock or time.time
        # pending_id -> (added_at, record), oldest first
        self._entries: "OrderedDict[str, Tuple[float, PendingRecord]]" = OrderedDict()

    def add(self, pending: PendingRecord) -> None:
        self.sweep()
        self._entries.pop(pending.pending_id, None)
        self._entries[pending.pending_id] = (self.clock(), pending)
        while len(self._entries) > self.max_entries:
            dropped, _ = self._entries.popitem(last=False)
            LOG.warning("Pending registry full, dropped oldest entry %s", dropped)

    def get(self, pending_id: str) -> Optional[PendingRecord]:
        entry = self._entries.get(pending_id)
        if entry is None:
            return None
        added_at, pending = entry
        if self.clock() - added_at > self.max_age_seconds:
            del self._entries[pending_id]
            LOG.info("Pending submission %s expired", pending_id)
            return None
        return pending

    def pop(self, pending_id: str) -> Optional[PendingRecord]:
        entry = self._entries.pop(pending_id, None)
        return entry[1] if entry else None

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        cutoff = self.clock() - self.max_age_seconds
        expired = [pid for pid, (added_at, _) in self._entries.items() if added_at < cutoff]
        for pid in expired:
            del self._entries[pid]
        if expired:
            LOG.info("Pending registry sweep removed %d expired entr(ies)", len(expired))
        return len(expired)

    def __contains__(self, pending_id: str) -> bool:
        return self.get(pending_id) is not None

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["PendingRegistry"]
