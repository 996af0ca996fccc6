"""Resolve a caller's bearer token to a stable requester id.

Sessions are issued elsewhere; this service only reads them. A session
document looks like ``{"token": ..., "user_id": ..., "expires_at": ...}``
where ``expires_at`` is a datetime or an ISO-8601 string.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from claims_backend.config import MONGODB_SESSIONS_COLLECTION
from claims_backend.db.mongodb_handler import MongoDBHandler

LOG = logging.getLogger(__name__)


class SessionProvider(ABC):
    @abstractmethod
    async def resolve(self, token: Optional[str]) -> Optional[str]:
        """Return the requester id for *token*, or None when it is not a valid session."""


def _as_utc(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class MongoSessionProvider(SessionProvider):
    """Looks sessions up in the sessions collection."""

    def __init__(self, handler: Optional[MongoDBHandler] = None, collection: Optional[str] = None):
        self.handler = handler or MongoDBHandler()
        self.collection = collection or MONGODB_SESSIONS_COLLECTION

    def _resolve_sync(self, token: str) -> Optional[str]:
        session = self.handler.find_one(self.collection, {"token": token})
        if not session or not session.get("user_id"):
            return None
        expires_at = _as_utc(session.get("expires_at"))
        if expires_at is not None and expires_at <= datetime.now(timezone.utc):
            LOG.info("Session for %s has expired", session["user_id"])
            return None
        return str(session["user_id"])

    async def resolve(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        return await asyncio.to_thread(self._resolve_sync, token)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


__all__ = ["MongoSessionProvider", "SessionProvider", "bearer_token"]
