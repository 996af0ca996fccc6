"""HTTP rate limiting for the intake API.

Uses `slowapi` (which wraps `limits`). Requests are keyed by session
token when one is sent, so several claimants behind one NAT do not share a
budget; anonymous requests fall back to the client IP. This is separate
from the per-model AI quotas in ``claims_backend.quota``, which protect
the upstream model budget rather than the service.

Env vars
--------
RATE_LIMIT_DEFAULT : str
    Default limit applied to every route (e.g. ``"60/minute"``).
RATE_LIMIT_EXPENSIVE : str
    Stricter limit for submission endpoints (e.g. ``"10/minute"``).
"""
from __future__ import annotations

import hashlib
import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from claims_backend.session import bearer_token

DEFAULT_LIMIT: str = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
EXPENSIVE_LIMIT: str = os.getenv("RATE_LIMIT_EXPENSIVE", "10/minute")


def client_key(request: Request) -> str:
    token = bearer_token(request.headers.get("authorization"))
    if token:
        # raw tokens never end up in limiter storage
        return "session:" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:24]
    return "ip:" + get_remote_address(request)


limiter = Limiter(key_func=client_key, default_limits=[DEFAULT_LIMIT])

__all__ = ["limiter", "client_key", "DEFAULT_LIMIT", "EXPENSIVE_LIMIT"]
