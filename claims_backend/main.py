"""FastAPI app for the claims intake backend.

Endpoints:
  POST /submissions                      -> analyze media (+ optional policy) and store a report
  POST /submissions/{pending_id}/persist -> retry storing a report whose save failed
  GET  /submissions/{record_id}          -> stored report with its child records
  GET  /quotas                           -> per-model AI quota usage
  GET  /health                           -> liveness check

Run locally with::

    uvicorn claims_backend.main:app --reload
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from claims_backend.config import ALLOWED_ORIGINS
from claims_backend.dependencies import get_pending_registry
from claims_backend.logging_config import setup_logging
from claims_backend.quota.selector import QuotaSweeper
from claims_backend.quota.store import get_rate_store
from claims_backend.rate_limit import limiter
from claims_backend.routers import quotas, submissions

LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    sweeper = QuotaSweeper(get_rate_store(), extra=[get_pending_registry()])
    sweeper.start()
    app.state.quota_sweeper = sweeper
    LOG.info("Claims backend started")
    try:
        yield
    finally:
        await sweeper.stop()
        LOG.info("Claims backend stopped")


app = FastAPI(title="Claims Intake API", lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    LOG.info("Incoming request: %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    except Exception as exc:
        LOG.exception("Error handling request %s %s: %s", request.method, request.url.path, exc)
        raise
    LOG.info("Response %s for %s %s", response.status_code, request.method, request.url.path)
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(submissions.router)
app.include_router(quotas.router)


@app.get("/")
async def root():
    """List the endpoints so browsing the API root is not a bare 404."""
    return {
        "service": "claims-intake backend",
        "endpoints": [
            {"path": "/submissions", "method": "POST", "desc": "analyze vehicle damage media and store a report"},
            {"path": "/submissions/{pending_id}/persist", "method": "POST", "desc": "retry saving a report"},
            {"path": "/submissions/{record_id}", "method": "GET", "desc": "fetch a stored report"},
            {"path": "/quotas", "method": "GET", "desc": "per-model AI quota usage"},
            {"path": "/health", "method": "GET", "desc": "liveness check"},
        ],
    }


@app.get("/health")
async def health():
    return {"status": "ok"}
