"""Centralized configuration for the claims backend.

This module contains all default settings, model quotas and thresholds
to avoid hardcoded values scattered across the codebase.
"""
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env file from project root
load_dotenv(Path(__file__).resolve().parents[1] / ".env")


@dataclass(frozen=True)
class ModelLimits:
    """Static per-model quota (free-tier defaults)."""
    requests_per_minute: int
    tokens_per_minute: int
    requests_per_day: int


# Model Configuration
# Ordered by preference: cheap/fast first, most capable last.
MODEL_LIMITS = {
    "gemini-2.5-flash-lite": ModelLimits(requests_per_minute=10, tokens_per_minute=250_000, requests_per_day=20),
    "gemini-2.5-flash": ModelLimits(requests_per_minute=5, tokens_per_minute=250_000, requests_per_day=20),
    "gemini-3-flash-preview": ModelLimits(requests_per_minute=5, tokens_per_minute=250_000, requests_per_day=20),
}

_priority_env = os.getenv("AI_MODEL_PRIORITY", "")
MODEL_PRIORITY = [m.strip() for m in _priority_env.split(",") if m.strip()] or list(MODEL_LIMITS)

# Pin every analysis to a single model (still quota-checked)
FORCE_AI_MODEL = os.getenv("FORCE_AI_MODEL") or None

# Cheapest model, used for OCR / PDF text extraction during security scans
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gemini-2.5-flash-lite")

# Pre-call token reservations
TOKEN_ESTIMATE_IMAGES = 3000
TOKEN_ESTIMATE_VIDEO = 4000
TOKEN_ESTIMATE_ENHANCED = 13000

# Generation Configuration
BASIC_MAX_TOKENS = 2048
ENHANCED_MAX_TOKENS = 16384
ANALYSIS_TEMPERATURE = 0.0
OCR_MAX_TOKENS = 2048
PDF_MAX_TOKENS = 4096

# Rate windows
RATE_WINDOW_SECONDS = 60
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))
SWEEP_MAX_AGE_SECONDS = 3600

# Failed-persist submissions kept for retry
PENDING_MAX_AGE_HOURS = float(os.getenv("PENDING_MAX_AGE_HOURS", "24"))
PENDING_MAX_ENTRIES = int(os.getenv("PENDING_MAX_ENTRIES", "500"))

# Submission limits
ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "60"))
MAX_IMAGES_PER_REQUEST = 5
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))

# Response validation thresholds
HIGH_COST_THRESHOLD = 100_000
LOW_CONFIDENCE_THRESHOLD = 0.3

# Gemini
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")

# MongoDB Configuration
MONGODB_URI = os.getenv("MONGODB_URI")
MONGODB_DB_NAME = os.getenv("MONGODB_DB", "claims_intake")
MONGODB_REPORTS_COLLECTION = os.getenv("MONGODB_COLLECTION", "reports")
MONGODB_SESSIONS_COLLECTION = os.getenv("MONGODB_SESSIONS_COLLECTION", "sessions")
MONGODB_BUCKET_NAME = os.getenv("MONGODB_BUCKET", "claim_files")

# CORS
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if o.strip()
]
