"""Backend package init for the claims-intake submission service.

This package groups small service modules by responsibility:
- quota: per-model sliding-window quotas and model selection
- security: prompt-injection scanning of uploaded documents and images
- analysis: AI analysis invocation, result shapes and normalization
- storage / db: object storage and document database adapters
- pipeline: the submission orchestrator that ties everything together
- gemini_client: Google Gemini (GenAI) analysis backend
"""

from . import config  # expose settings as claims_backend.config

__all__ = [
    "config",
]
