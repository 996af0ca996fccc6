"""Router exposing per-model AI quota usage."""

from fastapi import APIRouter, Depends

from claims_backend.dependencies import get_selector
from claims_backend.quota.selector import ModelSelector

router = APIRouter(tags=["quotas"])


@router.get("/quotas")
def get_quotas(selector: ModelSelector = Depends(get_selector)):
    """Current minute and daily usage against each model's limits."""
    models = selector.status()
    return {"models": models, "any_available": any(m["available"] for m in models)}
