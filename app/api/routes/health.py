from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.admission import get_quota_engine
from app.services.quota_service import QuotaEngine

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(engine: QuotaEngine = Depends(get_quota_engine)) -> dict:
    """Health check endpoint.

    The service stays "ok" while the counter store is down, because quotas
    fail open; ``store`` reports the degradation for monitoring.

    Returns:
        dict: ``status`` and ``store`` ("available" or "unavailable").
    """

    available = await engine.store.is_available()
    return {"status": "ok", "store": "available" if available else "unavailable"}
