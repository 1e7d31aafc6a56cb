"""Administrative endpoints for message quotas.

Status lookup, whitelist management, counter resets, statistics and the
static limits description. Subjects are masked in every response.
"""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends

from app.core.admission import get_quota_engine
from app.core.auth import verify_admin_api_key
from app.core.validation import mask_subject
from app.schemas.quota import (
    LimitsResponse,
    QuotaTestData,
    QuotaTestRequest,
    QuotaTestResponse,
    ResetRequest,
    ResetResponse,
    StatsData,
    StatsResponse,
    StatusData,
    StatusResponse,
    WhitelistChangeResponse,
    WhitelistListResponse,
)
from app.services.quota_service import QuotaEngine

router = APIRouter(
    prefix="/rate-limit",
    tags=["Rate Limit"],
    dependencies=[Depends(verify_admin_api_key)],
)


@router.get("/status/{subject}", response_model=StatusResponse)
async def get_status(
    subject: str, engine: QuotaEngine = Depends(get_quota_engine)
) -> StatusResponse:
    """Current quota usage of a subject, per category and global.

    Read-only: no counter is incremented.
    """

    subject = engine.validate_subject(subject)
    report = await engine.status(subject)
    data = report.to_dict()
    data["subject"] = mask_subject(subject)
    return StatusResponse(data=StatusData(**data))


@router.get("/whitelist", response_model=WhitelistListResponse)
async def list_whitelist(
    engine: QuotaEngine = Depends(get_quota_engine),
) -> WhitelistListResponse:
    subjects = engine.whitelisted()
    return WhitelistListResponse(
        subjects=[mask_subject(s) for s in subjects],
        total=len(subjects),
    )


@router.post("/whitelist/{subject}", response_model=WhitelistChangeResponse)
async def add_to_whitelist(
    subject: str, engine: QuotaEngine = Depends(get_quota_engine)
) -> WhitelistChangeResponse:
    """Exempt a subject from every quota (this process only)."""

    subject = engine.validate_subject(subject)
    changed = engine.add_to_whitelist(subject)
    return WhitelistChangeResponse(
        message="Subject added to whitelist" if changed else "Subject already whitelisted",
        subject=mask_subject(subject),
        changed=changed,
    )


@router.delete("/whitelist/{subject}", response_model=WhitelistChangeResponse)
async def remove_from_whitelist(
    subject: str, engine: QuotaEngine = Depends(get_quota_engine)
) -> WhitelistChangeResponse:
    subject = engine.validate_subject(subject)
    changed = engine.remove_from_whitelist(subject)
    return WhitelistChangeResponse(
        message="Subject removed from whitelist" if changed else "Subject was not whitelisted",
        subject=mask_subject(subject),
        changed=changed,
    )


@router.post("/reset/{subject}", response_model=ResetResponse)
async def reset_counters(
    subject: str,
    body: ResetRequest | None = Body(default=None),
    engine: QuotaEngine = Depends(get_quota_engine),
) -> ResetResponse:
    """Clear a subject's counters.

    Pass ``{"category": "audio"}`` to clear only that category's current
    window; send no body (or a null category) to clear everything.
    """

    subject = engine.validate_subject(subject)
    category = body.category if body is not None else None
    outcome = await engine.reset(subject, category)
    if category:
        message = f"Rate limit reset for category {category}"
    else:
        message = "Rate limit reset for all categories"
    return ResetResponse(
        message=message,
        subject=mask_subject(subject),
        category=category or "all",
        keys_deleted=outcome.keys_deleted,
        store_available=outcome.store_available,
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(engine: QuotaEngine = Depends(get_quota_engine)) -> StatsResponse:
    """Whitelist, policies and the subjects with live counters.

    Scans every counter key; meant for occasional administrative polling.
    """

    report = await engine.stats()
    return StatsResponse(
        data=StatsData(
            whitelisted_subjects=[mask_subject(s) for s in report.whitelisted_subjects],
            policies=report.policies,
            global_policy=report.global_policy,
            active_subjects=[mask_subject(s) for s in report.active_subjects],
            total_active_subjects=report.total_active_subjects,
            store_available=report.store_available,
        )
    )


@router.get("/limits", response_model=LimitsResponse)
async def get_limits(engine: QuotaEngine = Depends(get_quota_engine)) -> LimitsResponse:
    return LimitsResponse(data=engine.limits())


@router.post("/test", response_model=QuotaTestResponse)
async def test_quota(
    body: QuotaTestRequest, engine: QuotaEngine = Depends(get_quota_engine)
) -> QuotaTestResponse:
    """Run a real quota check for a subject.

    This consumes quota exactly like an inbound message would.
    """

    subject = engine.validate_subject(body.subject)
    verdict = await engine.check_category(subject, body.category)
    return QuotaTestResponse(
        data=QuotaTestData(subject=mask_subject(subject), **verdict.to_dict())
    )
