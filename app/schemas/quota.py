"""Pydantic schemas for the quota and administrative endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal

from pydantic import BaseModel, Field

Remaining = int | Literal["unbounded"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TimestampedResponse(BaseModel):
    """Base for administrative responses; every one carries a server timestamp."""

    success: bool = True
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="Server time (UTC) when the response was produced.",
    )


class VerdictModel(BaseModel):
    allowed: bool
    remaining: Remaining = Field(
        ..., description="Events left in the current window, or 'unbounded'."
    )
    reset_time: int = Field(
        ..., description="Epoch milliseconds at which the current window ends (0 if none)."
    )
    category: str = Field(..., description="Policy that produced the verdict.")
    limit: int | None = None
    message: str | None = None


class WindowStatusModel(BaseModel):
    limit: int
    window_ms: int
    remaining: Remaining
    reset_time: int


class StatusData(BaseModel):
    subject: str = Field(..., description="Masked subject identifier.")
    is_whitelisted: bool
    store_available: bool
    global_: WindowStatusModel = Field(..., alias="global")
    per_category: Dict[str, WindowStatusModel]

    model_config = {"populate_by_name": True}


class StatusResponse(TimestampedResponse):
    data: StatusData


class WhitelistChangeResponse(TimestampedResponse):
    message: str
    subject: str = Field(..., description="Masked subject identifier.")
    changed: bool = Field(
        ..., description="False when the subject already had the requested state."
    )


class WhitelistListResponse(TimestampedResponse):
    subjects: List[str] = Field(..., description="Masked whitelisted subjects.")
    total: int


class ResetRequest(BaseModel):
    category: str | None = Field(
        default=None,
        description="Reset only this category (or 'global'); omit to reset everything.",
    )


class ResetResponse(TimestampedResponse):
    message: str
    subject: str
    category: str = Field(..., description="Category reset, or 'all'.")
    keys_deleted: int
    store_available: bool


class PolicyModel(BaseModel):
    max: int
    window_ms: int
    message: str
    description: str | None = None


class StatsData(BaseModel):
    whitelisted_subjects: List[str]
    policies: Dict[str, PolicyModel]
    global_policy: PolicyModel
    active_subjects: List[str]
    total_active_subjects: int
    store_available: bool


class StatsResponse(TimestampedResponse):
    data: StatsData


class LimitsResponse(TimestampedResponse):
    data: Dict[str, PolicyModel]


class QuotaTestRequest(BaseModel):
    subject: str = Field(..., description="Subject identifier to check.")
    category: str = Field(default="text", description="Message category.")


class QuotaTestData(VerdictModel):
    subject: str = Field(..., description="Masked subject identifier.")


class QuotaTestResponse(TimestampedResponse):
    data: QuotaTestData


class WebhookAcceptedResponse(BaseModel):
    status: Literal["accepted"] = "accepted"
    quota: VerdictModel | None = None
