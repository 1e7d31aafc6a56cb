"""Message admission: quota enforcement for the inbound webhook.

This module wires the quota engine into the HTTP layer.

Flow per request:
- Extract (subject, category) from the payload with the configured
  extraction rule (WhatsApp Cloud API shape by default).
- Reject malformed subjects with 400 before the engine is consulted.
- Ask the engine; translate a denial into HTTP 429 with ``Retry-After``.
- Any engine failure lets the message through (the engine already fails
  open on store outages; this is the second line).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from fastapi import HTTPException, Request, status

from app.core.config import settings
from app.core.errors import ValidationAppError
from app.core.validation import is_valid_subject, mask_subject, normalize_subject
from app.services.quota_service import QuotaEngine, Verdict

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "text"


@dataclass(frozen=True)
class Admission:
    """Subject and category derived from one inbound payload."""

    subject: str
    category: str


AdmissionExtractor = Callable[[Mapping[str, Any]], Admission | None]


def extract_whatsapp_admission(payload: Mapping[str, Any]) -> Admission | None:
    """Default extraction rule for WhatsApp Cloud API webhook payloads.

    The first message found in ``entry[].changes[].value.messages[]`` is
    used: its ``from`` field is the subject and its ``type`` the category.

    Returns:
        Admission, or None when the payload carries no message (e.g.,
        delivery status callbacks).
    """

    entries = payload.get("entry") if isinstance(payload, Mapping) else None
    if not isinstance(entries, list):
        return None

    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        for change in entry.get("changes") or []:
            if not isinstance(change, Mapping):
                continue
            value = change.get("value")
            if not isinstance(value, Mapping):
                continue
            for message in value.get("messages") or []:
                if not isinstance(message, Mapping):
                    continue
                subject = message.get("from")
                category = message.get("type") or DEFAULT_CATEGORY
                return Admission(
                    subject=normalize_subject(str(subject)) if subject is not None else "",
                    category=str(category),
                )
    return None


def get_quota_engine(request: Request) -> QuotaEngine:
    """FastAPI dependency returning the process-wide engine from app state."""

    return request.app.state.quota_engine


def get_admission_extractor(request: Request) -> AdmissionExtractor:
    return getattr(request.app.state, "admission_extractor", extract_whatsapp_admission)


def _denied_headers(verdict: Verdict, retry_after: int) -> dict[str, str]:
    headers = {"Retry-After": str(retry_after)}
    if settings.app.rate_limit_include_headers:
        if verdict.limit is not None:
            headers["X-RateLimit-Limit"] = str(verdict.limit)
        headers["X-RateLimit-Remaining"] = str(verdict.remaining)
        headers["X-RateLimit-Reset"] = str(verdict.reset_time)
    return headers


async def admit_message(
    engine: QuotaEngine,
    payload: Mapping[str, Any],
    extractor: AdmissionExtractor = extract_whatsapp_admission,
) -> Verdict | None:
    """Run quota admission for one payload.

    Returns:
        The verdict when the message is allowed, or None when no check was
        made (no message in the payload, or the engine failed).

    Raises:
        ValidationAppError: The payload's subject is empty or malformed.
        HTTPException: 429 when the quota is exhausted.
    """

    admission = extractor(payload)
    if admission is None:
        logger.debug("admission.no_message")
        return None

    if not is_valid_subject(admission.subject, settings.app.subject_pattern):
        logger.warning(
            "admission.invalid_subject",
            extra={"subject_masked": mask_subject(admission.subject), "category": admission.category},
        )
        raise ValidationAppError(
            code="invalid_subject",
            message="Invalid sender identifier in payload",
            details={"field": "from"},
        )

    try:
        verdict = await engine.check_category(admission.subject, admission.category)
    except Exception:
        logger.exception(
            "admission.engine_error",
            extra={"subject_masked": mask_subject(admission.subject), "category": admission.category},
        )
        return None

    if verdict.allowed:
        logger.debug(
            "admission.allowed",
            extra={
                "subject_masked": mask_subject(admission.subject),
                "category": verdict.category,
                "remaining": verdict.remaining,
            },
        )
        return verdict

    retry_after = verdict.retry_after_seconds(engine.now_ms())
    logger.warning(
        "admission.quota_exceeded",
        extra={
            "subject_masked": mask_subject(admission.subject),
            "category": admission.category,
            "limited_by": verdict.category,
            "reset_time": verdict.reset_time,
            "retry_after_s": retry_after,
        },
    )
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "Rate limit exceeded",
            "message": verdict.message,
            "category": verdict.category,
            "remaining": verdict.remaining,
            "reset_time": verdict.reset_time,
            "retry_after": retry_after,
        },
        headers=_denied_headers(verdict, retry_after),
    )


async def enforce_message_quota(request: Request) -> Verdict | None:
    """FastAPI dependency enforcing message quotas on the webhook.

    Runs before the route handler, so a denial never races a committed
    response.

    Raises:
        ValidationAppError: 400 for a malformed sender identifier.
        HTTPException: 429 Too Many Requests when the quota is exhausted.
    """

    if not settings.app.admission_enabled:
        return None

    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationAppError(
            code="invalid_payload",
            message="Request body must be a JSON object",
        ) from exc
    if not isinstance(payload, Mapping):
        raise ValidationAppError(
            code="invalid_payload",
            message="Request body must be a JSON object",
        )

    return await admit_message(
        get_quota_engine(request),
        payload,
        get_admission_extractor(request),
    )
