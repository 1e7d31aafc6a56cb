from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request

from app.core.admission import enforce_message_quota
from app.schemas.quota import VerdictModel, WebhookAcceptedResponse
from app.services.message_sink import log_message_sink
from app.services.quota_service import Verdict

router = APIRouter(tags=["Webhook"])


@router.post("/webhook", response_model=WebhookAcceptedResponse)
async def receive_webhook(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    verdict: Verdict | None = Depends(enforce_message_quota),
) -> WebhookAcceptedResponse:
    """Receive an inbound message notification.

    Quota admission runs as a dependency before this handler. Admitted
    payloads, and payloads without a message (status callbacks), are
    forwarded to the downstream message sink.

    Returns:
        WebhookAcceptedResponse: the quota verdict, or no verdict when no
            check applied (no message, admission disabled, engine failure).
    """

    sink = getattr(request.app.state, "message_sink", log_message_sink)
    await sink(payload, verdict)

    if verdict is None:
        return WebhookAcceptedResponse()

    return WebhookAcceptedResponse(
        quota=VerdictModel(**verdict.to_dict()),
    )
