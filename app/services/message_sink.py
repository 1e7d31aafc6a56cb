"""Hand-off point to downstream message processing.

Message handling itself (menus, AI replies, media download) lives outside
this service. The webhook forwards every admitted payload to a sink, which
the application factory can replace.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Mapping

from app.services.quota_service import Verdict

logger = logging.getLogger(__name__)

MessageSink = Callable[[Mapping[str, Any], Verdict | None], Awaitable[None]]


async def log_message_sink(payload: Mapping[str, Any], verdict: Verdict | None) -> None:
    """Default sink: record the hand-off and drop the payload."""

    logger.info(
        "webhook.forwarded",
        extra={
            "object": payload.get("object"),
            "category": verdict.category if verdict is not None else None,
            "remaining": verdict.remaining if verdict is not None else None,
        },
    )
