"""API key authentication for the administrative endpoints.

Whitelist changes and counter resets override quota enforcement, so the
``/rate-limit`` routes are guarded by an API key. Keys are validated against
a comma-separated list from environment variables. The inbound webhook is
not guarded here; the message provider authenticates it upstream.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated

from fastapi import Header, HTTPException, status

from app.core.config import settings
from app.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _key_fingerprint(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def validate_admin_api_key(provided_key: str) -> None:
    """Validate that the provided key matches a configured admin key.

    Args:
        provided_key: API key to validate.

    Raises:
        AuthenticationAppError: If the key is invalid, or authentication is
            required but no keys are configured.
    """
    if not settings.app.admin_api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.admin_api_keys)

    if not valid_keys:
        logger.error(
            "admin_auth.failed",
            extra={"reason": "admin_api_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="admin_api_keys_not_configured",
            message="Admin authentication is enabled but no valid keys are configured",
            details={
                "hint": "Set APP_ADMIN_API_KEYS or disable auth with APP_ADMIN_API_KEY_REQUIRED=false"
            },
        )

    if provided_key not in valid_keys:
        logger.warning(
            "admin_auth.failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": _key_fingerprint(provided_key),
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_admin_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding administrative routes.

    Usage:
        router = APIRouter(dependencies=[Depends(verify_admin_api_key)])

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    if not settings.app.admin_api_key_required:
        logger.debug("admin_auth.skipped", extra={"reason": "auth_required_false"})
        return

    if not x_api_key:
        logger.warning("admin_auth.missing_key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        validate_admin_api_key(x_api_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    logger.debug(
        "admin_auth.success",
        extra={"api_key_hash": _key_fingerprint(x_api_key)},
    )
