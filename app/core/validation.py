"""Subject identifier validation and masking.

Subjects are opaque to the quota engine, but they end up embedded in store
keys and administrative URLs, so they are checked against a configurable
pattern (E.164 phone numbers by default) before reaching the store.
"""

from __future__ import annotations

import re
from functools import lru_cache

from app.core.config import settings
from app.core.errors import ValidationAppError

_MASK_DIGITS = re.compile(r"\d(?=\d{4})")
_DIGITS_ONLY = re.compile(r"\d+")


@lru_cache(maxsize=8)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern)


def is_valid_subject(subject: str | None, pattern: str | None = None) -> bool:
    """Return True when ``subject`` fully matches the subject pattern."""

    if not subject or not isinstance(subject, str):
        return False
    regex = _compile(pattern or settings.app.subject_pattern)
    return regex.fullmatch(subject) is not None


def normalize_subject(subject: str) -> str:
    """Canonical form of a subject identifier.

    Phone numbers arrive with ("+5511999999999", admin input) and without
    ("5511999999999", WhatsApp ``from``) the leading "+"; both map to the
    "+" form so they share counters and whitelist entries. Identifiers that
    are not all digits are only stripped of surrounding whitespace.

    Examples:
        >>> normalize_subject("5511999999999")
        '+5511999999999'
        >>> normalize_subject(" +5511999999999 ")
        '+5511999999999'
    """

    subject = subject.strip()
    if _DIGITS_ONLY.fullmatch(subject):
        return f"+{subject}"
    return subject


def validate_subject(subject: str | None, pattern: str | None = None) -> str:
    """Validate a subject identifier.

    Args:
        subject: Candidate identifier (e.g., "+5511999999999").
        pattern: Optional override of the configured subject pattern.

    Returns:
        The subject in canonical form (see ``normalize_subject``).

    Raises:
        ValidationAppError: If the subject is empty or malformed.
    """

    if not subject:
        raise ValidationAppError(
            code="invalid_subject",
            message="Subject identifier is required",
            details={"field": "subject"},
        )
    if not is_valid_subject(subject, pattern):
        raise ValidationAppError(
            code="invalid_subject",
            message="Invalid subject identifier format",
            details={
                "field": "subject",
                "hint": "Use an international phone number such as +5511999999999 (the + is optional)",
            },
        )
    return normalize_subject(subject)


def mask_subject(subject: str | None) -> str:
    """Mask every digit except the last four for logs and responses.

    Examples:
        >>> mask_subject("+5511999999999")
        '+*********9999'
    """

    if not subject:
        return ""
    return _MASK_DIGITS.sub("*", subject)
