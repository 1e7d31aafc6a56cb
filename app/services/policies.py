"""Quota policy table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from app.core.config import GLOBAL_CATEGORY, PolicyConfig, QuotaSettings


@dataclass(frozen=True)
class Policy:
    """Immutable quota policy.

    Attributes:
        max: Events allowed per window.
        window_ms: Window length in milliseconds.
        message: Denial message shown to the subject.
        description: Short summary for the limits endpoint.
    """

    max: int
    window_ms: int
    message: str
    description: str | None = None

    def __post_init__(self) -> None:
        if self.max < 1:
            raise ValueError("max must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")

    @classmethod
    def from_config(cls, config: PolicyConfig) -> "Policy":
        return cls(
            max=config.max,
            window_ms=config.window_ms,
            message=config.message,
            description=config.description,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max": self.max,
            "window_ms": self.window_ms,
            "message": self.message,
            "description": self.description,
        }


class PolicyTable:
    """Category -> policy mapping plus the distinguished global policy."""

    def __init__(self, policies: Mapping[str, Policy], global_policy: Policy) -> None:
        if GLOBAL_CATEGORY in policies:
            raise ValueError(f"'{GLOBAL_CATEGORY}' is reserved for the global policy")
        if not policies:
            raise ValueError("at least one category policy is required")
        self._policies = dict(policies)
        self._global = global_policy

    @classmethod
    def from_settings(cls, quota_settings: QuotaSettings) -> "PolicyTable":
        return cls(
            {name: Policy.from_config(cfg) for name, cfg in quota_settings.policies.items()},
            Policy.from_config(quota_settings.global_policy),
        )

    @property
    def global_policy(self) -> Policy:
        return self._global

    @property
    def categories(self) -> list[str]:
        return list(self._policies)

    def get(self, category: str) -> Policy | None:
        """Return the policy for ``category`` (``global`` included), or None."""

        if category == GLOBAL_CATEGORY:
            return self._global
        return self._policies.get(category)

    def __contains__(self, category: object) -> bool:
        return category in self._policies

    def __iter__(self) -> Iterator[tuple[str, Policy]]:
        return iter(self._policies.items())

    def describe(self) -> dict[str, dict[str, Any]]:
        """Every policy keyed by category, with ``global`` last."""

        described = {name: policy.to_dict() for name, policy in self._policies.items()}
        described[GLOBAL_CATEGORY] = self._global.to_dict()
        return described
