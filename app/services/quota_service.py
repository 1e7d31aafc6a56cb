"""Quota enforcement engine.

Decides whether a subject may send one more message of a given category.
Two tiers are enforced with fixed windows on a shared counter store:

1. the ``global`` policy, aggregating every category for the subject;
2. the policy of the message category itself.

Availability wins over precision:
- unknown categories are allowed (with a warning);
- a store outage or timeout is allowed (with a warning), never denied.

Known bound: the check (``get``) and the act (``increment``) are two store
round trips. Concurrent callers for the same subject and category can both
pass the check, so up to one extra event per concurrent racer can be admitted
per window. No engine-side locking is added on top of the store's atomic
INCR; that would trade availability and latency for precision.

Administrative operations (status, reset, whitelist) validate the subject
and raise ``ValidationAppError`` on malformed input before touching state.
Every entry point maps the subject to its canonical form
(``normalize_subject``), so "5511999999999" and "+5511999999999" share
counters and whitelist entries.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Literal

from app.adapters.store.base import AbstractCounterStore, StoreUnavailable
from app.adapters.store.factory import create_counter_store
from app.core.config import GLOBAL_CATEGORY, Settings
from app.core.errors import ValidationAppError
from app.core.validation import mask_subject, normalize_subject, validate_subject
from app.services.policies import Policy, PolicyTable
from app.services.whitelist import WhitelistRegistry
from app.services.window import (
    DEFAULT_KEY_PREFIX,
    build_window,
    subject_from_key,
    subject_prefix,
)

logger = logging.getLogger(__name__)

UNBOUNDED: Literal["unbounded"] = "unbounded"

Remaining = int | Literal["unbounded"]


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class Verdict:
    """Outcome of a quota check.

    Attributes:
        allowed: Whether the event may proceed.
        remaining: Events left in the current window, or "unbounded".
        reset_time: Epoch ms when the current window ends (0 if no window applies).
        category: Policy that produced the verdict ("global" for global denials).
        limit: Max of that policy, None when no policy applied.
        message: Denial message, or a diagnostic for fail-open verdicts.
    """

    allowed: bool
    remaining: Remaining
    reset_time: int
    category: str
    limit: int | None = None
    message: str | None = None

    @property
    def unbounded(self) -> bool:
        return self.remaining == UNBOUNDED

    def retry_after_seconds(self, now_ms: int) -> int:
        """Whole seconds until the window resets (never negative)."""

        if not self.reset_time:
            return 0
        return max(0, -(-(self.reset_time - now_ms) // 1000))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WindowStatus:
    limit: int
    window_ms: int
    remaining: Remaining
    reset_time: int


@dataclass(frozen=True)
class StatusReport:
    subject: str
    is_whitelisted: bool
    store_available: bool
    global_window: WindowStatus
    per_category: dict[str, WindowStatus] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "is_whitelisted": self.is_whitelisted,
            "store_available": self.store_available,
            "global": asdict(self.global_window),
            "per_category": {name: asdict(ws) for name, ws in self.per_category.items()},
        }


@dataclass(frozen=True)
class ResetOutcome:
    subject: str
    category: str | None
    keys_deleted: int
    store_available: bool


@dataclass(frozen=True)
class StatsReport:
    whitelisted_subjects: list[str]
    policies: dict[str, dict[str, Any]]
    global_policy: dict[str, Any]
    active_subjects: list[str]
    total_active_subjects: int
    store_available: bool


class QuotaEngine:
    """Multi-tier fixed-window quota enforcement.

    Build one instance per process (see ``build_quota_engine``) and share it
    between requests. The engine itself holds no counters; the store is the
    single source of truth.

    Attributes:
        policies: Category policies and the global policy.
        store: Shared counter store adapter.
        whitelist: Process-local whitelist registry.
    """

    def __init__(
        self,
        policies: PolicyTable,
        store: AbstractCounterStore,
        *,
        whitelist: WhitelistRegistry | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock_ms: Callable[[], int] = _epoch_ms,
        subject_pattern: str | None = None,
    ) -> None:
        self.policies = policies
        self.store = store
        self.whitelist = whitelist if whitelist is not None else WhitelistRegistry()
        self._prefix = key_prefix
        self._clock_ms = clock_ms
        self._subject_pattern = subject_pattern

    def now_ms(self) -> int:
        return self._clock_ms()

    # ---------- enforcement ----------

    def _unbounded(self, category: str, message: str) -> Verdict:
        return Verdict(
            allowed=True,
            remaining=UNBOUNDED,
            reset_time=0,
            category=category,
            message=message,
        )

    def _fail_open(self, subject: str, category: str, outage: StoreUnavailable | None) -> Verdict:
        logger.warning(
            "quota.fail_open",
            extra={
                "subject_masked": mask_subject(subject),
                "category": category,
                "operation": outage.operation if outage is not None else "is_available",
                "reason": outage.reason if outage is not None else "unavailable",
            },
        )
        return self._unbounded(category, "Counter store unavailable, allowing")

    async def _enforce(
        self, subject: str, category: str, policy: Policy, now_ms: int
    ) -> Verdict:
        """Check-then-increment against the bucket of (subject, category)."""

        window = build_window(
            subject,
            category,
            window_ms=policy.window_ms,
            now_ms=now_ms,
            prefix=self._prefix,
        )

        if not await self.store.is_available():
            return self._fail_open(subject, category, None)

        current = await self.store.get(window.key)
        if isinstance(current, StoreUnavailable):
            return self._fail_open(subject, category, current)
        count = current or 0

        if count >= policy.max:
            logger.info(
                "quota.denied",
                extra={
                    "subject_masked": mask_subject(subject),
                    "category": category,
                    "limit": policy.max,
                    "count": count,
                    "reset_time": window.reset_time,
                },
            )
            return Verdict(
                allowed=False,
                remaining=0,
                reset_time=window.reset_time,
                category=category,
                limit=policy.max,
                message=policy.message,
            )

        new_count = await self.store.increment(window.key)
        if isinstance(new_count, StoreUnavailable):
            return self._fail_open(subject, category, new_count)

        expiry = await self.store.set_expiry(window.key, window.ttl_seconds)
        if isinstance(expiry, StoreUnavailable):
            # The increment landed; only the TTL is missing. The event stays allowed.
            logger.warning(
                "quota.expiry_not_set",
                extra={"category": category, "ttl_s": window.ttl_seconds},
            )

        return Verdict(
            allowed=True,
            remaining=max(0, policy.max - new_count),
            reset_time=window.reset_time,
            category=category,
            limit=policy.max,
        )

    async def check_global(self, subject: str, *, now_ms: int | None = None) -> Verdict:
        """Apply the global policy for ``subject``."""

        subject = normalize_subject(subject)
        if self.whitelist.is_whitelisted(subject):
            return self._unbounded(GLOBAL_CATEGORY, "Whitelisted subject")

        now = self.now_ms() if now_ms is None else now_ms
        return await self._enforce(subject, GLOBAL_CATEGORY, self.policies.global_policy, now)

    async def check_category(self, subject: str, category: str) -> Verdict:
        """Decide whether ``subject`` may send one more ``category`` event.

        The global policy is consulted first and a global denial is returned
        as-is. Counters for both tiers count attempts, so a request denied by
        its category still consumed one unit of the global window.
        """

        subject = normalize_subject(subject)
        if self.whitelist.is_whitelisted(subject):
            return self._unbounded(category, "Whitelisted subject")

        policy = self.policies.get(category)
        if policy is None or category == GLOBAL_CATEGORY:
            logger.warning(
                "quota.unknown_category",
                extra={"subject_masked": mask_subject(subject), "category": category},
            )
            return self._unbounded(category, "Unknown category, allowing")

        now = self.now_ms()
        global_verdict = await self.check_global(subject, now_ms=now)
        if not global_verdict.allowed:
            return global_verdict

        return await self._enforce(subject, category, policy, now)

    # ---------- introspection & administration ----------

    def validate_subject(self, subject: str | None) -> str:
        """Validate ``subject`` against the subject pattern; return its canonical form."""

        return validate_subject(subject, self._subject_pattern)

    async def _window_status(
        self,
        subject: str,
        category: str,
        policy: Policy,
        now_ms: int,
        store_available: bool,
    ) -> tuple[WindowStatus, bool]:
        window = build_window(
            subject, category, window_ms=policy.window_ms, now_ms=now_ms, prefix=self._prefix
        )
        remaining: Remaining = policy.max
        if store_available:
            current = await self.store.get(window.key)
            if isinstance(current, StoreUnavailable):
                store_available = False
            else:
                remaining = max(0, policy.max - (current or 0))
        status = WindowStatus(
            limit=policy.max,
            window_ms=policy.window_ms,
            remaining=remaining,
            reset_time=window.reset_time,
        )
        return status, store_available

    async def status(self, subject: str) -> StatusReport:
        """Read-only view of every window of ``subject``; never increments."""

        subject = self.validate_subject(subject)
        global_policy = self.policies.global_policy

        if self.whitelist.is_whitelisted(subject):
            return StatusReport(
                subject=subject,
                is_whitelisted=True,
                store_available=await self.store.is_available(),
                global_window=WindowStatus(
                    limit=global_policy.max,
                    window_ms=global_policy.window_ms,
                    remaining=UNBOUNDED,
                    reset_time=0,
                ),
                per_category={
                    name: WindowStatus(
                        limit=policy.max,
                        window_ms=policy.window_ms,
                        remaining=UNBOUNDED,
                        reset_time=0,
                    )
                    for name, policy in self.policies
                },
            )

        now = self.now_ms()
        available = await self.store.is_available()
        global_status, available = await self._window_status(
            subject, GLOBAL_CATEGORY, global_policy, now, available
        )
        per_category: dict[str, WindowStatus] = {}
        for name, policy in self.policies:
            per_category[name], available = await self._window_status(
                subject, name, policy, now, available
            )

        if not available:
            logger.warning(
                "quota.status_degraded",
                extra={"subject_masked": mask_subject(subject)},
            )

        return StatusReport(
            subject=subject,
            is_whitelisted=False,
            store_available=available,
            global_window=global_status,
            per_category=per_category,
        )

    async def reset(self, subject: str, category: str | None = None) -> ResetOutcome:
        """Clear counters of ``subject``.

        With a category (``global`` included), only the current bucket of that
        category is deleted. Without one, every key of the subject is deleted.
        """

        subject = self.validate_subject(subject)
        if category is not None:
            policy = self.policies.get(category)
            if policy is None:
                raise ValidationAppError(
                    code="unknown_category",
                    message=f"Unknown category: '{category}'",
                    details={
                        "category": category,
                        "allowed_categories": [*self.policies.categories, GLOBAL_CATEGORY],
                    },
                )
            window = build_window(
                subject,
                category,
                window_ms=policy.window_ms,
                now_ms=self.now_ms(),
                prefix=self._prefix,
            )
            result = await self.store.delete(window.key)
        else:
            result = await self.store.delete_by_prefix(subject_prefix(subject, self._prefix))

        if isinstance(result, StoreUnavailable):
            logger.warning(
                "quota.reset_failed",
                extra={
                    "subject_masked": mask_subject(subject),
                    "category": category or "all",
                    "reason": result.reason,
                },
            )
            return ResetOutcome(subject, category, keys_deleted=0, store_available=False)

        logger.info(
            "quota.reset",
            extra={
                "subject_masked": mask_subject(subject),
                "category": category or "all",
                "keys_deleted": result,
            },
        )
        return ResetOutcome(subject, category, keys_deleted=result, store_available=True)

    def add_to_whitelist(self, subject: str) -> bool:
        subject = self.validate_subject(subject)
        added = self.whitelist.add(subject)
        logger.info(
            "quota.whitelist_added",
            extra={"subject_masked": mask_subject(subject), "changed": added},
        )
        return added

    def remove_from_whitelist(self, subject: str) -> bool:
        subject = self.validate_subject(subject)
        removed = self.whitelist.remove(subject)
        logger.info(
            "quota.whitelist_removed",
            extra={"subject_masked": mask_subject(subject), "changed": removed},
        )
        return removed

    def whitelisted(self) -> list[str]:
        return sorted(self.whitelist.list())

    def limits(self) -> dict[str, dict[str, Any]]:
        """Static description of every configured policy, ``global`` included."""

        return self.policies.describe()

    async def stats(self) -> StatsReport:
        """Administrative overview.

        ``active_subjects`` comes from a scan of every live counter key, which
        is O(number of keys). Do not call it on the hot path.
        """

        described = self.policies.describe()
        global_policy = described.pop(GLOBAL_CATEGORY)

        keys = await self.store.keys_with_prefix(f"{self._prefix}:")
        if isinstance(keys, StoreUnavailable):
            active: list[str] = []
            available = False
        else:
            subjects = {subject_from_key(key, self._prefix) for key in keys}
            active = sorted(s for s in subjects if s is not None)
            available = True

        return StatsReport(
            whitelisted_subjects=self.whitelisted(),
            policies=described,
            global_policy=global_policy,
            active_subjects=active,
            total_active_subjects=len(active),
            store_available=available,
        )

    async def close(self) -> None:
        await self.store.close()


def build_quota_engine(
    app_settings: Settings, store: AbstractCounterStore | None = None
) -> QuotaEngine:
    """Wire the process-wide engine from configuration.

    Args:
        app_settings: Resolved settings.
        store: Optional store override; defaults to the configured backend.

    Returns:
        QuotaEngine: Engine ready to serve requests.
    """

    initial_whitelist = [
        validate_subject(subject.strip(), app_settings.app.subject_pattern)
        for subject in (app_settings.quota.whitelist or "").split(",")
        if subject.strip()
    ]

    return QuotaEngine(
        PolicyTable.from_settings(app_settings.quota),
        store if store is not None else create_counter_store(app_settings.store),
        whitelist=WhitelistRegistry(initial_whitelist),
        key_prefix=app_settings.store.key_prefix,
        subject_pattern=app_settings.app.subject_pattern,
    )
