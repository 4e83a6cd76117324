from __future__ import annotations

import math
from typing import Any, Callable, Dict, Optional

from auth_profiles.auth.backoff import DEFAULT_POLICY, BackoffPolicy
from auth_profiles.auth.models import AuthProfileStore, UsageStat
from auth_profiles.auth.store import AuthProfileStoreFile
from auth_profiles.auth.usage import (
    clear_expired_windows,
    has_active_deadline,
    is_valid_timestamp,
    now_ms,
)
from auth_profiles.observability.event_log import EventLogger

UNKNOWN_REASON = "unknown"


def _apply(
    store: AuthProfileStore,
    persistence: Optional[AuthProfileStoreFile],
    mutate: Callable[[AuthProfileStore], Optional[AuthProfileStore]],
) -> bool:
    """Run ``mutate`` through the locked write path, or in memory without one.

    After a persisted write the caller's snapshot picks up the fresh usage
    stats. Returns whether anything was written.
    """
    if persistence is None:
        return mutate(store) is not None
    updated = persistence.with_lock(mutate)
    if updated is None:
        return False
    store.usage_stats = updated.usage_stats
    return True


def _merge_deadline(existing: Optional[float], candidate: float) -> float:
    if is_valid_timestamp(existing):
        assert existing is not None
        return max(existing, candidate)
    return candidate


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return max(int(value), 0)


def record_failure(stats: UsageStat, reason: str, now: float, policy: BackoffPolicy) -> int:
    """Apply one failure to ``stats`` and return the backoff duration used."""
    error_count = _count(stats.error_count)
    failure_counts = dict(stats.failure_counts) if isinstance(stats.failure_counts, dict) else {}
    window_elapsed = (
        is_valid_timestamp(stats.last_failure_at)
        and now - stats.last_failure_at > policy.failure_window_ms  # type: ignore[operator]
    )
    if window_elapsed and not has_active_deadline(stats, now):
        # Stale history: start a fresh backoff sequence.
        error_count = 0
        failure_counts = {}

    error_count += 1
    failure_counts[reason] = _count(failure_counts.get(reason)) + 1
    stats.error_count = error_count
    stats.failure_counts = failure_counts
    stats.last_failure_at = now

    duration = policy.duration_ms(reason, error_count)
    if policy.disables(reason):
        stats.disabled_until = _merge_deadline(stats.disabled_until, now + duration)
        stats.disabled_reason = reason
    else:
        stats.cooldown_until = _merge_deadline(stats.cooldown_until, now + duration)
    return duration


def mark_auth_profile_failure(
    store: AuthProfileStore,
    profile_id: str,
    reason: str,
    *,
    persistence: Optional[AuthProfileStoreFile] = None,
    policy: Optional[BackoffPolicy] = None,
    now: Optional[float] = None,
    events: Optional[EventLogger] = None,
) -> None:
    current = now_ms() if now is None else now
    active_policy = policy or DEFAULT_POLICY
    reason = str(reason or UNKNOWN_REASON)
    applied: Dict[str, Any] = {}

    def mutate(target: AuthProfileStore) -> AuthProfileStore:
        stats = target.ensure_stats(profile_id)
        applied["duration_ms"] = record_failure(stats, reason, current, active_policy)
        applied["stats"] = stats.to_dict()
        return target

    _apply(store, persistence, mutate)
    if events is not None:
        snapshot = applied.get("stats", {})
        events.profile_event(
            "profile_failure",
            profile_id,
            level="warning",
            message=f"{profile_id} failed ({reason})",
            reason=reason,
            backoff_ms=applied.get("duration_ms"),
            error_count=snapshot.get("errorCount"),
            cooldown_until=snapshot.get("cooldownUntil"),
            disabled_until=snapshot.get("disabledUntil"),
        )


def mark_auth_profile_cooldown(
    store: AuthProfileStore,
    profile_id: str,
    *,
    persistence: Optional[AuthProfileStoreFile] = None,
    policy: Optional[BackoffPolicy] = None,
    now: Optional[float] = None,
    events: Optional[EventLogger] = None,
) -> None:
    mark_auth_profile_failure(
        store,
        profile_id,
        UNKNOWN_REASON,
        persistence=persistence,
        policy=policy,
        now=now,
        events=events,
    )


def mark_auth_profile_used(
    store: AuthProfileStore,
    profile_id: str,
    *,
    persistence: Optional[AuthProfileStoreFile] = None,
    now: Optional[float] = None,
    events: Optional[EventLogger] = None,
) -> None:
    current = now_ms() if now is None else now

    def mutate(target: AuthProfileStore) -> AuthProfileStore:
        stats = target.ensure_stats(profile_id)
        stats.last_used = current
        clear_expired_windows(stats, current)
        if not has_active_deadline(stats, current) and (stats.error_count or stats.failure_counts):
            stats.error_count = 0
            stats.failure_counts = None
        return target

    _apply(store, persistence, mutate)
    if events is not None:
        events.profile_event("profile_used", profile_id)


def clear_auth_profile_cooldown(
    store: AuthProfileStore,
    profile_id: str,
    *,
    persistence: Optional[AuthProfileStoreFile] = None,
    events: Optional[EventLogger] = None,
) -> None:
    def mutate(target: AuthProfileStore) -> Optional[AuthProfileStore]:
        stats = target.stats_for(profile_id)
        if stats is None:
            return None
        stats.cooldown_until = None
        stats.disabled_until = None
        stats.disabled_reason = None
        stats.error_count = 0
        stats.failure_counts = None
        return target

    written = _apply(store, persistence, mutate)
    if written and events is not None:
        events.profile_event("profile_cleared", profile_id, message=f"{profile_id} cooldown cleared")
