from __future__ import annotations

import math
import time
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from auth_profiles.auth.models import AuthProfileStore, UsageStat, provider_of

StatsLike = Union[UsageStat, Mapping[str, Any]]


class DeadlineState(Enum):
    ABSENT = "absent"
    INVALID = "invalid"
    ACTIVE = "active"
    EXPIRED = "expired"


def now_ms() -> int:
    return int(time.time() * 1000)


def is_valid_timestamp(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def deadline_state(value: Any, now: float) -> DeadlineState:
    if value is None:
        return DeadlineState.ABSENT
    if not is_valid_timestamp(value):
        return DeadlineState.INVALID
    if value > now:
        return DeadlineState.ACTIVE
    return DeadlineState.EXPIRED


def _deadlines(stats: StatsLike) -> List[Any]:
    if isinstance(stats, UsageStat):
        return [stats.cooldown_until, stats.disabled_until]
    return [
        stats.get("cooldownUntil", stats.get("cooldown_until")),
        stats.get("disabledUntil", stats.get("disabled_until")),
    ]


def resolve_unusable_until(stats: StatsLike) -> Optional[float]:
    """Return the latest valid deadline on ``stats``, or ``None``.

    Does not look at the clock; an elapsed deadline is still returned.
    """
    valid = [value for value in _deadlines(stats) if is_valid_timestamp(value)]
    if not valid:
        return None
    return max(valid)


def has_active_deadline(stats: UsageStat, now: float) -> bool:
    return any(deadline_state(value, now) is DeadlineState.ACTIVE for value in _deadlines(stats))


def is_profile_in_cooldown(store: AuthProfileStore, profile_id: str, now: Optional[float] = None) -> bool:
    stats = store.stats_for(profile_id)
    if stats is None:
        return False
    current = now_ms() if now is None else now
    return has_active_deadline(stats, current)


def clear_expired_windows(stats: UsageStat, now: float) -> bool:
    modified = False
    if deadline_state(stats.cooldown_until, now) is DeadlineState.EXPIRED:
        stats.cooldown_until = None
        modified = True
    if deadline_state(stats.disabled_until, now) is DeadlineState.EXPIRED:
        stats.disabled_until = None
        stats.disabled_reason = None
        modified = True
    if modified and resolve_unusable_until(stats) is None:
        stats.error_count = 0
        stats.failure_counts = None
    return modified


def clear_expired_cooldowns(store: AuthProfileStore, now: Optional[float] = None) -> bool:
    """Drop elapsed cooldown/disable windows in place.

    Error counters are reset only for profiles left without any valid
    deadline. Invalid deadline values are kept as stored and never count
    as a change. Returns whether any profile was modified.
    """
    if not store.usage_stats:
        return False
    current = now_ms() if now is None else now
    changed = False
    for stats in store.usage_stats.values():
        if clear_expired_windows(stats, current):
            changed = True
    return changed


def _remaining_seconds(value: Any, now: float) -> Optional[int]:
    if deadline_state(value, now) is not DeadlineState.ACTIVE:
        return None
    return int(math.ceil((value - now) / 1000.0))


def profile_status(stats: Optional[UsageStat], now: float) -> str:
    if stats is None:
        return "OK"
    if deadline_state(stats.disabled_until, now) is DeadlineState.ACTIVE:
        return "DISABLED"
    if deadline_state(stats.cooldown_until, now) is DeadlineState.ACTIVE:
        return "COOLDOWN"
    return "OK"


def usage_snapshot(store: AuthProfileStore, now: Optional[float] = None) -> List[Dict[str, Any]]:
    current = now_ms() if now is None else now
    profile_ids = set(store.profiles.keys()) | set((store.usage_stats or {}).keys())
    rows: List[Dict[str, Any]] = []
    for profile_id in sorted(profile_ids):
        stats = store.stats_for(profile_id)
        row: Dict[str, Any] = {
            "profile": profile_id,
            "provider": provider_of(profile_id),
            "status": profile_status(stats, current),
            "cooldown_seconds": None,
            "disabled_seconds": None,
            "disabled_reason": None,
            "unusable_until": None,
            "error_count": 0,
            "failure_counts": {},
            "last_used": None,
            "last_failure_at": None,
        }
        if stats is not None:
            row.update(
                {
                    "cooldown_seconds": _remaining_seconds(stats.cooldown_until, current),
                    "disabled_seconds": _remaining_seconds(stats.disabled_until, current),
                    "disabled_reason": stats.disabled_reason,
                    "unusable_until": resolve_unusable_until(stats),
                    "error_count": stats.error_count or 0,
                    "failure_counts": dict(stats.failure_counts) if isinstance(stats.failure_counts, dict) else {},
                    "last_used": stats.last_used,
                    "last_failure_at": stats.last_failure_at,
                }
            )
        rows.append(row)
    return rows


def summarize_snapshot(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {"ok": 0, "cooldown": 0, "disabled": 0, "total": len(rows)}
    for row in rows:
        status = str(row.get("status") or "OK")
        if status == "DISABLED":
            counts["disabled"] += 1
        elif status == "COOLDOWN":
            counts["cooldown"] += 1
        else:
            counts["ok"] += 1
    return counts
