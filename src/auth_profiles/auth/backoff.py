from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

DEFAULT_COOLDOWN_BASE_MS = MINUTE_MS
DEFAULT_COOLDOWN_MULTIPLIER = 5
DEFAULT_COOLDOWN_MAX_MS = HOUR_MS
COOLDOWN_MAX_EXPONENT = 3

DEFAULT_DISABLE_BASE_MS = 5 * HOUR_MS
DEFAULT_DISABLE_MAX_MS = 24 * HOUR_MS
DISABLE_MAX_EXPONENT = 10

DEFAULT_FAILURE_WINDOW_MS = 24 * HOUR_MS
DEFAULT_DISABLE_REASONS: FrozenSet[str] = frozenset({"billing"})

FAILURE_REASONS = (
    "auth",
    "format",
    "rate_limit",
    "billing",
    "timeout",
    "model_not_found",
    "unknown",
)


@dataclass(frozen=True)
class BackoffPolicy:
    """Escalating, capped backoff schedule indexed by the failure count."""

    cooldown_base_ms: int = DEFAULT_COOLDOWN_BASE_MS
    cooldown_multiplier: int = DEFAULT_COOLDOWN_MULTIPLIER
    cooldown_max_ms: int = DEFAULT_COOLDOWN_MAX_MS
    disable_base_ms: int = DEFAULT_DISABLE_BASE_MS
    disable_max_ms: int = DEFAULT_DISABLE_MAX_MS
    failure_window_ms: int = DEFAULT_FAILURE_WINDOW_MS
    disable_reasons: FrozenSet[str] = field(default_factory=lambda: DEFAULT_DISABLE_REASONS)

    def cooldown_ms(self, error_count: int) -> int:
        power = min(max(int(error_count) - 1, 0), COOLDOWN_MAX_EXPONENT)
        return min(self.cooldown_max_ms, self.cooldown_base_ms * (self.cooldown_multiplier**power))

    def disable_ms(self, error_count: int) -> int:
        power = min(max(int(error_count) - 1, 0), DISABLE_MAX_EXPONENT)
        return min(self.disable_max_ms, self.disable_base_ms * (2**power))

    def disables(self, reason: str) -> bool:
        return str(reason) in self.disable_reasons

    def duration_ms(self, reason: str, error_count: int) -> int:
        if self.disables(reason):
            return self.disable_ms(error_count)
        return self.cooldown_ms(error_count)


DEFAULT_POLICY = BackoffPolicy()
