from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

STORE_VERSION = 1

_JSON_KEYS = {
    "cooldown_until": "cooldownUntil",
    "disabled_until": "disabledUntil",
    "disabled_reason": "disabledReason",
    "error_count": "errorCount",
    "failure_counts": "failureCounts",
    "last_used": "lastUsed",
    "last_failure_at": "lastFailureAt",
}


@dataclass
class UsageStat:
    cooldown_until: Optional[float] = None
    disabled_until: Optional[float] = None
    disabled_reason: Optional[str] = None
    error_count: Optional[int] = None
    failure_counts: Optional[Dict[str, int]] = None
    last_used: Optional[float] = None
    last_failure_at: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "UsageStat":
        # Accepts both the persisted camelCase keys and attribute names.
        values: Dict[str, Any] = {}
        for name, json_key in _JSON_KEYS.items():
            if json_key in raw:
                values[name] = raw[json_key]
            elif name in raw:
                values[name] = raw[name]
        counts = values.get("failure_counts")
        if isinstance(counts, dict):
            values["failure_counts"] = dict(counts)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if isinstance(value, dict):
                value = dict(value)
            payload[_JSON_KEYS[item.name]] = value
        return payload


@dataclass
class AuthProfileStore:
    version: int = STORE_VERSION
    profiles: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    usage_stats: Optional[Dict[str, UsageStat]] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AuthProfileStore":
        version = raw.get("version")
        profiles = raw.get("profiles")
        usage_raw = raw.get("usageStats")
        usage_stats: Optional[Dict[str, UsageStat]] = None
        if isinstance(usage_raw, dict):
            usage_stats = {
                str(profile_id): UsageStat.from_dict(entry)
                for profile_id, entry in usage_raw.items()
                if isinstance(entry, dict)
            }
        return cls(
            version=int(version) if isinstance(version, int) else STORE_VERSION,
            profiles=dict(profiles) if isinstance(profiles, dict) else {},
            usage_stats=usage_stats,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "version": self.version,
            "profiles": dict(self.profiles),
        }
        if self.usage_stats is not None:
            payload["usageStats"] = {
                profile_id: stat.to_dict() for profile_id, stat in self.usage_stats.items()
            }
        return payload

    def stats_for(self, profile_id: str) -> Optional[UsageStat]:
        if not self.usage_stats:
            return None
        return self.usage_stats.get(profile_id)

    def ensure_stats(self, profile_id: str) -> UsageStat:
        if self.usage_stats is None:
            self.usage_stats = {}
        stat = self.usage_stats.get(profile_id)
        if stat is None:
            stat = UsageStat()
            self.usage_stats[profile_id] = stat
        return stat


def provider_of(profile_id: str) -> str:
    provider, _, _label = str(profile_id).partition(":")
    return provider
