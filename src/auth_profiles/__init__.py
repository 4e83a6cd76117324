from auth_profiles.auth.backoff import BackoffPolicy
from auth_profiles.auth.failures import (
    clear_auth_profile_cooldown,
    mark_auth_profile_cooldown,
    mark_auth_profile_failure,
    mark_auth_profile_used,
)
from auth_profiles.auth.models import AuthProfileStore, UsageStat
from auth_profiles.auth.store import AuthProfileStoreFile, StoreFormatError, StoreLockTimeout
from auth_profiles.auth.usage import (
    clear_expired_cooldowns,
    is_profile_in_cooldown,
    resolve_unusable_until,
    usage_snapshot,
)

__version__ = "0.1.0"

__all__ = [
    "AuthProfileStore",
    "UsageStat",
    "BackoffPolicy",
    "AuthProfileStoreFile",
    "StoreFormatError",
    "StoreLockTimeout",
    "resolve_unusable_until",
    "is_profile_in_cooldown",
    "clear_expired_cooldowns",
    "usage_snapshot",
    "mark_auth_profile_failure",
    "mark_auth_profile_cooldown",
    "mark_auth_profile_used",
    "clear_auth_profile_cooldown",
]
