from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from auth_profiles.auth.backoff import (
    DEFAULT_DISABLE_REASONS,
    HOUR_MS,
    BackoffPolicy,
)
from auth_profiles.auth.store import DEFAULT_LOCK_TIMEOUT_SECONDS, AuthProfileStoreFile

DEFAULT_STORE_PATH = "~/.auth_profiles/auth-profiles.json"
DEFAULT_ENV_FILE = ".env"
DEFAULT_BILLING_BACKOFF_HOURS = 5
DEFAULT_BILLING_MAX_HOURS = 24
DEFAULT_FAILURE_WINDOW_HOURS = 24

ENV_STORE = "AUTH_PROFILES_STORE"
ENV_ENV_FILE = "AUTH_PROFILES_ENV_FILE"
ENV_LOCK_TIMEOUT = "AUTH_PROFILES_LOCK_TIMEOUT"
ENV_BILLING_BACKOFF_HOURS = "AUTH_PROFILES_BILLING_BACKOFF_HOURS"
ENV_BILLING_MAX_HOURS = "AUTH_PROFILES_BILLING_MAX_HOURS"
ENV_FAILURE_WINDOW_HOURS = "AUTH_PROFILES_FAILURE_WINDOW_HOURS"


def resolve_path(path: str) -> Path:
    return Path(os.path.expanduser(path))


def env_file_path(store_path: str) -> Path:
    explicit = os.environ.get(ENV_ENV_FILE)
    if explicit:
        return resolve_path(explicit)
    return resolve_path(store_path).parent / DEFAULT_ENV_FILE


def parse_positive_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


def parse_positive_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    if not (parsed > 0) or parsed == float("inf"):
        return default
    return parsed


def load_env_file(path: Path) -> Dict[str, str]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (FileNotFoundError, OSError):
        return {}
    data: Dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        if key:
            data[key] = value
    return data


@dataclass(frozen=True)
class Settings:
    store_path: str
    lock_timeout: float
    billing_backoff_hours: int
    billing_max_hours: int
    failure_window_hours: int

    @property
    def store_dir(self) -> Path:
        return resolve_path(self.store_path).parent

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            disable_base_ms=self.billing_backoff_hours * HOUR_MS,
            disable_max_ms=max(self.billing_max_hours, self.billing_backoff_hours) * HOUR_MS,
            failure_window_ms=self.failure_window_hours * HOUR_MS,
            disable_reasons=DEFAULT_DISABLE_REASONS,
        )

    def store(self) -> AuthProfileStoreFile:
        return AuthProfileStoreFile(self.store_path, lock_timeout=self.lock_timeout)


def build_settings(
    *,
    store_path: Optional[str] = None,
    lock_timeout: Optional[float] = None,
    billing_backoff_hours: Optional[int] = None,
    billing_max_hours: Optional[int] = None,
    failure_window_hours: Optional[int] = None,
) -> Settings:
    initial_store = store_path or os.environ.get(ENV_STORE) or DEFAULT_STORE_PATH
    file_env = load_env_file(env_file_path(initial_store))
    merged = dict(file_env)
    merged.update(os.environ)

    resolved_store = str(resolve_path(store_path or merged.get(ENV_STORE) or initial_store))

    if lock_timeout is None:
        resolved_lock_timeout = parse_positive_float(merged.get(ENV_LOCK_TIMEOUT), default=DEFAULT_LOCK_TIMEOUT_SECONDS)
    else:
        resolved_lock_timeout = max(0.0, float(lock_timeout))

    if billing_backoff_hours is None:
        resolved_backoff = parse_positive_int(
            merged.get(ENV_BILLING_BACKOFF_HOURS), default=DEFAULT_BILLING_BACKOFF_HOURS
        )
    else:
        resolved_backoff = max(1, int(billing_backoff_hours))

    if billing_max_hours is None:
        resolved_max = parse_positive_int(merged.get(ENV_BILLING_MAX_HOURS), default=DEFAULT_BILLING_MAX_HOURS)
    else:
        resolved_max = max(1, int(billing_max_hours))

    if failure_window_hours is None:
        resolved_window = parse_positive_int(
            merged.get(ENV_FAILURE_WINDOW_HOURS), default=DEFAULT_FAILURE_WINDOW_HOURS
        )
    else:
        resolved_window = max(1, int(failure_window_hours))

    return Settings(
        store_path=resolved_store,
        lock_timeout=resolved_lock_timeout,
        billing_backoff_hours=resolved_backoff,
        billing_max_hours=resolved_max,
        failure_window_hours=resolved_window,
    )
