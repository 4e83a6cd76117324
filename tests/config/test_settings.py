from __future__ import annotations

from pathlib import Path

from auth_profiles.auth.backoff import HOUR_MS
from auth_profiles.config.settings import (
    ENV_BILLING_BACKOFF_HOURS,
    ENV_ENV_FILE,
    ENV_FAILURE_WINDOW_HOURS,
    ENV_LOCK_TIMEOUT,
    ENV_STORE,
    build_settings,
    load_env_file,
)

_ENV_KEYS = (
    ENV_STORE,
    ENV_ENV_FILE,
    ENV_LOCK_TIMEOUT,
    ENV_BILLING_BACKOFF_HOURS,
    ENV_FAILURE_WINDOW_HOURS,
    "AUTH_PROFILES_BILLING_MAX_HOURS",
)


def _clean_env(monkeypatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_apply_without_env(monkeypatch, tmp_path: Path) -> None:
    _clean_env(monkeypatch)
    settings = build_settings(store_path=str(tmp_path / "store.json"))

    assert settings.store_path == str(tmp_path / "store.json")
    assert settings.lock_timeout == 10.0
    policy = settings.backoff_policy()
    assert policy.disable_base_ms == 5 * HOUR_MS
    assert policy.disable_max_ms == 24 * HOUR_MS
    assert policy.failure_window_ms == 24 * HOUR_MS


def test_env_and_env_file_are_merged(monkeypatch, tmp_path: Path) -> None:
    _clean_env(monkeypatch)
    store_path = tmp_path / "store.json"
    (tmp_path / ".env").write_text(
        "# comment\n"
        f"export {ENV_BILLING_BACKOFF_HOURS}='2'\n"
        f"{ENV_LOCK_TIMEOUT}=3.5\n",
        encoding="utf-8",
    )
    monkeypatch.setenv(ENV_STORE, str(store_path))
    monkeypatch.setenv(ENV_LOCK_TIMEOUT, "1.5")

    settings = build_settings()

    assert settings.store_path == str(store_path)
    assert settings.billing_backoff_hours == 2
    assert settings.lock_timeout == 1.5
    assert settings.store().path == store_path


def test_invalid_values_fall_back_to_defaults(monkeypatch, tmp_path: Path) -> None:
    _clean_env(monkeypatch)
    monkeypatch.setenv(ENV_LOCK_TIMEOUT, "nan")
    monkeypatch.setenv(ENV_BILLING_BACKOFF_HOURS, "-4")
    monkeypatch.setenv(ENV_FAILURE_WINDOW_HOURS, "soon")

    settings = build_settings(store_path=str(tmp_path / "store.json"))

    assert settings.lock_timeout == 10.0
    assert settings.billing_backoff_hours == 5
    assert settings.failure_window_hours == 24


def test_explicit_arguments_win(monkeypatch, tmp_path: Path) -> None:
    _clean_env(monkeypatch)
    monkeypatch.setenv(ENV_BILLING_BACKOFF_HOURS, "7")
    settings = build_settings(store_path=str(tmp_path / "s.json"), billing_backoff_hours=1, billing_max_hours=3)
    policy = settings.backoff_policy()
    assert policy.disable_ms(1) == HOUR_MS
    assert policy.disable_ms(5) == 3 * HOUR_MS


def test_load_env_file_missing_returns_empty(tmp_path: Path) -> None:
    assert load_env_file(tmp_path / "nope.env") == {}
