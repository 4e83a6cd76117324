from __future__ import annotations

import json
import math
from pathlib import Path

import pytest

from auth_profiles.auth.models import AuthProfileStore, UsageStat
from auth_profiles.auth.store import AuthProfileStoreFile, StoreFormatError, StoreLockTimeout


def test_missing_store_file_loads_empty_store(tmp_path: Path) -> None:
    store = AuthProfileStoreFile(tmp_path / "missing.json").load()
    assert store.version == 1
    assert store.profiles == {}
    assert store.usage_stats is None


def test_store_round_trips_camel_case_json(tmp_path: Path) -> None:
    path = tmp_path / "auth-profiles.json"
    persistence = AuthProfileStoreFile(path)
    persistence.save(
        AuthProfileStore(
            profiles={"openai:default": {"type": "api_key", "provider": "openai", "key": "sk-1"}},
            usage_stats={
                "openai:default": UsageStat(
                    cooldown_until=2_000,
                    error_count=1,
                    failure_counts={"rate_limit": 1},
                    last_failure_at=1_000,
                )
            },
        )
    )

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["usageStats"]["openai:default"] == {
        "cooldownUntil": 2_000,
        "errorCount": 1,
        "failureCounts": {"rate_limit": 1},
        "lastFailureAt": 1_000,
    }
    assert raw["profiles"]["openai:default"]["key"] == "sk-1"

    reloaded = persistence.load()
    assert reloaded.usage_stats["openai:default"].cooldown_until == 2_000
    assert reloaded.usage_stats["openai:default"].failure_counts == {"rate_limit": 1}


def test_store_without_usage_stats_omits_key(tmp_path: Path) -> None:
    path = tmp_path / "auth-profiles.json"
    AuthProfileStoreFile(path).save(AuthProfileStore(profiles={"a:b": {}}))
    assert "usageStats" not in json.loads(path.read_text(encoding="utf-8"))


def test_malformed_deadlines_are_kept_as_stored(tmp_path: Path) -> None:
    path = tmp_path / "auth-profiles.json"
    path.write_text(
        '{"version": 1, "profiles": {}, "usageStats": {"a:b": {"cooldownUntil": NaN, "disabledUntil": -3}}}',
        encoding="utf-8",
    )
    persistence = AuthProfileStoreFile(path)
    store = persistence.load()
    assert math.isnan(store.usage_stats["a:b"].cooldown_until)

    persistence.save(store)
    again = persistence.load().usage_stats["a:b"]
    assert math.isnan(again.cooldown_until)
    assert again.disabled_until == -3


def test_invalid_store_file_raises_format_error(tmp_path: Path) -> None:
    path = tmp_path / "auth-profiles.json"
    path.write_text("{not-json", encoding="utf-8")
    with pytest.raises(StoreFormatError):
        AuthProfileStoreFile(path).load()

    path.write_text('["not", "object"]', encoding="utf-8")
    with pytest.raises(StoreFormatError):
        AuthProfileStoreFile(path).load()


def test_with_lock_skips_write_when_mutation_returns_none(tmp_path: Path) -> None:
    persistence = AuthProfileStoreFile(tmp_path / "auth-profiles.json")
    assert persistence.with_lock(lambda store: None) is None
    assert not persistence.path.exists()


def test_with_lock_reloads_latest_state(tmp_path: Path) -> None:
    persistence = AuthProfileStoreFile(tmp_path / "auth-profiles.json")
    persistence.save(AuthProfileStore(usage_stats={"a:b": UsageStat(error_count=7)}))

    seen = []

    def mutate(store: AuthProfileStore) -> AuthProfileStore:
        seen.append(store.usage_stats["a:b"].error_count)
        store.ensure_stats("a:b").error_count = 8
        return store

    updated = persistence.with_lock(mutate)
    assert seen == [7]
    assert updated is not None
    assert persistence.load().usage_stats["a:b"].error_count == 8


def test_with_lock_times_out_while_lock_is_held(tmp_path: Path) -> None:
    path = tmp_path / "auth-profiles.json"
    holder = AuthProfileStoreFile(path)
    waiter = AuthProfileStoreFile(path, lock_timeout=0.1)

    assert holder.lock_path == tmp_path / "auth-profiles.json.lock"

    with holder.locked():
        assert holder.lock_path.exists()
        with pytest.raises(StoreLockTimeout):
            waiter.with_lock(lambda store: store)

    assert waiter.with_lock(lambda store: store) is not None


def test_mutation_errors_propagate_and_release_lock(tmp_path: Path) -> None:
    persistence = AuthProfileStoreFile(tmp_path / "auth-profiles.json", lock_timeout=0.1)

    def boom(store: AuthProfileStore) -> AuthProfileStore:
        raise OSError("disk full")

    with pytest.raises(OSError):
        persistence.with_lock(boom)
    assert persistence.with_lock(lambda store: store) is not None
