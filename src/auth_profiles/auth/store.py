from __future__ import annotations

import contextlib
import fcntl
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from auth_profiles.auth.models import AuthProfileStore

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0
LOCK_POLL_INTERVAL_SECONDS = 0.05

StoreMutation = Callable[[AuthProfileStore], Optional[AuthProfileStore]]


class StoreLockTimeout(RuntimeError):
    pass


class StoreFormatError(ValueError):
    pass


def read_store_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    if not text.strip():
        return None
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise StoreFormatError(f"invalid auth profile store {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StoreFormatError(f"invalid auth profile store {path}: json_not_object")
    return data


def write_store_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
            handle.write("\n")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class AuthProfileStoreFile:
    """JSON-file persistence for an auth profile store.

    Every mutation goes through :meth:`with_lock`, which holds an exclusive
    ``flock`` on a sibling lock file while it reloads, mutates and saves.
    """

    def __init__(self, path: str | Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self._path = Path(os.path.expanduser(str(path)))
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._lock_timeout = max(0.0, float(lock_timeout))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def load(self) -> AuthProfileStore:
        raw = read_store_json(self._path)
        if raw is None:
            return AuthProfileStore()
        return AuthProfileStore.from_dict(raw)

    def save(self, store: AuthProfileStore) -> None:
        write_store_json(self._path, store.to_dict())

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock_path.open("a+") as handle:
            deadline = time.monotonic() + self._lock_timeout
            while True:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise StoreLockTimeout(
                            f"timed out after {self._lock_timeout:.1f}s waiting for {self._lock_path}"
                        ) from None
                    time.sleep(LOCK_POLL_INTERVAL_SECONDS)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def with_lock(self, mutate: StoreMutation) -> Optional[AuthProfileStore]:
        """Reload under the lock, apply ``mutate`` and persist its result.

        Returns the persisted store, or ``None`` when ``mutate`` asked for no
        write.
        """
        with self.locked():
            store = self.load()
            updated = mutate(store)
            if updated is None:
                return None
            self.save(updated)
            return updated
