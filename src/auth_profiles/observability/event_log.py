"""JSONL audit trail of auth profile state changes.

One record per line next to the store file, for example::

    {"ts": "...", "level": "WARNING", "event": "profile_failure",
     "message": "...", "profile": "openai:default", "provider": "openai",
     "reason": "rate_limit", "backoff_ms": 60000}
"""

from __future__ import annotations

import json
import math
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from auth_profiles.auth.models import provider_of
from auth_profiles.config.settings import resolve_path

EVENTS_FILE_NAME = "auth_profiles.events.jsonl"


def _to_jsonable(value: Any) -> Any:
    if value is None:
        return None
    # Malformed deadlines (NaN/Infinity) are logged as text, not invalid JSON.
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(key): _to_jsonable(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_jsonable(item) for item in value]
    return str(value)


class EventLogger:
    """Appends profile usage events to ``auth_profiles.events.jsonl``."""

    def __init__(self, store_dir: str | Path) -> None:
        self._path = resolve_path(str(store_dir)) / EVENTS_FILE_NAME
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def write(self, *, level: str, event: str, message: str = "", **fields: Any) -> None:
        record: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": str(level).upper(),
            "event": str(event),
            "message": str(message),
        }
        for key, value in fields.items():
            record[str(key)] = _to_jsonable(value)
        raw = json.dumps(record, ensure_ascii=False, allow_nan=False)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(raw + "\n")

    def profile_event(self, event: str, profile_id: str, *, level: str = "info", message: str = "", **fields: Any) -> None:
        """Write ``event`` tagged with the profile id and its provider prefix."""
        self.write(
            level=level,
            event=event,
            message=message,
            profile=profile_id,
            provider=provider_of(profile_id),
            **fields,
        )


def tail_lines(path: Path, limit: int = 120) -> list[str]:
    if limit <= 0:
        limit = 120
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except (FileNotFoundError, OSError):
        return []
    return lines[-limit:]
