from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from auth_profiles import __version__
from auth_profiles.auth.backoff import FAILURE_REASONS
from auth_profiles.auth.failures import clear_auth_profile_cooldown, mark_auth_profile_failure
from auth_profiles.auth.models import AuthProfileStore
from auth_profiles.auth.usage import clear_expired_cooldowns, now_ms, summarize_snapshot, usage_snapshot
from auth_profiles.config.settings import Settings, build_settings
from auth_profiles.observability.event_log import EventLogger, tail_lines


def _add_store_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--store", default=None, help="path to the auth profile store json")
    parser.add_argument("--lock-timeout", type=float, default=None, help="seconds to wait for the store lock")


def _settings_from_args(args: argparse.Namespace) -> Settings:
    return build_settings(
        store_path=getattr(args, "store", None),
        lock_timeout=getattr(args, "lock_timeout", None),
    )


def _format_ms(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "-"
    try:
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return str(value)


def _format_counts(counts: Dict[str, Any]) -> str:
    if not counts:
        return "-"
    return ", ".join(f"{key}={counts[key]}" for key in sorted(counts))


def handle_status(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    store = settings.store().load()
    rows = usage_snapshot(store)
    summary = summarize_snapshot(rows)
    if bool(args.json):
        payload = {"store": settings.store_path, "summary": summary, "profiles": rows}
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    table = Table(title="auth profiles | usage state")
    table.add_column("Profile")
    table.add_column("Status")
    table.add_column("Cooldown")
    table.add_column("Disabled")
    table.add_column("Reason")
    table.add_column("Errors")
    table.add_column("Failures")
    table.add_column("Last failure (UTC)")
    for row in rows:
        table.add_row(
            str(row.get("profile")),
            str(row.get("status") or "OK"),
            str(row.get("cooldown_seconds") or "-"),
            str(row.get("disabled_seconds") or "-"),
            str(row.get("disabled_reason") or "-"),
            str(row.get("error_count") or 0),
            _format_counts(row.get("failure_counts") or {}),
            _format_ms(row.get("last_failure_at")),
        )
    Console().print(table)
    print(
        "Summary: "
        f"ok={summary['ok']} cooldown={summary['cooldown']} "
        f"disabled={summary['disabled']} total={summary['total']}"
    )
    return 0


def handle_sweep(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    persistence = settings.store()
    now = now_ms()

    def mutate(store: AuthProfileStore) -> Optional[AuthProfileStore]:
        if clear_expired_cooldowns(store, now):
            return store
        return None

    updated = persistence.with_lock(mutate)
    if updated is None:
        print("No expired cooldowns")
        return 0
    EventLogger(settings.store_dir).write(level="info", event="cooldowns_swept", store=settings.store_path)
    print("Expired cooldowns cleared")
    return 0


def handle_clear(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    persistence = settings.store()
    store = persistence.load()
    if store.stats_for(args.profile_id) is None:
        print(f"No usage stats for {args.profile_id}")
        return 0
    clear_auth_profile_cooldown(
        store,
        args.profile_id,
        persistence=persistence,
        events=EventLogger(settings.store_dir),
    )
    print(f"Cleared cooldown for {args.profile_id}")
    return 0


def handle_fail(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    persistence = settings.store()
    store = persistence.load()
    mark_auth_profile_failure(
        store,
        args.profile_id,
        args.reason,
        persistence=persistence,
        policy=settings.backoff_policy(),
        events=EventLogger(settings.store_dir),
    )
    rows: List[Dict[str, Any]] = [row for row in usage_snapshot(store) if row.get("profile") == args.profile_id]
    status = rows[0].get("status") if rows else "UNKNOWN"
    print(f"Recorded {args.reason} failure for {args.profile_id}: {status}")
    return 0


def handle_events(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    lines = tail_lines(EventLogger(settings.store_dir).path, limit=max(1, int(args.lines)))
    if not lines:
        print("No events found")
        return 0
    for line in lines:
        print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="auth profile cooldown tooling",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    status_parser = sub.add_parser("status", help="show cooldown/disable state per profile")
    _add_store_options(status_parser)
    status_parser.add_argument("--json", action="store_true", help="machine-readable output")
    status_parser.set_defaults(handler=handle_status)

    sweep_parser = sub.add_parser("sweep", help="clear expired cooldown and disable windows")
    _add_store_options(sweep_parser)
    sweep_parser.set_defaults(handler=handle_sweep)

    clear_parser = sub.add_parser("clear", help="reset the error state of one profile")
    _add_store_options(clear_parser)
    clear_parser.add_argument("profile_id", help="profile id, e.g. anthropic:default")
    clear_parser.set_defaults(handler=handle_clear)

    fail_parser = sub.add_parser("fail", help="record a failure for one profile")
    _add_store_options(fail_parser)
    fail_parser.add_argument("profile_id", help="profile id, e.g. anthropic:default")
    fail_parser.add_argument(
        "--reason",
        default="unknown",
        help=f"failure reason ({', '.join(FAILURE_REASONS)})",
    )
    fail_parser.set_defaults(handler=handle_fail)

    events_parser = sub.add_parser("events", help="tail the profile event log")
    _add_store_options(events_parser)
    events_parser.add_argument("--lines", type=int, default=120)
    events_parser.set_defaults(handler=handle_events)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2
    try:
        return int(handler(args))
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
