from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone

from marinework.session_store import SqlSessionStore


def _stamp(value: object) -> str:
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    except (TypeError, ValueError):
        return "-"


def print_session(item: dict[str, object]) -> None:
    print(
        f"{item['session_key']:<34} {_stamp(item['updated_at']):<20} "
        f"{item['site_count']:>3} {item.get('project_name') or '-'}"
    )


def cmd_list(ns: argparse.Namespace) -> None:
    store = SqlSessionStore(sqlite_path=ns.sqlite_path)
    sessions = store.list_sessions(limit=ns.limit)
    if not sessions:
        print("(no sessions)")
        return
    for item in sessions:
        print_session(item)


def cmd_show(ns: argparse.Namespace) -> None:
    store = SqlSessionStore(sqlite_path=ns.sqlite_path)
    document = store.get(ns.session_key)
    if document is None:
        raise SystemExit(f"Session '{ns.session_key}' not found")
    print(json.dumps(document, indent=2, ensure_ascii=False))


def cmd_clear(ns: argparse.Namespace) -> None:
    store = SqlSessionStore(sqlite_path=ns.sqlite_path)
    store.clear(ns.session_key)
    print(f"Cleared session '{ns.session_key}'")


def cmd_purge(ns: argparse.Namespace) -> None:
    store = SqlSessionStore(sqlite_path=ns.sqlite_path)
    removed = store.purge_expired()
    print(f"Purged {removed} expired session(s)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect stored exemption session documents")
    parser.add_argument("--sqlite-path", dest="sqlite_path", help="SQLite file to use instead of the configured database")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List recent sessions")
    p_list.add_argument("--limit", type=int, default=50)
    p_list.set_defaults(func=cmd_list)

    p_show = sub.add_parser("show", help="Print one session document as JSON")
    p_show.add_argument("session_key")
    p_show.set_defaults(func=cmd_show)

    p_clear = sub.add_parser("clear", help="Delete one session document")
    p_clear.add_argument("session_key")
    p_clear.set_defaults(func=cmd_clear)

    p_purge = sub.add_parser("purge", help="Delete documents older than SESSION_TTL_SECONDS")
    p_purge.set_defaults(func=cmd_purge)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
