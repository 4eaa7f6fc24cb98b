"""Key/value stores holding one JSON document per browser session.

Both stores expose ``get(key)``, ``set(key, document)`` and ``clear(key)``.
Writes are last-write-wins; two tabs sharing a session can overwrite each
other's changes and nothing here serialises them.
"""

from __future__ import annotations

import copy
import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from marinework import db
from marinework.settings import SESSION_TTL_SECONDS

log = logging.getLogger("uvicorn.error")


class MemorySessionStore:
    """In-process store, used for tests and single-worker development."""

    def __init__(self, ttl_seconds: Optional[int] = SESSION_TTL_SECONDS) -> None:
        self._ttl = ttl_seconds
        self._items: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._items.get(key)
        if entry is None:
            return None
        stored_at, document = entry
        if self._ttl and time.time() - stored_at > self._ttl:
            self._items.pop(key, None)
            return None
        return copy.deepcopy(document)

    def set(self, key: str, document: Any) -> None:
        self._items[key] = (time.time(), copy.deepcopy(document))

    def clear(self, key: str) -> None:
        self._items.pop(key, None)

    def purge_expired(self) -> int:
        if not self._ttl:
            return 0
        cutoff = time.time() - self._ttl
        stale = [key for key, (stored_at, _) in self._items.items() if stored_at < cutoff]
        for key in stale:
            self._items.pop(key, None)
        return len(stale)

    def keys(self) -> List[str]:
        return list(self._items)


class SqlSessionStore:
    """Session documents in SQLite, or PostgreSQL when ``DB_HOST`` is set."""

    def __init__(self, ttl_seconds: Optional[int] = SESSION_TTL_SECONDS, sqlite_path: Optional[str] = None) -> None:
        db.require_database(sqlite_path)
        self._ttl = ttl_seconds
        self._sqlite_path = sqlite_path
        self.init_db()

    def _get_conn(self):
        if db.USE_POSTGRES:
            return db.get_postgres_conn()
        return db.sqlite_conn(self._sqlite_path)

    def init_db(self) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS session_documents (
                    session_key TEXT PRIMARY KEY,
                    updated_at DOUBLE PRECISION NOT NULL,
                    document_json TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_session_documents_updated_at ON session_documents(updated_at)"
            )

    def get(self, key: str) -> Optional[Any]:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT updated_at, document_json FROM session_documents WHERE session_key = ?",
                (key,),
            ).fetchone()
        if not row:
            return None
        if self._ttl and time.time() - float(row["updated_at"]) > self._ttl:
            self.clear(key)
            return None
        try:
            return json.loads(row["document_json"])
        except json.JSONDecodeError:
            log.warning("Discarding unreadable session document session=%s", key)
            self.clear(key)
            return None

    def set(self, key: str, document: Any) -> None:
        payload = json.dumps(document, ensure_ascii=False)
        with self._get_conn() as conn:
            conn.execute(
                """
                INSERT INTO session_documents (session_key, updated_at, document_json)
                VALUES (?, ?, ?)
                ON CONFLICT (session_key) DO UPDATE SET
                    updated_at = excluded.updated_at,
                    document_json = excluded.document_json
                """,
                (key, time.time(), payload),
            )

    def clear(self, key: str) -> None:
        with self._get_conn() as conn:
            conn.execute("DELETE FROM session_documents WHERE session_key = ?", (key,))

    def purge_expired(self) -> int:
        if not self._ttl:
            return 0
        cutoff = time.time() - self._ttl
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM session_documents WHERE updated_at < ?", (cutoff,))
            removed = cursor.rowcount
        return int(removed or 0)

    def list_sessions(self, limit: int = 100) -> List[Dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT session_key, updated_at, document_json FROM session_documents ORDER BY updated_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        items: List[Dict[str, Any]] = []
        for row in rows:
            data = dict(row)
            payload = data.pop("document_json", None)
            try:
                document = json.loads(payload) if payload else {}
            except json.JSONDecodeError:
                document = {}
            if not isinstance(document, dict):
                document = {}
            data["project_name"] = document.get("projectName")
            data["site_count"] = len(document.get("siteDetails") or [])
            items.append(data)
        return items


def build_session_store(kind: str):
    if kind == "memory":
        return MemorySessionStore()
    if kind == "sql":
        return SqlSessionStore()
    raise ValueError(f"Unknown SESSION_STORE '{kind}'; expected 'memory' or 'sql'")
