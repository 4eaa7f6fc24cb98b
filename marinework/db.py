from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from marinework.settings import APP_ENV, DATA_DIR

ALLOW_SQLITE = os.environ.get("ALLOW_SQLITE", "").strip().lower() in {"1", "true", "yes"}

USE_POSTGRES = bool(os.environ.get("DB_HOST"))

SQLITE_PATH = DATA_DIR / "sessions.db"


class PooledSession:
    """Pooled psycopg2 connection taking sqlite-style ``?`` placeholders."""

    def __init__(self, raw, cursor_factory=None) -> None:
        self._raw = raw
        self._cursor_factory = cursor_factory

    def execute(self, sql: str, params: tuple = ()):
        cursor = self._raw.cursor(cursor_factory=self._cursor_factory)
        cursor.execute(sql.replace("?", "%s"), params)
        return cursor


if USE_POSTGRES:
    from psycopg2 import pool
    from psycopg2.extras import RealDictCursor

    _required = ["DB_HOST", "DB_USER", "DB_PASSWORD"]
    _missing = [name for name in _required if not os.environ.get(name)]
    if _missing:
        missing = ', '.join(sorted(_missing))
        raise RuntimeError(f'PostgreSQL backend enabled but missing environment variables: {missing}')

    _POOL = pool.SimpleConnectionPool(
        1,
        int(os.environ.get("DB_POOL_MAX", "10")),
        host=os.environ["DB_HOST"],
        dbname=os.environ.get("DB_NAME", "marinework"),
        user=os.environ["DB_USER"],
        password=os.environ["DB_PASSWORD"],
        port=int(os.environ.get("DB_PORT", "5432")),
        sslmode=os.environ.get("DB_SSLMODE", "require"),
    )

    @contextmanager
    def get_postgres_conn() -> Iterator[PooledSession]:
        raw = _POOL.getconn()
        try:
            yield PooledSession(raw, cursor_factory=RealDictCursor)
            raw.commit()
        except Exception:
            raw.rollback()
            raise
        finally:
            _POOL.putconn(raw)
else:
    @contextmanager
    def get_postgres_conn():  # type: ignore
        raise RuntimeError("PostgreSQL connection requested but DB_HOST is not set")


def require_database(path: Optional[str] = None) -> None:
    """Refuse the SQLite fallback in production unless explicitly allowed."""
    if USE_POSTGRES or path is not None:
        return
    if APP_ENV in {"production", "staging"} and not ALLOW_SQLITE:
        raise RuntimeError(
            "DB_HOST is required when APP_ENV is set to production or staging. "
            "Set DB_HOST/DB_* secrets or explicitly opt into SQLite with ALLOW_SQLITE=1 for temporary use."
        )


@contextmanager
def sqlite_conn(path: Optional[str] = None):
    target = path or str(SQLITE_PATH)
    if target != ":memory:":
        DATA_DIR.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(target)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
