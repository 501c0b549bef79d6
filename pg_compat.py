"""PostgreSQL compatibility layer — wraps psycopg2 to match the sqlite3 API.

The stores are written against sqlite3. When DATABASE_URL starts with
postgresql://, this module provides a connection wrapper that translates:
  - ? placeholders → %s
  - INSERT statements → INSERT ... RETURNING id (for lastrowid)
  - executescript() → split and execute, with SERIAL primary keys
  - Row objects → dict-like PgRow
"""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)


class PgRow:
    """Dict-like row that mimics sqlite3.Row."""

    def __init__(self, columns: list[str], values: tuple):
        self._data = dict(zip(columns, values))

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return list(self._data.values())[key]
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __repr__(self) -> str:
        return f"PgRow({self._data})"


_OR_IGNORE_RE = re.compile(r"INSERT\s+OR\s+IGNORE\s+INTO", re.IGNORECASE)


def _translate_sql(sql: str) -> str:
    """Translate SQLite parameter style and INSERT OR IGNORE to PostgreSQL."""
    translated = sql.replace("?", "%s")
    if _OR_IGNORE_RE.search(translated):
        translated = _OR_IGNORE_RE.sub("INSERT INTO", translated)
        translated = translated.rstrip().rstrip(";") + " ON CONFLICT DO NOTHING"
    return translated


def _translate_schema(sql: str) -> str:
    """Translate SQLite schema DDL to PostgreSQL DDL."""
    translated = re.sub(
        r"(\w+)\s+INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        r"\1 SERIAL PRIMARY KEY",
        sql,
        flags=re.IGNORECASE,
    )
    translated = re.sub(r"PRAGMA\s+\w+\s*=\s*\w+\s*;?", "", translated, flags=re.IGNORECASE)
    # SQL comments would otherwise end up glued to the next statement
    translated = re.sub(r"--[^\n]*", "", translated)
    return translated


class PgCursorWrapper:
    """Wraps a psycopg2 cursor to match the sqlite3.Cursor interface."""

    def __init__(self, cursor):
        self._cursor = cursor
        self._last_id: int | None = None

    @property
    def lastrowid(self) -> int | None:
        return self._last_id

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def execute(self, sql: str, params: tuple = ()) -> PgCursorWrapper:
        translated = _translate_sql(sql)
        self._last_id = None

        if translated.lstrip().upper().startswith("INSERT") and "RETURNING" not in translated.upper():
            self._cursor.execute(translated.rstrip().rstrip(";") + " RETURNING id", params)
            row = self._cursor.fetchone()
            if row:
                self._last_id = row[0]
            return self

        self._cursor.execute(translated, params)
        return self

    def _columns(self) -> list[str]:
        return [desc[0] for desc in self._cursor.description or ()]

    def fetchone(self) -> PgRow | None:
        row = self._cursor.fetchone()
        if row is None:
            return None
        return PgRow(self._columns(), row)

    def fetchall(self) -> list[PgRow]:
        if not self._cursor.description:
            return []
        columns = self._columns()
        return [PgRow(columns, row) for row in self._cursor.fetchall()]

    def close(self):
        self._cursor.close()


class PgConnectionWrapper:
    """Wraps a psycopg2 connection to match the sqlite3.Connection interface."""

    def __init__(self, conn):
        self._conn = conn
        self._conn.autocommit = False

    def execute(self, sql: str, params: tuple = ()) -> PgCursorWrapper:
        cursor = PgCursorWrapper(self._conn.cursor())
        try:
            cursor.execute(sql, params)
        except Exception:
            # a failed statement poisons the transaction until rollback
            self._conn.rollback()
            raise
        return cursor

    def executescript(self, sql: str) -> None:
        """Execute multiple SQL statements, skipping objects that already exist."""
        statements = [s.strip() for s in _translate_schema(sql).split(";") if s.strip()]
        cursor = self._conn.cursor()
        for stmt in statements:
            try:
                cursor.execute(stmt)
                self._conn.commit()
            except Exception as e:
                if "already exists" in str(e).lower():
                    self._conn.rollback()
                    logger.debug("Skipping schema statement: %s", e)
                else:
                    raise
        cursor.close()

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def connect_pg(database_url: str) -> PgConnectionWrapper:
    """Create a PostgreSQL connection with a sqlite3-compatible interface."""
    try:
        import psycopg2
    except ImportError:
        raise ImportError(
            "psycopg2 is required for PostgreSQL support. "
            "Install it with: pip install 'prepmate-scheduled-tests[postgres]'"
        )

    return PgConnectionWrapper(psycopg2.connect(database_url))


def is_postgres_url(url: str) -> bool:
    """Check if a database URL is a PostgreSQL URL."""
    return url.startswith("postgresql://") or url.startswith("postgres://")
