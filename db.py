"""
Database connection utilities for the vineyard irrigation engine.
Supports both SQLite (local dev, tests) and PostgreSQL (production).

When DATABASE_URL is set, uses PostgreSQL with connection pooling.
Otherwise, falls back to SQLite with WAL mode under DATA_DIR.
"""

import os
import sqlite3
import logging
from contextlib import contextmanager

logger = logging.getLogger(__name__)

VINEYARD_DB_NAME = 'vineyard.db'

# Detect database backend from DATABASE_URL
_DATABASE_URL = os.environ.get('DATABASE_URL')
_pg_pool = None


def default_db_path():
    """SQLite file location, resolved at call time so DATA_DIR can change."""
    data_dir = os.environ.get('DATA_DIR', 'data' if os.path.exists('data') else '.')
    return os.path.join(data_dir, VINEYARD_DB_NAME)


def _get_pg_pool():
    """Lazily initialize the PostgreSQL connection pool."""
    global _pg_pool
    if _pg_pool is None and _DATABASE_URL:
        from psycopg2 import pool
        try:
            _pg_pool = pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=10,
                dsn=_DATABASE_URL
            )
            logger.info("PostgreSQL connection pool initialized (1-10 connections)")
        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL pool: {e}")
            raise
    return _pg_pool


def is_postgres():
    """Check if we're using PostgreSQL."""
    return bool(_DATABASE_URL)


# ---------------------------------------------------------------------------
# SQL Conversion: SQLite → PostgreSQL
# ---------------------------------------------------------------------------

def _convert_sqlite_to_pg(sql):
    """Convert SQLite SQL syntax to PostgreSQL.

    Handles:
    - ? → %s parameter placeholders
    - INTEGER PRIMARY KEY AUTOINCREMENT → SERIAL PRIMARY KEY
    - INSERT ... VALUES ... → INSERT ... RETURNING id (for lastrowid support)

    ON CONFLICT ... DO NOTHING upserts and partial indexes share the same
    syntax on both backends and pass through unchanged.
    """
    sql = sql.replace('?', '%s')
    sql = sql.replace('INTEGER PRIMARY KEY AUTOINCREMENT', 'SERIAL PRIMARY KEY')

    stripped = sql.strip()
    upper = stripped.upper()
    if (upper.startswith('INSERT') and 'VALUES' in upper
            and 'RETURNING' not in upper):
        sql = stripped.rstrip(';') + ' RETURNING id'

    return sql


def get_integrity_error():
    """Return the appropriate IntegrityError class for the current backend."""
    if is_postgres():
        import psycopg2
        return psycopg2.IntegrityError
    return sqlite3.IntegrityError


# ---------------------------------------------------------------------------
# PostgreSQL Row/Cursor/Connection Wrappers
# ---------------------------------------------------------------------------

class _PgRowWrapper:
    """Make psycopg2 rows behave like sqlite3.Row (dict-like access)."""

    def __init__(self, cursor, row):
        self._data = {}
        if cursor.description and row:
            for i, col in enumerate(cursor.description):
                self._data[col.name] = row[i]

    def __getitem__(self, key):
        if isinstance(key, int):
            return list(self._data.values())[key]
        return self._data[key]

    def __contains__(self, key):
        return key in self._data

    def get(self, key, default=None):
        return self._data.get(key, default)

    def keys(self):
        return self._data.keys()

    def values(self):
        return self._data.values()

    def items(self):
        return self._data.items()


class _PgCursorWrapper:
    """Wrap psycopg2 cursor to return dict-like rows."""

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, sql, params=None):
        self._cursor.execute(_convert_sqlite_to_pg(sql), params)
        return self

    def fetchone(self):
        row = self._cursor.fetchone()
        if row is None:
            return None
        return _PgRowWrapper(self._cursor, row)

    def fetchall(self):
        rows = self._cursor.fetchall()
        return [_PgRowWrapper(self._cursor, r) for r in rows]

    @property
    def lastrowid(self):
        # ON CONFLICT DO NOTHING returns no row when the insert was skipped
        if not self._cursor.description:
            return None
        row = self._cursor.fetchone()
        return row[0] if row else None

    @property
    def rowcount(self):
        return self._cursor.rowcount


class _PgConnWrapper:
    """Wrap psycopg2 connection to provide sqlite3-compatible interface."""

    def __init__(self, conn):
        self._conn = conn

    def execute(self, sql, params=None):
        cursor = self._conn.cursor()
        converted = _convert_sqlite_to_pg(sql)
        # Skip SQLite PRAGMAs on PostgreSQL
        if converted.strip().upper().startswith('PRAGMA'):
            return _PgCursorWrapper(cursor)
        cursor.execute(converted, params)
        return _PgCursorWrapper(cursor)

    def cursor(self):
        return _PgCursorWrapper(self._conn.cursor())

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        # Return connection to pool instead of closing
        pool = _get_pg_pool()
        if pool:
            pool.putconn(self._conn)


# ---------------------------------------------------------------------------
# Connection Management
# ---------------------------------------------------------------------------

@contextmanager
def get_db(db_path=None):
    """
    Context manager for database connections.
    Uses PostgreSQL when DATABASE_URL is set, otherwise SQLite with WAL.

    Usage:
        with get_db() as conn:
            conn.execute('SELECT ...')

    Args:
        db_path: Path to SQLite database. Ignored when using PostgreSQL.
                 Defaults to DATA_DIR/vineyard.db.
    """
    if is_postgres():
        pool = _get_pg_pool()
        conn = _PgConnWrapper(pool.getconn())
    else:
        conn = sqlite3.connect(db_path or default_db_path())
        conn.execute('PRAGMA journal_mode=WAL')
        conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
