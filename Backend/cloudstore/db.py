import sqlite3
import logging
import re
from contextlib import contextmanager
from typing import Any, List, Optional, Tuple

from cloudstore.core.config import settings
from cloudstore.core.exceptions import DatabaseUnavailableError

logger = logging.getLogger(__name__)

# ─── SYNC PostgreSQL Wrapper ─────────────────────────────────────────────────
class PostgresCursor:
    """Wraps psycopg2 cursor so callers can keep SQLite-style '?' placeholders"""
    def __init__(self, cursor):
        self.cursor = cursor

    def execute(self, sql: str, params: Tuple = ()) -> Any:
        def replace_placeholder(match):
            if match.group(1): return match.group(1)
            return "%s"
        pattern = r"(\'[^\']*\'|\"[^\"]*\")|\?"
        pg_sql = re.sub(pattern, replace_placeholder, sql)
        return self.cursor.execute(pg_sql, params)

    def fetchone(self) -> Optional[Any]:
        return self.cursor.fetchone()

    def fetchall(self) -> List[Any]:
        return self.cursor.fetchall()

    def close(self):
        self.cursor.close()

    def __getattr__(self, name):
        return getattr(self.cursor, name)

class PostgresConnection:
    """Wraps a pooled psycopg2 connection; close() returns it to the pool"""
    def __init__(self, conn, pool=None):
        self.conn = conn
        self.pool = pool

    def cursor(self):
        return PostgresCursor(self.conn.cursor())

    def execute(self, sql: str, params: Tuple = ()) -> PostgresCursor:
        cursor = self.cursor()
        cursor.execute(sql, params)
        return cursor

    def commit(self):
        self.conn.commit()

    def rollback(self):
        self.conn.rollback()

    def close(self):
        if self.pool:
            self.pool.putconn(self.conn)
        else:
            self.conn.close()

# ─── Schema ──────────────────────────────────────────────────────────────────
# Upload dates are stored as ISO-8601 text in both backends.
# ai_tags holds a JSON array; '[]' means not yet tagged.
FILES_TABLE = """
CREATE TABLE IF NOT EXISTS files (
    id TEXT PRIMARY KEY,
    file_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    mime_type TEXT,
    size INTEGER DEFAULT 0,
    upload_date TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    ai_tags TEXT NOT NULL DEFAULT '[]'
)
"""

def _create_schema(cursor):
    cursor.execute(FILES_TABLE)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_files_owner_id ON files(owner_id)")

class Database:
    """
    Result Store connection handle.

    PostgreSQL when a DSN is given, SQLite otherwise. The owner calls
    connect() before use and close() when done; nothing is shared process-wide.
    """

    def __init__(self, database_url: Optional[str] = None, sqlite_path: Optional[str] = None):
        self.database_url = settings.DATABASE_URL if database_url is None else database_url
        self.sqlite_path = sqlite_path or settings.SQLITE_PATH
        self._pg_pool = None
        self._connected = False

    @property
    def backend(self) -> str:
        return "postgres" if self.database_url else "sqlite"

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Open the pool (Postgres) and make sure the schema exists."""
        try:
            if self.database_url:
                self._init_postgres()
            else:
                self._init_sqlite()
        except Exception as e:
            logger.error(f"Result store init failed ({self.backend}): {e}")
            raise DatabaseUnavailableError(str(e)) from e
        self._connected = True
        logger.info(f"Result store connected ({self.backend}).")

    def close(self) -> None:
        if self._pg_pool:
            self._pg_pool.closeall()
            self._pg_pool = None
            logger.info("PostgreSQL pool closed.")
        self._connected = False

    @contextmanager
    def connection(self):
        if not self._connected:
            raise DatabaseUnavailableError("Database.connect() has not been called")
        if self._pg_pool:
            pg_conn = PostgresConnection(self._pg_pool.getconn(), self._pg_pool)
            try: yield pg_conn
            finally: pg_conn.close()
        else:
            conn = sqlite3.connect(self.sqlite_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            try: yield conn
            finally: conn.close()

    # ─── Init Details ────────────────────────────────────────────────────
    def _init_sqlite(self):
        conn = sqlite3.connect(self.sqlite_path)
        try:
            cursor = conn.cursor()
            _create_schema(cursor)
            conn.commit()
        finally:
            conn.close()

    def _init_postgres(self):
        import psycopg2
        from psycopg2 import pool
        from psycopg2.extras import RealDictCursor

        if not self._pg_pool:
            self._pg_pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1, maxconn=20,
                dsn=self.database_url,
                cursor_factory=RealDictCursor
            )

        conn = self._pg_pool.getconn()
        try:
            cursor = conn.cursor()
            _create_schema(cursor)
            conn.commit()
        finally:
            self._pg_pool.putconn(conn)
