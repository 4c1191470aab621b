"""PostgreSQL access for devflow.

One autocommit psycopg3 connection per process, shared by the workflow
threads, the chain store and the CLI. The Repository builds its typed
queries on top of the three statement helpers here.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Literal, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from devflow.core.config import DatabaseConfig
from devflow.core.exceptions import ConnectionError, DatabaseError, SchemaInitError

logger = logging.getLogger("devflow.db")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# A connection unused for longer than this is pinged before the next statement
IDLE_PING_SECONDS = 300.0


class DatabaseEngine:
    """Serialized access to a single PostgreSQL connection.

    Statements from different workflow threads never interleave on the wire.
    A run can sit in the approval wait for a day, so before reusing a
    connection that has been idle past `idle_ping_seconds` the engine sends
    `SELECT 1` and reconnects if the server has dropped it. The statement
    itself is only ever sent once.

    Injected dependencies:
        config: Connection settings.
        connect: psycopg.connect or a stand-in with the same signature.
        clock: Monotonic clock used for idle tracking.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        connect: Callable[..., psycopg.Connection] = psycopg.connect,
        clock: Callable[[], float] = time.monotonic,
        idle_ping_seconds: float = IDLE_PING_SECONDS,
    ):
        self.config = config
        self.idle_ping_seconds = idle_ping_seconds
        self._connect = connect
        self._clock = clock
        self._conn: Optional[psycopg.Connection] = None
        self._last_used = 0.0
        self._lock = threading.RLock()

    def _open(self) -> psycopg.Connection:
        try:
            conn = self._connect(self.config.connection_string, row_factory=dict_row, autocommit=True)
        except psycopg.OperationalError as e:
            raise ConnectionError(f"Failed to connect to database: {e}") from e
        logger.info("Connected to PostgreSQL at %s:%s/%s", self.config.host, self.config.port, self.config.dbname)
        self._conn = conn
        self._last_used = self._clock()
        return conn

    def _connection(self) -> psycopg.Connection:
        conn = self._conn
        if conn is not None and not conn.closed and self._clock() - self._last_used > self.idle_ping_seconds:
            try:
                conn.execute("SELECT 1")
            except psycopg.OperationalError as e:
                logger.warning("Idle database connection dropped (%s); reconnecting", e)
                conn.close()
        if conn is None or conn.closed:
            return self._open()
        return conn

    def _run(self, query: str, params: Optional[Sequence[Any]], fetch: Literal["none", "one", "all"]) -> Any:
        with self._lock:
            conn = self._connection()
            try:
                cur = conn.execute(query, params)
                if fetch == "one":
                    return cur.fetchone()
                if fetch == "all":
                    return cur.fetchall()
                return None
            except psycopg.Error as e:
                raise DatabaseError(f"Query failed: {e}") from e
            finally:
                self._last_used = self._clock()

    def initialize_schema(self) -> None:
        """Apply schema.sql. Every statement in it is idempotent."""
        if not SCHEMA_PATH.exists():
            raise SchemaInitError(f"Schema file not found: {SCHEMA_PATH}")
        try:
            self._run(SCHEMA_PATH.read_text(), None, "none")
        except DatabaseError as e:
            raise SchemaInitError(f"Failed to initialize schema: {e}") from e
        logger.info("Database schema initialized")

    def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> None:
        self._run(query, params, "none")

    def fetch_one(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[dict[str, Any]]:
        return self._run(query, params, "one")

    def fetch_all(self, query: str, params: Optional[Sequence[Any]] = None) -> list[dict[str, Any]]:
        return self._run(query, params, "all")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None and not self._conn.closed:
                self._conn.close()
                logger.info("Database connection closed")

    def __del__(self):
        self.close()
