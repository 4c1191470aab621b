"""Tests for devflow/db/engine.py.

Connection handling is exercised with stand-in connections; the query
tests at the bottom need a real PostgreSQL.
"""

import psycopg
import pytest
from psycopg.rows import dict_row

from devflow.core.config import DatabaseConfig
from devflow.core.exceptions import ConnectionError, DatabaseError
from devflow.db.engine import SCHEMA_PATH, DatabaseEngine
from tests.conftest import requires_postgres


class FakeCursor:
    def __init__(self, rows):
        self.rows = rows

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class FakeConnection:
    """Connection that records statements, or fails like a dropped socket."""

    def __init__(self, alive: bool = True):
        self.alive = alive
        self.closed = False
        self.statements: list[str] = []

    def execute(self, query, params=None):
        if not self.alive:
            self.closed = True
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        self.statements.append(query)
        return FakeCursor([{"n": 1}])

    def close(self):
        self.closed = True


class FakeConnector:
    def __init__(self):
        self.connections: list[FakeConnection] = []

    def __call__(self, conninfo, **kwargs):
        assert kwargs == {"row_factory": dict_row, "autocommit": True}
        conn = FakeConnection()
        self.connections.append(conn)
        return conn


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _engine(connector, clock) -> DatabaseEngine:
    return DatabaseEngine(DatabaseConfig(), connect=connector, clock=clock, idle_ping_seconds=60)


def test_schema_file_ships_with_package():
    sql = SCHEMA_PATH.read_text()
    assert "CREATE TABLE IF NOT EXISTS fix_task_chains" in sql
    assert "CREATE TABLE IF NOT EXISTS workflow_events" in sql


def test_unreachable_database():
    engine = DatabaseEngine(DatabaseConfig(host="127.0.0.1", port=1, dbname="nope"))
    with pytest.raises(ConnectionError):
        engine.fetch_one("SELECT 1")


class TestConnectionHandling:
    def test_connects_lazily_once(self):
        connector, clock = FakeConnector(), FakeClock()
        engine = _engine(connector, clock)
        assert connector.connections == []

        engine.execute("SELECT 1")
        assert engine.fetch_one("SELECT 1 AS n") == {"n": 1}
        assert engine.fetch_all("SELECT 1 AS n") == [{"n": 1}]

        assert len(connector.connections) == 1
        assert len(connector.connections[0].statements) == 3

    def test_no_ping_while_busy(self):
        connector, clock = FakeConnector(), FakeClock()
        engine = _engine(connector, clock)
        engine.execute("SELECT 1")
        clock.now = 59
        engine.execute("SELECT 2")

        assert connector.connections[0].statements == ["SELECT 1", "SELECT 2"]

    def test_idle_connection_pinged_and_replaced(self):
        connector, clock = FakeConnector(), FakeClock()
        engine = _engine(connector, clock)
        engine.execute("SELECT 1")

        connector.connections[0].alive = False
        clock.now = 3600
        engine.execute("UPDATE fix_task_chains SET depth = depth + 1")

        assert len(connector.connections) == 2
        assert connector.connections[0].closed
        assert connector.connections[1].statements == ["UPDATE fix_task_chains SET depth = depth + 1"]

    def test_idle_live_connection_kept(self):
        connector, clock = FakeConnector(), FakeClock()
        engine = _engine(connector, clock)
        engine.execute("SELECT 1")
        clock.now = 3600
        engine.execute("SELECT 2")

        assert len(connector.connections) == 1
        assert connector.connections[0].statements == ["SELECT 1", "SELECT 1", "SELECT 2"]

    def test_statement_on_dropped_connection_not_resent(self):
        connector, clock = FakeConnector(), FakeClock()
        engine = _engine(connector, clock)
        engine.execute("SELECT 1")
        connector.connections[0].alive = False

        with pytest.raises(DatabaseError, match="Query failed"):
            engine.execute("INSERT INTO workflow_events VALUES (1)")
        assert len(connector.connections) == 1

        # The next statement gets a fresh connection
        engine.execute("SELECT 3")
        assert connector.connections[1].statements == ["SELECT 3"]

    def test_close(self):
        connector, clock = FakeConnector(), FakeClock()
        engine = _engine(connector, clock)
        engine.execute("SELECT 1")
        engine.close()
        assert connector.connections[0].closed


@requires_postgres
class TestDatabaseEngine:
    def test_schema_is_idempotent(self, db_engine):
        db_engine.initialize_schema()
        row = db_engine.fetch_one("SELECT to_regclass('public.workflow_runs') AS name")
        assert row["name"] == "workflow_runs"

    def test_fetch_all(self, db_engine):
        rows = db_engine.fetch_all("SELECT generate_series(1, 3) AS n")
        assert [r["n"] for r in rows] == [1, 2, 3]

    def test_bad_query(self, db_engine):
        with pytest.raises(DatabaseError, match="Query failed"):
            db_engine.execute("SELECT * FROM no_such_table")
