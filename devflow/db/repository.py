"""Data access layer for devflow.

All SQL queries live here. Stores and the workflow engine never write raw
SQL; they call Repository methods that return plain values or Pydantic
models.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from devflow.core.models import HistoryEvent
from devflow.db.engine import DatabaseEngine


class Repository:
    """Data access layer wrapping DatabaseEngine with typed methods."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    # -------------------------------------------------------------------
    # Fix-task chains
    # -------------------------------------------------------------------

    def increment_chain(self, chain_key: str, ttl_seconds: float) -> int:
        """Atomically increment a chain counter and refresh its expiry.

        A row whose expiry has passed restarts at 1, matching the behaviour
        of a key that has been evicted.
        """
        row = self.engine.fetch_one(
            """INSERT INTO fix_task_chains (chain_key, depth, expires_at, updated_at)
               VALUES (%s, 1, now() + make_interval(secs => %s), now())
               ON CONFLICT (chain_key) DO UPDATE SET
                   depth = CASE
                       WHEN fix_task_chains.expires_at <= now() THEN 1
                       ELSE fix_task_chains.depth + 1
                   END,
                   expires_at = EXCLUDED.expires_at,
                   updated_at = now()
               RETURNING depth""",
            [chain_key, float(ttl_seconds)],
        )
        assert row is not None
        return int(row["depth"])

    def get_chain_depth(self, chain_key: str) -> Optional[int]:
        row = self.engine.fetch_one(
            "SELECT depth FROM fix_task_chains WHERE chain_key = %s AND expires_at > now()",
            [chain_key],
        )
        if row is None:
            return None
        return int(row["depth"])

    # -------------------------------------------------------------------
    # Workflow runs
    # -------------------------------------------------------------------

    def create_workflow_run(self, workflow_id: str, input_payload: dict[str, Any]) -> None:
        self.engine.execute(
            """INSERT INTO workflow_runs (workflow_id, input)
               VALUES (%s, %s)
               ON CONFLICT (workflow_id) DO NOTHING""",
            [workflow_id, json.dumps(input_payload)],
        )

    def save_workflow_state(
        self,
        workflow_id: str,
        state_payload: dict[str, Any],
        status: Optional[str] = None,
    ) -> None:
        self.engine.execute(
            """UPDATE workflow_runs
               SET state = %s, status = COALESCE(%s, status), updated_at = now()
               WHERE workflow_id = %s""",
            [json.dumps(state_payload), status, workflow_id],
        )

    def get_workflow_run(self, workflow_id: str) -> Optional[dict[str, Any]]:
        row = self.engine.fetch_one(
            "SELECT * FROM workflow_runs WHERE workflow_id = %s", [workflow_id]
        )
        if row is None:
            return None
        return {
            "workflow_id": row["workflow_id"],
            "input": _json_field(row.get("input")),
            "state": _json_field(row.get("state")),
            "status": row.get("status"),
            "created_at": row.get("created_at"),
            "updated_at": row.get("updated_at"),
        }

    def list_workflow_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        rows = self.engine.fetch_all(
            """SELECT workflow_id, input->'task'->>'id' AS task_id, status, created_at, updated_at
               FROM workflow_runs ORDER BY created_at DESC LIMIT %s""",
            [limit],
        )
        return [dict(r) for r in rows]

    # -------------------------------------------------------------------
    # Workflow events
    # -------------------------------------------------------------------

    def append_workflow_event(self, workflow_id: str, event: HistoryEvent) -> None:
        self.engine.execute(
            """INSERT INTO workflow_events (workflow_id, seq, kind, name, payload, recorded_at)
               VALUES (%s, %s, %s, %s, %s, %s)""",
            [
                workflow_id,
                event.seq,
                event.kind.value,
                event.name,
                json.dumps(event.payload),
                event.recorded_at,
            ],
        )

    def get_workflow_events(self, workflow_id: str) -> list[HistoryEvent]:
        rows = self.engine.fetch_all(
            """SELECT seq, kind, name, payload, recorded_at FROM workflow_events
               WHERE workflow_id = %s ORDER BY seq ASC""",
            [workflow_id],
        )
        return [
            HistoryEvent(
                seq=r["seq"],
                kind=r["kind"],
                name=r["name"],
                payload=_json_field(r.get("payload")),
                recorded_at=r["recorded_at"],
            )
            for r in rows
        ]


def _json_field(value: Any) -> Any:
    """psycopg decodes JSONB already; tolerate text columns too."""
    if isinstance(value, str):
        return json.loads(value)
    return value
