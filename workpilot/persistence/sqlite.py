"""SQLite implementation of the workflow state repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from ..contracts import WorkflowStatus, utcnow
from ..errors import ConcurrencyConflictError, WorkflowNotFoundError
from .models import WorkflowState
from .repository import WorkflowStateRepository

_COLUMNS = (
    "id, team_id, workflow_type, agent_id, current_node, status, state_data, "
    "paused_at, approval_required, version, created_at, updated_at"
)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteWorkflowStateRepository(WorkflowStateRepository):
    """Persist workflow states using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_states (
                id TEXT PRIMARY KEY,
                team_id TEXT NOT NULL,
                workflow_type TEXT NOT NULL,
                agent_id TEXT,
                current_node TEXT NOT NULL,
                status TEXT NOT NULL,
                state_data TEXT NOT NULL,
                paused_at TEXT,
                approval_required INTEGER NOT NULL DEFAULT 0,
                version INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflow_states_status ON workflow_states (status)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _row_to_state(row: sqlite3.Row) -> WorkflowState:
        return WorkflowState.from_record(
            {
                **dict(row),
                "state_data": json.loads(row["state_data"]),
                "paused_at": _from_iso(row["paused_at"]),
                "created_at": _from_iso(row["created_at"]),
                "updated_at": _from_iso(row["updated_at"]),
            }
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create(self, state: WorkflowState) -> WorkflowState:
        stored = state.model_copy(update={"version": 1, "updated_at": utcnow()})
        record = stored.to_record()
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflow_states ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            record["id"],
            record["team_id"],
            record["workflow_type"],
            record["agent_id"],
            record["current_node"],
            record["status"],
            json.dumps(record["state_data"]),
            _to_iso(record["paused_at"]),
            int(record["approval_required"]),
            record["version"],
            _to_iso(record["created_at"]),
            _to_iso(record["updated_at"]),
        )
        return stored

    async def get(self, state_id: str) -> WorkflowState | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM workflow_states WHERE id = ?",
            state_id,
        )
        if not row:
            return None
        return self._row_to_state(row)

    async def save(self, state: WorkflowState) -> WorkflowState:
        stored = state.model_copy(update={"version": state.version + 1, "updated_at": utcnow()})
        record = stored.to_record()
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_states
            SET current_node = ?, status = ?, state_data = ?, paused_at = ?,
                approval_required = ?, agent_id = ?, version = ?, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            record["current_node"],
            record["status"],
            json.dumps(record["state_data"]),
            _to_iso(record["paused_at"]),
            int(record["approval_required"]),
            record["agent_id"],
            record["version"],
            _to_iso(record["updated_at"]),
            state.id,
            state.version,
        )
        if updated == 0:
            if await self.get(state.id) is None:
                raise WorkflowNotFoundError(f"Workflow state {state.id} not found")
            raise ConcurrencyConflictError(state.id, state.version)
        return stored

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None, team_id: Optional[str] = None
    ) -> list[WorkflowState]:
        clauses = []
        params: list[Any] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(WorkflowStatus(status).value)
        if team_id is not None:
            clauses.append("team_id = ?")
            params.append(team_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM workflow_states{where} ORDER BY created_at",
            *params,
        )
        return [self._row_to_state(row) for row in rows]

    async def list_paused(
        self,
        older_than: datetime,
        pause_reason: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> list[WorkflowState]:
        # paused_at is compared after decoding; ISO text does not order across offsets.
        paused = await self.list_workflows(WorkflowStatus.PAUSED, team_id)
        return [
            s
            for s in paused
            if s.paused_at is not None
            and s.paused_at < older_than
            and (pause_reason is None or s.state_data.pause_reason == pause_reason)
        ]

    def close(self) -> None:
        self._conn.close()
