"""PostgreSQL implementation of the workflow state repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

import asyncpg

from ..contracts import WorkflowStatus, utcnow
from ..errors import ConcurrencyConflictError, WorkflowNotFoundError
from .models import WorkflowState
from .repository import WorkflowStateRepository

_COLUMNS = (
    "id, team_id, workflow_type, agent_id, current_node, status, state_data, "
    "paused_at, approval_required, version, created_at, updated_at"
)


class PostgresWorkflowStateRepository(WorkflowStateRepository):
    """Persist workflow states using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_states (
                id TEXT PRIMARY KEY,
                team_id TEXT NOT NULL,
                workflow_type TEXT NOT NULL,
                agent_id TEXT,
                current_node TEXT NOT NULL,
                status TEXT NOT NULL,
                state_data JSONB NOT NULL,
                paused_at TIMESTAMPTZ,
                approval_required BOOLEAN NOT NULL DEFAULT FALSE,
                version INTEGER NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    @staticmethod
    def _row_to_state(row: asyncpg.Record) -> WorkflowState:
        return WorkflowState.from_record(dict(row))

    # ------------------------------------------------------------------
    async def create(self, state: WorkflowState) -> WorkflowState:
        stored = state.model_copy(update={"version": 1, "updated_at": utcnow()})
        record = stored.to_record()
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO workflow_states ({_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)",
                record["id"],
                record["team_id"],
                record["workflow_type"],
                record["agent_id"],
                record["current_node"],
                record["status"],
                json.dumps(record["state_data"]),
                record["paused_at"],
                record["approval_required"],
                record["version"],
                record["created_at"],
                record["updated_at"],
            )
        finally:
            await conn.close()
        return stored

    async def get(self, state_id: str) -> WorkflowState | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM workflow_states WHERE id = $1", state_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return self._row_to_state(row)

    async def save(self, state: WorkflowState) -> WorkflowState:
        stored = state.model_copy(update={"version": state.version + 1, "updated_at": utcnow()})
        record = stored.to_record()
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE workflow_states
                SET current_node = $1, status = $2, state_data = $3, paused_at = $4,
                    approval_required = $5, agent_id = $6, version = $7, updated_at = $8
                WHERE id = $9 AND version = $10
                """,
                record["current_node"],
                record["status"],
                json.dumps(record["state_data"]),
                record["paused_at"],
                record["approval_required"],
                record["agent_id"],
                record["version"],
                record["updated_at"],
                state.id,
                state.version,
            )
            if result.endswith(" 0"):
                exists = await conn.fetchval(
                    "SELECT 1 FROM workflow_states WHERE id = $1", state.id
                )
                if not exists:
                    raise WorkflowNotFoundError(f"Workflow state {state.id} not found")
                raise ConcurrencyConflictError(state.id, state.version)
        finally:
            await conn.close()
        return stored

    async def list_workflows(
        self, status: Optional[WorkflowStatus] = None, team_id: Optional[str] = None
    ) -> list[WorkflowState]:
        clauses = []
        params: list[Any] = []
        if status is not None:
            params.append(WorkflowStatus(status).value)
            clauses.append(f"status = ${len(params)}")
        if team_id is not None:
            params.append(team_id)
            clauses.append(f"team_id = ${len(params)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM workflow_states{where} ORDER BY created_at",
                *params,
            )
        finally:
            await conn.close()
        return [self._row_to_state(r) for r in rows]

    async def list_paused(
        self,
        older_than: datetime,
        pause_reason: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> list[WorkflowState]:
        params: list[Any] = [WorkflowStatus.PAUSED.value, older_than]
        query = (
            f"SELECT {_COLUMNS} FROM workflow_states "
            "WHERE status = $1 AND paused_at < $2"
        )
        if pause_reason is not None:
            params.append(pause_reason)
            query += f" AND state_data->>'pause_reason' = ${len(params)}"
        if team_id is not None:
            params.append(team_id)
            query += f" AND team_id = ${len(params)}"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query + " ORDER BY paused_at", *params)
        finally:
            await conn.close()
        return [self._row_to_state(r) for r in rows]
