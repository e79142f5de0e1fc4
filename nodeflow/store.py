from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .models import (
    Graph,
    NodeExecutionRecord,
    RunRecord,
    RunSummary,
    TrackNodeRequest,
    Workflow,
)


def _dump(value: Any) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


def _load(value: str | None) -> Any:
    return json.loads(value) if value else None


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore:
    def __init__(self, db_path: str = "data/workflows.db") -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflows (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    definition TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    scope TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    finished_at TEXT,
                    duration_ms INTEGER,
                    error TEXT,
                    FOREIGN KEY(workflow_id) REFERENCES workflows(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS node_executions (
                    id TEXT PRIMARY KEY,
                    run_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    node_id TEXT NOT NULL,
                    node_kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    inputs TEXT,
                    outputs TEXT,
                    error TEXT,
                    duration_ms INTEGER,
                    completed_at TEXT,
                    FOREIGN KEY(run_id) REFERENCES runs(id) ON DELETE CASCADE
                )
                """
            )

    def create_workflow(self, workflow: Workflow) -> Workflow:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO workflows (id, name, definition, created_at) VALUES (?, ?, ?, ?)",
                (
                    workflow.id,
                    workflow.name,
                    workflow.model_dump_json(),
                    workflow.created_at.isoformat(),
                ),
            )
        return workflow

    def update_workflow(self, workflow_id: str, workflow: Workflow) -> Workflow | None:
        with self._connect() as conn:
            existing = conn.execute(
                "SELECT id FROM workflows WHERE id = ?",
                (workflow_id,),
            ).fetchone()
            if not existing:
                return None
            conn.execute(
                "UPDATE workflows SET name = ?, definition = ? WHERE id = ?",
                (
                    workflow.name,
                    workflow.model_dump_json(),
                    workflow_id,
                ),
            )
        return workflow

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT definition FROM workflows WHERE id = ?",
                (workflow_id,),
            ).fetchone()

        if not row:
            return None
        return Workflow.model_validate_json(row["definition"])

    def list_workflows(self) -> list[Workflow]:
        with self._connect() as conn:
            rows = conn.execute("SELECT definition FROM workflows ORDER BY created_at DESC").fetchall()

        return [Workflow.model_validate_json(row["definition"]) for row in rows]

    def delete_workflow(self, workflow_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
        return cursor.rowcount > 0

    def record_run(self, workflow_id: str, summary: RunSummary, graph: Graph) -> RunRecord:
        """Persist a finished workflow run with one row per node result."""
        finished_at = datetime.now(timezone.utc)
        started_at = finished_at - timedelta(milliseconds=summary.total_duration_ms)
        kinds = {node.id: node.kind for node in graph.nodes}

        executions = [
            NodeExecutionRecord(
                id=str(uuid.uuid4()),
                node_id=node_id,
                node_kind=kinds.get(node_id, "unknown"),
                status="success" if result.succeeded else "failed",
                outputs=result.output,
                error=result.error,
                duration_ms=result.duration_ms,
                completed_at=result.finished_at,
            )
            for node_id, result in summary.node_results.items()
        ]
        run = RunRecord(
            id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            status="success" if summary.success else "failed",
            scope="full",
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=summary.total_duration_ms,
            error=summary.error,
            node_executions=executions,
        )
        self._insert_run(run)
        return run

    def record_node_execution(self, request: TrackNodeRequest) -> RunRecord:
        """Persist a single node run triggered outside a full workflow run."""
        finished_at = datetime.now(timezone.utc)
        duration = request.duration_ms or 0
        run = RunRecord(
            id=str(uuid.uuid4()),
            workflow_id=request.workflow_id,
            status=request.status,
            scope="single",
            started_at=finished_at - timedelta(milliseconds=duration),
            finished_at=finished_at,
            duration_ms=request.duration_ms,
            error=request.error,
            node_executions=[
                NodeExecutionRecord(
                    id=str(uuid.uuid4()),
                    node_id=request.node_id,
                    node_kind=request.node_kind,
                    status=request.status,
                    inputs=request.inputs,
                    outputs=request.outputs,
                    error=request.error,
                    duration_ms=request.duration_ms,
                    completed_at=finished_at,
                )
            ],
        )
        self._insert_run(run)
        return run

    def _insert_run(self, run: RunRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO runs (id, workflow_id, status, scope, started_at, finished_at, duration_ms, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    run.workflow_id,
                    run.status,
                    run.scope,
                    run.started_at.isoformat(),
                    run.finished_at.isoformat() if run.finished_at else None,
                    run.duration_ms,
                    run.error,
                ),
            )
            conn.executemany(
                """
                INSERT INTO node_executions (
                    id, run_id, position, node_id, node_kind, status,
                    inputs, outputs, error, duration_ms, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        execution.id,
                        run.id,
                        position,
                        execution.node_id,
                        execution.node_kind,
                        execution.status,
                        _dump(execution.inputs),
                        _dump(execution.outputs),
                        execution.error,
                        execution.duration_ms,
                        execution.completed_at.isoformat() if execution.completed_at else None,
                    )
                    for position, execution in enumerate(run.node_executions)
                ],
            )

    def list_runs(self, workflow_id: str | None = None, limit: int = 20) -> list[RunRecord]:
        query = "SELECT * FROM runs"
        params: list[Any] = []
        if workflow_id is not None:
            query += " WHERE workflow_id = ?"
            params.append(workflow_id)
        query += " ORDER BY started_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._build_run(conn, row) for row in rows]

    def get_run(self, run_id: str) -> RunRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
            if not row:
                return None
            return self._build_run(conn, row)

    def _build_run(self, conn: sqlite3.Connection, row: sqlite3.Row) -> RunRecord:
        executions = conn.execute(
            "SELECT * FROM node_executions WHERE run_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        return RunRecord(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=row["status"],
            scope=row["scope"],
            started_at=datetime.fromisoformat(row["started_at"]),
            finished_at=_parse_time(row["finished_at"]),
            duration_ms=row["duration_ms"],
            error=row["error"],
            node_executions=[
                NodeExecutionRecord(
                    id=item["id"],
                    node_id=item["node_id"],
                    node_kind=item["node_kind"],
                    status=item["status"],
                    inputs=_load(item["inputs"]),
                    outputs=_load(item["outputs"]),
                    error=item["error"],
                    duration_ms=item["duration_ms"],
                    completed_at=_parse_time(item["completed_at"]),
                )
                for item in executions
            ],
        )
