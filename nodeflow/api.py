from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .config import AppConfig
from .engine import WorkflowEngine
from .graph import GraphValidationError, validate_graph
from .models import ExecuteRequest, Graph, RunRecord, RunSummary, TrackNodeRequest, Workflow
from .nodes import NodeContext, NodeRegistry, register_builtin_nodes
from .store import SQLiteStore
from .tasks import TaskClient, TaskWatcher

logger = logging.getLogger(__name__)


def _reject_invalid(graph: Graph) -> None:
    try:
        validate_graph(graph)
    except GraphValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def create_app(
    config: AppConfig | None = None,
    store: SQLiteStore | None = None,
    task_client: TaskClient | None = None,
    registry: NodeRegistry | None = None,
) -> FastAPI:
    """Build the HTTP app around explicitly constructed collaborators.

    Run with ``uvicorn --factory nodeflow.api:create_app``.
    """
    if config is None:
        config = AppConfig()
    if store is None:
        store = SQLiteStore(config.store_settings()["db_path"])
    if task_client is None:
        from .tasks.runners import build_local_task_client

        task_client = build_local_task_client(config)
    if registry is None:
        registry = NodeRegistry()
        register_builtin_nodes(registry)

    engine_settings = config.engine_settings()
    watcher = TaskWatcher(
        task_client,
        poll_interval=engine_settings["poll_interval"],
        timeout=engine_settings["task_timeout"],
    )
    engine = WorkflowEngine(registry, NodeContext(watcher=watcher, llm_defaults=config.llm_defaults()))

    app = FastAPI(title="nodeflow", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api_settings()["cors_origins"],
        allow_origin_regex=r"^https?://(127\.0\.0\.1|localhost):\d+$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.store = store
    app.state.engine = engine
    app.state.registry = registry

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/node-types")
    def list_node_types() -> list[str]:
        return registry.list_types()

    @app.get("/node-catalog")
    def node_catalog() -> list[dict[str, str]]:
        return registry.list_specs()

    @app.get("/config")
    def show_config() -> dict[str, dict[str, object]]:
        return {
            "engine": dict(engine_settings),
            "llm": config.llm_defaults(),
            "media": config.media_settings(),
        }

    @app.post("/workflows", response_model=Workflow)
    def create_workflow(workflow: Workflow) -> Workflow:
        existing = store.get_workflow(workflow.id)
        if existing:
            raise HTTPException(status_code=409, detail="Workflow id already exists")
        return store.create_workflow(workflow)

    @app.post("/workflows/new", response_model=Workflow)
    def create_workflow_with_generated_id(workflow: Workflow) -> Workflow:
        created = workflow.model_copy(update={"id": str(uuid.uuid4())})
        return store.create_workflow(created)

    @app.get("/workflows", response_model=list[Workflow])
    def list_workflows() -> list[Workflow]:
        return store.list_workflows()

    @app.post("/workflows/execute", response_model=RunSummary)
    async def execute_workflow(request: ExecuteRequest) -> RunSummary:
        _reject_invalid(request)
        summary = await engine.run(request)

        if request.workflow_id:
            await asyncio.to_thread(_save_run, request.workflow_id, summary, request)
        return summary

    def _save_run(workflow_id: str, summary: RunSummary, graph: Graph) -> None:
        if store.get_workflow(workflow_id) is None:
            return
        try:
            store.record_run(workflow_id, summary, graph)
        except sqlite3.Error as exc:
            logger.error(f"Failed to save run for workflow {workflow_id}: {exc}", exc_info=True)

    @app.get("/workflows/runs", response_model=list[RunRecord])
    def list_runs(
        workflow_id: str | None = Query(default=None),
        limit: int = Query(default=20, ge=1, le=200),
    ) -> list[RunRecord]:
        return store.list_runs(workflow_id=workflow_id, limit=limit)

    @app.post("/workflows/track-node", response_model=RunRecord)
    def track_node(request: TrackNodeRequest) -> RunRecord:
        if store.get_workflow(request.workflow_id) is None:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return store.record_node_execution(request)

    @app.get("/workflows/{workflow_id}", response_model=Workflow)
    def get_workflow(workflow_id: str) -> Workflow:
        workflow = store.get_workflow(workflow_id)
        if workflow is None:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return workflow

    @app.put("/workflows/{workflow_id}", response_model=Workflow)
    def update_workflow(workflow_id: str, workflow: Workflow) -> Workflow:
        if workflow.id != workflow_id:
            raise HTTPException(status_code=400, detail="Workflow id mismatch")
        updated = store.update_workflow(workflow_id, workflow)
        if updated is None:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return updated

    @app.delete("/workflows/{workflow_id}")
    def delete_workflow(workflow_id: str) -> dict[str, bool]:
        if not store.delete_workflow(workflow_id):
            raise HTTPException(status_code=404, detail="Workflow not found")
        return {"deleted": True}

    @app.post("/workflows/{workflow_id}/run", response_model=RunRecord)
    async def run_workflow(workflow_id: str) -> RunRecord:
        workflow = await asyncio.to_thread(store.get_workflow, workflow_id)
        if workflow is None:
            raise HTTPException(status_code=404, detail="Workflow not found")

        _reject_invalid(workflow)
        summary = await engine.run(workflow)
        return await asyncio.to_thread(_store_outputs, workflow, summary)

    def _store_outputs(workflow: Workflow, summary: RunSummary) -> RunRecord:
        # last_output was written onto the nodes during the run
        store.update_workflow(workflow.id, workflow)
        return store.record_run(workflow.id, summary, workflow)

    @app.get("/runs/{run_id}", response_model=RunRecord)
    def get_run(run_id: str) -> RunRecord:
        run = store.get_run(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return run

    return app
