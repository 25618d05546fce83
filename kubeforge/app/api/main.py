# Copyright 2026 icecake0141
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review required for correctness, security, and licensing.
"""FastAPI entrypoint."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from threading import Lock
from typing import AsyncIterator, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi import WebSocket, WebSocketDisconnect

from kubeforge.app.api.schemas import (
    CreateRunRequest,
    ExecuteRunRequest,
    ExecutionEventResponse,
    FailedRowResponse,
    HostResponse,
    InventoryImportResponse,
    PipelineResponse,
    PlanResponse,
    RejectedHostResponse,
    RunReportResponse,
    RunResponse,
)
from kubeforge.app.application.connector import ConnectorFactory
from kubeforge.app.application.events import RUN_STATUS, ExecutionEvent
from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.application.execution_engine import Engine, EngineConfig
from kubeforge.app.application.inventory_import_service import (
    HostConnectionValidator,
    InventoryImportService,
)
from kubeforge.app.application.pipelines.registry import PIPELINES, build_pipeline
from kubeforge.app.application.run_service import RunService
from kubeforge.app.application.runtime_context import Inventory, RuntimeContext
from kubeforge.app.domain.errors import PlanningError
from kubeforge.app.domain.graph import ExecutionGraph
from kubeforge.app.domain.models import (
    ClusterConfig,
    FailurePolicy,
    Host,
    RunRecord,
    RunReport,
    RunStatus,
)
from kubeforge.app.domain.state_machine import RunStateMachine
from kubeforge.app.infrastructure.host_connection_validators import (
    NetmikoConnectionValidator,
    SimulatedConnectionValidator,
)
from kubeforge.app.infrastructure.in_memory_control_store import InMemoryControlStore
from kubeforge.app.infrastructure.in_memory_event_store import (
    DEFAULT_MAX_EVENTS_PER_RUN,
    InMemoryEventStore,
)
from kubeforge.app.infrastructure.in_memory_inventory_store import (
    InMemoryInventoryStore,
)
from kubeforge.app.infrastructure.in_memory_run_record_store import (
    InMemoryRunRecordStore,
)
from kubeforge.app.infrastructure.in_memory_run_report_store import (
    InMemoryRunReportStore,
)
from kubeforge.app.infrastructure.logging_setup import configure_logging
from kubeforge.app.infrastructure.netmiko_connector import NetmikoConnectorFactory
from kubeforge.app.infrastructure.run_coordinator import RunCoordinator
from kubeforge.app.infrastructure.simulated_connector import SimulatedConnectorFactory

logger = logging.getLogger(__name__)


def resolve_event_limit() -> int:
    raw = os.getenv("KUBEFORGE_MAX_EVENTS_PER_RUN", "").strip()
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_MAX_EVENTS_PER_RUN
    return value if value > 0 else DEFAULT_MAX_EVENTS_PER_RUN


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    yield


app = FastAPI(
    title="kubeforge cluster orchestrator",
    version="0.1.0",
    lifespan=lifespan,
)

store = InMemoryRunRecordStore()
inventory_store = InMemoryInventoryStore()
event_store = InMemoryEventStore(max_events_per_run=resolve_event_limit())
run_store = InMemoryRunReportStore()
control_store = InMemoryControlStore()
run_coordinator = RunCoordinator()
service = RunService(repository=store, state_machine=RunStateMachine())


@dataclass(frozen=True)
class RunSettings:
    """Planning inputs captured when a run is created."""

    cluster: ClusterConfig
    control_host: Optional[str] = None


_settings_lock = Lock()
run_settings: dict[str, RunSettings] = {}


def _forget_run(run_id: str) -> None:
    """Drop per-run state that is only needed until the run is terminal."""
    control_store.discard(run_id)
    with _settings_lock:
        run_settings.pop(run_id, None)


def resolve_connector_mode() -> str:
    return os.getenv("KUBEFORGE_CONNECTOR_MODE", "simulated").strip().lower()


def resolve_validator_mode() -> str:
    return os.getenv("KUBEFORGE_VALIDATOR_MODE", "simulated").strip().lower()


def build_connector_factory() -> ConnectorFactory:
    if resolve_connector_mode() == "netmiko":
        return NetmikoConnectorFactory()
    return SimulatedConnectorFactory()


if resolve_validator_mode() == "netmiko":
    validator: HostConnectionValidator = NetmikoConnectionValidator()
else:
    validator = SimulatedConnectionValidator()
inventory_import_service = InventoryImportService(store=inventory_store, validator=validator)


def to_response(run: RunRecord) -> RunResponse:
    """Convert domain model to API response."""
    return RunResponse(
        run_id=run.run_id,
        pipeline=run.pipeline,
        creator=run.creator,
        status=run.status.value,
        dry_run=run.dry_run,
        created_at=run.created_at,
        started_at=run.started_at,
        completed_at=run.completed_at,
    )


def to_host_response(host: Host) -> HostResponse:
    return HostResponse(
        name=host.name,
        address=host.address,
        port=host.port,
        username=host.username,
        roles=sorted(host.roles),
        key_file=host.key_file,
    )


def _to_report_response(report: RunReport) -> RunReportResponse:
    return RunReportResponse(**report.to_dict())


def _require_run(run_id: str) -> RunRecord:
    run = store.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


def _build_runtime(run: RunRecord) -> RuntimeContext:
    with _settings_lock:
        settings = run_settings.get(run.run_id)
    if settings is None:
        raise HTTPException(status_code=409, detail=f"Run already {run.status.value}")
    hosts = inventory_store.list()
    if not hosts:
        raise HTTPException(status_code=400, detail="No hosts imported")
    try:
        inventory = Inventory(hosts=tuple(hosts), control_host_name=settings.control_host)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return RuntimeContext(
        inventory=inventory,
        config=settings.cluster,
        connectors=build_connector_factory(),
        run_id=run.run_id,
    )


def _plan(run: RunRecord) -> tuple[RuntimeContext, ExecutionGraph]:
    runtime = _build_runtime(run)
    try:
        graph = build_pipeline(run.pipeline).plan(runtime)
    except PlanningError as exc:
        runtime.close()
        logger.warning("Planning failed for run %s: %s", run.run_id, exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return runtime, graph


def _begin(run: RunRecord, runtime: RuntimeContext) -> ExecutionControl:
    """Open the run's control and move it to running, or release the runtime."""
    try:
        control = control_store.open(run.run_id)
    except ValueError as exc:
        runtime.close()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    try:
        service.apply_event(run_id=run.run_id, event_name="start")
    except ValueError as exc:
        control_store.discard(run.run_id)
        runtime.close()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return control


def _execute_graph(
    run_id: str,
    runtime: RuntimeContext,
    graph: ExecutionGraph,
    payload: ExecuteRunRequest,
    dry_run: bool,
    control: ExecutionControl,
) -> RunReport:
    engine = Engine(
        config=EngineConfig(
            max_workers=payload.max_workers,
            max_per_host=payload.max_per_host,
            step_timeout=payload.step_timeout,
            rollback_on_failure=payload.rollback_on_failure,
        ),
        publisher=event_store,
    )
    try:
        report = engine.execute(
            graph,
            runtime,
            policy=FailurePolicy(payload.policy),
            dry_run=dry_run,
            control=control,
            run_id=run_id,
        )
    finally:
        runtime.close()
        _forget_run(run_id)
    run_store.save(report)
    run = store.get(run_id)
    if run is not None and not service.is_terminal(run):
        service.complete_from_report(run_id=run_id, report=report)
    return report


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health endpoint."""
    return {"status": "ok"}


@app.post("/api/v2/inventory/import", response_model=InventoryImportResponse)
def import_inventory(
    csv_content: str = Body(..., media_type="text/plain")
) -> InventoryImportResponse:
    """Import and validate hosts from CSV text."""
    result = inventory_import_service.import_csv(csv_content=csv_content)
    return InventoryImportResponse(
        hosts=[to_host_response(h) for h in result.hosts],
        rejected=[
            RejectedHostResponse(
                name=check.host.name,
                address=check.host.address,
                port=check.host.port,
                error_message=check.error_message,
            )
            for check in result.rejected
        ],
        failed_rows=[
            FailedRowResponse(
                row_number=row.row_number,
                row=row.row,
                error=row.error,
            )
            for row in result.failed_rows
        ],
    )


@app.get("/api/v2/inventory", response_model=list[HostResponse])
def list_inventory() -> list[HostResponse]:
    """List currently imported valid hosts."""
    return [to_host_response(h) for h in inventory_store.list()]


@app.get("/api/v2/pipelines", response_model=list[PipelineResponse])
def list_pipelines() -> list[PipelineResponse]:
    """List bundled pipelines."""
    return [PipelineResponse(name=name) for name in sorted(PIPELINES)]


@app.post("/api/v2/runs", response_model=RunResponse)
def create_run(payload: CreateRunRequest) -> RunResponse:
    """Create a queued run."""
    if payload.pipeline not in PIPELINES:
        raise HTTPException(status_code=400, detail=f"Unknown pipeline: {payload.pipeline}")
    run = service.create_run(
        pipeline=payload.pipeline, creator=payload.creator, dry_run=payload.dry_run
    )
    with _settings_lock:
        run_settings[run.run_id] = RunSettings(
            cluster=ClusterConfig(**payload.cluster.model_dump()),
            control_host=payload.control_host,
        )
    return to_response(run)


@app.get("/api/v2/runs", response_model=list[RunResponse])
def list_runs() -> list[RunResponse]:
    """List created runs in reverse chronological order."""
    runs = store.list()
    runs.sort(key=lambda item: item.created_at, reverse=True)
    return [to_response(run) for run in runs]


@app.get("/api/v2/runs/{run_id}", response_model=RunResponse)
def get_run(run_id: str) -> RunResponse:
    """Fetch run details."""
    return to_response(_require_run(run_id))


@app.get("/api/v2/runs/{run_id}/plan", response_model=PlanResponse)
def get_plan(run_id: str) -> PlanResponse:
    """Plan the run's pipeline against the current inventory without executing."""
    run = _require_run(run_id)
    runtime, graph = _plan(run)
    runtime.close()
    return PlanResponse(**graph.to_dict())


@app.get("/api/v2/runs/{run_id}/events", response_model=list[ExecutionEventResponse])
def list_run_events(run_id: str) -> list[ExecutionEventResponse]:
    """List buffered execution events for a run."""
    events = event_store.list_events(run_id=run_id)
    return [ExecutionEventResponse(**e.to_dict()) for e in events]


@app.post("/api/v2/runs/{run_id}/execute", response_model=RunReportResponse)
def execute_run(run_id: str, payload: ExecuteRunRequest) -> RunReportResponse:
    """Plan and execute the run, returning the report."""
    run = _require_run(run_id)
    runtime, graph = _plan(run)
    control = _begin(run, runtime)
    report = _execute_graph(run_id, runtime, graph, payload, run.dry_run, control)
    return _to_report_response(report)


@app.post("/api/v2/runs/{run_id}/execute/async", response_model=RunResponse)
def execute_run_async(run_id: str, payload: ExecuteRunRequest) -> RunResponse:
    """Plan now, execute in a background thread."""
    run = _require_run(run_id)
    if run_coordinator.is_running(run_id):
        raise HTTPException(status_code=409, detail="Run already in progress")
    runtime, graph = _plan(run)
    control = _begin(run, runtime)
    started = run_coordinator.start(
        run_id=run_id,
        target=lambda: _execute_graph(
            run_id, runtime, graph, payload, run.dry_run, control
        ),
    )
    if not started:
        runtime.close()
        control_store.discard(run_id)
        raise HTTPException(status_code=409, detail="Run already in progress")
    return to_response(_require_run(run_id))


@app.post("/api/v2/runs/{run_id}/cancel", response_model=RunResponse)
def cancel_run(run_id: str) -> RunResponse:
    """Cancel a queued run, or stop dispatch of a running one."""
    run = _require_run(run_id)
    if service.is_terminal(run):
        raise HTTPException(status_code=400, detail=f"Run already {run.status.value}")
    if run.status == RunStatus.QUEUED:
        try:
            run = service.apply_event(run_id=run_id, event_name="cancel")
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        _forget_run(run_id)
        status = "cancelled"
    elif control_store.cancel(run_id):
        status = "cancelling"
    else:
        raise HTTPException(status_code=409, detail="Run is finishing and cannot be cancelled")
    event_store.publish(
        ExecutionEvent.now(RUN_STATUS, run_id, status=status, message="Cancel requested")
    )
    return to_response(run)


@app.get("/api/v2/runs/{run_id}/result", response_model=RunReportResponse)
def get_run_result(run_id: str) -> RunReportResponse:
    """Return latest report for a run."""
    report = run_store.get(run_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Run result not found")
    return _to_report_response(report)


@app.websocket("/ws/v2/runs/{run_id}")
async def ws_run_events(websocket: WebSocket, run_id: str) -> None:
    """Stream in-memory execution events for a run."""
    await websocket.accept()
    cursor = 0
    try:
        while True:
            page = event_store.read(run_id, cursor)
            cursor = page.next_cursor
            for event in page.events:
                await websocket.send_json(event.to_dict())
                if event.is_final:
                    await websocket.close()
                    return
            await asyncio.sleep(0.2)
    except WebSocketDisconnect:
        return


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
