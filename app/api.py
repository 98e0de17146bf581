"""FastAPI surface over the shift scheduling core.

Caller scope comes from the ``X-Tenant-ID`` / ``X-User-Role`` headers set by
the authenticating gateway; every handler passes it down explicitly.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import FileResponse, JSONResponse

# Ensure flat module imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import settings  # noqa: E402
from agents import create_agent, delete_agent, list_agents, update_agent  # noqa: E402
from cascade import canonical_agent_ref, sweep_orphan_shifts  # noqa: E402
from database import SessionLocal, agent_to_dict, init_database, new_request_id, shift_to_dict  # noqa: E402
from errors import NotFound, ValidationError  # noqa: E402
from exporter import export_report  # noqa: E402
from generator.api import generate_and_persist  # noqa: E402
from metrics import InMemoryMetrics, Metrics  # noqa: E402
from notifications import NullNotifier, PostCommitHooks  # noqa: E402
from reports import build_report  # noqa: E402
from shift_store import create_shift, delete_shift, list_shifts, update_shift  # noqa: E402
from tenancy import TenantScope  # noqa: E402

logger = logging.getLogger(__name__)

metrics_registry = InMemoryMetrics()
post_commit_hooks = PostCommitHooks.for_notifier(NullNotifier())


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings.configure_logging()
    init_database()
    yield


app = FastAPI(title="Agent Shift Scheduler API", version="0.1", lifespan=lifespan)


@app.exception_handler(ValidationError)
async def _validation_error(_: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(NotFound)
async def _not_found(_: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_scope(
    x_tenant_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> TenantScope:
    try:
        return TenantScope(tenant_id=(x_tenant_id or "").strip() or None, role=x_user_role or "")
    except ValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def get_actor(x_user_id: Optional[str] = Header(None)) -> str:
    return (x_user_id or "").strip() or "operator"


def get_metrics() -> Metrics:
    return metrics_registry


def get_hooks() -> PostCommitHooks:
    return post_commit_hooks


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/agents")
def agents_index(
    q: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
) -> JSONResponse:
    agents = list_agents(db, scope, query=q, status=status)
    return JSONResponse(content=jsonable_encoder([agent_to_dict(agent) for agent in agents]))


@app.post("/api/agents")
def agents_create(
    payload: Dict[str, Any],
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
    actor: str = Depends(get_actor),
    hooks: PostCommitHooks = Depends(get_hooks),
) -> JSONResponse:
    agent = create_agent(db, scope, payload, actor=actor, hooks=hooks)
    return JSONResponse(status_code=201, content=jsonable_encoder(agent_to_dict(agent)))


@app.put("/api/agents/{agent_id}")
def agents_update(
    agent_id: str,
    payload: Dict[str, Any],
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
    actor: str = Depends(get_actor),
    hooks: PostCommitHooks = Depends(get_hooks),
) -> JSONResponse:
    agent = update_agent(db, scope, agent_id, payload, actor=actor, hooks=hooks)
    return JSONResponse(content=jsonable_encoder(agent_to_dict(agent)))


@app.delete("/api/agents/{agent_id}")
def agents_delete(
    agent_id: str,
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
    actor: str = Depends(get_actor),
    metrics: Metrics = Depends(get_metrics),
    hooks: PostCommitHooks = Depends(get_hooks),
) -> JSONResponse:
    outcome = delete_agent(db, scope, agent_id, actor=actor, metrics=metrics, hooks=hooks)
    return JSONResponse(content=jsonable_encoder({"ok": True, **outcome}))


@app.get("/api/shifts")
def shifts_index(
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    agentId: Optional[str] = Query(None),
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
) -> JSONResponse:
    shifts = list_shifts(db, scope, start_date=startDate, end_date=endDate, agent_id=agentId)
    names = {agent.id: agent.name for agent in list_agents(db, scope)}
    payload = [shift_to_dict(shift, names.get(canonical_agent_ref(shift.agent_ref))) for shift in shifts]
    return JSONResponse(content=jsonable_encoder(payload))


@app.post("/api/shifts")
def shifts_create(
    payload: Dict[str, Any],
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
    actor: str = Depends(get_actor),
    metrics: Metrics = Depends(get_metrics),
    hooks: PostCommitHooks = Depends(get_hooks),
) -> JSONResponse:
    request_id = new_request_id()
    metrics.increment("api.create_shift")
    result = create_shift(
        db,
        scope,
        agent_id=payload.get("agentId"),
        date=payload.get("date"),
        start=payload.get("start"),
        end=payload.get("end"),
        location=payload.get("location") or "",
        notes=payload.get("notes") or "",
        actor=actor,
        request_id=request_id,
        metrics=metrics,
        hooks=hooks,
    )
    headers = {"X-Request-ID": request_id}
    shift = shift_to_dict(result.shift)
    if result.existed:
        return JSONResponse(content=jsonable_encoder({"ok": True, "existed": True, "shift": shift}), headers=headers)
    return JSONResponse(status_code=201, content=jsonable_encoder(shift), headers=headers)


@app.put("/api/shifts/{shift_id}")
def shifts_update(
    shift_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
    actor: str = Depends(get_actor),
    hooks: PostCommitHooks = Depends(get_hooks),
) -> JSONResponse:
    shift = update_shift(
        db,
        scope,
        shift_id,
        start=payload.get("start"),
        end=payload.get("end"),
        notes=payload.get("notes"),
        actor=actor,
        hooks=hooks,
    )
    return JSONResponse(content=jsonable_encoder(shift_to_dict(shift)))


@app.delete("/api/shifts/{shift_id}")
def shifts_delete(
    shift_id: int,
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
    actor: str = Depends(get_actor),
    hooks: PostCommitHooks = Depends(get_hooks),
) -> JSONResponse:
    delete_shift(db, scope, shift_id, actor=actor, hooks=hooks)
    return JSONResponse(content={"ok": True})


@app.post("/api/schedules/generate")
def schedules_generate(
    payload: Dict[str, Any],
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
    actor: str = Depends(get_actor),
    metrics: Metrics = Depends(get_metrics),
    hooks: PostCommitHooks = Depends(get_hooks),
) -> JSONResponse:
    request_id = new_request_id()
    result = generate_and_persist(
        db,
        scope,
        payload,
        actor=actor,
        request_id=request_id,
        metrics=metrics,
        hooks=hooks,
    )
    return JSONResponse(content=jsonable_encoder(result), headers={"X-Request-ID": request_id})


@app.get("/api/reports")
def reports_index(
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    period: str = Query("monthly"),
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
) -> JSONResponse:
    report = build_report(db, scope, startDate, endDate, period=period)
    return JSONResponse(content=jsonable_encoder(report))


@app.get("/api/reports/export")
def reports_export(
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    period: str = Query("monthly"),
    format: str = Query("csv"),
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
) -> FileResponse:
    report = build_report(db, scope, startDate, endDate, period=period)
    try:
        path = export_report(report, format)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return FileResponse(path, filename=path.name)


@app.post("/api/maintenance/cleanup-orphan-shifts")
def cleanup_orphan_shifts(
    db=Depends(get_db),
    scope: TenantScope = Depends(get_scope),
    metrics: Metrics = Depends(get_metrics),
) -> JSONResponse:
    removed = sweep_orphan_shifts(db, scope)
    metrics.increment("cascade.orphans_removed", removed)
    return JSONResponse(content={"removed": removed})


@app.get("/api/debug/metrics")
def debug_metrics(metrics: Metrics = Depends(get_metrics)) -> JSONResponse:
    snapshot = metrics.snapshot() if isinstance(metrics, InMemoryMetrics) else {}
    return JSONResponse(content=snapshot)
