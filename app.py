"""
Workflow Auto-Heal — FastAPI Application

Endpoints:
  GET  /health               — liveness probe + worker status
  POST /validate             — run the three validation layers on a workflow
  POST /heal                 — validate + heal a workflow synchronously (no persistence)
  POST /executions           — store a workflow, validate it, queue healing if fixable
  GET  /executions/{id}      — execution record (status, progress, healing metadata)
  GET  /heal/stats           — healing attempts / success rate / common errors
  GET  /queues/{name}/stats  — queue depth, in-flight, dead-letter depth

HTTP status codes:
  200 — success
  400 — malformed request (bad timeframe, bad queue name)
  404 — unknown execution
  422 — request body failed schema validation
  500 — internal error (database, queue)
"""

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from autoheal import settings
from autoheal.auto_heal_processor import start_auto_heal_processor, start_validation_processor
from autoheal.confidence_scorer import confidence_grade
from autoheal.job_queue import enqueue_job, get_queue_stats
from autoheal.logger import log, set_level
from autoheal.queue_processor import QueueProcessor
from autoheal.self_heal_workflow import build_default_healer
from autoheal.validate_workflow import first_failing_layer, validate_workflow
from db.repo import create_execution, get_execution, get_healing_stats, update_execution_status
from db.session import SessionLocal, check_db, get_db

KNOWN_QUEUES = (
    settings.AUTO_HEAL_QUEUE,
    settings.VALIDATION_QUEUE,
    settings.DEPLOYMENT_TEST_QUEUE,
)

# --- Built at startup ---
_healer = None
_processor: Optional[QueueProcessor] = None


def _get_healer():
    global _healer
    if _healer is None:
        _healer = build_default_healer()
    return _healer


@asynccontextmanager
async def lifespan(_app: FastAPI):
    global _healer, _processor
    set_level(settings.LOG_LEVEL)
    log("startup.begin")
    _healer = build_default_healer()
    db_ok = check_db()
    if settings.WORKERS_ENABLED and db_ok:
        _processor = QueueProcessor()
        start_auto_heal_processor(_processor, _healer, SessionLocal)
        start_validation_processor(_processor, SessionLocal)
        log("startup.workers_started", queues=list(_processor.consumers))
    log("startup.ready", workers=_processor is not None)
    yield
    if _processor is not None:
        _processor.shutdown()
        _processor = None
    log("shutdown.complete")


app = FastAPI(
    title="Workflow Auto-Heal",
    version="1.0.0",
    lifespan=lifespan,
)


# ─────────────────────────────────────────
# Request Models
# ─────────────────────────────────────────

class ValidateRequest(BaseModel):
    workflow: Any
    skip_deployment_test: bool = True


class HealRequest(BaseModel):
    workflow: Any
    errors: Optional[list[dict]] = None
    execution_id: Optional[str] = None


class ExecutionRequest(BaseModel):
    workflow: dict
    user_id: Optional[str] = None
    auto_heal: bool = True
    metadata: Optional[dict] = None


# ─────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────

@app.get("/health")
def health():
    workers = {}
    if _processor is not None:
        workers = {name: _processor.is_running(name) for name in _processor.consumers}
    return {"ok": True, "workers": workers}


@app.post("/validate")
def validate(request: ValidateRequest):
    """Validate a workflow document. Findings are returned, never raised."""
    return validate_workflow(
        request.workflow,
        skip_deployment_test=request.skip_deployment_test,
    )


@app.post("/heal")
def heal(request: HealRequest):
    """
    Heal a workflow synchronously and return the healing result.
    Nothing is persisted; use POST /executions for the queued lifecycle.
    """
    result = _get_healer().heal_workflow(
        request.execution_id or "adhoc", request.workflow, request.errors,
    )
    return {**result, "confidence_grade": confidence_grade(result["confidence"])}


@app.post("/executions")
def submit_execution(request: ExecutionRequest, db: Session = Depends(get_db)):
    """
    Store a candidate workflow and validate it.

    valid                       → completed
    invalid + fixable + auto_heal → queued, auto_heal job enqueued
    otherwise                   → failed
    """
    report = validate_workflow(request.workflow)
    errors = report["errors"]
    progress = {
        "stage": "validation",
        "valid": report["valid"],
        "error_count": len(errors),
        "layers": report["layers"],
        "validated_at": report["timestamp"],
    }

    try:
        execution = create_execution(
            db, request.workflow, user_id=request.user_id, metadata=request.metadata,
        )
        execution_id = str(execution.id)
        if report["valid"]:
            status = "completed"
            update_execution_status(db, execution_id, status, validation_progress=progress)
        elif request.auto_heal and any(e.get("fixable") for e in errors):
            status = "queued"
            update_execution_status(db, execution_id, status, validation_progress=progress)
        else:
            status = "failed"
            update_execution_status(db, execution_id, status, validation_progress=progress,
                                    error_details={"errors": errors})
        db.commit()
    except Exception as e:
        db.rollback()
        log("executions.create_failed", level="error", error=str(e))
        raise HTTPException(status_code=500, detail=f"Could not store execution: {e}")

    job_id = None
    if status == "queued":
        try:
            job_id = enqueue_job(settings.AUTO_HEAL_QUEUE, {
                "execution_id": execution_id,
                "layer": first_failing_layer(errors),
                "errors": errors,
            })
        except RuntimeError as e:
            log("executions.enqueue_failed", level="error",
                execution_id=execution_id, error=str(e))
            raise HTTPException(status_code=500, detail=str(e))

    log("executions.submitted", execution_id=execution_id, status=status,
        error_count=len(errors))
    return {
        "execution_id": execution_id,
        "status": status,
        "valid": report["valid"],
        "errors": errors,
        "heal_job_id": job_id,
    }


@app.get("/executions/{execution_id}")
def execution_status(execution_id: str, db: Session = Depends(get_db)):
    execution = get_execution(db, execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail=f"Execution not found: {execution_id}")
    return execution.to_dict()


@app.get("/heal/stats")
def heal_stats(timeframe: str = Query("day"), db: Session = Depends(get_db)):
    try:
        return get_healing_stats(db, timeframe)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/queues/{queue_name}/stats")
def queue_stats(queue_name: str):
    if queue_name not in KNOWN_QUEUES:
        raise HTTPException(status_code=400, detail=f"Unknown queue: {queue_name}")
    return get_queue_stats(queue_name)
