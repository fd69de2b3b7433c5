"""
Database Repository — Execution Persistence Layer

Public functions:
    create_execution        — insert a new execution row (status queued)
    get_execution           — fetch by id, None if unknown or malformed id
    update_execution_status — keyed status/progress write, safe to repeat
    record_healing_result   — persist one heal run (document only on success)
    get_healing_stats       — attempts, successes, rate, common error types

Callers own the transaction: functions flush, never commit.

Deterministic. No AI reasoning.
"""

import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from db.models import EXECUTION_STATUSES, WorkflowExecution

TIMEFRAMES = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}

TERMINAL_STATUSES = ("completed", "failed")


def _as_uuid(execution_id):
    if isinstance(execution_id, uuid.UUID):
        return execution_id
    try:
        return uuid.UUID(str(execution_id))
    except (TypeError, ValueError):
        return None


def create_execution(db: Session, workflow: dict, user_id: str = None,
                     metadata: dict = None) -> WorkflowExecution:
    """Insert an execution row for a candidate workflow.

    Args:
        db: Active SQLAlchemy session (caller manages commit/rollback).
        workflow: Candidate workflow document, stored verbatim.
        user_id: Owner of the execution.
        metadata: Optional extra metadata dict.

    Returns:
        The new WorkflowExecution (id populated).
    """
    execution = WorkflowExecution(
        user_id=user_id,
        workflow_json=workflow,
        validation_progress={},
        status="queued",
        retry_count=0,
        metadata_=dict(metadata or {}),
    )
    db.add(execution)
    db.flush()
    return execution


def get_execution(db: Session, execution_id):
    """Return the execution with this id, or None."""
    key = _as_uuid(execution_id)
    if key is None:
        return None
    return db.query(WorkflowExecution).filter(WorkflowExecution.id == key).first()


def update_execution_status(db: Session, execution_id, status: str,
                            validation_progress: dict = None,
                            error_details=None) -> bool:
    """Set status (and optionally progress/error details) for an execution.

    Writing the same values twice leaves the row in the same state, so a
    re-delivered job can repeat this safely.

    Returns:
        False if the execution does not exist.

    Raises:
        ValueError: Unknown status.
    """
    if status not in EXECUTION_STATUSES:
        raise ValueError(f"Unknown execution status: {status}")

    execution = get_execution(db, execution_id)
    if execution is None:
        return False

    now = datetime.now(timezone.utc)
    execution.status = status
    execution.updated_at = now
    if validation_progress is not None:
        execution.validation_progress = dict(validation_progress)
    if error_details is not None:
        execution.error_details = error_details
    if status in TERMINAL_STATUSES:
        execution.completed_at = now
    db.flush()
    return True


def record_healing_result(db: Session, execution_id, result: dict,
                          input_errors: list) -> bool:
    """Persist the outcome of one heal run.

    On success the healed document replaces workflow_json and the applied
    fixes land in metadata. On failure the stored document is untouched and
    the execution is marked failed with the remaining errors.

    Returns:
        False if the execution does not exist.
    """
    execution = get_execution(db, execution_id)
    if execution is None:
        return False

    now = datetime.now(timezone.utc)
    metadata = dict(execution.metadata_ or {})
    metadata["heal_attempted"] = True
    metadata["auto_healed"] = bool(result.get("success"))
    metadata["applied_fixes"] = result.get("applied_fixes", [])
    metadata["healing_confidence"] = result.get("confidence", 0.0)
    metadata["healed_error_types"] = sorted({e.get("type") for e in input_errors if e.get("type")})
    metadata["healed_at"] = now.isoformat()
    execution.metadata_ = metadata

    progress = dict(execution.validation_progress or {})
    progress["healing"] = {
        "success": bool(result.get("success")),
        "fixes_applied": len(result.get("applied_fixes", [])),
        "remaining_errors": len(result.get("remaining_errors", [])),
        "confidence": result.get("confidence", 0.0),
        "attempts": result.get("attempts", 0),
    }
    execution.validation_progress = progress
    execution.updated_at = now

    if result.get("success"):
        execution.workflow_json = result["workflow"]
    else:
        execution.status = "failed"
        execution.error_details = {"remaining_errors": result.get("remaining_errors", [])}
        execution.completed_at = now

    db.flush()
    return True


def get_healing_stats(db: Session, timeframe: str = "day") -> dict:
    """Healing statistics over a recent window.

    Args:
        db: Active SQLAlchemy session.
        timeframe: "day", "week" or "month".

    Returns:
        dict with timeframe, total_attempts, successful_heals,
        success_rate (percent, 2dp), common_errors (top 10 error types).

    Raises:
        ValueError: Unknown timeframe.
    """
    if timeframe not in TIMEFRAMES:
        raise ValueError(f"Unknown timeframe: {timeframe}")

    since = datetime.now(timezone.utc) - TIMEFRAMES[timeframe]
    rows = (
        db.query(WorkflowExecution)
        .filter(WorkflowExecution.created_at >= since)
        .all()
    )

    total = 0
    successes = 0
    error_types = Counter()
    for row in rows:
        metadata = row.metadata_ or {}
        if not metadata.get("heal_attempted"):
            continue
        total += 1
        if metadata.get("auto_healed"):
            successes += 1
        error_types.update(metadata.get("healed_error_types") or [])

    return {
        "timeframe": timeframe,
        "total_attempts": total,
        "successful_heals": successes,
        "success_rate": round(successes / total * 100, 2) if total else 0.0,
        "common_errors": [
            {"error_type": t, "count": c} for t, c in error_types.most_common(10)
        ],
    }
