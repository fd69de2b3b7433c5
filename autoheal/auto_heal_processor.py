"""
Auto-Heal Processor — named queue handlers for the validate/heal cycle.

Queues:
    workflow_validation  {execution_id, workflow?, user_id?, retry_after_healing?,
                          skip_deployment_test?}
        valid                                   -> completed (+ deployment_test job)
        invalid, fixable, not retry_after_healing -> queued, enqueue auto_heal
        otherwise                               -> failed
    auto_heal            {execution_id, layer, errors}
        load document -> auto_healing -> heal -> persist
        success -> enqueue workflow_validation with retry_after_healing=True
        failure -> failed (stored document untouched)

Handlers raise on infrastructure problems (missing execution, enqueue
failure) so the queue processor retries and eventually dead-letters them.
Validation and healing outcomes themselves are never raised.
"""

from autoheal import settings
from autoheal.execution_sync import sync_execution_status, sync_healing_event
from autoheal.job_queue import enqueue_job
from autoheal.logger import log
from autoheal.validate_workflow import first_failing_layer, validate_workflow
from db.repo import get_execution, record_healing_result, update_execution_status


class ExecutionNotFoundError(Exception):
    """Raised when a queued job references an execution that does not exist."""

    def __init__(self, execution_id):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


def _require_execution_id(payload):
    execution_id = payload.get("execution_id")
    if not execution_id:
        raise ValueError("Job payload is missing execution_id")
    return str(execution_id)


def handle_auto_heal_job(payload, healer, session_factory, enqueue=enqueue_job):
    """Heal the stored document of one execution.

    Args:
        payload: {execution_id, layer, errors}
        healer: AutoHealer instance.
        session_factory: Callable returning a SQLAlchemy session.
        enqueue: Queue writer, enqueue_job by default.

    Returns:
        The healing result dict.

    Raises:
        ExecutionNotFoundError: Unknown execution_id.
        RuntimeError: Follow-up validation job could not be enqueued.
    """
    execution_id = _require_execution_id(payload)
    errors = payload.get("errors")

    db = session_factory()
    try:
        execution = get_execution(db, execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        document = execution.workflow_json
        user_id = execution.user_id

        progress = dict(execution.validation_progress or {})
        progress.update({"stage": "auto_healing", "failed_layer": payload.get("layer")})
        update_execution_status(db, execution_id, "auto_healing", validation_progress=progress)
        db.commit()
        sync_execution_status(execution_id, "auto_healing", user_id, progress)

        log("auto_heal.job_started", execution_id=execution_id,
            layer=payload.get("layer"), error_count=len(errors or []))
        result = healer.heal_workflow(execution_id, document, errors)

        record_healing_result(db, execution_id, result, errors or [])
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    sync_healing_event(execution_id, result)

    if result["success"]:
        enqueue(settings.VALIDATION_QUEUE, {
            "execution_id": execution_id,
            "workflow": result["workflow"],
            "user_id": user_id,
            "retry_after_healing": True,
        })
        log("auto_heal.job_healed", execution_id=execution_id,
            fixes=len(result["applied_fixes"]), confidence=result["confidence"])
    else:
        sync_execution_status(execution_id, "failed", user_id)
        log("auto_heal.job_failed", level="warning", execution_id=execution_id,
            remaining=len(result["remaining_errors"]))

    return result


def handle_validation_job(payload, session_factory, enqueue=enqueue_job,
                          validator=validate_workflow):
    """Validate one execution's document and route it onward.

    Returns:
        The validation report dict.

    Raises:
        ExecutionNotFoundError: Unknown execution_id.
        RuntimeError: Follow-up job could not be enqueued.
    """
    execution_id = _require_execution_id(payload)
    retry_after_healing = bool(payload.get("retry_after_healing"))
    skip_deployment_test = payload.get("skip_deployment_test", True)
    follow_ups = []

    db = session_factory()
    try:
        execution = get_execution(db, execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        workflow = payload.get("workflow") or execution.workflow_json
        user_id = payload.get("user_id") or execution.user_id

        report = validator(workflow)
        errors = report["errors"]
        progress = dict(execution.validation_progress or {})
        progress.update({
            "stage": "validation",
            "valid": report["valid"],
            "error_count": len(errors),
            "layers": report.get("layers", {}),
            "retry_after_healing": retry_after_healing,
            "validated_at": report.get("timestamp"),
        })

        if report["valid"]:
            status = "completed"
            if not skip_deployment_test:
                follow_ups.append((settings.DEPLOYMENT_TEST_QUEUE, {
                    "execution_id": execution_id,
                    "workflow": workflow,
                    "user_id": user_id,
                }))
            update_execution_status(db, execution_id, status, validation_progress=progress)
        elif any(e.get("fixable") for e in errors) and not retry_after_healing:
            status = "queued"
            follow_ups.append((settings.AUTO_HEAL_QUEUE, {
                "execution_id": execution_id,
                "layer": first_failing_layer(errors),
                "errors": errors,
            }))
            update_execution_status(db, execution_id, status, validation_progress=progress)
        else:
            status = "failed"
            update_execution_status(db, execution_id, status, validation_progress=progress,
                                    error_details={"errors": errors})
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    for queue_name, job in follow_ups:
        enqueue(queue_name, job)

    sync_execution_status(execution_id, status, user_id, progress)
    log("validation.job_done", execution_id=execution_id, status=status,
        error_count=len(errors), retry_after_healing=retry_after_healing)
    return report


def start_auto_heal_processor(processor, healer, session_factory, start=True):
    """Register the auto_heal handler on a QueueProcessor."""
    return processor.start_processor(
        settings.AUTO_HEAL_QUEUE,
        lambda payload: handle_auto_heal_job(payload, healer, session_factory),
        visibility_timeout=settings.HEAL_VISIBILITY_TIMEOUT,
        batch_size=settings.QUEUE_BATCH_SIZE,
        start=start,
    )


def start_validation_processor(processor, session_factory, start=True):
    """Register the workflow_validation handler on a QueueProcessor."""
    return processor.start_processor(
        settings.VALIDATION_QUEUE,
        lambda payload: handle_validation_job(payload, session_factory),
        visibility_timeout=settings.VALIDATION_VISIBILITY_TIMEOUT,
        batch_size=settings.QUEUE_BATCH_SIZE,
        start=start,
    )
