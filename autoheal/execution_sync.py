"""
Execution Sync — best-effort hooks the queue handlers call at each stage.

Every call goes through the ExecutionMirror. Failures are logged as
sync.* warnings and return None; the mirror never fails a job. If
Supabase is not configured the calls return None at once.
"""

from typing import Optional

from autoheal.logger import log
from autoheal.supabase_client import get_execution_mirror


def sync_execution_status(
    execution_id: str,
    status: str,
    user_id: Optional[str] = None,
    validation_progress: Optional[dict] = None,
) -> Optional[dict]:
    """Mirror a status change. Returns the stored row, or None."""
    mirror = get_execution_mirror()
    if not mirror:
        return None

    try:
        return mirror.upsert_execution_state(execution_id, status, user_id, validation_progress)
    except Exception as e:
        log("sync.execution_status_failed", level="warning",
            execution_id=str(execution_id), error=str(e))
        return None


def sync_healing_event(execution_id: str, result: dict) -> Optional[dict]:
    """Mirror one healing outcome from AutoHealer.heal_workflow()."""
    mirror = get_execution_mirror()
    if not mirror:
        return None

    try:
        return mirror.record_healing_event(execution_id, result)
    except Exception as e:
        log("sync.healing_event_failed", level="warning",
            execution_id=str(execution_id), error=str(e))
        return None
