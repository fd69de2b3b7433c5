"""
Execution Mirror — Supabase tables that shadow this service's executions.

Two PostgREST tables are written, never read:

    workflow_execution_state   one row per execution, upserted on execution_id
    workflow_healing_events    one row per heal run (success, confidence, fix types)

Rows are shaped here so callers hand over domain values (an execution id,
a status, a healing result) and never table payloads.

Reads SUPABASE_URL and SUPABASE_SERVICE_KEY from environment.
get_execution_mirror() returns None if either is missing.
"""

import os
from datetime import datetime, timezone
from typing import Optional

import httpx

EXECUTION_STATE_TABLE = "workflow_execution_state"
HEALING_EVENTS_TABLE = "workflow_healing_events"


class SupabaseError(Exception):
    """A mirror write was rejected by the Supabase REST API."""

    def __init__(self, table: str, status_code: int, body: str = ""):
        self.table = table
        self.status_code = status_code
        self.body = body
        super().__init__(f"Write to {table} failed: {status_code}")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def execution_state_row(
    execution_id: str,
    status: str,
    user_id: Optional[str] = None,
    validation_progress: Optional[dict] = None,
) -> dict:
    """Row for workflow_execution_state. Empty optional fields are left out
    so an upsert does not clear values written by an earlier stage."""
    row = {
        "execution_id": str(execution_id),
        "status": status,
        "updated_at": _now(),
    }
    if user_id:
        row["user_id"] = user_id
    if validation_progress is not None:
        row["validation_progress"] = validation_progress
    return row


def healing_event_row(execution_id: str, result: dict) -> dict:
    """Row for workflow_healing_events, summarizing an AutoHealer result."""
    fixes = result.get("applied_fixes") or []
    return {
        "execution_id": str(execution_id),
        "success": bool(result.get("success")),
        "confidence": result.get("confidence", 0.0),
        "fix_count": len(fixes),
        "fix_types": [f.get("fix_type") for f in fixes],
        "remaining_error_count": len(result.get("remaining_errors") or []),
        "created_at": _now(),
    }


class ExecutionMirror:
    """Writes execution state and healing events to a Supabase project."""

    def __init__(self, project_url: str, service_key: str, timeout: float = 10):
        self.project_url = project_url.rstrip("/")
        self.rest_url = f"{self.project_url}/rest/v1"
        self.timeout = timeout
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def upsert_execution_state(
        self,
        execution_id: str,
        status: str,
        user_id: Optional[str] = None,
        validation_progress: Optional[dict] = None,
    ) -> Optional[dict]:
        """Create or update the execution's state row. Returns the stored row."""
        row = execution_state_row(execution_id, status, user_id, validation_progress)
        return self._write(EXECUTION_STATE_TABLE, row, on_conflict="execution_id")

    def record_healing_event(self, execution_id: str, result: dict) -> Optional[dict]:
        """Append one healing outcome. Returns the stored row."""
        return self._write(HEALING_EVENTS_TABLE, healing_event_row(execution_id, result))

    def _write(self, table: str, row: dict, on_conflict: Optional[str] = None) -> Optional[dict]:
        headers = self.headers
        params = None
        if on_conflict:
            headers = {**headers, "Prefer": "return=representation,resolution=merge-duplicates"}
            params = {"on_conflict": on_conflict}

        resp = httpx.post(
            f"{self.rest_url}/{table}",
            headers=headers,
            params=params,
            json=[row],
            timeout=self.timeout,
        )
        if resp.status_code >= 400:
            raise SupabaseError(table, resp.status_code, resp.text)
        rows = resp.json()
        return rows[0] if rows else None


# ── Singleton ─────────────────────────────────────────────────

_mirror: Optional[ExecutionMirror] = None


def get_execution_mirror() -> Optional[ExecutionMirror]:
    """Return the shared ExecutionMirror, or None if Supabase is not configured."""
    global _mirror
    if _mirror is not None:
        return _mirror

    url = os.environ.get("SUPABASE_URL", "").strip()
    key = os.environ.get("SUPABASE_SERVICE_KEY", "").strip()

    if not url or not key:
        return None

    _mirror = ExecutionMirror(project_url=url, service_key=key)
    return _mirror
