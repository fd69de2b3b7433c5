"""
AI Contextual Fallback

Optional last-resort repair for complex errors (cycles, orphans, long
free-text findings) that no deterministic strategy fixed on the first heal
pass. Posts the error and the working document to an external repair service
and accepts a returned document as a low-confidence fix.

Reads AI_HEAL_URL and AI_HEAL_TIMEOUT from settings.
Does nothing (returns None) if not configured or on any failure.

Request:  POST {url}  {"execution_id", "error", "workflow"}
Response: {"workflow": {...}, "description": str, "confidence": float}
"""

from typing import Optional

import httpx

from autoheal import settings
from autoheal.logger import log
from autoheal.workflow_model import clone, make_fix

AI_CONFIDENCE_CAP = 0.65


class AIContextualFixer:
    """Timeout-bounded HTTP client for an external workflow repair service."""

    def __init__(self, url: str, timeout: float = 10.0, api_key: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    def __call__(self, execution_id, error: dict, document: dict):
        """Ask the service to repair one error.

        Returns:
            (new_document, applied_fix) or None when the service is
            unreachable, times out, or returns no usable workflow.
        """
        try:
            resp = httpx.post(
                self.url,
                headers=self.headers,
                json={
                    "execution_id": str(execution_id) if execution_id else None,
                    "error": error,
                    "workflow": document,
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            log("heal.ai_fallback_unreachable", level="warning",
                execution_id=str(execution_id), error=str(e))
            return None

        if resp.status_code >= 400:
            log("heal.ai_fallback_rejected", level="warning",
                execution_id=str(execution_id), status_code=resp.status_code)
            return None

        try:
            body = resp.json()
        except ValueError:
            log("heal.ai_fallback_bad_response", level="warning",
                execution_id=str(execution_id))
            return None

        workflow = body.get("workflow") if isinstance(body, dict) else None
        if not isinstance(workflow, dict):
            return None

        try:
            confidence = float(body.get("confidence", AI_CONFIDENCE_CAP))
        except (TypeError, ValueError):
            confidence = AI_CONFIDENCE_CAP
        confidence = min(max(confidence, 0.0), AI_CONFIDENCE_CAP)

        return clone(workflow), make_fix(
            error.get("type"), "ai_contextual",
            body.get("description") or f"AI contextual fix for {error.get('type')}",
            confidence,
            path=error.get("path"),
        )


def get_ai_fallback():
    """Build the configured fallback, or None when AI_HEAL_URL is unset."""
    if not settings.AI_HEAL_URL:
        return None
    return AIContextualFixer(settings.AI_HEAL_URL, timeout=settings.AI_HEAL_TIMEOUT)
