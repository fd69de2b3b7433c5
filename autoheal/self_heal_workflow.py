"""
Self-Heal Workflow

Bounded, strategy-driven repair of a workflow document against the findings
of validate_workflow().

Input:
    execution_id — identifier used for log correlation only
    document (dict) — candidate workflow (deep-copied, never mutated)
    errors (list, optional) — validator errors; validated on entry if omitted

Output:
    dict with:
        - success: bool — True if no errors remain
        - healed: bool — True if at least one fix was applied
        - workflow: dict or None — the repaired document, only on success
        - applied_fixes: list of fix dicts, in application order
        - remaining_errors: list of error dicts still open
        - confidence: float — mean of applied fix confidences (0.0 if none)
        - attempts: int — heal passes executed

Loop (at most MAX_HEALING_ATTEMPTS passes):
    1. order errors by severity, fixable first
    2. per error, first strategy whose can_fix holds; apply only if its
       confidence >= MIN_CONFIDENCE_THRESHOLD
    3. nothing applied on pass 1 -> AI contextual fallback for complex errors
    4. something applied -> re-validate and replace the error list
       nothing applied -> stop

No network calls except the optional AI fallback.
"""

from autoheal.ai_fallback import get_ai_fallback
from autoheal.confidence_scorer import aggregate_confidence
from autoheal.healing_strategies import default_registry, is_complex_error
from autoheal.logger import log
from autoheal.validate_workflow import validate_workflow
from autoheal.workflow_model import SEVERITY_ORDER, clone, make_error

MAX_HEALING_ATTEMPTS = 3
MIN_CONFIDENCE_THRESHOLD = 0.7


def prioritize_errors(errors):
    """Severity descending, then fixable before non-fixable. Stable."""
    return sorted(
        errors,
        key=lambda e: (
            -SEVERITY_ORDER.get(e.get("severity"), 0),
            0 if e.get("fixable") else 1,
        ),
    )


def is_error_resolved(error, fix):
    """True if `fix` addresses `error`: same type, and same path unless the fix has none."""
    if error.get("type") != fix.get("error_type"):
        return False
    return fix.get("path") is None or fix.get("path") == error.get("path")


def _drop_resolved(remaining, error, fix):
    return [
        e for e in remaining
        if e is not error and not is_error_resolved(e, fix)
    ]


def _is_open(error, remaining):
    return any(e is error for e in remaining)


class AutoHealer:
    """Runs the heal loop with an explicit strategy registry and validator.

    Args:
        registry: StrategyRegistry consulted in registration order.
        validator: callable(document) -> report dict with "errors".
        ai_fallback: Optional callable(execution_id, error, document)
            -> (new_document, fix) or None.
    """

    def __init__(self, registry, validator=validate_workflow, ai_fallback=None):
        self.registry = registry
        self.validator = validator
        self.ai_fallback = ai_fallback

    def heal_workflow(self, execution_id, document, errors=None):
        """Heal a workflow document. Never raises.

        See module docstring for the result shape.
        """
        try:
            return self._heal(execution_id, document, errors)
        except Exception as e:
            log("heal.error", level="error",
                execution_id=str(execution_id), error=str(e))
            return {
                "success": False,
                "healed": False,
                "workflow": None,
                "applied_fixes": [],
                "remaining_errors": list(errors or []) + [make_error(
                    "healing", "heal_internal_error",
                    f"Healing aborted: {e}",
                    severity="critical", fixable=False,
                )],
                "confidence": 0.0,
                "attempts": 0,
            }

    def _heal(self, execution_id, document, errors):
        working = clone(document)
        if errors is None:
            errors = self.validator(working)["errors"]
        remaining = list(errors)
        applied_fixes = []
        attempt = 0

        log("heal.start", execution_id=str(execution_id), error_count=len(remaining))

        while remaining and attempt < MAX_HEALING_ATTEMPTS:
            attempt += 1
            fixes_this_pass = 0

            for error in prioritize_errors(remaining):
                if not _is_open(error, remaining):
                    continue
                strategy = self.registry.find(error, working)
                if strategy is None or strategy.confidence < MIN_CONFIDENCE_THRESHOLD:
                    continue
                try:
                    working, fix = strategy.fix(error, working)
                except Exception as e:
                    log("heal.strategy_error", level="warning",
                        execution_id=str(execution_id), strategy=strategy.name,
                        error_type=error.get("type"), error=str(e))
                    continue
                applied_fixes.append(fix)
                fixes_this_pass += 1
                remaining = _drop_resolved(remaining, error, fix)
                log("heal.fix_applied", execution_id=str(execution_id),
                    attempt=attempt, strategy=strategy.name,
                    fix_type=fix["fix_type"], confidence=fix["confidence"])

            if fixes_this_pass == 0 and attempt == 1 and self.ai_fallback is not None:
                working, remaining, ai_fixes = self._try_ai_fallback(
                    execution_id, working, remaining,
                )
                applied_fixes.extend(ai_fixes)
                fixes_this_pass += len(ai_fixes)

            if fixes_this_pass == 0:
                break

            remaining = list(self.validator(working)["errors"])
            log("heal.pass_complete", execution_id=str(execution_id),
                attempt=attempt, fixes=fixes_this_pass, remaining=len(remaining))

        success = not remaining
        confidence = aggregate_confidence(applied_fixes)

        log("heal.complete", level="info" if success else "warning",
            execution_id=str(execution_id), success=success,
            fixes=len(applied_fixes), remaining=len(remaining),
            attempts=attempt, confidence=confidence)

        return {
            "success": success,
            "healed": len(applied_fixes) > 0,
            "workflow": working if success else None,
            "applied_fixes": applied_fixes,
            "remaining_errors": remaining,
            "confidence": confidence,
            "attempts": attempt,
        }

    def _try_ai_fallback(self, execution_id, working, remaining):
        ai_fixes = []
        for error in prioritize_errors(remaining):
            if not error.get("fixable") or not is_complex_error(error):
                continue
            if not _is_open(error, remaining):
                continue
            try:
                outcome = self.ai_fallback(execution_id, error, working)
            except Exception as e:
                log("heal.ai_fallback_error", level="warning",
                    execution_id=str(execution_id), error=str(e))
                continue
            if outcome is None:
                continue
            working, fix = outcome
            ai_fixes.append(fix)
            remaining = _drop_resolved(remaining, error, fix)
            log("heal.ai_fix_applied", execution_id=str(execution_id),
                error_type=error.get("type"), confidence=fix["confidence"])
        return working, remaining, ai_fixes


def build_default_healer():
    """AutoHealer with the standard strategies and the configured AI fallback."""
    return AutoHealer(default_registry(), validate_workflow, get_ai_fallback())
