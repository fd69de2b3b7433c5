"""
Workflow Validator

Runs the three validation layers in fixed order and aggregates their findings
into a single report consumed by the producer, the HTTP API and the healer.

    structure -> business -> compatibility

Every layer always runs; later layers are shape-tolerant, so a missing
`connections` map reads as "no edges" rather than crashing. The optional
deployment test is an external collaborator (dry-run against the engine)
injected by the caller and skipped unless explicitly requested.

Input: document (any JSON value), skip_deployment_test (bool)
Output: dict with valid, errors, layers, checks_run, timestamp

Findings are always returned as data; this module never raises on bad input.
"""

from datetime import datetime, timezone

from autoheal.logger import log
from autoheal.validate_business_logic import validate_business_logic
from autoheal.validate_compatibility import validate_compatibility
from autoheal.validate_structure import validate_structure
from autoheal.workflow_model import make_error


def validate_workflow(document, skip_deployment_test=True, deployment_test=None,
                      forbidden_types=None):
    """Validate a workflow document across all layers.

    Args:
        document: Candidate workflow document.
        skip_deployment_test: When False and the document passes every layer,
            call `deployment_test` as a final check.
        deployment_test: Optional callable(document) -> list of error dicts.
        forbidden_types: Optional override of the compatibility deny-list.

    Returns:
        dict with:
            - valid: bool — True iff errors is empty
            - errors: list of error dicts, structure first, then business,
              then compatibility
            - layers: dict layer -> error count
            - checks_run: int — number of layers executed
            - timestamp: str (ISO 8601)
    """
    structure_errors = validate_structure(document)
    business_errors = validate_business_logic(document)
    compatibility_errors = validate_compatibility(document, forbidden_types=forbidden_types)

    errors = structure_errors + business_errors + compatibility_errors
    layers = {
        "structure": len(structure_errors),
        "business": len(business_errors),
        "compatibility": len(compatibility_errors),
    }
    checks_run = 3

    if not errors and not skip_deployment_test and deployment_test is not None:
        checks_run += 1
        deployment_errors = _run_deployment_test(deployment_test, document)
        layers["deployment"] = len(deployment_errors)
        errors = errors + deployment_errors

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "layers": layers,
        "checks_run": checks_run,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def first_failing_layer(errors):
    """Layer of the first error in a report's error list, or None."""
    return errors[0]["layer"] if errors else None


def _run_deployment_test(deployment_test, document):
    try:
        return list(deployment_test(document) or [])
    except Exception as e:
        log("validate.deployment_test_error", level="error", error=str(e))
        return [make_error(
            "deployment", "deployment_test_failed",
            f"Deployment test could not run: {e}",
            severity="high", fixable=False,
        )]
