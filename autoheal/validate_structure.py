"""
Structural Validator

Layer 1 of the validation pipeline: checks the document against required-shape
rules (presence, JSON types, array arity) independent of graph semantics.

Rules:
    required      — name/nodes/connections/settings missing, wrong type, or empty name
    minItems      — nodes is an empty list (not fixable: no default can invent a node)
    invalid_node  — an entry in nodes is not an object (not fixable)
    minLength     — node id missing or not a non-empty string
    invalid_field_type — node name or type present but not a string (not fixable)
    invalid_position — node position is not exactly two finite numbers

Never raises. A non-object document yields a required error per field.

Deterministic. No network calls.
"""

from autoheal.workflow_model import (
    REQUIRED_FIELDS,
    REQUIRED_FIELD_TYPES,
    is_finite_position,
    make_error,
)

LAYER = "structure"

# Node fields that must be strings when present
NODE_STRING_FIELDS = ("name", "type")


def validate_structure(document):
    """Run the structural rules against a workflow document.

    Args:
        document: Candidate workflow document (any JSON value).

    Returns:
        List of validation error dicts, in rule order.
    """
    errors = []

    if not isinstance(document, dict):
        for field in REQUIRED_FIELDS:
            errors.append(_required(field, "document is not an object"))
        return errors

    for field in REQUIRED_FIELDS:
        if field not in document or document[field] is None:
            errors.append(_required(field))
            continue
        expected = REQUIRED_FIELD_TYPES[field]
        value = document[field]
        if not isinstance(value, expected):
            errors.append(_required(field, f"expected {expected.__name__}, got {type(value).__name__}"))
        elif field == "name" and not value.strip():
            errors.append(_required(field, "name is empty"))

    nodes = document.get("nodes")
    if not isinstance(nodes, list):
        return errors

    if not nodes:
        errors.append(make_error(
            LAYER, "minItems",
            "Workflow must contain at least one node",
            path="nodes", severity="critical", fixable=False,
        ))
        return errors

    for i, node in enumerate(nodes):
        if not isinstance(node, dict):
            errors.append(make_error(
                LAYER, "invalid_node",
                f"Node at index {i} is not an object",
                path=f"nodes[{i}]", severity="critical", fixable=False,
            ))
            continue

        node_id = node.get("id")
        if not isinstance(node_id, str) or not node_id:
            errors.append(make_error(
                LAYER, "minLength",
                f"Node at index {i} has a missing or empty id",
                path=f"nodes[{i}].id", severity="high", fixable=True,
            ))

        for field in NODE_STRING_FIELDS:
            value = node.get(field)
            if value is not None and not isinstance(value, str):
                errors.append(make_error(
                    LAYER, "invalid_field_type",
                    f"Node at index {i} has a non-string {field} ({type(value).__name__})",
                    path=f"nodes[{i}].{field}", severity="high", fixable=False,
                    details={"index": i, "field": field},
                ))

        if not is_finite_position(node.get("position")):
            errors.append(make_error(
                LAYER, "invalid_position",
                f"Node at index {i} must have a position of exactly two finite numbers",
                path=f"nodes[{i}].position", severity="medium", fixable=True,
                details={"index": i, "value": node.get("position")},
            ))

    return errors


def _required(field, reason=None):
    message = f"Missing required property: {field}"
    if reason:
        message = f"{message} ({reason})"
    return make_error(
        LAYER, "required", message,
        path=field, severity="critical", fixable=True,
        details={"property": field},
    )
