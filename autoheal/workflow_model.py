"""
Workflow Model

Canonical shape of an n8n-style workflow document and the small helpers every
validator and repair strategy shares: field defaults, trigger detection, edge
iteration over the nested connections map, and builders for validation-error
and applied-fix records.

Document shape:
    {
        "name": "My Flow",
        "nodes": [{"id", "name", "type", "typeVersion", "position", "parameters", ...}],
        "connections": {
            "<source node name>": {
                "main": [                      # channel
                    [                          # output index 0
                        {"node": "<target node name>", "type": "main", "index": 0},
                    ],
                ],
            },
        },
        "settings": {},
        "staticData": None,
    }

Everything here is a plain dict so documents, errors and fixes serialise
straight into JSONB columns and HTTP responses.

Deterministic. No network calls.
"""

import copy
import math
import re

LAYERS = ("structure", "business", "compatibility")

SEVERITY_ORDER = {"critical": 4, "high": 3, "medium": 2, "low": 1}

REQUIRED_FIELDS = ("name", "nodes", "connections", "settings")

# Expected JSON type of each required top-level field
REQUIRED_FIELD_TYPES = {
    "name": str,
    "nodes": list,
    "connections": dict,
    "settings": dict,
}

# Documented defaults inserted by the missing-property repair
DEFAULT_VALUES = {
    "name": "Auto-generated Workflow",
    "active": False,
    "nodes": [],
    "connections": {},
    "settings": {},
    "staticData": None,
    "meta": None,
    "pinData": None,
}

TRIGGER_TYPE_PATTERN = re.compile(r"(trigger|start)", re.IGNORECASE)

# Entry-point node kinds whose type name does not say "trigger"
ENTRY_NODE_TYPES = {
    "n8n-nodes-base.webhook",
    "n8n-nodes-base.cron",
    "n8n-nodes-base.interval",
}

SAFE_NODE_TYPE = "n8n-nodes-base.noOp"


def is_trigger_type(node_type):
    """True if a node type is a trigger/start entry point (no inbound edge needed)."""
    if not isinstance(node_type, str):
        return False
    return node_type in ENTRY_NODE_TYPES or bool(TRIGGER_TYPE_PATTERN.search(node_type))


def clone(document):
    """Deep copy a document so callers can change it without aliasing the input."""
    return copy.deepcopy(document)


def get_nodes(document):
    """Node dicts of a document, tolerating a missing or malformed nodes field."""
    if not isinstance(document, dict):
        return []
    nodes = document.get("nodes")
    if not isinstance(nodes, list):
        return []
    return [n for n in nodes if isinstance(n, dict)]


def get_connections(document):
    """The connections map, or {} when absent or malformed."""
    if not isinstance(document, dict):
        return {}
    connections = document.get("connections")
    return connections if isinstance(connections, dict) else {}


def node_names(document):
    """Set of node names (connection-graph vertex keys)."""
    return {n.get("name") for n in get_nodes(document) if isinstance(n.get("name"), str)}


def iter_edges(connections):
    """Yield every connection edge in a connections map.

    Args:
        connections: Mapping source-name -> channel -> list of output groups.

    Yields:
        dict with source, channel, output_index, input_index, target.
        Malformed groups and entries are skipped silently.
    """
    if not isinstance(connections, dict):
        return
    for source, channels in connections.items():
        if not isinstance(channels, dict):
            continue
        for channel, groups in channels.items():
            if not isinstance(groups, list):
                continue
            for output_index, group in enumerate(groups):
                if not isinstance(group, list):
                    continue
                for conn in group:
                    if not isinstance(conn, dict) or "node" not in conn:
                        continue
                    yield {
                        "source": source,
                        "channel": channel,
                        "output_index": output_index,
                        "input_index": conn.get("index", 0),
                        "target": conn.get("node"),
                    }


def is_finite_position(position):
    """True if position is a list/tuple of exactly two finite numbers."""
    if not isinstance(position, (list, tuple)) or len(position) != 2:
        return False
    for value in position:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if not math.isfinite(value):
            return False
    return True


def grid_position(index):
    """Deterministic layout slot for the node at `index` (three per row)."""
    return [250 + (index % 3) * 200, 300 + (index // 3) * 150]


def make_error(layer, error_type, message, path=None, severity="medium",
               fixable=True, details=None):
    """Build a validation error record.

    Args:
        layer: One of LAYERS.
        error_type: Stable error code (e.g. "required", "orphaned_nodes").
        message: Human-readable description.
        path: Optional pointer into the document (e.g. "nodes[2].position").
        severity: critical, high, medium or low.
        fixable: Whether a default or repair exists for this error.
        details: Optional dict of structured data for repair strategies.

    Returns:
        dict
    """
    error = {
        "layer": layer,
        "type": error_type,
        "message": message,
        "path": path,
        "severity": severity,
        "fixable": fixable,
    }
    if details:
        error["details"] = details
    return error


def make_fix(error_type, fix_type, description, confidence, path=None,
             old_value=None, new_value=None):
    """Build an applied-fix provenance record."""
    return {
        "error_type": error_type,
        "fix_type": fix_type,
        "description": description,
        "path": path,
        "old_value": old_value,
        "new_value": new_value,
        "confidence": confidence,
    }
