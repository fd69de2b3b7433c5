"""
Compatibility Validator

Layer 3 of the validation pipeline: target-engine constraints.

Rules:
    invalid_connection  — an edge whose source or target names no existing node
    forbidden_node_type — a node type on the security/operational deny-list

Deterministic. No network calls.
"""

from autoheal import settings
from autoheal.workflow_model import get_connections, iter_edges, make_error, node_names

LAYER = "compatibility"

# Known-dangerous node kinds; EXTRA_FORBIDDEN_NODE_TYPES extends this at runtime
FORBIDDEN_NODE_TYPES = frozenset({
    "n8n-nodes-base.malicious",
    "dangerous-node",
    "n8n-nodes-base.executeCommand",
})


def forbidden_node_types():
    """Built-in deny-list plus any configured extras."""
    return FORBIDDEN_NODE_TYPES | set(settings.EXTRA_FORBIDDEN_NODE_TYPES)


def validate_compatibility(document, forbidden_types=None):
    """Run the compatibility rules against a workflow document.

    Args:
        document: Workflow document dict.
        forbidden_types: Optional override of the node-type deny-list.

    Returns:
        List of validation error dicts.
    """
    if forbidden_types is None:
        forbidden_types = forbidden_node_types()

    errors = []
    names = node_names(document)

    for edge in find_dangling_edges(get_connections(document), names):
        if edge["target"] is None:
            message = f"Connection entry references non-existent node: {edge['source']}"
        else:
            missing = edge["source"] if edge["source"] not in names else edge["target"]
            message = (
                f"Connection {edge['source']} -> {edge['target']} "
                f"references non-existent node: {missing}"
            )
        errors.append(make_error(
            LAYER, "invalid_connection",
            message,
            path=f"connections.{edge['source']}", severity="high", fixable=True,
            details=edge,
        ))

    raw_nodes = document.get("nodes") if isinstance(document, dict) else None
    for i, node in enumerate(raw_nodes if isinstance(raw_nodes, list) else []):
        if not isinstance(node, dict):
            continue
        node_type = node.get("type")
        if isinstance(node_type, str) and node_type in forbidden_types:
            errors.append(make_error(
                LAYER, "forbidden_node_type",
                f"Node type '{node.get('type')}' is not allowed (node '{node.get('name')}')",
                path=f"nodes[{i}].type", severity="critical", fixable=True,
                details={"index": i, "node_type": node_type},
            ))

    return errors


def find_dangling_edges(connections, names):
    """Edges whose source or target is not among `names`.

    A source entry with no edges at all still counts when the source itself
    is unknown, so a stale key is reported rather than silently kept.
    """
    dangling = []
    for source, channels in connections.items():
        edges = list(iter_edges({source: channels}))
        if source not in names and not edges:
            dangling.append({
                "source": source, "channel": None, "output_index": None,
                "input_index": None, "target": None,
            })
            continue
        for edge in edges:
            target = edge["target"]
            if edge["source"] not in names or not isinstance(target, str) or target not in names:
                dangling.append(edge)
    return dangling
