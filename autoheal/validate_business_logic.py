"""
Business-Logic Validator

Layer 2 of the validation pipeline: graph invariants over a structurally
sound document.

Rules:
    duplicate_node_ids  — one aggregated error listing every repeated index
    orphaned_nodes      — non-trigger nodes that no connection touches
    circular_dependency — one error per distinct cycle, with its name sequence

Shape-tolerant: malformed nodes/connections are skipped (layer 1 reports them).

Deterministic. No network calls.
"""

from autoheal.graph_integrity_check import graph_integrity_check
from autoheal.workflow_model import get_nodes, is_trigger_type, make_error

LAYER = "business"


def validate_business_logic(document):
    """Run the business-logic rules against a workflow document.

    Returns:
        List of validation error dicts.
    """
    errors = []
    nodes = get_nodes(document)

    duplicate = _check_duplicate_ids(document)
    if duplicate:
        errors.append(duplicate)

    graph = graph_integrity_check(document)

    orphans = find_orphaned_nodes(nodes, graph["connected_names"])
    if orphans:
        errors.append(make_error(
            LAYER, "orphaned_nodes",
            f"Found {len(orphans)} disconnected node(s): {', '.join(orphans)}",
            path="nodes", severity="medium", fixable=True,
            details={"nodes": orphans},
        ))

    for cycle in graph["cycles"]:
        loop = " -> ".join(cycle + [cycle[0]])
        errors.append(make_error(
            LAYER, "circular_dependency",
            f"Workflow contains a circular dependency: {loop}",
            path=f"connections.{cycle[-1]}", severity="high", fixable=True,
            details={"cycle": cycle},
        ))

    return errors


def find_orphaned_nodes(nodes, connected):
    """Names of nodes no edge touches, excluding trigger/start nodes.

    A workflow made of a single node has nothing to connect to, so it never
    reports that node as orphaned.

    Args:
        nodes: Node dicts in document order.
        connected: Set of names used as a connection source or target.

    Returns:
        List of orphan names, in document order.
    """
    if len(nodes) < 2:
        return []
    orphans = []
    for node in nodes:
        name = node.get("name")
        if (isinstance(name, str) and name in connected) or is_trigger_type(node.get("type")):
            continue
        orphans.append(name if isinstance(name, str) else str(node.get("id")))
    return orphans


def _check_duplicate_ids(document):
    """Scan nodes in order; any id seen before is a duplicate."""
    raw_nodes = document.get("nodes") if isinstance(document, dict) else None
    if not isinstance(raw_nodes, list):
        return None

    first_seen = {}
    indices = []
    ids = []
    for i, node in enumerate(raw_nodes):
        if not isinstance(node, dict):
            continue
        node_id = node.get("id")
        if not isinstance(node_id, str) or not node_id:
            continue
        if node_id in first_seen:
            indices.append(i)
            if node_id not in ids:
                ids.append(node_id)
        else:
            first_seen[node_id] = i

    if not indices:
        return None

    return make_error(
        LAYER, "duplicate_node_ids",
        f"Duplicate node IDs found: {', '.join(ids)} (indices {indices})",
        path="nodes", severity="high", fixable=True,
        details={"ids": ids, "indices": indices},
    )
