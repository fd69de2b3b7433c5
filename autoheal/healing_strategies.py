"""
Healing Strategies

Deterministic repairs for validator findings, plus the ordered registry the
healer dispatches through.

Each strategy is a (name, can_fix, fix, confidence) entry:
    can_fix(error, document) -> bool
        Pure predicate. Also answers False when an earlier fix in the same
        pass has already made this one moot.
    fix(error, document) -> (new_document, applied_fix)
        Works on a deep copy; the input document is never touched.
    confidence
        Static base rate for the strategy class, gated by the healer.

Registered strategies (dispatch order):
    missing_required_property  structure/required             0.90
    invalid_node_id            structure/minLength on nodes   0.80
    invalid_position           structure/*.position           0.95
    duplicate_node_ids         business/duplicate_node_ids    0.85
    orphaned_nodes             business/orphaned_nodes        0.70
    circular_dependency        business/circular_dependency   0.70
    invalid_connection         compatibility/invalid_connection 0.80
    forbidden_node_type        compatibility/forbidden_node_type 0.75
    ai_contextual_fix          any fixable complex error      0.65 (placeholder)

Deterministic apart from the millisecond timestamp used to disambiguate
renamed duplicate ids. No network calls.
"""

import re
import time

from autoheal.graph_integrity_check import connected_names
from autoheal.logger import log
from autoheal.validate_business_logic import find_orphaned_nodes
from autoheal.validate_compatibility import forbidden_node_types
from autoheal.workflow_model import (
    DEFAULT_VALUES,
    SAFE_NODE_TYPE,
    clone,
    get_connections,
    get_nodes,
    grid_position,
    is_finite_position,
    is_trigger_type,
    make_fix,
    node_names,
)

COMPLEX_ERROR_TYPES = {"circular_dependency", "orphaned_nodes", "invalid_workflow_structure"}
COMPLEX_MESSAGE_LENGTH = 100

_MISSING_PROPERTY_RE = re.compile(r"Missing required property: (\w+)")


class HealingStrategy:
    """A confidence-rated repair for one class of validation error."""

    def __init__(self, name, can_fix, fix, confidence):
        self.name = name
        self.can_fix = can_fix
        self.fix = fix
        self.confidence = confidence

    def __repr__(self):
        return f"HealingStrategy({self.name!r}, confidence={self.confidence})"


class StrategyRegistry:
    """Ordered strategy table; the first strategy that can fix an error wins."""

    def __init__(self, strategies=None):
        self._strategies = list(strategies or [])

    def register(self, strategy):
        self._strategies.append(strategy)
        return strategy

    def find(self, error, document):
        """Return the first registered strategy whose can_fix is true, or None."""
        for strategy in self._strategies:
            try:
                if strategy.can_fix(error, document):
                    return strategy
            except Exception as e:
                log("heal.can_fix_error", level="warning",
                    strategy=strategy.name, error=str(e))
        return None

    def names(self):
        return [s.name for s in self._strategies]

    def __iter__(self):
        return iter(self._strategies)

    def __len__(self):
        return len(self._strategies)


def is_complex_error(error):
    """Errors that only the AI-contextual fallback may attempt."""
    return (
        error.get("type") in COMPLEX_ERROR_TYPES
        or len(error.get("message") or "") > COMPLEX_MESSAGE_LENGTH
    )


# ===== Structure Repairs =====

def _missing_property_name(error):
    details = error.get("details") or {}
    if details.get("property"):
        return details["property"]
    if error.get("path"):
        return error["path"]
    match = _MISSING_PROPERTY_RE.search(error.get("message") or "")
    return match.group(1) if match else None


def can_fix_missing_required_property(error, document):
    return (
        error.get("layer") == "structure"
        and error.get("type") == "required"
        and _missing_property_name(error) in DEFAULT_VALUES
    )


def fix_missing_required_property(error, document):
    """Insert the documented default for a missing (or mistyped) top-level field."""
    prop = _missing_property_name(error)
    fixed = clone(document) if isinstance(document, dict) else {}
    old_value = fixed.get(prop)
    default = clone(DEFAULT_VALUES[prop])
    fixed[prop] = default

    return fixed, make_fix(
        error.get("type"), "add_default_property",
        f"Added missing required property: {prop}",
        CONFIDENCE["missing_required_property"],
        path=prop, old_value=old_value, new_value=default,
    )


def can_fix_invalid_node_id(error, document):
    return (
        error.get("layer") == "structure"
        and error.get("type") == "minLength"
        and "nodes" in (error.get("path") or "")
    )


def fix_invalid_node_id(error, document):
    """Give every node with a missing/empty id a fresh `node_{index}_{n}` id.

    The counter only moves forward and skips any id already in the document.
    """
    fixed = clone(document)
    nodes = fixed.get("nodes") if isinstance(fixed.get("nodes"), list) else []
    existing = {n.get("id") for n in nodes if isinstance(n, dict) and isinstance(n.get("id"), str)}
    counter = 1
    assigned = {}

    for i, node in enumerate(nodes):
        if not isinstance(node, dict):
            continue
        node_id = node.get("id")
        if isinstance(node_id, str) and node_id:
            continue
        candidate = f"node_{i}_{counter}"
        while candidate in existing:
            counter += 1
            candidate = f"node_{i}_{counter}"
        counter += 1
        node["id"] = candidate
        existing.add(candidate)
        assigned[i] = candidate

    return fixed, make_fix(
        error.get("type"), "generate_node_id",
        f"Generated ids for {len(assigned)} node(s) with missing or invalid ids",
        CONFIDENCE["invalid_node_id"],
        new_value=assigned,
    )


def can_fix_invalid_position(error, document):
    return error.get("layer") == "structure" and ".position" in (error.get("path") or "")


def fix_invalid_position(error, document):
    """Place every node with a bad position on a three-wide grid by index."""
    fixed = clone(document)
    nodes = fixed.get("nodes") if isinstance(fixed.get("nodes"), list) else []
    moved = {}

    for i, node in enumerate(nodes):
        if not isinstance(node, dict) or is_finite_position(node.get("position")):
            continue
        node["position"] = grid_position(i)
        moved[i] = node["position"]

    return fixed, make_fix(
        error.get("type"), "fix_node_positions",
        f"Fixed invalid positions for {len(moved)} node(s)",
        CONFIDENCE["invalid_position"],
        new_value=moved,
    )


# ===== Business Logic Repairs =====

def can_fix_duplicate_node_ids(error, document):
    return error.get("layer") == "business" and error.get("type") == "duplicate_node_ids"


def fix_duplicate_node_ids(error, document):
    """Keep the first occurrence of each id; rename later ones.

    Renamed ids look like `{id}_{index}_{timestamp_ms}`. A single rewrite map
    (old id -> first replacement) is then applied to the whole connections
    structure, for keys and targets that reference the old id rather than a
    node name.
    """
    fixed = clone(document)
    nodes = fixed.get("nodes") if isinstance(fixed.get("nodes"), list) else []
    taken = {n.get("id") for n in nodes if isinstance(n, dict) and isinstance(n.get("id"), str)}
    seen = set()
    rewrite = {}
    renamed = []
    stamp = int(time.time() * 1000)

    for i, node in enumerate(nodes):
        if not isinstance(node, dict):
            continue
        original = node.get("id")
        if not isinstance(original, str) or not original:
            continue
        if original not in seen:
            seen.add(original)
            continue
        new_id = f"{original}_{i}_{stamp}"
        suffix = 1
        while new_id in taken:
            new_id = f"{original}_{i}_{stamp}_{suffix}"
            suffix += 1
        node["id"] = new_id
        taken.add(new_id)
        rewrite.setdefault(original, new_id)
        renamed.append({"index": i, "old_id": original, "new_id": new_id})

    if isinstance(fixed.get("connections"), dict) and rewrite:
        fixed["connections"] = _rewrite_connection_refs(
            fixed["connections"], rewrite, node_names(fixed),
        )

    return fixed, make_fix(
        error.get("type"), "resolve_duplicate_ids",
        f"Resolved {len(renamed)} duplicate node id(s)",
        CONFIDENCE["duplicate_node_ids"],
        path=error.get("path"), old_value=sorted(rewrite), new_value=renamed,
    )


def _rewrite_connection_refs(connections, rewrite, names):
    """Apply an id rewrite map to connection keys and targets.

    References that match a node name are left alone: they already point at
    a real vertex.
    """
    def mapped(ref):
        if isinstance(ref, str) and ref in rewrite and ref not in names:
            return rewrite[ref]
        return ref

    updated = {}
    for source, channels in connections.items():
        key = mapped(source)
        if isinstance(channels, dict):
            for groups in channels.values():
                if not isinstance(groups, list):
                    continue
                for group in groups:
                    if not isinstance(group, list):
                        continue
                    for conn in group:
                        if isinstance(conn, dict) and "node" in conn:
                            conn["node"] = mapped(conn["node"])
        if key in updated and key != source:
            key = source
        updated[key] = channels
    return updated


def _orphan_key(node):
    name = node.get("name")
    return name if isinstance(name, str) else str(node.get("id"))


def can_fix_orphaned_nodes(error, document):
    return error.get("layer") == "business" and error.get("type") == "orphaned_nodes"


def fix_orphaned_nodes(error, document):
    """Remove orphaned nodes; trigger/start nodes always stay."""
    fixed = clone(document)
    nodes = get_nodes(fixed)
    orphans = set(find_orphaned_nodes(nodes, connected_names(get_connections(fixed))))

    kept = []
    removed = []
    for node in fixed.get("nodes", []) if isinstance(fixed.get("nodes"), list) else []:
        if (
            isinstance(node, dict)
            and _orphan_key(node) in orphans
            and not is_trigger_type(node.get("type"))
        ):
            removed.append(_orphan_key(node))
            continue
        kept.append(node)
    if isinstance(fixed.get("nodes"), list):
        fixed["nodes"] = kept

    return fixed, make_fix(
        error.get("type"), "remove_orphaned_nodes",
        f"Removed {len(removed)} orphaned node(s)",
        CONFIDENCE["orphaned_nodes"],
        path=error.get("path"), old_value=removed,
    )


def _cycle_of(error):
    cycle = (error.get("details") or {}).get("cycle")
    return cycle if isinstance(cycle, list) and cycle else None


def _has_edge(connections, source, target):
    channels = connections.get(source)
    if not isinstance(channels, dict):
        return False
    for groups in channels.values():
        for group in groups if isinstance(groups, list) else []:
            for conn in group if isinstance(group, list) else []:
                if isinstance(conn, dict) and conn.get("node") == target:
                    return True
    return False


def can_fix_circular_dependency(error, document):
    if error.get("layer") != "business" or error.get("type") != "circular_dependency":
        return False
    cycle = _cycle_of(error)
    if not cycle:
        return False
    return _has_edge(get_connections(document), cycle[-1], cycle[0])


def fix_circular_dependency(error, document):
    """Cut the cycle's closing edge: last node -> first node, on every channel."""
    cycle = _cycle_of(error)
    last, first = cycle[-1], cycle[0]
    fixed = clone(document)
    channels = fixed["connections"][last]

    removed = 0
    for channel, groups in channels.items():
        if not isinstance(groups, list):
            continue
        new_groups = []
        for group in groups:
            if not isinstance(group, list):
                new_groups.append(group)
                continue
            kept = [c for c in group if not (isinstance(c, dict) and c.get("node") == first)]
            removed += len(group) - len(kept)
            new_groups.append(kept)
        channels[channel] = new_groups

    return fixed, make_fix(
        error.get("type"), "break_circular_dependency",
        f"Removed {removed} connection(s) {last} -> {first} to break cycle {' -> '.join(cycle)}",
        CONFIDENCE["circular_dependency"],
        path=error.get("path"), old_value={"source": last, "target": first},
    )


# ===== Compatibility Repairs =====

def can_fix_invalid_connection(error, document):
    return error.get("layer") == "compatibility" and error.get("type") == "invalid_connection"


def _names_node(ref, names):
    return isinstance(ref, str) and ref in names


def fix_invalid_connection(error, document):
    """Drop edges to missing nodes, and whole entries whose source is missing.

    Output groups are kept (possibly empty) so surviving edges keep their
    output index.
    """
    fixed = clone(document)
    names = node_names(fixed)
    connections = get_connections(fixed)
    removed = []
    cleaned = {}

    for source, channels in connections.items():
        if source not in names:
            removed.append({"source": source, "target": None})
            continue
        if isinstance(channels, dict):
            for channel, groups in channels.items():
                if not isinstance(groups, list):
                    continue
                new_groups = []
                for group in groups:
                    if not isinstance(group, list):
                        new_groups.append(group)
                        continue
                    kept = []
                    for conn in group:
                        if isinstance(conn, dict) and not _names_node(conn.get("node"), names):
                            removed.append({"source": source, "target": conn.get("node")})
                            continue
                        kept.append(conn)
                    new_groups.append(kept)
                channels[channel] = new_groups
        cleaned[source] = channels

    fixed["connections"] = cleaned

    return fixed, make_fix(
        error.get("type"), "remove_invalid_connections",
        f"Removed {len(removed)} connection(s) to non-existent nodes",
        CONFIDENCE["invalid_connection"],
        old_value=removed,
    )


def can_fix_forbidden_node_type(error, document):
    return error.get("layer") == "compatibility" and error.get("type") == "forbidden_node_type"


def fix_forbidden_node_type(error, document):
    """Swap forbidden node types for a no-op node and discard their parameters."""
    forbidden = set(forbidden_node_types())
    flagged = (error.get("details") or {}).get("node_type")
    if flagged:
        forbidden.add(flagged)

    fixed = clone(document)
    replaced = []
    for node in get_nodes(fixed):
        if isinstance(node.get("type"), str) and node.get("type") in forbidden:
            replaced.append({"name": node.get("name"), "old_type": node.get("type")})
            node["type"] = SAFE_NODE_TYPE
            node["typeVersion"] = 1
            node["parameters"] = {}

    return fixed, make_fix(
        error.get("type"), "replace_forbidden_node_type",
        f"Replaced {len(replaced)} forbidden node type(s) with {SAFE_NODE_TYPE}",
        CONFIDENCE["forbidden_node_type"],
        old_value=replaced, new_value=SAFE_NODE_TYPE,
    )


# ===== AI Placeholder =====

def can_fix_ai_contextual(error, document):
    return bool(error.get("fixable")) and is_complex_error(error)


def fix_ai_contextual(error, document):
    """Placeholder: returns the document unchanged at low confidence."""
    return clone(document), make_fix(
        error.get("type"), "ai_contextual",
        "AI contextual fix (placeholder)",
        0.5,
    )


CONFIDENCE = {
    "missing_required_property": 0.9,
    "invalid_node_id": 0.8,
    "invalid_position": 0.95,
    "duplicate_node_ids": 0.85,
    "orphaned_nodes": 0.7,
    "circular_dependency": 0.7,
    "invalid_connection": 0.8,
    "forbidden_node_type": 0.75,
    "ai_contextual_fix": 0.65,
}

_DEFAULT_TABLE = [
    ("missing_required_property", can_fix_missing_required_property, fix_missing_required_property),
    ("invalid_node_id", can_fix_invalid_node_id, fix_invalid_node_id),
    ("invalid_position", can_fix_invalid_position, fix_invalid_position),
    ("duplicate_node_ids", can_fix_duplicate_node_ids, fix_duplicate_node_ids),
    ("orphaned_nodes", can_fix_orphaned_nodes, fix_orphaned_nodes),
    ("circular_dependency", can_fix_circular_dependency, fix_circular_dependency),
    ("invalid_connection", can_fix_invalid_connection, fix_invalid_connection),
    ("forbidden_node_type", can_fix_forbidden_node_type, fix_forbidden_node_type),
    ("ai_contextual_fix", can_fix_ai_contextual, fix_ai_contextual),
]


def default_registry():
    """Build a fresh registry holding the standard strategies in dispatch order."""
    return StrategyRegistry(
        HealingStrategy(name, can_fix, fix, CONFIDENCE[name])
        for name, can_fix, fix in _DEFAULT_TABLE
    )
