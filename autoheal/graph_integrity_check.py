"""
Graph Integrity Check

Structural analysis of a workflow's connection graph over node names:
- adjacency (edges between existing nodes only)
- connected-name set (every name appearing as a source or a target)
- cycle detection with the node-name sequence of each distinct cycle
- self-loop detection

Input: workflow document (dict)
Output: dict with is_dag, cycles, self_loops, connected_names, adjacency

Deterministic. No network calls.
"""

from collections import defaultdict

from autoheal.workflow_model import get_connections, get_nodes, iter_edges


def build_adjacency(connections, known_names=None):
    """Directed adjacency list over node names.

    Args:
        connections: The document's connections map.
        known_names: Optional set of existing node names; edges touching an
                     unknown name are left out (they are a compatibility
                     problem, not a graph-shape one).

    Returns:
        dict name -> list of target names, in connection order, no repeats.
    """
    adj = defaultdict(list)
    for edge in iter_edges(connections):
        src, dst = edge["source"], edge["target"]
        if not isinstance(dst, str):
            continue
        if known_names is not None and (src not in known_names or dst not in known_names):
            continue
        if dst not in adj[src]:
            adj[src].append(dst)
    return dict(adj)


def connected_names(connections):
    """Every name that appears as a connection source or target."""
    names = set()
    for source in connections if isinstance(connections, dict) else {}:
        names.add(source)
    for edge in iter_edges(connections):
        if isinstance(edge["target"], str):
            names.add(edge["target"])
    return names


def find_cycles(adj, order):
    """Find distinct cycles with a depth-first search tracking the path stack.

    A back-edge to a node that is still on the path closes a cycle; the cycle
    is the path slice from that node to the current one. The search keeps an
    explicit stack of (node, neighbour iterator) frames, so path length is not
    bounded by the interpreter's recursion limit.

    Args:
        adj: Adjacency list from build_adjacency().
        order: Node names in the order the search should start from.

    Returns:
        List of cycles, each an ordered list of node names. Rotations of the
        same cycle are reported once.
    """
    WHITE, GRAY, BLACK = 0, 1, 2
    color = defaultdict(int)
    path = []
    cycles = []
    seen = set()

    def canonical(cycle):
        pivot = cycle.index(min(cycle))
        return tuple(cycle[pivot:] + cycle[:pivot])

    def visit(root):
        color[root] = GRAY
        path.append(root)
        frames = [(root, iter(adj.get(root, [])))]
        while frames:
            node, neighbors = frames[-1]
            descended = False
            for neighbor in neighbors:
                if color[neighbor] == GRAY:
                    cycle = path[path.index(neighbor):]
                    key = canonical(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(list(cycle))
                elif color[neighbor] == WHITE:
                    color[neighbor] = GRAY
                    path.append(neighbor)
                    frames.append((neighbor, iter(adj.get(neighbor, []))))
                    descended = True
                    break
            if not descended:
                frames.pop()
                path.pop()
                color[node] = BLACK

    for node in order:
        if color[node] == WHITE:
            visit(node)
    # Sources that are not in `order` (should not happen with known_names)
    for node in list(adj):
        if color[node] == WHITE:
            visit(node)

    return cycles


def graph_integrity_check(document):
    """Analyze a workflow document's connection graph.

    Returns:
        dict with:
            - is_dag: bool
            - cycles: list[list[str]] — node-name sequence per distinct cycle
            - self_loops: list[str] — names with an edge to themselves
            - connected_names: set[str] — names used by any edge
            - adjacency: dict name -> list[name]
    """
    names_in_order = []
    known = set()
    for node in get_nodes(document):
        name = node.get("name")
        if isinstance(name, str) and name not in known:
            known.add(name)
            names_in_order.append(name)

    connections = get_connections(document)
    adj = build_adjacency(connections, known_names=known)

    cycles = find_cycles(adj, names_in_order)
    self_loops = [c[0] for c in cycles if len(c) == 1]

    return {
        "is_dag": not cycles,
        "cycles": cycles,
        "self_loops": self_loops,
        "connected_names": connected_names(connections),
        "adjacency": adj,
    }
