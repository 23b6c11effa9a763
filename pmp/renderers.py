"""Text renderings of a dependency graph: ASCII tree, levels, Mermaid and DOT.

Every rendering walks nodes and edges in sorted order, so the same graph
always renders to the same text.
"""

import re
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pmp.graph import DependencyGraph
from pmp.node import NodeId

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_]")


def sanitize_id(value: str) -> str:
    """Turn a node key into an identifier Mermaid and DOT accept."""
    return _UNSAFE_ID.sub("_", value)


def unique_ids(node_ids: Iterable[NodeId]) -> Dict[NodeId, str]:
    """Map each node to a sanitized identifier no other node shares.

    Keys that sanitize to the same text (``my-app:dev`` and ``my_app:dev``)
    get ``_2``, ``_3``... suffixes in sorted node order, so the mapping only
    depends on the set of nodes.
    """
    ids: Dict[NodeId, str] = {}
    taken: Set[str] = set()

    for node_id in sorted(set(node_ids)):
        base = sanitize_id(node_id.key)
        candidate = base
        suffix = 2
        while candidate in taken:
            candidate = f"{base}_{suffix}"
            suffix += 1
        taken.add(candidate)
        ids[node_id] = candidate

    return ids


def _label(node_id: NodeId) -> str:
    return f"{node_id.project}\\n({node_id.environment})"


def render_ascii_tree(graph: DependencyGraph, root: NodeId) -> str:
    """Depth-first indented listing of ``root`` and its dependencies.

    A node reached a second time is printed once more with ``[already shown]``
    and not expanded again.
    """
    if root not in graph.nodes:
        raise ValueError(f"Node '{root}' not found")

    lines = [f"{root.project} ({root.environment})"]
    shown: Set[NodeId] = {root}
    # (children, next child index, prefix) per open level of the tree
    pending: List[Tuple[List[NodeId], int, str]] = [(graph.adjacency_list.get(root, []), 0, "")]

    while pending:
        children, index, prefix = pending.pop()
        if index >= len(children):
            continue
        pending.append((children, index + 1, prefix))

        child = children[index]
        last = index == len(children) - 1
        connector = "└── " if last else "├── "
        text = f"{child.project} ({child.environment})"

        if child in shown:
            lines.append(f"{prefix}{connector}{text} [already shown]")
            continue

        lines.append(f"{prefix}{connector}{text}")
        shown.add(child)
        pending.append(
            (graph.adjacency_list.get(child, []), 0, prefix + ("    " if last else "│   "))
        )

    return "\n".join(lines)


def render_all_ascii(graph: DependencyGraph) -> str:
    """ASCII trees for every node nothing else depends on."""
    tops = [n for n in graph.sorted_nodes() if not graph.reverse_adjacency_list.get(n)]
    if not tops:
        # Everything sits on a cycle; fall back to listing every node
        tops = graph.sorted_nodes()
    return "\n\n".join(render_ascii_tree(graph, top) for top in tops)


def render_levels(graph: DependencyGraph, levels: List[List[NodeId]]) -> str:
    """Execution levels with each node's direct dependencies."""
    lines = ["Dependency Graph:", ""]

    for i, level in enumerate(levels):
        lines.append(f"Level {i + 1}:")
        for node_id in level:
            deps = graph.adjacency_list.get(node_id, [])
            suffix = f" (depends on: {', '.join(str(d) for d in deps)})" if deps else ""
            lines.append(f"  - {node_id}{suffix}")
        lines.append("")

    return "\n".join(lines)


def render_mermaid(graph: DependencyGraph) -> str:
    """Mermaid ``graph TD`` diagram; arrows point from dependent to dependency."""
    ids = unique_ids(graph.nodes)
    lines = ["graph TD"]

    for node_id in graph.sorted_nodes():
        lines.append(f'    {ids[node_id]}["{_label(node_id)}"]')

    lines.append("")

    for edge in graph.sorted_edges():
        lines.append(f"    {ids[edge.source]} --> {ids[edge.target]}")

    return "\n".join(lines) + "\n"


def render_dot(graph: DependencyGraph, name: Optional[str] = None) -> str:
    """Generate DOT (Graphviz) representation."""
    ids = unique_ids(graph.nodes)
    lines = [f"digraph {sanitize_id(name) if name else 'dependencies'} {{"]
    lines.append("    rankdir=LR;")
    lines.append("    node [shape=box, style=rounded];")
    lines.append("")

    for node_id in graph.sorted_nodes():
        lines.append(f'    {ids[node_id]} [label="{_label(node_id)}"];')

    lines.append("")

    for edge in graph.sorted_edges():
        lines.append(f"    {ids[edge.source]} -> {ids[edge.target]};")

    lines.append("}")
    return "\n".join(lines) + "\n"
