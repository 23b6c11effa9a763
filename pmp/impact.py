"""Impact (blast radius) queries and whole-graph dependency analysis."""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Tuple

from pmp.exceptions import DependencyError
from pmp.graph import DependencyGraph
from pmp.node import NodeId


@dataclass
class ImpactResult:
    """Nodes that depend on ``target``, directly or transitively.

    ``transitive`` always contains ``direct`` and never contains ``target``.
    """

    target: NodeId
    direct: Set[NodeId] = field(default_factory=set)
    transitive: Set[NodeId] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.key,
            "direct": [n.key for n in sorted(self.direct)],
            "transitive": [n.key for n in sorted(self.transitive)],
        }


def impact(graph: DependencyGraph, target: NodeId) -> ImpactResult:
    """Reverse-edge breadth-first search from ``target``.

    Args:
        graph: Graph built in whole-graph mode
        target: Node whose dependents are wanted

    Returns:
        Direct and transitive dependents

    Raises:
        ValueError: If target is not in the graph
    """
    direct = set(graph.dependents_of(target))
    transitive: Set[NodeId] = set()
    queue = deque(sorted(direct))

    while queue:
        current = queue.popleft()
        if current in transitive:
            continue
        transitive.add(current)
        for dependent in graph.reverse_adjacency_list.get(current, []):
            if dependent not in transitive:
                queue.append(dependent)

    transitive.discard(target)
    return ImpactResult(target=target, direct=direct, transitive=transitive)


def bottlenecks(graph: DependencyGraph, limit: int = 0) -> List[Tuple[NodeId, int]]:
    """Rank nodes by how many nodes depend on them directly.

    Nodes nothing depends on are left out. Ties are broken by node id.

    Args:
        graph: Graph to rank
        limit: Keep only the first ``limit`` entries (0 keeps all)
    """
    ranked = [
        (node_id, len(dependents))
        for node_id, dependents in graph.reverse_adjacency_list.items()
        if dependents
    ]
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return ranked[:limit] if limit else ranked


def standalone_nodes(graph: DependencyGraph) -> List[NodeId]:
    """Nodes with no dependencies and no dependents."""
    return [
        node_id
        for node_id in graph.sorted_nodes()
        if not graph.adjacency_list.get(node_id) and not graph.reverse_adjacency_list.get(node_id)
    ]


@dataclass
class DependencyAnalysis:
    """Summary behind ``deps analyze``."""

    total_nodes: int
    nodes_with_dependencies: int
    standalone: List[NodeId]
    orphaned: List[NodeId]
    bottlenecks: List[Tuple[NodeId, int]]
    cycles: List[List[str]]
    resolution_errors: List[DependencyError]

    @property
    def healthy(self) -> bool:
        return not self.cycles and not self.resolution_errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "nodes_with_dependencies": self.nodes_with_dependencies,
            "standalone": [n.key for n in self.standalone],
            "orphaned": [n.key for n in self.orphaned],
            "bottlenecks": [{"node": n.key, "dependents": c} for n, c in self.bottlenecks],
            "cycles": self.cycles,
            "resolution_errors": [
                {
                    "type": type(e).__name__,
                    "node": str(e.node) if e.node else None,
                    "message": e.message,
                }
                for e in self.resolution_errors
            ],
            "healthy": self.healthy,
        }


def analyze(graph: DependencyGraph, top: int = 10) -> DependencyAnalysis:
    """Summarize a whole graph (ideally built with ``collect_errors=True``).

    Args:
        graph: Whole graph
        top: Number of bottlenecks to keep
    """
    nodes = graph.sorted_nodes()
    return DependencyAnalysis(
        total_nodes=len(nodes),
        nodes_with_dependencies=sum(1 for n in nodes if graph.adjacency_list.get(n)),
        standalone=standalone_nodes(graph),
        orphaned=[n for n in nodes if not graph.reverse_adjacency_list.get(n)],
        bottlenecks=bottlenecks(graph, limit=top),
        cycles=[graph.cycle_chain(component) for component in graph.find_cycles()],
        resolution_errors=list(graph.resolution_errors),
    )
