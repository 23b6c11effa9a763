"""Dependency graph builder and analyzer."""

from collections import defaultdict, deque
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from pmp.exceptions import CycleError, DependencyError
from pmp.node import Edge, Node, NodeId
from pmp.resolver import NodeUniverse, resolve_dependencies
from pmp.utils.logging import logger

ALL_NODES = "*"

Root = Union[NodeId, str, Iterable[NodeId]]


class DependencyGraph:
    """Resolved dependency graph over project/environment nodes.

    An edge ``a -> b`` means ``a`` depends on ``b``: ``b`` is applied before
    ``a`` and destroyed after it. The structure is read-only once built.
    """

    def __init__(
        self,
        nodes: Dict[NodeId, Node],
        edges: Iterable[Edge],
        roots: Optional[List[NodeId]] = None,
        resolution_errors: Optional[List[DependencyError]] = None,
    ):
        """Initialize dependency graph.

        Args:
            nodes: Member nodes keyed by id
            edges: Resolved edges; both endpoints must be members
            roots: Nodes the graph was built from
            resolution_errors: Declarations that failed to resolve (collecting mode only)
        """
        self.nodes = dict(nodes)
        self.edges: Set[Edge] = set(edges)
        self.roots = sorted(roots or [])
        self.resolution_errors = resolution_errors or []

        # node -> its direct dependencies / node -> its direct dependents
        self.adjacency_list: Dict[NodeId, List[NodeId]] = defaultdict(list)
        self.reverse_adjacency_list: Dict[NodeId, List[NodeId]] = defaultdict(list)
        self._edge_index: Dict[tuple, Edge] = {}

        for edge in sorted(self.edges, key=lambda e: (e.source, e.target)):
            if edge.source not in self.nodes or edge.target not in self.nodes:
                raise ValueError(f"Edge {edge.source} -> {edge.target} references a non-member node")
            self.adjacency_list[edge.source].append(edge.target)
            self.reverse_adjacency_list[edge.target].append(edge.source)
            self._edge_index[(edge.source, edge.target)] = edge

    @classmethod
    def build(
        cls, universe: NodeUniverse, root: Root = ALL_NODES, collect_errors: bool = False
    ) -> "DependencyGraph":
        """Build a graph by breadth-first traversal along dependency edges.

        Args:
            universe: All discovered nodes
            root: A node id, several node ids, or ``"*"`` to seed with every node
            collect_errors: Record resolution failures on the graph instead of
                raising (used by analysis, never by execution)

        Returns:
            Graph of the roots and everything they transitively depend on

        Raises:
            DependencyError: A declaration could not be resolved
            ValueError: A root is not in the universe
        """
        if isinstance(root, str):
            if root != ALL_NODES:
                raise ValueError(f"Invalid root '{root}', expected a NodeId or '{ALL_NODES}'")
            seeds = universe.ids()
        elif isinstance(root, NodeId):
            seeds = [root]
        else:
            seeds = sorted(set(root))

        for seed in seeds:
            universe.get(seed)

        visited: Dict[NodeId, Node] = {}
        edges: Set[Edge] = set()
        errors: List[DependencyError] = []
        queue = deque(seeds)

        while queue:
            current = queue.popleft()
            if current in visited:
                continue

            node = universe.get(current)
            visited[current] = node

            try:
                resolved = resolve_dependencies(node, universe)
            except DependencyError as e:
                if not collect_errors:
                    raise
                logger.warning("Dependency resolution failed", node=str(current), error=e.message)
                errors.append(e)
                continue

            for edge in resolved:
                edges.add(edge)
                if edge.target not in visited:
                    queue.append(edge.target)

        logger.debug(
            "Dependency graph built",
            roots=[str(s) for s in seeds] if len(seeds) <= 5 else f"{len(seeds)} nodes",
            nodes=len(visited),
            edges=len(edges),
        )
        return cls(visited, edges, roots=seeds, resolution_errors=errors)

    def node_count(self) -> int:
        return len(self.nodes)

    def sorted_nodes(self) -> List[NodeId]:
        return sorted(self.nodes)

    def sorted_edges(self) -> List[Edge]:
        return sorted(self.edges, key=lambda e: (e.source, e.target))

    def get_edge(self, source: NodeId, target: NodeId) -> Optional[Edge]:
        return self._edge_index.get((source, target))

    def dependencies_of(self, node_id: NodeId) -> List[NodeId]:
        """Direct dependencies of a node, sorted."""
        self._require(node_id)
        return list(self.adjacency_list.get(node_id, []))

    def dependents_of(self, node_id: NodeId) -> List[NodeId]:
        """Direct dependents of a node, sorted."""
        self._require(node_id)
        return list(self.reverse_adjacency_list.get(node_id, []))

    def get_dependencies(self, node_id: NodeId) -> Set[NodeId]:
        """Get all dependencies (direct and transitive) for a node.

        Args:
            node_id: Node to start from

        Returns:
            Set of all dependency node ids
        """
        return self._reachable(node_id, self.adjacency_list)

    def get_dependents(self, node_id: NodeId) -> Set[NodeId]:
        """Get all dependents (direct and transitive) for a node.

        Args:
            node_id: Node to start from

        Returns:
            Set of all dependent node ids
        """
        return self._reachable(node_id, self.reverse_adjacency_list)

    def _reachable(self, node_id: NodeId, adjacency: Dict[NodeId, List[NodeId]]) -> Set[NodeId]:
        self._require(node_id)
        found: Set[NodeId] = set()
        queue = deque([node_id])

        while queue:
            current = queue.popleft()
            for neighbour in adjacency.get(current, []):
                if neighbour not in found:
                    found.add(neighbour)
                    queue.append(neighbour)

        found.discard(node_id)
        return found

    def _require(self, node_id: NodeId) -> None:
        if node_id not in self.nodes:
            raise ValueError(f"Node '{node_id}' not found")

    def find_cycles(self, within: Optional[Iterable[NodeId]] = None) -> List[List[NodeId]]:
        """Find every group of nodes that depend on each other circularly.

        Strongly connected components with more than one member (self-edges
        are rejected during resolution, so singletons are never cyclic).

        Args:
            within: Restrict the search to these nodes

        Returns:
            Sorted member lists, ordered by their first member
        """
        members = set(self.nodes if within is None else within)
        index_of: Dict[NodeId, int] = {}
        lowlink: Dict[NodeId, int] = {}
        stack: List[NodeId] = []
        on_stack: Set[NodeId] = set()
        components: List[List[NodeId]] = []
        # Explicit call stack of (node, member dependencies, next dependency)
        work: List[Tuple[NodeId, List[NodeId], int]] = []

        def enter(node: NodeId) -> None:
            index_of[node] = lowlink[node] = len(index_of)
            stack.append(node)
            on_stack.add(node)
            dependencies = [d for d in self.adjacency_list.get(node, []) if d in members]
            work.append((node, dependencies, 0))

        for start in sorted(members):
            if start in index_of:
                continue
            enter(start)

            while work:
                node, dependencies, position = work[-1]

                if position < len(dependencies):
                    work[-1] = (node, dependencies, position + 1)
                    dependency = dependencies[position]
                    if dependency not in index_of:
                        enter(dependency)
                    elif dependency in on_stack:
                        lowlink[node] = min(lowlink[node], index_of[dependency])
                    continue

                work.pop()
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[node])

                if lowlink[node] == index_of[node]:
                    component = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    if len(component) > 1:
                        components.append(sorted(component))

        return sorted(components)

    def cycle_chain(self, component: List[NodeId]) -> List[str]:
        """Walk one concrete cycle through a component for diagnostics.

        Returns:
            Node keys from the first member back to itself, annotated with
            the dependency name of each hop where one was declared
        """
        members = set(component)
        start = min(component)
        position = {start: 0}
        path = [start]
        current = start

        while True:
            following = next(d for d in self.adjacency_list[current] if d in members)
            if following in position:
                loop = path[position[following]:] + [following]
                break
            position[following] = len(path)
            path.append(following)
            current = following

        chain = [str(loop[0])]
        for source, target in zip(loop, loop[1:]):
            edge = self.get_edge(source, target)
            name = edge.declaration.dependency_name if edge and edge.declaration else None
            chain.append(f"{target} (as '{name}')" if name else str(target))
        return chain

    def get_execution_levels(self) -> List[List[NodeId]]:
        """Group nodes into levels for staged parallel execution."""
        return assign_levels(self)

    def visualize(self) -> str:
        """Generate a text visualization of the graph by level."""
        from pmp.renderers import render_levels

        return render_levels(self, self.get_execution_levels())


def build_graph(
    universe: NodeUniverse, root: Root = ALL_NODES, collect_errors: bool = False
) -> DependencyGraph:
    """Build a dependency graph rooted at ``root`` (or every node for ``"*"``)."""
    return DependencyGraph.build(universe, root=root, collect_errors=collect_errors)


def assign_levels(graph: DependencyGraph) -> List[List[NodeId]]:
    """Partition the graph into levels, dependencies first.

    Each node lands on the lowest level whose predecessors hold all of its
    dependencies. Nodes within a level are sorted for stable rendering; the
    order carries no execution guarantee.

    Args:
        graph: Graph to partition

    Returns:
        List of levels, where each level is a sorted list of node ids

    Raises:
        CycleError: If the remaining nodes can never become ready
    """
    # Count of dependency edges pointing at nodes not yet leveled
    pending = {node_id: len(graph.adjacency_list.get(node_id, [])) for node_id in graph.nodes}
    remaining = set(graph.nodes)
    levels: List[List[NodeId]] = []

    while remaining:
        ready = sorted(node_id for node_id in remaining if pending[node_id] == 0)

        if not ready:
            raise _cycle_error(graph, remaining)

        levels.append(ready)

        for node_id in ready:
            remaining.remove(node_id)
            for dependent in graph.reverse_adjacency_list.get(node_id, []):
                pending[dependent] -= 1

    logger.debug(
        "Assigned execution levels",
        levels=len(levels),
        sizes=[len(level) for level in levels],
    )
    return levels


def _cycle_error(graph: DependencyGraph, remaining: Set[NodeId]) -> CycleError:
    components = graph.find_cycles(within=remaining)
    members = sorted(node for component in components for node in component)
    chain = graph.cycle_chain(components[0]) if components else []

    logger.error(
        "Circular dependency detected",
        members=[str(m) for m in members],
        chain=" → ".join(chain),
    )
    return CycleError(members or sorted(remaining), chain=chain)
