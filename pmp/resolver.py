"""Dependency declaration resolution against an explicit node universe."""

import difflib
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional

from pmp.exceptions import (
    AmbiguousDependencyError,
    InvalidDependencyError,
    UnresolvedDependencyError,
)
from pmp.node import DependencyDeclaration, Edge, Node, NodeId
from pmp.utils.logging import logger


class NodeUniverse:
    """Every discovered project/environment pair.

    Passed explicitly into resolution and graph building instead of being
    read from ambient state, so tests can inject a fixed universe.
    """

    def __init__(self, nodes: Iterable[Node]):
        self._nodes: Dict[NodeId, Node] = {}
        self._by_project: Dict[str, List[NodeId]] = defaultdict(list)

        for node in nodes:
            if node.id in self._nodes:
                raise ValueError(f"Duplicate node '{node.id}' in universe")
            self._nodes[node.id] = node
            self._by_project[node.project].append(node.id)

    def __contains__(self, node_id: NodeId) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes[node_id] for node_id in self.ids())

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: NodeId) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise ValueError(f"Node '{node_id}' not found") from None

    def ids(self) -> List[NodeId]:
        return sorted(self._nodes)

    def environments_of(self, project: str) -> List[NodeId]:
        return sorted(self._by_project.get(project, []))

    def projects(self) -> List[str]:
        return sorted(self._by_project)


def _labels_match(labels: Dict[str, str], selector: Dict[str, str]) -> bool:
    return all(labels.get(key) == value for key, value in selector.items())


def _nearest_matches(wanted: str, choices: Iterable[str], limit: int = 3) -> List[str]:
    return difflib.get_close_matches(wanted, sorted(set(choices)), n=limit, cutoff=0.6)


def resolve_declaration(
    node: Node, declaration: DependencyDeclaration, universe: NodeUniverse
) -> List[NodeId]:
    """Resolve one declaration of ``node`` to concrete node ids.

    An explicit reference resolves to exactly one id. A descriptive match
    resolves to one id per requested environment (one id when no
    environments are listed).

    Raises:
        UnresolvedDependencyError: No candidate node exists
        AmbiguousDependencyError: Several candidates and no disambiguating name
        InvalidDependencyError: Self-reference or malformed declaration
    """
    if declaration.is_explicit:
        targets = [_resolve_explicit(node, declaration, universe)]
    elif declaration.is_descriptive:
        environments = declaration.environments or (None,)
        targets = [
            _resolve_descriptive(node, declaration, universe, environment)
            for environment in environments
        ]
    else:
        raise InvalidDependencyError(
            "Declaration needs either a project name or apiVersion and kind",
            node=node.id,
            declaration=declaration,
        )

    for target in targets:
        if target == node.id:
            raise InvalidDependencyError(
                "Node cannot depend on itself", node=node.id, declaration=declaration
            )
    return targets


def _resolve_explicit(
    node: Node, declaration: DependencyDeclaration, universe: NodeUniverse
) -> NodeId:
    environment = declaration.environment or node.environment
    target = NodeId(declaration.project, environment)
    if target in universe:
        return target

    known_envs = universe.environments_of(declaration.project)
    if known_envs:
        suggestions = [
            str(NodeId(declaration.project, env))
            for env in _nearest_matches(environment, [n.environment for n in known_envs])
        ] or [str(n) for n in known_envs]
        message = f"Environment '{environment}' not found for project '{declaration.project}'"
    else:
        suggestions = _nearest_matches(declaration.project, universe.projects())
        message = f"Project '{declaration.project}' not found"

    raise UnresolvedDependencyError(
        message, node=node.id, declaration=declaration, suggestions=suggestions
    )


def _resolve_descriptive(
    node: Node,
    declaration: DependencyDeclaration,
    universe: NodeUniverse,
    environment: Optional[str],
) -> NodeId:
    selector = declaration.labels
    candidates = [
        other.id
        for other in universe
        if other.api_version == declaration.api_version
        and other.kind == declaration.kind
        and _labels_match(other.labels, selector)
        and (environment is None or other.environment == environment)
    ]

    # The declaring node never satisfies its own dependency
    others = [c for c in candidates if c != node.id]
    if candidates and not others:
        raise InvalidDependencyError(
            "Node cannot depend on itself", node=node.id, declaration=declaration
        )
    candidates = others

    # Without an explicit environment, prefer candidates deployed alongside the declaring node
    if environment is None:
        same_env = [c for c in candidates if c.environment == node.environment]
        if same_env:
            candidates = same_env

    if not candidates:
        kinds = {other.resource_kind for other in universe}
        raise UnresolvedDependencyError(
            f"No project of kind '{declaration.api_version}/{declaration.kind}' matches",
            node=node.id,
            declaration=declaration,
            suggestions=_nearest_matches(f"{declaration.api_version}/{declaration.kind}", kinds),
        )

    if len(candidates) == 1:
        return candidates[0]

    if declaration.dependency_name:
        named = [c for c in candidates if c.project == declaration.dependency_name]
        if len(named) == 1:
            return named[0]

    raise AmbiguousDependencyError(
        f"{len(candidates)} projects match '{declaration.api_version}/{declaration.kind}'",
        candidates=candidates,
        node=node.id,
        declaration=declaration,
    )


def resolve_dependencies(node: Node, universe: NodeUniverse) -> List[Edge]:
    """Resolve every declaration of ``node`` into edges.

    Args:
        node: Declaring node
        universe: All discovered nodes

    Returns:
        Edges from ``node`` to each resolved dependency, in declaration order
    """
    edges: List[Edge] = []
    for declaration in node.declared_dependencies:
        for target in resolve_declaration(node, declaration, universe):
            edges.append(Edge(node.id, target, declaration))

    logger.debug(
        "Resolved dependencies",
        node=str(node.id),
        declared=len(node.declared_dependencies),
        edges=len(edges),
    )
    return edges
