"""PMP - dependency-aware orchestration of infrastructure projects."""

__version__ = "0.1.0"

from pmp.graph import DependencyGraph, assign_levels, build_graph
from pmp.impact import impact
from pmp.node import Node, NodeId
from pmp.resolver import NodeUniverse
from pmp.scheduler import execute

__all__ = [
    "DependencyGraph",
    "Node",
    "NodeId",
    "NodeUniverse",
    "assign_levels",
    "build_graph",
    "execute",
    "impact",
    "__version__",
]
