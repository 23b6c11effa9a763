"""Core value types shared by the resolver, graph and scheduler."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True, order=True)
class NodeId:
    """One project deployed into one environment.

    Value-equal and ordered by ``(project, environment)``, which is the
    ordering every rendering and every level uses.
    """

    project: str
    environment: str

    @property
    def key(self) -> str:
        return f"{self.project}:{self.environment}"

    @classmethod
    def parse(cls, key: str) -> "NodeId":
        """Parse ``project:environment``."""
        project, sep, environment = key.partition(":")
        if not sep or not project or not environment:
            raise ValueError(f"Invalid node key '{key}', expected 'project:environment'")
        return cls(project, environment)

    def __str__(self) -> str:
        return self.key


class ExecutorKind(str, Enum):
    """Whether a node performs real infrastructure work."""

    REAL = "real"
    NONE = "none"


@dataclass(frozen=True)
class DependencyDeclaration:
    """A dependency as authored in environment metadata.

    Either an explicit reference (``project`` and ``environment``) or a
    descriptive match (``api_version`` and ``kind``, optionally narrowed by
    ``label_selector`` and ``environments``). ``dependency_name`` names the
    dependency; when a descriptive match is ambiguous it selects the
    candidate whose project has that name.
    """

    project: Optional[str] = None
    environment: Optional[str] = None
    api_version: Optional[str] = None
    kind: Optional[str] = None
    label_selector: Tuple[Tuple[str, str], ...] = ()
    environments: Tuple[str, ...] = ()
    dependency_name: Optional[str] = None

    @property
    def is_explicit(self) -> bool:
        return self.project is not None

    @property
    def is_descriptive(self) -> bool:
        return self.project is None and self.api_version is not None and self.kind is not None

    @property
    def labels(self) -> Dict[str, str]:
        return dict(self.label_selector)

    def describe(self) -> str:
        """Short human-readable form for error messages."""
        prefix = f"{self.dependency_name}: " if self.dependency_name else ""
        if self.is_explicit:
            env = self.environment or "<same environment>"
            return f"{prefix}{self.project}:{env}"
        target = f"{self.api_version}/{self.kind}"
        if self.label_selector:
            selector = ",".join(f"{k}={v}" for k, v in self.label_selector)
            target = f"{target} [{selector}]"
        return f"{prefix}{target}"


@dataclass(frozen=True)
class Node:
    """A project/environment pair subject to scheduling.

    Built fresh from metadata on every invocation and never mutated.
    """

    id: NodeId
    api_version: str = ""
    kind: str = ""
    executor_name: str = "opentofu"
    labels: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    declared_dependencies: Tuple[DependencyDeclaration, ...] = field(
        default=(), compare=False, hash=False
    )
    path: Optional[Path] = field(default=None, compare=False, hash=False)
    executor_commands: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def resource_kind(self) -> str:
        return f"{self.api_version}/{self.kind}"

    @property
    def executor_kind(self) -> ExecutorKind:
        if self.executor_name == ExecutorKind.NONE.value:
            return ExecutorKind.NONE
        return ExecutorKind.REAL

    @property
    def project(self) -> str:
        return self.id.project

    @property
    def environment(self) -> str:
        return self.id.environment


@dataclass(frozen=True)
class Edge:
    """``source`` depends on ``target``.

    The originating declaration rides along for error messages but does not
    take part in equality, so two declarations resolving to the same pair
    are the same edge.
    """

    source: NodeId
    target: NodeId
    declaration: Optional[DependencyDeclaration] = field(default=None, compare=False, hash=False)

    @property
    def label(self) -> str:
        if self.declaration is not None and self.declaration.dependency_name:
            return self.declaration.dependency_name
        return self.target.project


class OutcomeStatus(str, Enum):
    """Per-node result of running an operation."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class OperationOutcome:
    """Result of running an operation on one node."""

    node_id: NodeId
    status: OutcomeStatus
    error: Optional[str] = None
    reason: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node_id.key,
            "status": self.status.value,
            "error": self.error,
            "reason": self.reason,
            "duration": round(self.duration, 3),
        }
