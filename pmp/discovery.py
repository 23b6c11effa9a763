"""Discovery of project environments on disk.

Layout of an infrastructure::

    <root>/.pmp.infrastructure.yaml
    <root>/projects/<kind>/<project>/.pmp.project.yaml
    <root>/projects/<kind>/<project>/environments/<env>/.pmp.environment.yaml

Every environment file becomes one node. Discovery is the only place that
reads the filesystem; the resulting NodeUniverse is passed on explicitly.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import yaml
from pydantic import BaseModel, ValidationError

from pmp.config import (
    EnvironmentResource,
    ExecutorSpec,
    InfrastructureResource,
    ProjectResource,
)
from pmp.exceptions import ConfigValidationError
from pmp.node import Node, NodeId
from pmp.resolver import NodeUniverse
from pmp.utils.config_loader import load_yaml_with_env
from pmp.utils.logging import logger

INFRASTRUCTURE_FILE = ".pmp.infrastructure.yaml"
PROJECT_FILE = ".pmp.project.yaml"
ENVIRONMENT_FILE = ".pmp.environment.yaml"

# Directories never searched for environment files
IGNORED_DIRS = {".git", ".terraform", "node_modules", "__pycache__"}

M = TypeVar("M", bound=BaseModel)
PathLike = Union[str, Path]


def _format_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        problems.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(problems)


def load_resource(path: PathLike, model: Type[M]) -> M:
    """Load and validate one metadata file.

    Raises:
        ConfigValidationError: If the file cannot be parsed or fails validation
    """
    path = Path(path)
    try:
        data: Dict[str, Any] = load_yaml_with_env(str(path))
        return model(**data)
    except ValidationError as e:
        raise ConfigValidationError(_format_validation_error(e), file=str(path)) from e
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        raise ConfigValidationError(
            f"Invalid YAML: {e}",
            file=str(path),
            line=mark.line + 1 if mark is not None else None,
        ) from e
    except (ValueError, OSError) as e:
        raise ConfigValidationError(str(e), file=str(path)) from e


def find_infrastructure_root(start: Optional[PathLike] = None) -> Optional[Path]:
    """Walk up from ``start`` (default: cwd) to the directory holding the infrastructure file."""
    current = Path(start or Path.cwd()).resolve()
    for candidate in [current, *current.parents]:
        if (candidate / INFRASTRUCTURE_FILE).is_file():
            return candidate
    return None


def _environment_files(root: Path) -> List[Path]:
    return sorted(
        path
        for path in root.rglob(ENVIRONMENT_FILE)
        if not IGNORED_DIRS.intersection(part for part in path.relative_to(root).parts)
    )


def _project_labels(env_dir: Path, root: Path, cache: Dict[Path, Dict[str, str]]) -> Dict[str, str]:
    for directory in env_dir.parents:
        if directory == root or root not in directory.parents:
            break
        project_file = directory / PROJECT_FILE
        if project_file.is_file():
            if project_file not in cache:
                cache[project_file] = load_resource(project_file, ProjectResource).metadata.labels
            return cache[project_file]
    return {}


def build_node(
    resource: EnvironmentResource,
    path: Optional[Path] = None,
    default_executor: Optional[ExecutorSpec] = None,
    project_labels: Optional[Dict[str, str]] = None,
) -> Node:
    """Turn a validated environment resource into a node.

    The environment's own executor wins over the infrastructure default, and
    its labels win over labels set on the project.
    """
    executor = resource.spec.executor or default_executor or ExecutorSpec()
    commands = {}
    if default_executor is not None and default_executor.name == executor.name:
        commands.update(default_executor.commands.model_dump(exclude_none=True))
    commands.update(executor.commands.model_dump(exclude_none=True))

    if resource.spec.resource is not None:
        api_version, kind = resource.spec.resource.api_version, resource.spec.resource.kind
    else:
        api_version, kind = resource.api_version, resource.kind

    labels = dict(project_labels or {})
    labels.update(resource.metadata.labels)

    return Node(
        id=NodeId(resource.metadata.name, resource.metadata.environment_name),
        api_version=api_version,
        kind=kind,
        executor_name=executor.name,
        labels=labels,
        declared_dependencies=tuple(resource.declarations()),
        path=path,
        executor_commands=commands,
    )


@dataclass
class Infrastructure:
    """A discovered infrastructure: its root, settings and node universe."""

    root: Path
    resource: Optional[InfrastructureResource]
    universe: NodeUniverse

    def node_for_directory(self, directory: PathLike) -> NodeId:
        """Node whose environment directory is ``directory``.

        Raises:
            ValueError: If no environment lives there
        """
        directory = Path(directory).resolve()
        for node in self.universe:
            if node.path is not None and node.path.resolve() == directory:
                return node.id
        raise ValueError(f"No {ENVIRONMENT_FILE} found in {directory}")


def discover(start: Optional[PathLike] = None) -> Infrastructure:
    """Find the infrastructure root above ``start`` and load every environment.

    Raises:
        ConfigValidationError: If no infrastructure root exists, a metadata
            file is invalid, or two files declare the same environment
    """
    root = find_infrastructure_root(start)
    if root is None:
        raise ConfigValidationError(
            f"No {INFRASTRUCTURE_FILE} found in {Path(start or Path.cwd()).resolve()} or its parents"
        )

    infrastructure = load_resource(root / INFRASTRUCTURE_FILE, InfrastructureResource)
    universe = discover_nodes(root, default_executor=infrastructure.spec.executor)
    return Infrastructure(root=root, resource=infrastructure, universe=universe)


def discover_nodes(root: PathLike, default_executor: Optional[ExecutorSpec] = None) -> NodeUniverse:
    """Load every environment file under ``root`` into a NodeUniverse."""
    root = Path(root).resolve()
    label_cache: Dict[Path, Dict[str, str]] = {}
    nodes: List[Node] = []
    seen: Dict[NodeId, Path] = {}

    for env_file in _environment_files(root):
        resource = load_resource(env_file, EnvironmentResource)
        node = build_node(
            resource,
            path=env_file.parent,
            default_executor=default_executor,
            project_labels=_project_labels(env_file.parent, root, label_cache),
        )
        if node.id in seen:
            raise ConfigValidationError(
                f"Duplicate environment '{node.id}', also declared in {seen[node.id]}",
                file=str(env_file),
            )
        seen[node.id] = env_file
        nodes.append(node)

    logger.debug("Discovered environments", root=str(root), count=len(nodes))
    return NodeUniverse(nodes)
