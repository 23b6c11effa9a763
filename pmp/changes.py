"""Change detection for CI: which environments a git range touches.

A changed file belongs to the environment whose directory contains it.
Everything that depends on a changed environment, directly or transitively,
is affected as well, because its plan may change with its dependency's
outputs.
"""

import json
import subprocess
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Set

import yaml

from pmp.discovery import INFRASTRUCTURE_FILE, Infrastructure
from pmp.exceptions import ChangeDetectionError
from pmp.graph import DependencyGraph, assign_levels
from pmp.impact import impact
from pmp.node import NodeId
from pmp.utils.logging import logger

# Exit code of ``pmp ci detect-changes`` when the infrastructure file changed
EXIT_INFRASTRUCTURE_CHANGED = 2

OUTPUT_FORMATS = ("json", "yaml")


def changed_files(base: str, head: str, cwd: Path) -> List[str]:
    """Files changed between the merge base of ``base`` and ``head``, and ``head``.

    Paths are relative to ``cwd`` and limited to files below it.

    Raises:
        ChangeDetectionError: If git is missing or the diff fails
    """
    argv = ["git", "diff", "--name-only", "--relative", f"{base}...{head}"]
    try:
        result = subprocess.run(argv, cwd=str(cwd), capture_output=True, text=True)
    except FileNotFoundError:
        raise ChangeDetectionError("Command not found: git") from None

    if result.returncode != 0:
        raise ChangeDetectionError(
            f"git diff {base}...{head} failed: {result.stderr.strip()}",
            exit_code=result.returncode,
        )

    files = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    logger.debug("Changed files", base=base, head=head, count=len(files))
    return files


def infrastructure_changed(paths: Iterable[str]) -> bool:
    """True if any path is an infrastructure settings file."""
    return any(PurePosixPath(p).name == INFRASTRUCTURE_FILE for p in paths)


def nodes_for_paths(infra: Infrastructure, paths: Iterable[str]) -> Set[NodeId]:
    """Nodes whose environment directory contains at least one of ``paths``.

    ``paths`` are relative to the infrastructure root, as git prints them.
    Files outside every environment directory map to nothing.
    """
    root = infra.root.resolve()
    directories: Dict[PurePosixPath, NodeId] = {}
    for node in infra.universe:
        if node.path is None:
            continue
        try:
            relative = node.path.resolve().relative_to(root)
        except ValueError:
            continue
        directories[PurePosixPath(relative.as_posix())] = node.id

    changed: Set[NodeId] = set()
    for path in paths:
        for directory in PurePosixPath(path).parents:
            if directory in directories:
                changed.add(directories[directory])
                break
    return changed


def detect_changes(
    infra: Infrastructure,
    graph: DependencyGraph,
    paths: Iterable[str],
    environment: Optional[str] = None,
) -> List[NodeId]:
    """Changed environments plus all their dependents, dependencies first.

    Args:
        infra: Discovered infrastructure the paths belong to
        graph: Whole graph of ``infra``
        paths: Changed files, relative to the infrastructure root
        environment: Keep only nodes of this environment

    Returns:
        Affected nodes ordered by execution level, then by id

    Raises:
        CycleError: If the graph cannot be ordered
    """
    changed = nodes_for_paths(infra, paths)
    affected = set(changed)
    for node_id in changed:
        affected |= impact(graph, node_id).transitive

    if environment is not None:
        affected = {n for n in affected if n.environment == environment}

    ordered = [n for level in assign_levels(graph) for n in level if n in affected]
    logger.info(
        "Detected changed environments",
        changed=[n.key for n in sorted(changed)],
        affected=len(ordered),
    )
    return ordered


def format_changes(entries: List[Dict[str, Any]], output_format: str = "json") -> str:
    """Serialize detected projects for CI consumption.

    Raises:
        ValueError: If the format is unknown
    """
    if output_format == "json":
        return json.dumps(entries, indent=2) + "\n"
    if output_format == "yaml":
        return yaml.safe_dump(entries, sort_keys=False, default_flow_style=False)
    raise ValueError(f"Unsupported output format: {output_format}. Available: {list(OUTPUT_FORMATS)}")
