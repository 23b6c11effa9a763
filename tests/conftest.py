import logging
from pathlib import Path
from textwrap import dedent, indent

import pytest

from pmp.node import DependencyDeclaration, Node, NodeId
from pmp.resolver import NodeUniverse
from pmp.utils.logging import logger as pmp_logger


@pytest.fixture(autouse=True)
def reset_logging():
    """Configure logging to avoid Rich Text object issues in tests."""
    root = logging.getLogger()
    # Remove all Rich handlers
    for handler in root.handlers[:]:
        if "Rich" in handler.__class__.__name__:
            root.removeHandler(handler)
    logging.basicConfig(level=logging.WARNING, format="%(message)s", force=True)

    # The CLI reconfigures the shared logger; put it back for every test
    pmp_logger.structured = False
    pmp_logger.level = logging.INFO
    pmp_logger.logger.setLevel(logging.INFO)
    yield
    logging.basicConfig(level=logging.INFO, force=True)


def _node(
    key,
    depends_on=(),
    executor="opentofu",
    api_version="pmp.io/v1",
    kind="Project",
    labels=None,
    declarations=(),
    path=None,
):
    explicit = tuple(
        DependencyDeclaration(project=dep.project, environment=dep.environment)
        for dep in (NodeId.parse(d) for d in depends_on)
    )
    return Node(
        id=NodeId.parse(key),
        api_version=api_version,
        kind=kind,
        executor_name=executor,
        labels=dict(labels or {}),
        declared_dependencies=explicit + tuple(declarations),
        path=path,
    )


@pytest.fixture
def make_node():
    """Factory for nodes: ``make_node("app:dev", depends_on=["db:dev"])``."""
    return _node


@pytest.fixture
def make_universe():
    """Factory for an in-memory universe from ``{"a:dev": ["b:dev"], ...}``."""

    def factory(edges, **node_kwargs):
        return NodeUniverse(_node(key, deps, **node_kwargs) for key, deps in edges.items())

    return factory


@pytest.fixture
def infra_dir(tmp_path):
    """Infrastructure root with only the marker file; add environments with ``env_writer``."""
    root = tmp_path / "infra"
    root.mkdir()
    (root / ".pmp.infrastructure.yaml").write_text(
        dedent(
            """
            apiVersion: pmp.io/v1
            kind: Infrastructure
            metadata:
              name: test-infra
            spec:
              parallel:
                max: 2
                on_failure: stop
            """
        )
    )
    return root


def write_env(root: Path, project: str, env: str, spec: str = "", kind: str = "Project", labels=None):
    env_dir = root / "projects" / kind.lower() / project / "environments" / env
    env_dir.mkdir(parents=True, exist_ok=True)
    label_lines = "".join(f"\n    {k}: {v}" for k, v in (labels or {}).items())
    content = (
        "apiVersion: pmp.io/v1\n"
        f"kind: {kind}\n"
        "metadata:\n"
        f"  name: {project}\n"
        f"  environment_name: {env}\n"
        + (f"  labels:{label_lines}\n" if label_lines else "")
        + "spec:\n"
        "  resource:\n"
        "    apiVersion: pmp.io/v1\n"
        f"    kind: {kind}\n"
        + indent(dedent(spec).strip("\n") + "\n", "  ")
    )
    (env_dir / ".pmp.environment.yaml").write_text(content)
    return env_dir


@pytest.fixture
def env_writer():
    """``env_writer(root, project, env, spec)``; ``spec`` is YAML nested under ``spec:``."""
    return write_env
