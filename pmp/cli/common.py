"""Helpers shared by the CLI commands."""

from pathlib import Path
from typing import Optional

from pmp.discovery import Infrastructure, discover
from pmp.node import NodeId


def add_path_argument(parser) -> None:
    parser.add_argument(
        "--path",
        default=None,
        help="Directory inside the infrastructure (default: current directory)",
    )


def load_infrastructure(path: Optional[str] = None) -> Infrastructure:
    """Discover the infrastructure containing ``path``."""
    return discover(path)


def select_node(infra: Infrastructure, args) -> NodeId:
    """Pick the node a command targets.

    ``--project`` (with ``--environment`` when the project has several
    environments) wins; otherwise the environment directory at ``--path``
    or the current directory.

    Raises:
        ValueError: If the selection matches no node or is ambiguous
    """
    project = getattr(args, "project", None)
    environment = getattr(args, "environment", None)

    if project:
        known = infra.universe.environments_of(project)
        if not known:
            raise ValueError(f"Project '{project}' not found")
        if environment:
            node_id = NodeId(project, environment)
            if node_id not in infra.universe:
                available = ", ".join(n.environment for n in known)
                raise ValueError(
                    f"Environment '{environment}' not found for project '{project}'. "
                    f"Available: {available}"
                )
            return node_id
        if len(known) > 1:
            available = ", ".join(n.environment for n in known)
            raise ValueError(
                f"Project '{project}' has several environments ({available}); "
                "pass --environment"
            )
        return known[0]

    return infra.node_for_directory(getattr(args, "path", None) or Path.cwd())


def write_output(text: str, output: Optional[str] = None) -> None:
    """Print ``text`` or write it to ``output``."""
    if output:
        Path(output).write_text(text, encoding="utf-8")
        print(f"✅ Wrote {output}")
    else:
        print(text, end="" if text.endswith("\n") else "\n")


def confirm(prompt: str, default: bool = False) -> bool:
    """Ask a yes/no question on stdin; EOF answers with ``default``."""
    hint = "[Y/n]" if default else "[y/N]"
    try:
        answer = input(f"{prompt} {hint} ").strip().lower()
    except EOFError:
        return default
    if not answer:
        return default
    return answer in ("y", "yes")
