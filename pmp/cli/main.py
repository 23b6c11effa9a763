"""Main CLI entry point."""

import argparse
import sys

from pmp import __version__
from pmp.cli.ci import add_ci_parser, ci_command
from pmp.cli.deps import add_deps_parser, deps_command
from pmp.cli.graph import add_graph_parser, graph_command
from pmp.cli.project import EXIT_INTERRUPTED, add_project_parser, project_command
from pmp.utils.logging import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pmp",
        description="PMP - dependency-aware infrastructure project orchestration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pmp graph --all --format mermaid         Diagram every environment
  pmp deps analyze                         Check graph health
  pmp deps impact network                  What breaks if 'network' changes
  pmp project apply --parallel 4           Apply this environment and its dependencies
  pmp project destroy --project app --environment dev
  pmp ci generate --type github -o .github/workflows/pmp.yml
  pmp ci detect-changes --base origin/main   Changed projects and their dependents
        """,
    )

    # Global arguments
    parser.add_argument("--version", action="version", version=f"pmp {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--structured-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    add_graph_parser(subparsers)
    add_deps_parser(subparsers)
    add_project_parser(subparsers)
    add_ci_parser(subparsers)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(structured=args.structured_logs, level=args.log_level)

    try:
        if args.command == "graph":
            return graph_command(args)
        elif args.command == "deps":
            return deps_command(args)
        elif args.command == "project":
            return project_command(args)
        elif args.command == "ci":
            return ci_command(args)
        else:
            parser.print_help()
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
