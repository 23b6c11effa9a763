"""
Project CLI Commands
====================

Runs preview, apply, destroy or refresh on an environment and everything
it depends on, level by level.
"""

from pmp.cli.common import add_path_argument, confirm, load_infrastructure, select_node
from pmp.config import FailurePolicy, resolve_run_settings
from pmp.exceptions import PmpException
from pmp.executor.registry import get_executor
from pmp.graph import DependencyGraph, assign_levels, build_graph
from pmp.node import ExecutorKind, OutcomeStatus
from pmp.operations import Operation, build_operation
from pmp.renderers import render_ascii_tree
from pmp.scheduler import ExecutionScheduler
from pmp.utils.logging import logger

EXIT_INTERRUPTED = 130

_STATUS_ICONS = {
    OutcomeStatus.SUCCESS: "✅",
    OutcomeStatus.FAILED: "❌",
    OutcomeStatus.SKIPPED: "⏭️ ",
}


def add_project_parser(subparsers):
    """Add project subparser to main parser.

    Args:
        subparsers: Main subparsers object
    """
    project_parser = subparsers.add_parser(
        "project", help="Run an operation on a project and its dependencies"
    )
    project_subparsers = project_parser.add_subparsers(
        dest="project_command", help="Project operations"
    )

    for operation in Operation:
        op_parser = project_subparsers.add_parser(
            operation.value, help=f"Run {operation.value} in dependency order"
        )
        add_path_argument(op_parser)
        op_parser.add_argument("--project", help="Project name (instead of --path)")
        op_parser.add_argument("--environment", help="Environment name (with --project)")
        op_parser.add_argument(
            "--parallel",
            type=int,
            default=None,
            help="Maximum projects run at once within a level (default: infrastructure setting or 1)",
        )
        op_parser.add_argument(
            "--on-failure",
            choices=[p.value for p in FailurePolicy],
            default=None,
            help="What to do after a failure (default: infrastructure setting or continue)",
        )
        op_parser.add_argument(
            "--no-deps",
            action="store_true",
            help="Run only the selected environment, not its dependencies",
        )
        op_parser.add_argument(
            "-y", "--yes", action="store_true", help="Do not ask for confirmation"
        )
        op_parser.add_argument(
            "extra_args",
            nargs="*",
            help="Extra arguments passed to the executor (after --)",
        )


def project_command(args) -> int:
    """
    Handle project subcommands.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 success, 1 failure, 130 interrupted)
    """
    if not args.project_command:
        print("Error: No project operation specified")
        return 1

    operation = Operation(args.project_command)
    extra_args = [a for a in args.extra_args if a != "--"]

    try:
        infra = load_infrastructure(args.path)
        target = select_node(infra, args)
        settings = resolve_run_settings(infra.resource, args.parallel, args.on_failure)

        if args.no_deps:
            graph = DependencyGraph({target: infra.universe.get(target)}, [], roots=[target])
        else:
            graph = build_graph(infra.universe, target)
        levels = assign_levels(graph)

        if graph.node_count() > 1 or operation.destructive:
            print(f"{operation.value.capitalize()} will run on {graph.node_count()} project(s):")
            print()
            print(render_ascii_tree(graph, target))
            print()
            if not args.yes and not confirm(
                f"Proceed with {operation.value} on {graph.node_count()} project(s)?",
                default=not operation.destructive,
            ):
                print("Operation cancelled")
                return 1

        missing = _missing_executors(graph)
        if missing:
            for name in missing:
                print(f"❌ Executor '{name}' is not installed")
            return 1

        scheduler = ExecutionScheduler(
            graph.nodes, max_parallel=settings.max, on_failure=settings.on_failure
        )
        results = scheduler.execute(
            levels, build_operation(operation, extra_args), direction=operation.direction
        )

    except (PmpException, ValueError) as e:
        print(str(e) if str(e).startswith("✗") else f"❌ {e}")
        return 1

    _print_summary(operation, results)

    if results.interrupted:
        return EXIT_INTERRUPTED
    if results.has_failures:
        logger.error(f"{operation.value} failed", failed=[str(n) for n in results.failed])
        return 1
    return 0


def _missing_executors(graph):
    names = sorted(
        {node.executor_name for node in graph.nodes.values() if node.executor_kind == ExecutorKind.REAL}
    )
    return [name for name in names if not get_executor(name).check_installed()]


def _print_summary(operation, results):
    print()
    print(f"{operation.value.capitalize()} summary:")
    for outcome in results.outcomes:
        icon = _STATUS_ICONS[outcome.status]
        detail = outcome.error or outcome.reason
        print(f"  {icon} {outcome.node_id}" + (f" - {detail}" if detail else ""))
    print()
    print(
        f"  {len(results.succeeded)} succeeded, {len(results.failed)} failed, "
        f"{len(results.skipped)} skipped in {results.duration:.1f}s"
    )
    if results.interrupted:
        print("  ⚠️  Interrupted: operations already running were allowed to finish")
