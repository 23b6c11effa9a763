"""
CI CLI Commands
===============

Generates CI pipelines and detects which environments a commit range changed.
"""

from pmp.changes import (
    EXIT_INFRASTRUCTURE_CHANGED,
    OUTPUT_FORMATS,
    changed_files,
    detect_changes,
    format_changes,
    infrastructure_changed,
)
from pmp.ci import (
    PipelineType,
    generate_dynamic_pipeline,
    generate_pipeline,
    plan_jobs,
    plan_stages,
)
from pmp.cli.common import add_path_argument, load_infrastructure, write_output
from pmp.config import resolve_install_command
from pmp.exceptions import PmpException
from pmp.graph import ALL_NODES, assign_levels, build_graph
from pmp.utils.logging import logger


def add_ci_parser(subparsers):
    """Add ci subparser to main parser.

    Args:
        subparsers: Main subparsers object
    """
    ci_parser = subparsers.add_parser("ci", help="Generate CI pipelines")
    ci_subparsers = ci_parser.add_subparsers(dest="ci_command", help="CI commands")

    generate_parser = ci_subparsers.add_parser("generate", help="Generate a pipeline file")
    add_path_argument(generate_parser)
    generate_parser.add_argument(
        "--type",
        dest="pipeline_type",
        choices=[t.value for t in PipelineType],
        required=True,
        help="CI system",
    )
    generate_parser.add_argument(
        "--mode",
        choices=["static", "dynamic"],
        default="static",
        help="static: one stage per level (default); dynamic: only changed projects",
    )
    generate_parser.add_argument("--environment", help="Only include this environment")
    generate_parser.add_argument(
        "--install-command",
        help="Command that installs pmp on the runner (default: spec.ci.install_command)",
    )
    generate_parser.add_argument("-o", "--output", help="Write to this file instead of stdout")

    detect_parser = ci_subparsers.add_parser(
        "detect-changes", help="List projects changed between two git refs"
    )
    add_path_argument(detect_parser)
    detect_parser.add_argument("--base", required=True, help="Base git ref (e.g. origin/main)")
    detect_parser.add_argument("--head", default="HEAD", help="Head git ref (default: HEAD)")
    detect_parser.add_argument("--environment", help="Only report this environment")
    detect_parser.add_argument(
        "--format",
        dest="output_format",
        choices=OUTPUT_FORMATS,
        default="json",
        help="Output format (default: json)",
    )


def ci_command(args) -> int:
    """Dispatcher for ci commands.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    if args.ci_command == "generate":
        return generate_command(args)
    elif args.ci_command == "detect-changes":
        return detect_changes_command(args)
    else:
        print("Error: No ci command specified")
        return 1


def generate_command(args) -> int:
    try:
        infra = load_infrastructure(args.path)
        install_command = resolve_install_command(infra.resource, args.install_command)
        pipeline_type = PipelineType(args.pipeline_type)

        if args.mode == "dynamic":
            if pipeline_type != PipelineType.JENKINS:
                text = generate_dynamic_pipeline(
                    pipeline_type, environment=args.environment, install_command=install_command
                )
                write_output(text, args.output)
                return 0
            logger.warning("Dynamic mode is not available for Jenkins; generating a static pipeline")
            print("⚠️  Dynamic mode is not available for Jenkins, generating a static pipeline")

        graph = build_graph(infra.universe, ALL_NODES)
        stages = plan_stages(
            graph, assign_levels(graph), root=infra.root, environment=args.environment
        )
        if not stages:
            print("❌ No projects to include in the pipeline")
            return 1

        write_output(generate_pipeline(pipeline_type, stages, install_command), args.output)
        return 0

    except (PmpException, ValueError, OSError) as e:
        print(f"❌ Error generating pipeline: {e}")
        return 1


def detect_changes_command(args) -> int:
    """Print changed projects and their dependents as JSON or YAML.

    Exits with ``EXIT_INFRASTRUCTURE_CHANGED`` and prints nothing when the
    infrastructure file itself changed, since every project may be affected.
    """
    try:
        infra = load_infrastructure(args.path)
        paths = changed_files(args.base, args.head, infra.root)

        if infrastructure_changed(paths):
            logger.warning(
                "Infrastructure file changed; every project may be affected",
                base=args.base,
                head=args.head,
            )
            return EXIT_INFRASTRUCTURE_CHANGED

        graph = build_graph(infra.universe, ALL_NODES)
        affected = detect_changes(infra, graph, paths, environment=args.environment)
        entries = [job.to_dict() for job in plan_jobs(graph, affected, root=infra.root)]
        write_output(format_changes(entries, args.output_format))
        return 0

    except (PmpException, ValueError, OSError) as e:
        print(f"❌ Error detecting changes: {e}")
        return 1
