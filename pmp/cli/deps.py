"""
Deps CLI Commands
=================

Analysis of the whole dependency graph: health, impact, order and
explanations for a single project.
"""

import json

from pmp.cli.common import add_path_argument, load_infrastructure
from pmp.exceptions import PmpException
from pmp.graph import ALL_NODES, assign_levels, build_graph
from pmp.impact import analyze, impact
from pmp.renderers import render_levels


def add_deps_parser(subparsers):
    """Add deps subparser to main parser.

    Args:
        subparsers: Main subparsers object
    """
    deps_parser = subparsers.add_parser("deps", help="Analyze project dependencies")
    deps_subparsers = deps_parser.add_subparsers(dest="deps_command", help="Deps commands")

    analyze_parser = deps_subparsers.add_parser("analyze", help="Report on graph health")
    add_path_argument(analyze_parser)
    analyze_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format (default: text)"
    )

    impact_parser = deps_subparsers.add_parser("impact", help="Show what depends on a project")
    impact_parser.add_argument("project", help="Project name")
    add_path_argument(impact_parser)

    order_parser = deps_subparsers.add_parser("order", help="Show execution levels")
    add_path_argument(order_parser)

    validate_parser = deps_subparsers.add_parser(
        "validate", help="Fail on unresolved dependencies or cycles"
    )
    add_path_argument(validate_parser)

    why_parser = deps_subparsers.add_parser("why", help="Explain a project's dependencies")
    why_parser.add_argument("project", help="Project name")
    add_path_argument(why_parser)


def deps_command(args) -> int:
    """Dispatcher for deps commands.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    commands = {
        "analyze": analyze_command,
        "impact": impact_command,
        "order": order_command,
        "validate": validate_command,
        "why": why_command,
    }
    handler = commands.get(args.deps_command)
    if handler is None:
        print("Error: No deps command specified")
        return 1

    try:
        return handler(args)
    except (PmpException, ValueError) as e:
        print(f"❌ {e}")
        return 1


def _warn_unresolved(graph) -> None:
    if graph.resolution_errors:
        print(
            f"⚠️  {len(graph.resolution_errors)} declaration(s) could not be resolved; "
            "run 'pmp deps analyze' for details"
        )
        print()


def analyze_command(args) -> int:
    infra = load_infrastructure(args.path)
    graph = build_graph(infra.universe, ALL_NODES, collect_errors=True)
    analysis = analyze(graph)

    if args.format == "json":
        print(json.dumps(analysis.to_dict(), indent=2))
        return 0

    print("Dependency Analysis")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  Total projects: {analysis.total_nodes}")
    print(f"  Projects with dependencies: {analysis.nodes_with_dependencies}")
    print(f"  Standalone projects: {len(analysis.standalone)}")
    print()

    print("Health Checks:")
    if not analysis.cycles:
        print("  ✓ No circular dependencies detected")
    else:
        print(f"  ✗ Circular dependencies detected: {len(analysis.cycles)}")
        for i, chain in enumerate(analysis.cycles, 1):
            print(f"    Cycle {i}: {' → '.join(chain)}")

    if not analysis.resolution_errors:
        print("  ✓ No missing dependencies (all references are valid)")
    else:
        print(f"  ✗ Missing dependencies: {len(analysis.resolution_errors)}")
        for error in analysis.resolution_errors:
            target = error.declaration.describe() if error.declaration else "?"
            print(f"    {error.node} → {target}: {error.message}")
    print()

    if analysis.orphaned:
        print("Orphaned Projects (nothing depends on them):")
        for node_id in analysis.orphaned:
            print(f"  • {node_id}")
        print()

    if analysis.bottlenecks:
        print("Dependency Bottlenecks (top 10):")
        for node_id, count in analysis.bottlenecks:
            print(f"  {node_id} ← {count} project(s) depend on this")
        print()

    if analysis.standalone:
        print("Standalone Projects (no dependencies and nothing depends on them):")
        for node_id in analysis.standalone:
            print(f"  • {node_id}")
        print()

    return 0


def impact_command(args) -> int:
    infra = load_infrastructure(args.path)
    targets = infra.universe.environments_of(args.project)
    if not targets:
        raise ValueError(f"Project '{args.project}' not found")

    graph = build_graph(infra.universe, ALL_NODES, collect_errors=True)
    _warn_unresolved(graph)

    print(f"Impact Analysis: {args.project}")
    print("=" * 60)
    for target in targets:
        result = impact(graph, target)
        print()
        print(f"{target}:")
        if not result.transitive:
            print("  No projects depend on this project.")
            continue

        print(f"  Directly impacted: {len(result.direct)}")
        for node_id in sorted(result.direct):
            print(f"    • {node_id}")
        print(f"  Projects that would be impacted by changes: {len(result.transitive)}")
        for i, node_id in enumerate(sorted(result.transitive), 1):
            print(f"    {i}. {node_id}")

    return 0


def order_command(args) -> int:
    infra = load_infrastructure(args.path)
    graph = build_graph(infra.universe, ALL_NODES)
    print(render_levels(graph, assign_levels(graph)))
    return 0


def validate_command(args) -> int:
    infra = load_infrastructure(args.path)
    graph = build_graph(infra.universe, ALL_NODES)
    levels = assign_levels(graph)
    print(
        f"✅ Dependency graph is valid: {graph.node_count()} project(s), "
        f"{len(graph.edges)} dependency edge(s), {len(levels)} level(s)"
    )
    return 0


def why_command(args) -> int:
    infra = load_infrastructure(args.path)
    targets = infra.universe.environments_of(args.project)
    if not targets:
        raise ValueError(f"Project '{args.project}' not found")

    graph = build_graph(infra.universe, ALL_NODES, collect_errors=True)
    _warn_unresolved(graph)

    for target in targets:
        print(f"{target}:")

        dependencies = graph.dependencies_of(target)
        print(f"  Depends on ({len(dependencies)}):")
        for dependency in dependencies:
            edge = graph.get_edge(target, dependency)
            via = f" (as '{edge.label}')" if edge and edge.label != dependency.project else ""
            print(f"    → {dependency}{via}")

        dependents = graph.dependents_of(target)
        print(f"  Required by ({len(dependents)}):")
        for dependent in dependents:
            print(f"    ← {dependent}")

        transitive = sorted(graph.get_dependencies(target))
        print(f"  All dependencies, including transitive ({len(transitive)}):")
        for node_id in transitive:
            print(f"    • {node_id}")
        print()

    return 0
