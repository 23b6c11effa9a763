"""
Graph CLI Command
=================

Visualizes the dependency graph of one environment or of the whole
infrastructure.
"""

from pmp.cli.common import add_path_argument, load_infrastructure, select_node, write_output
from pmp.exceptions import PmpException
from pmp.graph import ALL_NODES, build_graph
from pmp.renderers import render_all_ascii, render_ascii_tree, render_dot, render_mermaid
from pmp.utils.logging import logger


def add_graph_parser(subparsers):
    """Add graph subparser to main parser.

    Args:
        subparsers: Main subparsers object
    """
    graph_parser = subparsers.add_parser("graph", help="Visualize dependency graph")
    add_path_argument(graph_parser)
    graph_parser.add_argument(
        "--all",
        action="store_true",
        help="Graph every environment instead of the one at --path",
    )
    graph_parser.add_argument(
        "--format",
        choices=["ascii", "mermaid", "dot"],
        default="ascii",
        help="Output format (default: ascii)",
    )
    graph_parser.add_argument("-o", "--output", help="Write to this file instead of stdout")


def graph_command(args):
    """
    Handle graph subcommand.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code
    """
    try:
        infra = load_infrastructure(args.path)

        if args.all:
            root = None
            graph = build_graph(infra.universe, ALL_NODES)
        else:
            root = select_node(infra, args)
            graph = build_graph(infra.universe, root)

        if args.format == "mermaid":
            text = render_mermaid(graph)
        elif args.format == "dot":
            text = render_dot(graph)
        elif root is None:
            text = render_all_ascii(graph)
        else:
            text = render_ascii_tree(graph, root)

        write_output(text, args.output)
        return 0

    except (PmpException, ValueError, OSError) as e:
        logger.debug("Graph command failed", error_type=type(e).__name__)
        print(f"❌ Error generating graph: {e}")
        return 1
