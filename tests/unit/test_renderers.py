"""Tests for graph renderings."""

import pytest

from pmp.graph import build_graph
from pmp.node import NodeId
from pmp.renderers import (
    render_all_ascii,
    render_ascii_tree,
    render_dot,
    render_levels,
    render_mermaid,
    sanitize_id,
    unique_ids,
)

DIAMOND = {
    "web-app:dev": ["api:dev", "db.primary:dev"],
    "api:dev": ["db.primary:dev"],
    "db.primary:dev": [],
}


@pytest.fixture
def graph(make_universe):
    return build_graph(make_universe(DIAMOND))


def test_sanitize_id():
    assert sanitize_id("web-app:dev") == "web_app_dev"
    assert sanitize_id("db.primary:prod eu") == "db_primary_prod_eu"


class TestAsciiTree:
    def test_tree_marks_repeated_nodes(self, graph):
        text = render_ascii_tree(graph, NodeId("web-app", "dev"))

        assert text.splitlines() == [
            "web-app (dev)",
            "├── api (dev)",
            "│   └── db.primary (dev)",
            "└── db.primary (dev) [already shown]",
        ]

    def test_tree_of_leaf(self, graph):
        assert render_ascii_tree(graph, NodeId("db.primary", "dev")) == "db.primary (dev)"

    def test_tree_unknown_root(self, graph):
        with pytest.raises(ValueError):
            render_ascii_tree(graph, NodeId("x", "dev"))

    def test_all_trees_start_at_top_nodes(self, make_universe):
        graph = build_graph(make_universe({"a:dev": ["b:dev"], "b:dev": [], "c:dev": []}))

        text = render_all_ascii(graph)

        assert text == "a (dev)\n└── b (dev)\n\nc (dev)"

    def test_all_trees_of_pure_cycle(self, make_universe):
        graph = build_graph(make_universe({"a:dev": ["b:dev"], "b:dev": ["a:dev"]}))

        text = render_all_ascii(graph)

        assert "a (dev)\n└── b (dev)\n    └── a (dev) [already shown]" in text


def test_levels_listing(graph):
    text = render_levels(
        graph, [[NodeId("db.primary", "dev")], [NodeId("api", "dev")], [NodeId("web-app", "dev")]]
    )

    assert "Level 3:" in text
    assert "  - web-app:dev (depends on: api:dev, db.primary:dev)" in text


def test_mermaid(graph):
    text = render_mermaid(graph)

    assert text.splitlines() == [
        "graph TD",
        '    api_dev["api\\n(dev)"]',
        '    db_primary_dev["db.primary\\n(dev)"]',
        '    web_app_dev["web-app\\n(dev)"]',
        "",
        "    api_dev --> db_primary_dev",
        "    web_app_dev --> api_dev",
        "    web_app_dev --> db_primary_dev",
    ]


def test_dot(graph):
    text = render_dot(graph)

    assert text.startswith("digraph dependencies {\n    rankdir=LR;\n    node [shape=box, style=rounded];\n")
    assert '    web_app_dev [label="web-app\\n(dev)"];' in text
    assert "    web_app_dev -> api_dev;" in text
    assert text.rstrip().endswith("}")


def test_renderings_are_stable(make_universe):
    first = build_graph(make_universe(DIAMOND))
    second = build_graph(make_universe(dict(reversed(list(DIAMOND.items())))))

    assert render_mermaid(first) == render_mermaid(second)
    assert render_dot(first) == render_dot(second)


class TestIdentifierCollisions:
    @pytest.fixture
    def colliding(self, make_universe):
        return build_graph(make_universe({"my-app:dev": ["my_app:dev"], "my_app:dev": []}))

    def test_unique_ids_suffix_in_sorted_order(self):
        ids = unique_ids([NodeId("my_app", "dev"), NodeId("my-app", "dev"), NodeId("my.app", "dev")])

        assert ids == {
            NodeId("my-app", "dev"): "my_app_dev",
            NodeId("my.app", "dev"): "my_app_dev_2",
            NodeId("my_app", "dev"): "my_app_dev_3",
        }

    def test_suffix_never_reuses_a_natural_id(self):
        ids = unique_ids([NodeId("a", "b"), NodeId("a-b", "2"), NodeId("a_b", "2")])

        assert len(set(ids.values())) == 3

    def test_mermaid_keeps_both_nodes(self, colliding):
        lines = render_mermaid(colliding).splitlines()

        assert '    my_app_dev["my-app\\n(dev)"]' in lines
        assert '    my_app_dev_2["my_app\\n(dev)"]' in lines
        assert "    my_app_dev --> my_app_dev_2" in lines

    def test_dot_keeps_both_nodes(self, colliding):
        text = render_dot(colliding)

        assert '    my_app_dev [label="my-app\\n(dev)"];' in text
        assert '    my_app_dev_2 [label="my_app\\n(dev)"];' in text
        assert "    my_app_dev -> my_app_dev_2;" in text


def test_ascii_tree_of_long_chain(make_universe):
    """Deep chains render without hitting the interpreter's recursion limit."""
    depth = 1500
    edges = {f"n{i}:dev": [f"n{i + 1}:dev"] for i in range(depth - 1)}
    edges[f"n{depth - 1}:dev"] = []
    graph = build_graph(make_universe(edges))

    lines = render_ascii_tree(graph, NodeId("n0", "dev")).splitlines()

    assert len(lines) == depth
    assert lines[1] == "└── n1 (dev)"
    assert lines[-1] == " " * 4 * (depth - 2) + f"└── n{depth - 1} (dev)"
