"""Tests for git-based change detection."""

import json
import subprocess
from unittest.mock import patch

import pytest
import yaml

from pmp.changes import (
    changed_files,
    detect_changes,
    format_changes,
    infrastructure_changed,
    nodes_for_paths,
)
from pmp.discovery import discover
from pmp.exceptions import ChangeDetectionError
from pmp.graph import build_graph
from pmp.node import NodeId


@pytest.fixture
def infra(infra_dir, env_writer):
    """network <- db <- app in dev; network <- app in prod."""
    env_writer(infra_dir, "network", "dev")
    env_writer(infra_dir, "network", "prod")
    env_writer(
        infra_dir,
        "db",
        "dev",
        """
        dependencies:
          - project:
              name: network
        """,
    )
    for env, dependency in (("dev", "db"), ("prod", "network")):
        env_writer(
            infra_dir,
            "app",
            env,
            f"""
            dependencies:
              - project:
                  name: {dependency}
            """,
        )
    return discover(infra_dir)


@pytest.fixture
def graph(infra):
    return build_graph(infra.universe)


def env_file(project, env, name="main.tf"):
    return f"projects/project/{project}/environments/{env}/{name}"


class TestChangedFiles:
    @patch("pmp.changes.subprocess.run")
    def test_lists_relative_paths(self, mock_run, tmp_path):
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=0, stdout="projects/a/main.tf\n\nREADME.md\n", stderr=""
        )

        files = changed_files("origin/main", "HEAD", tmp_path)

        assert files == ["projects/a/main.tf", "README.md"]
        mock_run.assert_called_once_with(
            ["git", "diff", "--name-only", "--relative", "origin/main...HEAD"],
            cwd=str(tmp_path),
            capture_output=True,
            text=True,
        )

    @patch("pmp.changes.subprocess.run")
    def test_failed_diff(self, mock_run, tmp_path):
        mock_run.return_value = subprocess.CompletedProcess(
            args=[], returncode=128, stdout="", stderr="fatal: bad revision 'nope'\n"
        )

        with pytest.raises(ChangeDetectionError, match="bad revision") as exc_info:
            changed_files("nope", "HEAD", tmp_path)

        assert exc_info.value.exit_code == 128
        assert "✗ Change detection failed" in str(exc_info.value)

    @patch("pmp.changes.subprocess.run", side_effect=FileNotFoundError)
    def test_git_missing(self, mock_run, tmp_path):
        with pytest.raises(ChangeDetectionError, match="Command not found: git"):
            changed_files("origin/main", "HEAD", tmp_path)


@pytest.mark.parametrize(
    "paths, expected",
    [
        ([".pmp.infrastructure.yaml"], True),
        (["nested/.pmp.infrastructure.yaml"], True),
        ([env_file("app", "dev", ".pmp.environment.yaml")], False),
        ([], False),
    ],
)
def test_infrastructure_changed(paths, expected):
    assert infrastructure_changed(paths) is expected


class TestNodesForPaths:
    def test_file_inside_environment(self, infra):
        assert nodes_for_paths(infra, [env_file("db", "dev")]) == {NodeId("db", "dev")}

    def test_nested_file_and_metadata(self, infra):
        paths = [
            env_file("db", "dev", "modules/vpc/main.tf"),
            env_file("network", "prod", ".pmp.environment.yaml"),
        ]

        assert nodes_for_paths(infra, paths) == {NodeId("db", "dev"), NodeId("network", "prod")}

    def test_files_outside_environments_ignored(self, infra):
        paths = ["README.md", "projects/project/db/.pmp.project.yaml"]

        assert nodes_for_paths(infra, paths) == set()

    def test_directory_prefix_is_not_a_match(self, infra):
        assert nodes_for_paths(infra, ["projects/project/db/environments/devel/main.tf"]) == set()


class TestDetectChanges:
    def test_dependents_included_dependencies_first(self, infra, graph):
        affected = detect_changes(infra, graph, [env_file("network", "dev")])

        assert affected == [NodeId("network", "dev"), NodeId("db", "dev"), NodeId("app", "dev")]

    def test_dependencies_not_included(self, infra, graph):
        affected = detect_changes(infra, graph, [env_file("app", "dev")])

        assert affected == [NodeId("app", "dev")]

    def test_environment_filter(self, infra, graph):
        paths = [env_file("network", "dev"), env_file("network", "prod")]

        affected = detect_changes(infra, graph, paths, environment="prod")

        assert affected == [NodeId("network", "prod"), NodeId("app", "prod")]

    def test_nothing_changed(self, infra, graph):
        assert detect_changes(infra, graph, ["docs/index.md"]) == []


class TestFormatChanges:
    ENTRIES = [{"name": "db", "env": "dev", "path": "projects/project/db/environments/dev"}]

    def test_json(self):
        assert json.loads(format_changes(self.ENTRIES)) == self.ENTRIES

    def test_empty_json(self):
        assert format_changes([]) == "[]\n"

    def test_yaml(self):
        assert yaml.safe_load(format_changes(self.ENTRIES, "yaml")) == self.ENTRIES

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unsupported output format"):
            format_changes(self.ENTRIES, "toml")
