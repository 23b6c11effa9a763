"""Tests for CI pipeline generation."""

import pytest
import yaml

from pmp.ci import (
    APPLY_COMMAND,
    PREVIEW_COMMAND,
    PipelineType,
    generate_dynamic_pipeline,
    generate_pipeline,
    plan_jobs,
    plan_stages,
)
from pmp.graph import assign_levels, build_graph
from pmp.node import NodeId
from pmp.resolver import NodeUniverse


@pytest.fixture
def stages(make_node, tmp_path):
    root = tmp_path / "infra"

    def node(key, deps=()):
        project, env = key.split(":")
        return make_node(
            key, depends_on=deps, path=root / "projects" / project / "environments" / env
        )

    universe = NodeUniverse(
        [
            node("network:dev"),
            node("db:dev", ["network:dev"]),
            node("cache:dev", ["network:dev"]),
            node("api:dev", ["db:dev", "cache:dev"]),
            node("network:prod"),
        ]
    )
    graph = build_graph(universe)
    return plan_stages(graph, assign_levels(graph), root=root)


class TestPlanStages:
    def test_one_stage_per_level(self, stages):
        assert [[job.node_id for job in stage] for stage in stages] == [
            [NodeId("network", "dev"), NodeId("network", "prod")],
            [NodeId("cache", "dev"), NodeId("db", "dev")],
            [NodeId("api", "dev")],
        ]

    def test_paths_relative_to_root(self, stages):
        assert stages[0][0].path == "projects/network/environments/dev"

    def test_environment_filter_drops_empty_stages(self, make_universe):
        graph = build_graph(make_universe({"a:dev": ["b:dev"], "b:dev": [], "c:prod": []}))

        filtered = plan_stages(graph, assign_levels(graph), environment="prod")

        assert [[job.node_id for job in stage] for stage in filtered] == [[NodeId("c", "prod")]]
        assert filtered[0][0].path == "."


class TestGitHub:
    def test_stages_chain_with_needs(self, stages):
        document = yaml.safe_load(generate_pipeline(PipelineType.GITHUB, stages))

        jobs = document["jobs"]
        assert list(jobs) == ["stage_0", "stage_1", "stage_2"]
        assert "needs" not in jobs["stage_0"]
        assert jobs["stage_1"]["needs"] == ["stage_0"]
        assert jobs["stage_2"]["needs"] == ["stage_1"]

    def test_matrix_lists_level_nodes(self, stages):
        document = yaml.safe_load(generate_pipeline(PipelineType.GITHUB, stages))

        matrix = document["jobs"]["stage_1"]["strategy"]["matrix"]["project"]
        assert matrix == [
            {"name": "cache", "env": "dev", "path": "projects/cache/environments/dev"},
            {"name": "db", "env": "dev", "path": "projects/db/environments/dev"},
        ]

    def test_apply_step_runs_single_node(self, stages):
        document = yaml.safe_load(generate_pipeline(PipelineType.GITHUB, stages))

        steps = document["jobs"]["stage_0"]["steps"]
        assert any(step.get("run") == APPLY_COMMAND for step in steps)


class TestGitLab:
    def test_stages_and_needs(self, stages):
        text = generate_pipeline(PipelineType.GITLAB, stages)
        document = yaml.safe_load(text)

        assert text.startswith("# GitLab")
        assert document["stages"] == ["stage_0", "stage_1", "stage_2"]
        assert document["db_dev"]["stage"] == "stage_1"
        assert document["db_dev"]["needs"] == ["network_dev", "network_prod"]
        assert document["api_dev"]["needs"] == ["cache_dev", "db_dev"]
        assert "needs" not in document["network_dev"]


class TestJenkins:
    def test_parallel_stage_per_level(self, stages):
        text = generate_pipeline(PipelineType.JENKINS, stages)

        assert text.startswith("// Jenkinsfile")
        assert text.index("stage('Stage 0')") < text.index("stage('Stage 1')")
        assert "stage('api:dev')" in text
        assert f"sh '{APPLY_COMMAND}'" in text
        assert text.count("parallel {") == 3


def test_unknown_pipeline_type(stages):
    with pytest.raises(ValueError, match="Unsupported pipeline type"):
        generate_pipeline("circleci", stages)


class TestJobIdentifiers:
    @pytest.fixture
    def colliding(self, make_universe):
        graph = build_graph(make_universe({"my-app:dev": [], "my_app:dev": ["my-app:dev"]}))
        return plan_stages(graph, assign_levels(graph))

    def test_slugs_unique(self, colliding):
        assert [[job.slug for job in stage] for stage in colliding] == [
            ["my_app_dev"],
            ["my_app_dev_2"],
        ]

    def test_gitlab_keeps_both_jobs(self, colliding):
        document = yaml.safe_load(generate_pipeline(PipelineType.GITLAB, colliding))

        assert document["my_app_dev"]["stage"] == "stage_0"
        assert document["my_app_dev_2"]["stage"] == "stage_1"
        assert document["my_app_dev_2"]["needs"] == ["my_app_dev"]
        assert 'cd "."' in document["my_app_dev_2"]["script"]

    def test_plan_jobs_keeps_order(self, make_universe):
        graph = build_graph(make_universe({"b:dev": [], "a:dev": []}))

        jobs = plan_jobs(graph, [NodeId("b", "dev"), NodeId("a", "dev")])

        assert [job.to_dict() for job in jobs] == [
            {"name": "b", "env": "dev", "path": "."},
            {"name": "a", "env": "dev", "path": "."},
        ]


class TestInstallCommand:
    INSTALL = "pip install git+https://git.example.com/platform/pmp.git@v0.1.0"

    def test_default(self, stages):
        document = yaml.safe_load(generate_pipeline(PipelineType.GITHUB, stages))

        steps = document["jobs"]["stage_0"]["steps"]
        assert {"name": "Install PMP", "run": "pip install pmp"} in steps

    def test_github(self, stages):
        document = yaml.safe_load(generate_pipeline(PipelineType.GITHUB, stages, self.INSTALL))

        steps = document["jobs"]["stage_2"]["steps"]
        assert {"name": "Install PMP", "run": self.INSTALL} in steps

    def test_gitlab(self, stages):
        document = yaml.safe_load(generate_pipeline(PipelineType.GITLAB, stages, self.INSTALL))

        assert document["default"]["before_script"][-1] == self.INSTALL

    def test_jenkins(self, stages):
        text = generate_pipeline(PipelineType.JENKINS, stages, self.INSTALL)

        assert text.index(f"sh '''{self.INSTALL}'''") < text.index("stage('Stage 0')")


class TestDynamicGitHub:
    @pytest.fixture
    def document(self):
        return yaml.safe_load(generate_dynamic_pipeline(PipelineType.GITHUB))

    def test_jobs(self, document):
        assert list(document["jobs"]) == ["detect-changes", "preview", "apply"]
        assert document["on"]["push"]["tags"] == ["*"]

    def test_detect_step_exports_projects(self, document):
        job = document["jobs"]["detect-changes"]
        detect = job["steps"][-1]

        assert job["steps"][0]["with"] == {"fetch-depth": 0}
        assert job["outputs"]["projects"] == "${{ steps.detect.outputs.projects }}"
        assert detect["id"] == "detect"
        assert "pmp ci detect-changes" in detect["run"]
        assert '"$EXIT_CODE" -eq 2' in detect["run"]
        assert ">> \"$GITHUB_OUTPUT\"" in detect["run"]

    def test_matrix_from_detected_projects(self, document):
        preview = document["jobs"]["preview"]
        apply = document["jobs"]["apply"]

        assert preview["needs"] == "detect-changes"
        assert preview["strategy"]["matrix"]["project"] == (
            "${{ fromJSON(needs.detect-changes.outputs.projects) }}"
        )
        assert preview["steps"][-1]["run"] == PREVIEW_COMMAND
        assert apply["strategy"]["max-parallel"] == 1
        assert apply["steps"][-1]["run"] == APPLY_COMMAND
        assert "has_changes == 'true'" in apply["if"]

    def test_environment_passed_to_detection(self):
        text = generate_dynamic_pipeline(PipelineType.GITHUB, environment="prod")

        assert "--format json --environment prod" in text

    def test_scripts_written_as_blocks(self):
        text = generate_dynamic_pipeline(PipelineType.GITHUB)

        assert "run: |" in text
        assert "&id" not in text


class TestDynamicGitLab:
    @pytest.fixture
    def document(self):
        return yaml.safe_load(
            generate_dynamic_pipeline(PipelineType.GITLAB, install_command="pip install ./tools/pmp")
        )

    def test_stages(self, document):
        assert document["stages"] == ["detect", "preview", "apply"]
        assert document["default"]["before_script"][-1] == "pip install ./tools/pmp"

    def test_detect_publishes_dotenv(self, document):
        detect = document["detect-changes"]

        assert detect["artifacts"] == {"reports": {"dotenv": "variables.env"}}
        assert "CHANGED_PROJECTS=" in detect["script"][0]
        assert "HAS_CHANGES=true" in detect["script"][0]

    def test_jobs_consume_detection(self, document):
        preview = document["preview-projects"]
        apply = document["apply-projects"]

        assert preview["needs"] == [{"job": "detect-changes", "artifacts": True}]
        assert PREVIEW_COMMAND in preview["script"][0]
        assert '"$HAS_CHANGES" != "true"' in apply["script"][0]
        assert APPLY_COMMAND in apply["script"][0]


def test_dynamic_jenkins_unsupported():
    with pytest.raises(ValueError, match="not supported for jenkins"):
        generate_dynamic_pipeline(PipelineType.JENKINS)
