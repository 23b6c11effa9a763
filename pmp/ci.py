"""CI pipeline generation.

Static pipelines follow the execution levels: each level becomes one stage,
the nodes of a level become that stage's parallel jobs, and every stage waits
for the one before it. They therefore run in the same order as
``pmp project apply``.

Dynamic pipelines start with ``pmp ci detect-changes`` and only preview or
apply the environments a commit touched, together with their dependents.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from pmp.changes import EXIT_INFRASTRUCTURE_CHANGED
from pmp.config import DEFAULT_INSTALL_COMMAND
from pmp.graph import DependencyGraph
from pmp.node import NodeId
from pmp.renderers import unique_ids

TOFU_VERSION = "1.6.0"
PREVIEW_COMMAND = "pmp project preview --no-deps"
APPLY_COMMAND = "pmp project apply --no-deps --yes"

# git reports this as the previous commit of a newly pushed branch or tag
NULL_SHA = "0" * 40


class PipelineType(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    JENKINS = "jenkins"


@dataclass(frozen=True)
class CiJob:
    """One node as a CI job.

    ``slug`` is the node's identifier within the whole graph, shared with the
    Mermaid and DOT renderings, so two jobs never get the same key.
    """

    node_id: NodeId
    path: str
    slug: str

    @property
    def name(self) -> str:
        return self.node_id.project

    @property
    def environment(self) -> str:
        return self.node_id.environment

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "env": self.environment, "path": self.path}


def plan_jobs(
    graph: DependencyGraph, node_ids: Iterable[NodeId], root: Optional[Path] = None
) -> List[CiJob]:
    """Jobs for ``node_ids``, in the order given."""
    ids = unique_ids(graph.nodes)
    return [CiJob(node_id, job_path(graph, node_id, root), ids[node_id]) for node_id in node_ids]


def plan_stages(
    graph: DependencyGraph,
    levels: List[List[NodeId]],
    root: Optional[Path] = None,
    environment: Optional[str] = None,
) -> List[List[CiJob]]:
    """Turn levels into stages of jobs.

    Args:
        graph: Graph the levels were assigned from
        levels: Level partition
        root: Paths are written relative to this directory
        environment: Keep only nodes of this environment

    Returns:
        Non-empty stages in level order
    """
    ids = unique_ids(graph.nodes)
    stages: List[List[CiJob]] = []
    for level in levels:
        jobs = [
            CiJob(node_id, job_path(graph, node_id, root), ids[node_id])
            for node_id in level
            if environment is None or node_id.environment == environment
        ]
        if jobs:
            stages.append(jobs)
    return stages


def job_path(graph: DependencyGraph, node_id: NodeId, root: Optional[Path] = None) -> str:
    """Environment directory of ``node_id``, relative to ``root`` where possible."""
    path = graph.nodes[node_id].path
    if path is None:
        return "."
    if root is not None:
        try:
            path = path.resolve().relative_to(root.resolve())
        except ValueError:
            pass
    return path.as_posix()


def _pipeline_type(value) -> PipelineType:
    try:
        return PipelineType(value)
    except ValueError:
        raise ValueError(
            f"Unsupported pipeline type: {value}. "
            f"Available: {[t.value for t in PipelineType]}"
        ) from None


def generate_pipeline(
    pipeline_type: PipelineType,
    stages: List[List[CiJob]],
    install_command: str = DEFAULT_INSTALL_COMMAND,
) -> str:
    """Render stages for the given CI system.

    Raises:
        ValueError: If the pipeline type is unknown
    """
    generators = {
        PipelineType.GITHUB: generate_github_actions,
        PipelineType.GITLAB: generate_gitlab_ci,
        PipelineType.JENKINS: generate_jenkins,
    }
    return generators[_pipeline_type(pipeline_type)](stages, install_command)


def generate_dynamic_pipeline(
    pipeline_type: PipelineType,
    environment: Optional[str] = None,
    install_command: str = DEFAULT_INSTALL_COMMAND,
) -> str:
    """Render a change-detecting pipeline.

    Raises:
        ValueError: If the pipeline type is unknown or has no dynamic mode
    """
    generators = {
        PipelineType.GITHUB: generate_github_actions_dynamic,
        PipelineType.GITLAB: generate_gitlab_ci_dynamic,
    }
    pipeline_type = _pipeline_type(pipeline_type)
    if pipeline_type not in generators:
        raise ValueError(f"Dynamic pipelines are not supported for {pipeline_type.value}")
    return generators[pipeline_type](environment, install_command)


class MultilineString(str):
    """String subclass to force YAML block scalar style."""

    pass


def multiline_presenter(dumper, data):
    """YAML representer for MultilineString."""
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")


class _PipelineDumper(yaml.SafeDumper):
    def ignore_aliases(self, data):
        # Shared step and matrix dicts are written out in full, never as anchors
        return True


_PipelineDumper.add_representer(MultilineString, multiline_presenter)


def _dump(document: Dict[str, Any]) -> str:
    return yaml.dump(
        document,
        Dumper=_PipelineDumper,
        sort_keys=False,
        default_flow_style=False,
        width=1000,
        allow_unicode=True,
    )


def _script(*lines: str) -> MultilineString:
    return MultilineString("\n".join(lines) + "\n")


def _detect_command(environment: Optional[str]) -> str:
    command = 'pmp ci detect-changes --base "$BASE_REF" --head "$HEAD_REF" --format json'
    if environment:
        command += f" --environment {environment}"
    return command


def _detect_lines(environment: Optional[str]) -> List[str]:
    """Run detection; an infrastructure file change yields no projects."""
    return [
        "EXIT_CODE=0",
        f"PROJECTS=$({_detect_command(environment)}) || EXIT_CODE=$?",
        f'if [ "$EXIT_CODE" -eq {EXIT_INFRASTRUCTURE_CHANGED} ]; then',
        '  echo "Infrastructure settings changed; run the static pipeline to deploy everything"',
        '  PROJECTS="[]"',
        'elif [ "$EXIT_CODE" -ne 0 ]; then',
        '  exit "$EXIT_CODE"',
        "fi",
    ]


def _github_setup_steps(install_command: str) -> List[Dict[str, Any]]:
    return [
        {"name": "Checkout", "uses": "actions/checkout@v4"},
        {
            "name": "Setup OpenTofu",
            "uses": "opentofu/setup-opentofu@v1",
            "with": {"tofu_version": "${{ env.TOFU_VERSION }}"},
        },
        {"name": "Install PMP", "run": install_command},
    ]


def generate_github_actions(stages: List[List[CiJob]], install_command: str) -> str:
    jobs: Dict[str, Any] = {}

    for level, stage in enumerate(stages):
        job: Dict[str, Any] = {
            "name": f"Deploy Stage {level}",
            "runs-on": "ubuntu-latest",
        }
        if level > 0:
            job["needs"] = [f"stage_{level - 1}"]
        job["strategy"] = {
            "fail-fast": False,
            "matrix": {"project": [j.to_dict() for j in stage]},
        }
        job["steps"] = _github_setup_steps(install_command) + [
            {
                "name": "Preview",
                "if": "github.event_name == 'pull_request'",
                "working-directory": "${{ matrix.project.path }}",
                "run": PREVIEW_COMMAND,
            },
            {
                "name": "Apply",
                "if": "github.ref == 'refs/heads/main' && github.event_name == 'push'",
                "working-directory": "${{ matrix.project.path }}",
                "run": APPLY_COMMAND,
            },
        ]
        jobs[f"stage_{level}"] = job

    document = {
        "name": "PMP Infrastructure Deployment",
        "on": {
            "push": {"branches": ["main"]},
            "pull_request": {"branches": ["main"]},
            "workflow_dispatch": None,
        },
        "env": {"TOFU_VERSION": TOFU_VERSION},
        "jobs": jobs,
    }
    return _dump(document)


def generate_github_actions_dynamic(environment: Optional[str], install_command: str) -> str:
    detect_script = _script(
        'if [ "$GITHUB_EVENT_NAME" = "pull_request" ]; then',
        '  BASE_REF="origin/$GITHUB_BASE_REF"',
        f'elif [ -n "$BEFORE_SHA" ] && [ "$BEFORE_SHA" != "{NULL_SHA}" ]; then',
        '  BASE_REF="$BEFORE_SHA"',
        "else",
        '  BASE_REF="HEAD~1"',
        "fi",
        'HEAD_REF="$GITHUB_SHA"',
        *_detect_lines(environment),
        'echo "projects=$(echo "$PROJECTS" | jq -c .)" >> "$GITHUB_OUTPUT"',
        'if [ "$PROJECTS" = "[]" ]; then',
        '  echo "has_changes=false" >> "$GITHUB_OUTPUT"',
        "else",
        '  echo "has_changes=true" >> "$GITHUB_OUTPUT"',
        "fi",
    )
    setup = _github_setup_steps(install_command)
    detect_steps = [
        {"name": "Checkout", "uses": "actions/checkout@v4", "with": {"fetch-depth": 0}},
        setup[2],
        {
            "name": "Detect changed projects",
            "id": "detect",
            "env": {"BEFORE_SHA": "${{ github.event.before }}"},
            "run": detect_script,
        },
    ]
    matrix = {"project": "${{ fromJSON(needs.detect-changes.outputs.projects) }}"}
    has_changes = "needs.detect-changes.outputs.has_changes == 'true'"

    document = {
        "name": "PMP Infrastructure Deployment",
        "on": {
            "push": {"branches": ["main"], "tags": ["*"]},
            "pull_request": {"branches": ["main"]},
            "workflow_dispatch": None,
        },
        "env": {"TOFU_VERSION": TOFU_VERSION},
        "jobs": {
            "detect-changes": {
                "name": "Detect Changed Projects",
                "runs-on": "ubuntu-latest",
                "outputs": {
                    "projects": "${{ steps.detect.outputs.projects }}",
                    "has_changes": "${{ steps.detect.outputs.has_changes }}",
                },
                "steps": detect_steps,
            },
            "preview": {
                "name": "Preview ${{ matrix.project.name }} (${{ matrix.project.env }})",
                "needs": "detect-changes",
                "if": f"github.event_name == 'pull_request' && {has_changes}",
                "runs-on": "ubuntu-latest",
                "strategy": {"fail-fast": False, "matrix": matrix},
                "steps": setup
                + [
                    {
                        "name": "Preview",
                        "working-directory": "${{ matrix.project.path }}",
                        "run": PREVIEW_COMMAND,
                    }
                ],
            },
            "apply": {
                "name": "Apply ${{ matrix.project.name }} (${{ matrix.project.env }})",
                "needs": "detect-changes",
                "if": "(github.ref == 'refs/heads/main' || startsWith(github.ref, 'refs/tags/')) "
                f"&& github.event_name == 'push' && {has_changes}",
                "runs-on": "ubuntu-latest",
                # Projects are listed dependencies first; apply them one at a time
                "strategy": {"fail-fast": True, "max-parallel": 1, "matrix": matrix},
                "steps": setup
                + [
                    {
                        "name": "Apply",
                        "working-directory": "${{ matrix.project.path }}",
                        "run": APPLY_COMMAND,
                    }
                ],
            },
        },
    }
    return _dump(document)


def _gitlab_default(install_command: str, packages: str = "curl unzip") -> Dict[str, Any]:
    return {
        "image": "python:3.11-slim",
        "before_script": [
            f"apt-get update && apt-get install -y --no-install-recommends {packages}",
            "curl -fsSL https://get.opentofu.org/install-opentofu.sh | sh -s -- "
            "--install-method standalone --opentofu-version ${TOFU_VERSION}",
            install_command,
        ],
    }


def generate_gitlab_ci(stages: List[List[CiJob]], install_command: str) -> str:
    document: Dict[str, Any] = {
        "stages": [f"stage_{level}" for level in range(len(stages))],
        "variables": {"TOFU_VERSION": TOFU_VERSION},
        "default": _gitlab_default(install_command),
    }

    for level, stage in enumerate(stages):
        for job in stage:
            entry: Dict[str, Any] = {
                "stage": f"stage_{level}",
                "script": [
                    f'cd "{job.path}"',
                    'if [ "$CI_PIPELINE_SOURCE" = "merge_request_event" ]; then '
                    f"{PREVIEW_COMMAND}; else {APPLY_COMMAND}; fi",
                ],
                "rules": [
                    {"if": '$CI_PIPELINE_SOURCE == "merge_request_event"'},
                    {"if": '$CI_COMMIT_BRANCH == "main"'},
                ],
            }
            if level > 0:
                entry["needs"] = [prev.slug for prev in stages[level - 1]]
            document[job.slug] = entry

    return "# GitLab CI/CD pipeline for PMP infrastructure\n" + _dump(document)


def _gitlab_run_changed(command: str) -> MultilineString:
    # Job rules are evaluated before the detect job runs, so the dotenv
    # variables can only be checked inside the script
    return _script(
        'if [ "$HAS_CHANGES" != "true" ]; then',
        '  echo "No changed projects"',
        "  exit 0",
        "fi",
        "echo \"$CHANGED_PROJECTS\" | jq -r '.[].path' | while read -r path; do",
        f'  (cd "$path" && {command}) || exit 1',
        "done",
    )


def generate_gitlab_ci_dynamic(environment: Optional[str], install_command: str) -> str:
    detect_script = _script(
        'if [ -n "$CI_MERGE_REQUEST_TARGET_BRANCH_NAME" ]; then',
        '  git fetch origin "$CI_MERGE_REQUEST_TARGET_BRANCH_NAME"',
        '  BASE_REF="origin/$CI_MERGE_REQUEST_TARGET_BRANCH_NAME"',
        f'elif [ -n "$CI_COMMIT_BEFORE_SHA" ] && [ "$CI_COMMIT_BEFORE_SHA" != "{NULL_SHA}" ]; then',
        '  BASE_REF="$CI_COMMIT_BEFORE_SHA"',
        "else",
        '  BASE_REF="HEAD~1"',
        "fi",
        'HEAD_REF="$CI_COMMIT_SHA"',
        *_detect_lines(environment),
        'echo "CHANGED_PROJECTS=$(echo "$PROJECTS" | jq -c .)" > variables.env',
        'if [ "$PROJECTS" = "[]" ]; then',
        '  echo "HAS_CHANGES=false" >> variables.env',
        "else",
        '  echo "HAS_CHANGES=true" >> variables.env',
        "fi",
    )
    needs = [{"job": "detect-changes", "artifacts": True}]

    document: Dict[str, Any] = {
        "stages": ["detect", "preview", "apply"],
        "variables": {"TOFU_VERSION": TOFU_VERSION, "GIT_DEPTH": "0"},
        "default": _gitlab_default(install_command, packages="curl unzip git jq"),
        "detect-changes": {
            "stage": "detect",
            "script": [detect_script],
            "artifacts": {"reports": {"dotenv": "variables.env"}},
            "rules": [
                {"if": '$CI_PIPELINE_SOURCE == "merge_request_event"'},
                {"if": '$CI_COMMIT_BRANCH == "main"'},
                {"if": "$CI_COMMIT_TAG"},
            ],
        },
        "preview-projects": {
            "stage": "preview",
            "needs": needs,
            "script": [_gitlab_run_changed(PREVIEW_COMMAND)],
            "rules": [{"if": '$CI_PIPELINE_SOURCE == "merge_request_event"'}],
        },
        "apply-projects": {
            "stage": "apply",
            "needs": needs,
            "script": [_gitlab_run_changed(APPLY_COMMAND)],
            "rules": [
                {"if": '$CI_COMMIT_BRANCH == "main" && $CI_PIPELINE_SOURCE == "push"'},
                {"if": "$CI_COMMIT_TAG"},
            ],
        },
    }

    return "# GitLab CI/CD pipeline for PMP infrastructure (change detection)\n" + _dump(document)


def generate_jenkins(stages: List[List[CiJob]], install_command: str) -> str:
    lines = [
        "// Jenkinsfile for PMP infrastructure",
        "",
        "pipeline {",
        "    agent any",
        "",
        "    environment {",
        f"        TOFU_VERSION = '{TOFU_VERSION}'",
        "    }",
        "",
        "    stages {",
        "        stage('Install PMP') {",
        "            steps {",
        f"                sh '''{install_command}'''",
        "            }",
        "        }",
    ]

    for level, stage in enumerate(stages):
        lines.append(f"        stage('Stage {level}') {{")
        lines.append("            parallel {")
        for job in stage:
            lines.extend(
                [
                    f"                stage('{job.node_id}') {{",
                    "                    steps {",
                    f"                        dir('{job.path}') {{",
                    "                            script {",
                    "                                if (env.CHANGE_ID) {",
                    f"                                    sh '{PREVIEW_COMMAND}'",
                    "                                } else if (env.BRANCH_NAME == 'main') {",
                    f"                                    sh '{APPLY_COMMAND}'",
                    "                                }",
                    "                            }",
                    "                        }",
                    "                    }",
                    "                }",
                ]
            )
        lines.append("            }")
        lines.append("        }")

    lines.extend(
        [
            "    }",
            "",
            "    post {",
            "        success {",
            "            echo 'Deployment successful!'",
            "        }",
            "        failure {",
            "            echo 'Deployment failed!'",
            "        }",
            "    }",
            "}",
        ]
    )
    return "\n".join(lines) + "\n"
