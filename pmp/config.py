"""Configuration models for PMP metadata files."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pmp.node import DependencyDeclaration


class FailurePolicy(str, Enum):
    """What the scheduler does after a node fails."""

    STOP = "stop"  # Abort now, skip everything not yet started
    CONTINUE = "continue"  # Record and keep going - DEFAULT
    FINISH_LEVEL = "finish_level"  # Finish the current level, then stop


class Direction(str, Enum):
    """Order in which levels are consumed."""

    FORWARD = "forward"  # dependencies first (apply, preview, refresh)
    REVERSE = "reverse"  # dependents first (destroy)


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ParallelConfig(_Model):
    """
    Parallel execution settings.

    Example:
    ```yaml
    spec:
      parallel:
        max: 4
        on_failure: finish_level
    ```
    """

    max: int = Field(default=1, ge=1, description="Nodes run concurrently within a level")
    on_failure: FailurePolicy = Field(
        default=FailurePolicy.CONTINUE,
        description="stop, continue or finish_level",
    )


class ExecutorCommands(_Model):
    """Command lines that replace the executor defaults."""

    plan: Optional[str] = None
    apply: Optional[str] = None
    destroy: Optional[str] = None
    refresh: Optional[str] = None


class ExecutorSpec(_Model):
    """Executor backend for an environment."""

    name: str = "opentofu"
    commands: ExecutorCommands = Field(default_factory=ExecutorCommands)


class ResourceRef(_Model):
    api_version: str = Field(alias="apiVersion")
    kind: str


class DependencyProjectRef(_Model):
    """
    Target of a dependency: by name, or by kind and labels.

    Example:
    ```yaml
    dependencies:
      - project:
          name: network
          environments: [dev]
      - dependency_name: main_database
        project:
          apiVersion: pmp.io/v1
          kind: Database
          label_selector:
            tier: primary
    ```
    """

    name: Optional[str] = None
    environments: List[str] = Field(default_factory=list)
    api_version: Optional[str] = Field(default=None, alias="apiVersion")
    kind: Optional[str] = None
    label_selector: Dict[str, str] = Field(default_factory=dict)
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_target(self):
        if not self.name and not (self.api_version and self.kind):
            raise ValueError("dependency project needs 'name' or both 'apiVersion' and 'kind'")
        return self


class DependencySpec(_Model):
    dependency_name: Optional[str] = None
    project: DependencyProjectRef

    def to_declarations(self) -> List[DependencyDeclaration]:
        """Expand into declarations; a named project yields one per environment."""
        ref = self.project
        if ref.name:
            environments = ref.environments or [None]
            return [
                DependencyDeclaration(
                    project=ref.name,
                    environment=env,
                    dependency_name=self.dependency_name,
                )
                for env in environments
            ]
        return [
            DependencyDeclaration(
                api_version=ref.api_version,
                kind=ref.kind,
                label_selector=tuple(sorted(ref.label_selector.items())),
                environments=tuple(ref.environments),
                dependency_name=self.dependency_name,
            )
        ]


class EnvironmentMetadata(_Model):
    name: str
    environment_name: str
    labels: Dict[str, str] = Field(default_factory=dict)

    @field_validator("name", "environment_name")
    @classmethod
    def no_separator(cls, v: str) -> str:
        if not v or ":" in v:
            raise ValueError(f"'{v}' must be non-empty and must not contain ':'")
        return v


class EnvironmentSpec(_Model):
    resource: Optional[ResourceRef] = None
    executor: Optional[ExecutorSpec] = None
    dependencies: List[DependencySpec] = Field(default_factory=list)


class EnvironmentResource(_Model):
    """Contents of ``.pmp.environment.yaml``: one project in one environment."""

    api_version: str = Field(alias="apiVersion")
    kind: str
    metadata: EnvironmentMetadata
    spec: EnvironmentSpec = Field(default_factory=EnvironmentSpec)

    def declarations(self) -> List[DependencyDeclaration]:
        declarations: List[DependencyDeclaration] = []
        for dependency in self.spec.dependencies:
            declarations.extend(dependency.to_declarations())
        return declarations


class ProjectMetadata(_Model):
    name: str
    labels: Dict[str, str] = Field(default_factory=dict)


class ProjectResource(_Model):
    """Contents of ``.pmp.project.yaml``."""

    api_version: str = Field(default="pmp.io/v1", alias="apiVersion")
    kind: str = "Project"
    metadata: ProjectMetadata


class InfrastructureMetadata(_Model):
    name: str


DEFAULT_INSTALL_COMMAND = "pip install pmp"


class CiConfig(_Model):
    """
    Settings for generated CI pipelines.

    Example:
    ```yaml
    spec:
      ci:
        install_command: pip install git+https://git.example.com/platform/pmp.git@v0.1.0
    ```
    """

    install_command: str = Field(
        default=DEFAULT_INSTALL_COMMAND,
        min_length=1,
        description="Shell command that installs pmp on the CI runner",
    )


class InfrastructureSpec(_Model):
    executor: ExecutorSpec = Field(default_factory=ExecutorSpec)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    ci: CiConfig = Field(default_factory=CiConfig)


class InfrastructureResource(_Model):
    """Contents of ``.pmp.infrastructure.yaml`` at the infrastructure root."""

    api_version: str = Field(default="pmp.io/v1", alias="apiVersion")
    kind: str = "Infrastructure"
    metadata: InfrastructureMetadata
    spec: InfrastructureSpec = Field(default_factory=InfrastructureSpec)


def resolve_run_settings(
    infrastructure: Optional[InfrastructureResource],
    parallel: Optional[int] = None,
    on_failure: Optional[str] = None,
) -> ParallelConfig:
    """Combine CLI overrides with infrastructure defaults.

    Precedence: explicit argument, then ``spec.parallel``, then built-in defaults.
    """
    base = infrastructure.spec.parallel if infrastructure else ParallelConfig()
    return ParallelConfig(
        max=parallel if parallel is not None else base.max,
        on_failure=FailurePolicy(on_failure) if on_failure else base.on_failure,
    )


def resolve_install_command(
    infrastructure: Optional[InfrastructureResource], install_command: Optional[str] = None
) -> str:
    """Pick the pmp install command for generated pipelines.

    Precedence: explicit argument, then ``spec.ci.install_command``, then
    ``DEFAULT_INSTALL_COMMAND``.
    """
    if install_command:
        return install_command
    if infrastructure is not None:
        return infrastructure.spec.ci.install_command
    return DEFAULT_INSTALL_COMMAND
