"""Pipeline schema definitions using Pydantic for validation.

This module defines the structure of Gantry pipelines, including:
- Pipeline configuration and metadata
- Stages (hard/soft, conditional, with an execution environment)
- Steps (collaborator invocations: scan, test, build, gate, deploy, ...)
- Completion hooks keyed by final build status
- Ordered status/outcome enums and the read-only run context
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BuildStatus(str, Enum):
    """Overall run outcome, ordered SUCCESS < UNSTABLE < FAILURE < ABORTED."""
    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"
    ABORTED = "ABORTED"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, BuildStatus):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, BuildStatus):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, BuildStatus):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, BuildStatus):
            return NotImplemented
        return self.rank >= other.rank


_STATUS_RANK = {
    BuildStatus.SUCCESS: 0,
    BuildStatus.UNSTABLE: 1,
    BuildStatus.FAILURE: 2,
    BuildStatus.ABORTED: 3,
}


class Outcome(str, Enum):
    """Outcome tag of a step or stage."""
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _OUTCOME_RANK[self]

    @staticmethod
    def worst(*outcomes: "Outcome") -> "Outcome":
        """Return the worst outcome (OK when none given)."""
        if not outcomes:
            return Outcome.OK
        return max(outcomes, key=lambda o: o.rank)


_OUTCOME_RANK = {Outcome.OK: 0, Outcome.DEGRADED: 1, Outcome.FAILED: 2}


class GateDecision(str, Enum):
    """Resolution of a gate request."""
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class RunState(str, Enum):
    """Pipeline-level state machine."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.SUCCEEDED, RunState.DEGRADED, RunState.ABORTED)


class StepKind(str, Enum):
    """Type of pipeline step (which collaborator capability it invokes)."""
    CHECKOUT = "checkout"          # SourceCheckout.checkout
    COMMAND = "command"            # CommandTool.run
    SCAN = "scan"                  # ScanTool.run (SAST, dependency, image scan)
    TEST = "test"                  # TestRunner.run
    BUILD = "build"                # ContainerBuilder.build
    PUSH = "push"                  # ContainerRegistry.push
    QUALITY_GATE = "quality_gate"  # QualityGateProvider via GateWaiter
    APPROVAL = "approval"          # ApprovalProvider via GateWaiter
    DEPLOY = "deploy"              # DeploymentTarget.deploy

    @property
    def is_gate(self) -> bool:
        return self in (StepKind.QUALITY_GATE, StepKind.APPROVAL)


class HookCondition(str, Enum):
    """Predicate over the final build status for completion hooks."""
    ALWAYS = "always"
    SUCCESS = "success"
    UNSTABLE = "unstable"
    FAILURE = "failure"
    ABORTED = "aborted"
    NOT_SUCCESS = "not_success"

    def matches(self, status: BuildStatus) -> bool:
        if self == HookCondition.ALWAYS:
            return True
        if self == HookCondition.NOT_SUCCESS:
            return status != BuildStatus.SUCCESS
        return status.value.lower() == self.value


SEVERITY_ORDER = ["info", "low", "medium", "high", "critical"]


class StageCondition(BaseModel):
    """Run-condition for a stage, evaluated against the run context.

    Examples:
        # Production deploy only from main
        branch: "main"

        # Release branches with an explicit parameter
        branch: "release/*"
        parameters: {DEPLOY: "true"}

        # Either main or a hotfix branch
        any_of:
          - branch: "main"
          - branch: "hotfix/*"
    """
    branch: Optional[str] = Field(None, description="Branch name or glob pattern the run must match")
    environment: Optional[Dict[str, str]] = Field(None, description="Environment variables that must equal these values")
    parameters: Optional[Dict[str, Any]] = Field(None, description="Run parameters that must equal these values")

    all_of: Optional[List["StageCondition"]] = Field(None, description="AND these conditions")
    any_of: Optional[List["StageCondition"]] = Field(None, description="OR these conditions")


class ExecutionEnvironment(BaseModel):
    """Logical target where a stage's steps run (container image, worker label)."""
    image: Optional[str] = Field(None, description="Container image to run commands in")
    label: Optional[str] = Field(None, description="Worker label (informational)")
    workdir: Optional[str] = Field(None, description="Working directory inside the environment")
    env: Dict[str, str] = Field(default_factory=dict, description="Extra environment variables")


class PipelineStep(BaseModel):
    """A single collaborator invocation within a stage."""
    model_config = ConfigDict(populate_by_name=True)

    kind: StepKind = Field(..., description="Capability this step invokes")
    uses: str = Field(..., description="Collaborator ID from the collaborator registry")
    name: Optional[str] = Field(None, description="Display name (defaults to '<kind>:<uses>')")
    target: Optional[str] = Field(None, description="Scan/test target, repository URL, image reference...")

    # Gate steps
    timeout_seconds: Optional[float] = Field(None, description="Gate deadline in seconds")
    message: Optional[str] = Field(None, description="Approval prompt")
    project_key: Optional[str] = Field(None, description="Quality gate project key")

    # Deploy steps
    environment: Optional[str] = Field(None, description="Deployment environment name")

    # Scan steps
    fail_on_severity: Optional[str] = Field(None, description="Fail the step on findings at/above this severity")

    with_: Dict[str, Any] = Field(default_factory=dict, alias="with", description="Collaborator-specific options")

    @property
    def display_name(self) -> str:
        return self.name or f"{self.kind.value}:{self.uses}"

    @field_validator("fail_on_severity")
    @classmethod
    def validate_severity(cls, value: Optional[str]):
        if value is None:
            return value
        value = value.lower()
        if value not in SEVERITY_ORDER:
            raise ValueError(f"fail_on_severity must be one of {SEVERITY_ORDER}")
        return value

    @model_validator(mode="after")
    def validate_step_kind(self):
        """Validate step has required fields for its kind."""
        if self.kind.is_gate:
            if not self.timeout_seconds or self.timeout_seconds <= 0:
                raise ValueError(f"Step with kind='{self.kind.value}' must have a positive 'timeout_seconds'")

        if self.kind == StepKind.APPROVAL and not self.message:
            raise ValueError("Step with kind='approval' must have 'message' field")

        if self.kind == StepKind.QUALITY_GATE and not self.project_key:
            raise ValueError("Step with kind='quality_gate' must have 'project_key' field")

        if self.kind == StepKind.DEPLOY and not self.environment:
            raise ValueError("Step with kind='deploy' must have 'environment' field")

        if self.kind == StepKind.CHECKOUT and not self.target:
            raise ValueError("Step with kind='checkout' must have 'target' (repository) field")

        if self.fail_on_severity and self.kind != StepKind.SCAN:
            raise ValueError("'fail_on_severity' is only valid on scan steps")

        return self


class PipelineStage(BaseModel):
    """A named unit of pipeline work."""
    name: str = Field(..., description="Stage name, unique within the pipeline")
    steps: List[PipelineStep] = Field(..., description="Ordered steps")
    when: Optional[StageCondition] = Field(None, description="Run-condition (always runs when absent)")
    agent: Optional[ExecutionEnvironment] = Field(None, description="Execution environment")
    hard: bool = Field(True, description="Abort the run on failure (False degrades status instead)")

    @field_validator("steps")
    @classmethod
    def validate_steps(cls, steps: List[PipelineStep]):
        if not steps:
            raise ValueError("Stage must have at least one step")
        return steps


class HookConfig(BaseModel):
    """Completion hook declaration."""
    when: HookCondition = Field(HookCondition.ALWAYS, description="Final-status predicate")
    uses: str = Field(..., description="HookAction collaborator ID")
    name: Optional[str] = Field(None, description="Display name (defaults to uses)")

    @property
    def display_name(self) -> str:
        return self.name or self.uses


class PipelineConfig(BaseModel):
    """Complete pipeline definition.

    Stages execute strictly in declared order.
    """
    name: str = Field(..., description="Pipeline name (e.g., 'default')")
    version: str = Field("1.0", description="Pipeline version for tracking changes")
    description: Optional[str] = Field(None, description="Human-readable description")

    stages: List[PipelineStage] = Field(..., description="Ordered list of pipeline stages")
    post: List[HookConfig] = Field(default_factory=list, description="Completion hooks")

    tags: Optional[List[str]] = Field(None, description="Tags for categorization")
    is_preset: bool = Field(False, description="Whether this is a built-in preset pipeline")

    @field_validator("stages")
    @classmethod
    def validate_stages(cls, stages: List[PipelineStage]):
        """Validate stage list has at least one stage and unique names."""
        if not stages:
            raise ValueError("Pipeline must have at least one stage")

        names = [stage.name for stage in stages]
        if len(names) != len(set(names)):
            raise ValueError("Stage names must be unique")

        return stages

    def collaborator_ids(self) -> List[str]:
        """All collaborator IDs referenced by steps and hooks, in order of appearance."""
        ids: List[str] = []
        for stage in self.stages:
            for step in stage.steps:
                if step.uses not in ids:
                    ids.append(step.uses)
        for hook in self.post:
            if hook.uses not in ids:
                ids.append(hook.uses)
        return ids


class RunContext(BaseModel):
    """Read-only context visible to all stages of one run."""
    model_config = ConfigDict(frozen=True)

    run_id: str
    branch_name: str
    environment: Dict[str, str] = Field(default_factory=dict)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    workspace: Optional[Path] = None


# Update forward references for recursive models
StageCondition.model_rebuild()
