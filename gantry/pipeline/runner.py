"""Stage execution.

StageRunner executes one stage's steps in order and summarizes them as a
single StageResult. Collaborator errors are converted to FAILED step results;
nothing raised by a collaborator escapes ``run``.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from gantry.collaborators.base import (
    ApprovalProvider,
    CommandTool,
    ContainerBuilder,
    ContainerRegistry,
    DeploymentTarget,
    ImageRef,
    QualityGateProvider,
    ScanTool,
    SourceCheckout,
    TestRunner,
)
from gantry.collaborators.registry import CollaboratorRegistry
from gantry.events import EventEmitter
from gantry.pipeline.artifacts import ArtifactArchiver, ArtifactRef
from gantry.pipeline.gates import GateKind, GateRequest, GateWaiter
from gantry.pipeline.schema import (
    GateDecision,
    Outcome,
    PipelineStage,
    PipelineStep,
    RunContext,
    StepKind,
)

logger = logging.getLogger(__name__)


_CAPABILITIES = {
    StepKind.CHECKOUT: SourceCheckout,
    StepKind.COMMAND: CommandTool,
    StepKind.SCAN: ScanTool,
    StepKind.TEST: TestRunner,
    StepKind.BUILD: ContainerBuilder,
    StepKind.PUSH: ContainerRegistry,
    StepKind.QUALITY_GATE: QualityGateProvider,
    StepKind.APPROVAL: ApprovalProvider,
    StepKind.DEPLOY: DeploymentTarget,
}


@dataclass
class StepResult:
    """Outcome of one step."""
    step: str
    outcome: Outcome
    message: str = ""
    artifacts: List[ArtifactRef] = field(default_factory=list)
    gate_decision: Optional[GateDecision] = None

    @property
    def gate_failed(self) -> bool:
        return self.gate_decision in (GateDecision.REJECTED, GateDecision.TIMED_OUT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "outcome": self.outcome.value,
            "message": self.message,
            "artifacts": list(self.artifacts),
            "gate_decision": self.gate_decision.value if self.gate_decision else None,
        }


@dataclass
class StageResult:
    """Summary of one executed stage (worst step outcome)."""
    stage: str
    outcome: Outcome
    steps: List[StepResult] = field(default_factory=list)
    abort: bool = False
    message: str = ""
    duration_ms: int = 0

    @property
    def artifacts(self) -> List[ArtifactRef]:
        return [ref for step in self.steps for ref in step.artifacts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "outcome": self.outcome.value,
            "abort": self.abort,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "steps": [s.to_dict() for s in self.steps],
        }


class StageRunner:
    """Execute a stage's steps against registered collaborators."""

    def __init__(
        self,
        registry: CollaboratorRegistry,
        archiver: ArtifactArchiver,
        gate_waiter: GateWaiter,
        emitter: Optional[EventEmitter] = None,
    ):
        self.registry = registry
        self.archiver = archiver
        self.gate_waiter = gate_waiter
        self.emitter = emitter

    def run(self, stage: PipelineStage, context: RunContext) -> StageResult:
        """
        Execute ``stage`` and summarize it.

        Hard stage: the first FAILED step stops the stage and fails it.
        Soft stage: a FAILED step is recorded as DEGRADED and later steps
        still run. A rejected or timed-out gate always aborts.
        """
        start = time.time()
        results: List[StepResult] = []
        abort = False

        if self.emitter:
            self.emitter.stage_started(stage.name, stage.agent.model_dump() if stage.agent else None)
        logger.info(f"Stage '{stage.name}' started ({'hard' if stage.hard else 'soft'}, {len(stage.steps)} steps)")

        for step in stage.steps:
            if self.emitter:
                self.emitter.step_started(stage.name, step.display_name, step.kind.value)

            result = self._run_step(step, stage, context)
            if step.kind.is_gate and result.outcome == Outcome.FAILED and result.gate_decision is None:
                # A gate that could not be evaluated counts as rejected
                result.gate_decision = GateDecision.REJECTED

            if result.outcome == Outcome.FAILED and not stage.hard and not result.gate_failed:
                logger.warning(f"Step {result.step} failed in soft stage '{stage.name}': {result.message}")
                result.outcome = Outcome.DEGRADED

            results.append(result)
            if self.emitter:
                self.emitter.step_completed(stage.name, result.step, result.outcome.value, result.message)

            if result.outcome == Outcome.FAILED:
                abort = True
                break

        outcome = Outcome.worst(*(r.outcome for r in results))
        message = next(
            (r.message for r in results if r.outcome == outcome and r.message),
            "",
        ) if outcome != Outcome.OK else ""
        duration_ms = int((time.time() - start) * 1000)

        if self.emitter:
            if outcome == Outcome.FAILED:
                self.emitter.stage_failed(stage.name, message)
            self.emitter.stage_completed(stage.name, outcome.value, duration_ms)
        logger.info(f"Stage '{stage.name}' finished: {outcome.value} in {duration_ms}ms")

        return StageResult(
            stage=stage.name,
            outcome=outcome,
            steps=results,
            abort=abort,
            message=message,
            duration_ms=duration_ms,
        )

    def _run_step(self, step: PipelineStep, stage: PipelineStage, context: RunContext) -> StepResult:
        collaborator = self.registry.get(step.uses)
        if collaborator is None:
            return StepResult(step.display_name, Outcome.FAILED, f"Unknown collaborator '{step.uses}'")

        capability = _CAPABILITIES[step.kind]
        if not isinstance(collaborator, capability):
            return StepResult(
                step.display_name,
                Outcome.FAILED,
                f"Collaborator '{step.uses}' does not provide {capability.__name__}",
            )

        try:
            handler = getattr(self, f"_step_{step.kind.value}")
            return handler(collaborator, step, stage, context)
        except Exception as e:
            logger.exception(f"Step {step.display_name} in stage '{stage.name}' raised")
            return StepResult(step.display_name, Outcome.FAILED, f"{type(e).__name__}: {e}")

    def _step_checkout(self, tool: SourceCheckout, step, stage, context) -> StepResult:
        branch = step.with_.get("branch") or context.branch_name
        outcome = Outcome(tool.checkout(step.target, branch, context.workspace))
        return StepResult(step.display_name, outcome, f"Checked out {step.target}@{branch}")

    def _step_command(self, tool: CommandTool, step, stage, context) -> StepResult:
        outcome = Outcome(tool.run(step.target, environment=stage.agent, workspace=context.workspace))
        return StepResult(step.display_name, outcome, "" if outcome == Outcome.OK else f"Command {outcome.value}")

    def _step_scan(self, tool: ScanTool, step, stage, context) -> StepResult:
        target = step.target
        if step.with_.get("scan_image"):
            image = self._resolve_image(step)
            if image is None:
                return StepResult(step.display_name, Outcome.FAILED, "No image to scan")
            target = image.reference

        report = tool.run(target, environment=stage.agent, workspace=context.workspace)
        outcome = Outcome(report.outcome)
        message = report.message

        refs = [self.archiver.register(report.name, stage.name, report.content, kind="report")]

        if step.fail_on_severity:
            count = report.count_at_or_above(step.fail_on_severity)
            if count:
                outcome = Outcome.FAILED
                message = f"{count} finding(s) at or above {step.fail_on_severity}"

        return StepResult(step.display_name, outcome, message, artifacts=refs)

    def _step_test(self, tool: TestRunner, step, stage, context) -> StepResult:
        outcome = Outcome(tool.run(step.target, environment=stage.agent, workspace=context.workspace))
        return StepResult(step.display_name, outcome, "" if outcome == Outcome.OK else "Tests failed")

    def _step_build(self, tool: ContainerBuilder, step, stage, context) -> StepResult:
        context_dir = step.target or (str(context.workspace) if context.workspace else ".")
        image = tool.build(context_dir, tag=step.with_.get("tag"))
        ref = self.archiver.register(step.with_.get("artifact_name", "image"), stage.name, image.reference, kind="image")
        return StepResult(step.display_name, Outcome.OK, f"Built {image.reference}", artifacts=[ref])

    def _step_push(self, tool: ContainerRegistry, step, stage, context) -> StepResult:
        image = self._resolve_image(step)
        if image is None:
            return StepResult(step.display_name, Outcome.FAILED, "No image to push")
        outcome = Outcome(tool.push(image))
        return StepResult(step.display_name, outcome, f"Push {image.reference}: {outcome.value}")

    def _step_deploy(self, tool: DeploymentTarget, step, stage, context) -> StepResult:
        image = self._resolve_image(step)
        if image is None:
            return StepResult(step.display_name, Outcome.FAILED, "No image to deploy")
        outcome = Outcome(tool.deploy(image, step.environment))
        return StepResult(
            step.display_name,
            outcome,
            f"Deploy {image.reference} to {step.environment}: {outcome.value}",
        )

    def _step_quality_gate(self, provider: QualityGateProvider, step, stage, context) -> StepResult:
        request = GateRequest(
            kind=GateKind.QUALITY,
            stage=stage.name,
            timeout_seconds=step.timeout_seconds,
            project_key=step.project_key,
            quality_provider=provider,
        )
        return self._gate_result(step, self.gate_waiter.await_gate(request))

    def _step_approval(self, provider: ApprovalProvider, step, stage, context) -> StepResult:
        request = GateRequest(
            kind=GateKind.APPROVAL,
            stage=stage.name,
            timeout_seconds=step.timeout_seconds,
            message=step.message,
            approval_provider=provider,
        )
        return self._gate_result(step, self.gate_waiter.await_gate(request))

    def _gate_result(self, step: PipelineStep, gate) -> StepResult:
        outcome = Outcome.OK if gate.decision == GateDecision.APPROVED else Outcome.FAILED
        return StepResult(step.display_name, outcome, gate.message, gate_decision=gate.decision)

    def _resolve_image(self, step: PipelineStep) -> Optional[ImageRef]:
        if step.target:
            return ImageRef.parse(step.target)
        artifact = self.archiver.latest("image")
        if artifact is None:
            return None
        return ImageRef.parse(artifact.text)
