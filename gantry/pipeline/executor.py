"""Pipeline executor.

Runs a PipelineConfig stage by stage in declared order:

    PENDING -> RUNNING -> {SUCCEEDED, DEGRADED, ABORTED}

Skipped stages contribute nothing. A hard-stage failure, a rejected or
timed-out gate, or a cancellation moves the run straight to ABORTED.
Completion hooks are dispatched exactly once on every path.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from gantry.collaborators.base import CollaboratorError, HookAction
from gantry.collaborators.registry import CollaboratorRegistry
from gantry.events import EventBus, EventEmitter
from gantry.pipeline.artifacts import Artifact, ArtifactArchiver
from gantry.pipeline.gates import GateWaiter
from gantry.pipeline.gating import ConditionEvaluator
from gantry.pipeline.hooks import CompletionHook, HookReport, PostHookDispatcher
from gantry.pipeline.runner import StageResult, StageRunner
from gantry.pipeline.schema import (
    BuildStatus,
    HookConfig,
    PipelineConfig,
    RunContext,
    RunState,
)
from gantry.pipeline.status import StatusAggregator

logger = logging.getLogger(__name__)


@dataclass
class StageRecord:
    """What happened to one declared stage."""
    stage: str
    executed: bool
    reason: str = ""
    result: Optional[StageResult] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"stage": self.stage, "executed": self.executed, "reason": self.reason}
        if self.result is not None:
            data.update(self.result.to_dict())
        return data


@dataclass
class RunResult:
    """Externally visible result of a pipeline run."""
    run_id: str
    pipeline: str
    version: str
    branch_name: str
    status: BuildStatus = BuildStatus.SUCCESS
    state: RunState = RunState.PENDING
    stages: List[StageRecord] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    hooks: List[HookReport] = field(default_factory=list)
    message: str = ""
    workspace: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def executed_stages(self) -> List[str]:
        return [record.stage for record in self.stages if record.executed]

    @property
    def skipped_stages(self) -> List[str]:
        return [record.stage for record in self.stages if not record.executed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline,
            "version": self.version,
            "branch_name": self.branch_name,
            "status": self.status.value,
            "state": self.state.value,
            "stages": [record.to_dict() for record in self.stages],
            "artifacts": [artifact.to_dict() for artifact in self.artifacts],
            "hooks": [report.to_dict() for report in self.hooks],
            "message": self.message,
            "workspace": self.workspace,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


class PipelineExecutor:
    """Execute pipelines stage by stage with event broadcasting."""

    def __init__(
        self,
        registry: CollaboratorRegistry,
        artifact_dir: Optional[Path] = None,
        gate_poll_interval: float = 5.0,
        event_bus: Optional[EventBus] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize pipeline executor.

        Args:
            registry: Configured collaborators referenced by step/hook ``uses``
            artifact_dir: Base directory for artifact persistence (memory only when None)
            gate_poll_interval: Seconds between quality gate polls
            event_bus: Event bus for run events (defaults to global)
            evaluator: Stage condition evaluator
            clock: Monotonic clock for gate deadlines
        """
        self.registry = registry
        self.artifact_dir = artifact_dir
        self.gate_poll_interval = gate_poll_interval
        self.event_bus = event_bus
        self.evaluator = evaluator or ConditionEvaluator()
        self.clock = clock

    def execute(
        self,
        pipeline: PipelineConfig,
        context: RunContext,
        cancel_event: Optional[threading.Event] = None,
    ) -> RunResult:
        """
        Execute a pipeline.

        Args:
            pipeline: Pipeline definition to execute
            context: Read-only run context (branch, environment, parameters)
            cancel_event: Optional flag; when set the run aborts before the next stage

        Returns:
            RunResult after completion hooks have run
        """
        run_id = context.run_id or uuid.uuid4().hex
        cancel_event = cancel_event or threading.Event()
        emitter = EventEmitter(run_id, self.event_bus)

        aggregator = StatusAggregator(emitter)
        archiver = ArtifactArchiver(run_id, self.artifact_dir, emitter)
        gate_waiter = GateWaiter(self.gate_poll_interval, emitter, cancel_event, self.clock)
        runner = StageRunner(self.registry, archiver, gate_waiter, emitter)
        dispatcher = PostHookDispatcher(self._resolve_hooks(pipeline.post), emitter)

        result = RunResult(
            run_id=run_id,
            pipeline=pipeline.name,
            version=pipeline.version,
            branch_name=context.branch_name,
            workspace=str(context.workspace) if context.workspace else None,
        )

        result.state = RunState.RUNNING
        result.started_at = datetime.now(timezone.utc).isoformat()
        start_time = time.time()
        emitter.pipeline_started(pipeline.name, pipeline.version, context.branch_name)
        logger.info(f"Run {run_id}: pipeline '{pipeline.name}' on branch '{context.branch_name}'")

        try:
            if context.workspace:
                Path(context.workspace).mkdir(parents=True, exist_ok=True)

            for stage in pipeline.stages:
                if cancel_event.is_set():
                    self._abort_cancelled(aggregator, result, emitter, stage.name)
                    break

                decision = self.evaluator.explain(stage, context)
                if not decision.result:
                    result.stages.append(StageRecord(stage=stage.name, executed=False, reason=decision.debug_info or ""))
                    emitter.stage_skipped(stage.name, decision.debug_info or "condition not met")
                    logger.info(f"Stage '{stage.name}' skipped: {decision.debug_info}")
                    continue

                stage_result = runner.run(stage, context)
                result.stages.append(StageRecord(stage=stage.name, executed=True, result=stage_result))
                aggregator.apply_outcome(stage_result.outcome, stage.name)

                if cancel_event.is_set():
                    self._abort_cancelled(aggregator, result, emitter, stage.name)
                    break

                if stage_result.abort:
                    result.state = RunState.ABORTED
                    result.message = f"Stage '{stage.name}' failed: {stage_result.message}"
                    emitter.pipeline_aborted(stage.name, stage_result.message)
                    logger.warning(f"Run {run_id} aborted at stage '{stage.name}': {stage_result.message}")
                    break
            else:
                result.state = (
                    RunState.SUCCEEDED if aggregator.status == BuildStatus.SUCCESS else RunState.DEGRADED
                )

        except Exception as e:
            logger.exception(f"Run {run_id} failed unexpectedly")
            aggregator.apply(BuildStatus.FAILURE, "executor")
            result.state = RunState.ABORTED
            result.message = f"Internal error: {e}"
            emitter.error(f"Pipeline run failed: {e}")
            emitter.pipeline_aborted(None, str(e))

        finally:
            result.status = aggregator.status
            result.artifacts = archiver.list()
            result.completed_at = datetime.now(timezone.utc).isoformat()
            result.hooks = dispatcher.dispatch(result.status, result)

            duration_ms = int((time.time() - start_time) * 1000)
            emitter.pipeline_completed(result.status.value, result.state.value, duration_ms)
            logger.info(f"Run {run_id} finished: {result.status.value} ({result.state.value}) in {duration_ms}ms")

        return result

    def _abort_cancelled(
        self,
        aggregator: StatusAggregator,
        result: RunResult,
        emitter: EventEmitter,
        stage_name: str,
    ) -> None:
        aggregator.apply(BuildStatus.ABORTED, "cancel")
        result.state = RunState.ABORTED
        result.message = f"Run cancelled at stage '{stage_name}'"
        emitter.cancelled(result.message)
        emitter.pipeline_aborted(stage_name, "cancelled")

    def _resolve_hooks(self, hook_configs: List[HookConfig]) -> List[CompletionHook]:
        hooks: List[CompletionHook] = []
        for config in hook_configs:
            action = self.registry.get(config.uses)
            if not isinstance(action, HookAction):
                action = _missing_action(config.uses)
            hooks.append(CompletionHook(name=config.display_name, when=config.when, action=action))
        return hooks


def _missing_action(collaborator_id: str):
    def _raise(_result: RunResult) -> None:
        raise CollaboratorError(f"No hook action registered as '{collaborator_id}'", collaborator_id)
    return _raise
