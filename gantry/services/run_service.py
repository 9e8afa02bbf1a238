"""Run orchestration service for background execution."""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from gantry.collaborators.registry import CollaboratorRegistry, register_builtin_types
from gantry.config_loader import ConfigLoader
from gantry.events import EventBus, get_event_bus
from gantry.pipeline.executor import PipelineExecutor, RunResult
from gantry.pipeline.loader import PipelineRegistry
from gantry.pipeline.schema import PipelineConfig, RunContext
from gantry.services.run_worker import RunJob, RunWorker
from gantry.utils import debug_run_log

logger = logging.getLogger(__name__)


@dataclass
class RunRecord:
    """In-memory bookkeeping for one submitted run."""
    run_id: str
    pipeline: PipelineConfig
    branch_name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    environment: Dict[str, str] = field(default_factory=dict)
    status: str = "queued"
    result: Optional[RunResult] = None
    error: Optional[str] = None
    submitted_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)
    done: threading.Event = field(default_factory=threading.Event, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "run_id": self.run_id,
            "pipeline": self.pipeline.name,
            "branch_name": self.branch_name,
            "status": self.status,
            "submitted_at": self.submitted_at,
            "cancel_requested": self.cancel_event.is_set(),
            "error": self.error,
        }
        if self.result is not None:
            data["result"] = self.result.to_dict()
        return data


class RunService:
    """Submits pipeline runs to the background worker and tracks them."""

    def __init__(
        self,
        executor: PipelineExecutor,
        pipelines: Optional[PipelineRegistry] = None,
        workspace_dir: Optional[Path] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.executor = executor
        self.pipelines = pipelines or PipelineRegistry()
        self.workspace_dir = Path(workspace_dir) if workspace_dir else None
        self.event_bus = event_bus or executor.event_bus or get_event_bus()
        self.worker = RunWorker(self)
        self._runs: Dict[str, RunRecord] = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        self.worker.start()

    def stop(self) -> None:
        self.worker.stop()

    def resolve_pipeline(self, pipeline: Union[str, PipelineConfig]) -> PipelineConfig:
        if isinstance(pipeline, PipelineConfig):
            return pipeline
        config = self.pipelines.find(pipeline)
        if config is None:
            raise ValueError(f"Unknown pipeline '{pipeline}'")
        return config

    def submit(
        self,
        pipeline: Union[str, PipelineConfig],
        branch_name: str,
        parameters: Optional[Dict[str, Any]] = None,
        environment: Optional[Dict[str, str]] = None,
    ) -> RunRecord:
        """
        Queue a pipeline run.

        Args:
            pipeline: Pipeline name (custom or preset) or a loaded definition
            branch_name: Branch the run builds
            parameters: Run parameters visible to stage conditions
            environment: Environment variables visible to stage conditions

        Returns:
            The queued RunRecord

        Raises:
            ValueError: If the pipeline name is unknown
        """
        config = self.resolve_pipeline(pipeline)
        record = RunRecord(
            run_id=uuid.uuid4().hex,
            pipeline=config,
            branch_name=branch_name,
            parameters=dict(parameters or {}),
            environment={k: str(v) for k, v in (environment or {}).items()},
        )
        with self._lock:
            self._runs[record.run_id] = record

        self.worker.enqueue(RunJob(
            run_id=record.run_id,
            pipeline=config,
            branch_name=branch_name,
            parameters=record.parameters,
            environment=record.environment,
        ))
        logger.info(f"Queued run {record.run_id} for pipeline '{config.name}' on '{branch_name}'")
        return record

    def execute_job(self, job: RunJob) -> Optional[RunResult]:
        """Run one queued job to completion. Called from the worker thread."""
        record = self.get(job.run_id)
        if record is None:
            logger.warning(f"Dropping job for unknown run {job.run_id}")
            return None

        record.status = "running"
        debug_run_log(f"[run-debug] run start: {job.run_id} pipeline={job.pipeline.name}")
        try:
            context = RunContext(
                run_id=job.run_id,
                branch_name=job.branch_name,
                environment=job.environment,
                parameters=job.parameters,
                workspace=self.workspace_dir / job.run_id if self.workspace_dir else None,
            )
            record.result = self.executor.execute(job.pipeline, context, record.cancel_event)
            record.status = record.result.state.value
        except Exception as e:
            logger.exception(f"Run {job.run_id} could not be executed")
            record.status = "error"
            record.error = str(e)
        finally:
            record.done.set()
            debug_run_log(f"[run-debug] run done: {job.run_id} status={record.status}")
        return record.result

    def get(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            return self._runs.get(run_id)

    def list_runs(self) -> List[RunRecord]:
        with self._lock:
            return list(self._runs.values())

    def cancel(self, run_id: str) -> bool:
        """Request cancellation; the run aborts before its next stage or gate poll."""
        record = self.get(run_id)
        if record is None or record.done.is_set():
            return False
        record.cancel_event.set()
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def wait(self, run_id: str, timeout: Optional[float] = None) -> Optional[RunResult]:
        """Block until the run finishes (or ``timeout`` elapses)."""
        record = self.get(run_id)
        if record is None:
            return None
        record.done.wait(timeout)
        return record.result

    def events(self, run_id: str) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self.event_bus.get_history(run_id=run_id)]


def build_registry(collaborators_config: Optional[Path] = None) -> CollaboratorRegistry:
    """Registry with all built-in types plus the collaborators from YAML."""
    registry = register_builtin_types(CollaboratorRegistry())
    config_path = Path(collaborators_config) if collaborators_config else None
    if config_path is not None and not config_path.exists():
        logger.warning(f"Collaborators config {config_path} not found; only built-in collaborators are available")
        return registry
    registry.configure(ConfigLoader.load_collaborators_config(config_path))
    return registry


def build_run_service(config: Dict[str, Any], event_bus: Optional[EventBus] = None) -> RunService:
    """Wire registry, executor and service from app configuration."""
    registry = build_registry(config.get("COLLABORATORS_CONFIG"))
    artifact_dir = config.get("ARTIFACT_DIR")
    executor = PipelineExecutor(
        registry,
        artifact_dir=Path(artifact_dir) if artifact_dir else None,
        gate_poll_interval=float(config.get("GATE_POLL_SECONDS", 5.0)),
        event_bus=event_bus,
    )
    workspace_dir = config.get("WORKSPACE_DIR")
    return RunService(executor, workspace_dir=Path(workspace_dir) if workspace_dir else None, event_bus=event_bus)
