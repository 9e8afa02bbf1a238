"""Fixed-outcome collaborators for dry runs.

Each one returns the outcome it is configured with and records its calls,
so a pipeline can be exercised end to end without scanners, docker, a
cluster or a SonarQube server.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from gantry.collaborators.base import (
    ApprovalProvider,
    CollaboratorError,
    CommandTool,
    ContainerBuilder,
    ContainerRegistry,
    DeploymentTarget,
    ImageRef,
    QualityGateProvider,
    QualityGateStatus,
    ScanReport,
    ScanTool,
    SourceCheckout,
    TestRunner,
)
from gantry.pipeline.schema import ExecutionEnvironment, GateDecision, Outcome

logger = logging.getLogger(__name__)


class _Static:
    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.calls: List[Dict[str, Any]] = []

    def _record(self, **kwargs) -> None:
        self.calls.append(kwargs)
        if self.config.get("raise_error"):
            raise CollaboratorError(self.config["raise_error"], self.collaborator_id)

    @property
    def outcome(self) -> Outcome:
        return Outcome(self.config.get("outcome", Outcome.OK.value))


class StaticCommand(_Static, CommandTool, TestRunner, SourceCheckout):
    collaborator_id = "static_command"

    def run(
        self,
        target: Optional[str],
        environment: Optional[ExecutionEnvironment] = None,
        workspace: Optional[Path] = None,
    ) -> Outcome:
        self._record(target=target, environment=environment, workspace=workspace)
        return self.outcome

    def checkout(self, repository: str, branch: str, workspace: Optional[Path]) -> Outcome:
        self._record(repository=repository, branch=branch, workspace=workspace)
        return self.outcome


class StaticScanTool(_Static, ScanTool):
    collaborator_id = "static_scan"

    def run(
        self,
        target: Optional[str],
        environment: Optional[ExecutionEnvironment] = None,
        workspace: Optional[Path] = None,
    ) -> ScanReport:
        self._record(target=target, environment=environment, workspace=workspace)
        return ScanReport(
            outcome=self.outcome,
            name=self.config.get("report_name", "scan-report.json"),
            content=self.config.get("report", "{}"),
            findings=dict(self.config.get("findings") or {}),
            message=self.config.get("message", ""),
        )


class StaticBuilder(_Static, ContainerBuilder):
    collaborator_id = "static_builder"

    def build(self, context_dir: str, tag: Optional[str] = None) -> ImageRef:
        self._record(context_dir=context_dir, tag=tag)
        return ImageRef(
            repository=self.config.get("repository", "registry.local/app"),
            tag=str(tag or self.config.get("tag", "latest")),
        )


class StaticRegistry(_Static, ContainerRegistry):
    collaborator_id = "static_registry"

    def push(self, image: ImageRef) -> Outcome:
        self._record(image=image.reference)
        return self.outcome


class StaticQualityGate(_Static, QualityGateProvider):
    """Replays ``statuses`` in order, repeating the last one (default: passed)."""

    collaborator_id = "static_quality_gate"

    def check(self, project_key: str, timeout: float) -> QualityGateStatus:
        self._record(project_key=project_key, timeout=timeout)
        statuses = self.config.get("statuses") or [QualityGateStatus.PASSED.value]
        index = min(len(self.calls) - 1, len(statuses) - 1)
        return QualityGateStatus(statuses[index])


class StaticApproval(_Static, ApprovalProvider):
    """Answers ``decision`` after ``delay_seconds``."""

    collaborator_id = "static_approval"

    def request(self, message: str, timeout: float, request_id: Optional[str] = None) -> GateDecision:
        self._record(message=message, timeout=timeout)
        delay = float(self.config.get("delay_seconds", 0))
        if delay:
            time.sleep(delay)
        return GateDecision(self.config.get("decision", GateDecision.APPROVED.value))


class StaticDeployment(_Static, DeploymentTarget):
    collaborator_id = "static_deploy"

    def deploy(self, image: ImageRef, environment_name: str) -> Outcome:
        self._record(image=image.reference, environment=environment_name)
        logger.info(f"[dry-run] deploy {image.reference} to {environment_name}")
        return self.outcome
