"""Base interfaces for pipeline collaborators.

Collaborators are the external capabilities a pipeline step invokes:
scanners, test runners, container build/push, quality gates, approvals,
deployment targets and completion-hook actions. The orchestration core only
talks to these interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from gantry.pipeline.schema import ExecutionEnvironment, GateDecision, Outcome, SEVERITY_ORDER

if TYPE_CHECKING:
    from gantry.pipeline.executor import RunResult


class CollaboratorError(Exception):
    """Error raised by a collaborator invocation."""

    def __init__(self, message: str, collaborator_id: Optional[str] = None):
        super().__init__(message)
        self.collaborator_id = collaborator_id


class QualityGateStatus(str, Enum):
    """Status reported by a quality gate provider."""
    PASSED = "passed"
    FAILED = "failed"
    PENDING = "pending"
    TIMED_OUT = "timed_out"


@dataclass
class ScanReport:
    """Result of a scan: outcome tag plus the report body."""
    outcome: Outcome
    name: str
    content: str = ""
    findings: Dict[str, int] = field(default_factory=dict)  # severity -> count
    message: str = ""

    def count_at_or_above(self, severity: str) -> int:
        """Number of findings at or above ``severity``."""
        threshold = SEVERITY_ORDER.index(severity.lower())
        return sum(
            count for sev, count in self.findings.items()
            if sev.lower() in SEVERITY_ORDER and SEVERITY_ORDER.index(sev.lower()) >= threshold
        )


@dataclass
class ImageRef:
    """Reference to a built container image."""
    repository: str
    tag: str = "latest"
    digest: Optional[str] = None

    @property
    def reference(self) -> str:
        if self.digest:
            return f"{self.repository}@{self.digest}"
        return f"{self.repository}:{self.tag}"

    @classmethod
    def parse(cls, reference: str) -> "ImageRef":
        """Parse 'repo:tag' or 'repo@sha256:...'."""
        if "@" in reference:
            repository, digest = reference.split("@", 1)
            return cls(repository=repository, digest=digest)
        name, _, tag = reference.rpartition(":")
        # A colon inside the registry host (host:port/repo) is not a tag separator
        if not name or "/" in tag:
            return cls(repository=reference)
        return cls(repository=name, tag=tag)


class Collaborator:
    """Common base: every collaborator carries an ID and its configuration."""

    collaborator_id: str = "collaborator"
    description: str = ""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}


class SourceCheckout(Collaborator, ABC):
    @abstractmethod
    def checkout(self, repository: str, branch: str, workspace: Optional[Path]) -> Outcome:
        """Fetch ``repository`` at ``branch`` into ``workspace``."""


class CommandTool(Collaborator, ABC):
    @abstractmethod
    def run(
        self,
        target: Optional[str],
        environment: Optional[ExecutionEnvironment] = None,
        workspace: Optional[Path] = None,
    ) -> Outcome:
        """Run a command step inside ``workspace`` (the run's checkout)."""


class ScanTool(Collaborator, ABC):
    @abstractmethod
    def run(
        self,
        target: Optional[str],
        environment: Optional[ExecutionEnvironment] = None,
        workspace: Optional[Path] = None,
    ) -> ScanReport:
        """Scan ``target`` (source tree, dependency manifest or image reference)."""


class TestRunner(Collaborator, ABC):
    __test__ = False  # not a pytest test class

    @abstractmethod
    def run(
        self,
        target: Optional[str],
        environment: Optional[ExecutionEnvironment] = None,
        workspace: Optional[Path] = None,
    ) -> Outcome:
        """Run the test suite; OK or FAILED."""


class ContainerBuilder(Collaborator, ABC):
    @abstractmethod
    def build(self, context_dir: str, tag: Optional[str] = None) -> ImageRef:
        """Build an image from ``context_dir``."""


class ContainerRegistry(Collaborator, ABC):
    @abstractmethod
    def push(self, image: ImageRef) -> Outcome:
        """Push ``image`` to the registry."""


class QualityGateProvider(Collaborator, ABC):
    @abstractmethod
    def check(self, project_key: str, timeout: float) -> QualityGateStatus:
        """Report the current quality gate status of ``project_key``."""


class ApprovalProvider(Collaborator, ABC):
    @abstractmethod
    def request(self, message: str, timeout: float, request_id: Optional[str] = None) -> GateDecision:
        """Ask for an approval decision; may block up to ``timeout`` seconds."""

    def withdraw(self, request_id: str) -> bool:
        """Drop an unanswered request once its gate has resolved without it.

        Returns True when a pending request was removed.
        """
        return False


class DeploymentTarget(Collaborator, ABC):
    @abstractmethod
    def deploy(self, image: ImageRef, environment_name: str) -> Outcome:
        """Deploy ``image`` into ``environment_name``."""


class HookAction(Collaborator, ABC):
    @abstractmethod
    def run(self, result: "RunResult") -> None:
        """Completion hook action (notification, cleanup)."""
