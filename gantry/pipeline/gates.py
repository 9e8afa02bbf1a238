"""Bounded waits on external decisions.

GateWaiter turns a quality-gate poll or a manual approval into one blocking
call with a deadline. It never raises for provider problems: every path ends
in a GateOutcome with an APPROVED, REJECTED or TIMED_OUT decision.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from gantry.collaborators.base import ApprovalProvider, QualityGateProvider, QualityGateStatus
from gantry.events import EventEmitter
from gantry.pipeline.schema import GateDecision

logger = logging.getLogger(__name__)


class GateKind(str, Enum):
    QUALITY = "quality_gate"
    APPROVAL = "approval"


class GateBusyError(RuntimeError):
    """Raised when a second gate is requested while one is outstanding."""


@dataclass
class GateRequest:
    """A pending approval or quality check with a deadline."""
    kind: GateKind
    stage: str
    timeout_seconds: float
    message: Optional[str] = None
    project_key: Optional[str] = None
    quality_provider: Optional[QualityGateProvider] = None
    approval_provider: Optional[ApprovalProvider] = None
    gate_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass
class GateOutcome:
    decision: GateDecision
    message: str
    waited_seconds: float = 0.0


_QUALITY_DECISIONS = {
    QualityGateStatus.PASSED: GateDecision.APPROVED,
    QualityGateStatus.FAILED: GateDecision.REJECTED,
    QualityGateStatus.TIMED_OUT: GateDecision.TIMED_OUT,
}


class GateWaiter:
    """Blocking-with-deadline primitive over an external decision source."""

    def __init__(
        self,
        poll_interval: float = 5.0,
        emitter: Optional[EventEmitter] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize gate waiter.

        Args:
            poll_interval: Seconds between quality gate polls
            emitter: Event emitter for gate events
            cancel_event: Run cancellation flag; interrupts waits when set
            clock: Monotonic clock (injectable for tests)
        """
        self.poll_interval = poll_interval
        self.emitter = emitter
        self.cancel_event = cancel_event or threading.Event()
        self.clock = clock
        self._pending: Optional[GateRequest] = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> Optional[GateRequest]:
        return self._pending

    def await_gate(self, request: GateRequest) -> GateOutcome:
        """
        Block until the gate resolves or its deadline elapses.

        Raises:
            GateBusyError: If another gate is still outstanding
        """
        with self._lock:
            if self._pending is not None:
                raise GateBusyError(
                    f"Gate {self._pending.gate_id} ({self._pending.stage}) is still outstanding"
                )
            self._pending = request

        started = self.clock()
        deadline = started + request.timeout_seconds
        logger.info(
            f"Waiting on {request.kind.value} gate {request.gate_id} for stage "
            f"'{request.stage}' (timeout {request.timeout_seconds}s)"
        )
        if self.emitter:
            self.emitter.gate_waiting(request.gate_id, request.kind.value, request.stage, request.timeout_seconds)

        try:
            if request.kind == GateKind.QUALITY:
                outcome = self._await_quality(request, deadline)
            else:
                outcome = self._await_approval(request, deadline)
        finally:
            with self._lock:
                self._pending = None

        outcome.waited_seconds = max(0.0, self.clock() - started)
        logger.info(f"Gate {request.gate_id} resolved: {outcome.decision.value} ({outcome.message})")
        if self.emitter:
            self.emitter.gate_resolved(request.gate_id, outcome.decision.value, int(outcome.waited_seconds * 1000))
        return outcome

    def _await_quality(self, request: GateRequest, deadline: float) -> GateOutcome:
        provider = request.quality_provider
        if provider is None:
            return GateOutcome(GateDecision.REJECTED, "No quality gate provider configured")

        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                return GateOutcome(
                    GateDecision.TIMED_OUT,
                    f"Quality gate for '{request.project_key}' did not resolve within {request.timeout_seconds}s",
                )

            try:
                status = provider.check(request.project_key, remaining)
            except Exception as e:
                logger.error(f"Quality gate provider failed for '{request.project_key}': {e}")
                return GateOutcome(GateDecision.REJECTED, f"Quality gate check failed: {e}")

            try:
                status = QualityGateStatus(status)
            except ValueError as e:
                logger.error(f"Quality gate provider returned an invalid status: {e}")
                return GateOutcome(GateDecision.REJECTED, f"Invalid quality gate status: {e}")

            decision = _QUALITY_DECISIONS.get(status)
            if decision is not None:
                return GateOutcome(decision, f"Quality gate {status.value} for '{request.project_key}'")

            if self.cancel_event.wait(min(self.poll_interval, max(0.0, deadline - self.clock()))):
                return GateOutcome(GateDecision.REJECTED, "Run cancelled while waiting on quality gate")

    def _await_approval(self, request: GateRequest, deadline: float) -> GateOutcome:
        provider = request.approval_provider
        if provider is None:
            return GateOutcome(GateDecision.REJECTED, "No approval provider configured")

        # The provider call runs in its own thread so a provider that never
        # answers still yields TIMED_OUT at the deadline.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"gate-{request.gate_id}")
        try:
            future = pool.submit(
                provider.request,
                request.message,
                request.timeout_seconds,
                request_id=request.gate_id,
            )
            while True:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    self._withdraw(provider, request, future)
                    return GateOutcome(
                        GateDecision.TIMED_OUT,
                        f"Approval '{request.message}' not given within {request.timeout_seconds}s",
                    )
                if self.cancel_event.is_set():
                    self._withdraw(provider, request, future)
                    return GateOutcome(GateDecision.REJECTED, "Run cancelled while waiting on approval")
                try:
                    decision = GateDecision(future.result(timeout=min(remaining, self.poll_interval)))
                except FutureTimeout:
                    continue
                except ValueError as e:
                    logger.error(f"Approval provider returned an invalid decision: {e}")
                    return GateOutcome(GateDecision.REJECTED, f"Invalid approval decision: {e}")
                except Exception as e:
                    logger.error(f"Approval provider failed: {e}")
                    return GateOutcome(GateDecision.REJECTED, f"Approval request failed: {e}")
                return GateOutcome(decision, f"Approval {decision.value}")
        finally:
            pool.shutdown(wait=False)

    def _withdraw(self, provider: ApprovalProvider, request: GateRequest, future) -> None:
        """Take back an approval request nobody answered in time."""
        future.cancel()
        try:
            provider.withdraw(request.gate_id)
        except Exception as e:
            logger.warning(f"Could not withdraw approval {request.gate_id}: {e}")
