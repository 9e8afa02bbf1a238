"""Manual approval providers."""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from gantry.collaborators.base import ApprovalProvider
from gantry.pipeline.schema import GateDecision

logger = logging.getLogger(__name__)


@dataclass
class PendingApproval:
    """An approval request waiting for a human decision."""
    approval_id: str
    message: str
    timeout_seconds: float
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    decision: Optional[GateDecision] = None
    approver: Optional[str] = None
    _event: threading.Event = field(default_factory=threading.Event, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approval_id": self.approval_id,
            "message": self.message,
            "timeout_seconds": self.timeout_seconds,
            "created_at": self.created_at,
            "decision": self.decision.value if self.decision else None,
            "approver": self.approver,
        }


class ApprovalBoard(ApprovalProvider):
    """In-process approvals, resolved through the HTTP API."""

    collaborator_id = "approval_board"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self._pending: Dict[str, PendingApproval] = {}
        self._withdrawn: Set[str] = set()
        self._lock = threading.Lock()

    def request(self, message: str, timeout: float, request_id: Optional[str] = None) -> GateDecision:
        approval = PendingApproval(
            approval_id=request_id or uuid.uuid4().hex[:12],
            message=message,
            timeout_seconds=timeout,
        )
        with self._lock:
            # Withdrawn before this thread got to register it
            if approval.approval_id in self._withdrawn:
                self._withdrawn.discard(approval.approval_id)
                return GateDecision.REJECTED
            self._pending[approval.approval_id] = approval
        logger.info(f"Approval {approval.approval_id} requested: {message}")

        try:
            if not approval._event.wait(timeout):
                return GateDecision.TIMED_OUT
            return approval.decision
        finally:
            with self._lock:
                self._pending.pop(approval.approval_id, None)

    def withdraw(self, request_id: str) -> bool:
        """Remove an unanswered approval and release the thread waiting on it."""
        with self._lock:
            approval = self._pending.pop(request_id, None)
            if approval is None:
                self._withdrawn.add(request_id)
                return False
        if not approval._event.is_set():
            approval.decision = GateDecision.REJECTED
            approval._event.set()
        logger.info(f"Approval {request_id} withdrawn")
        return True

    def resolve(self, approval_id: str, approved: bool, approver: Optional[str] = None) -> bool:
        """Record a decision; False when no such approval is pending."""
        with self._lock:
            approval = self._pending.get(approval_id)
        if approval is None or approval._event.is_set():
            return False

        approval.decision = GateDecision.APPROVED if approved else GateDecision.REJECTED
        approval.approver = approver
        approval._event.set()
        logger.info(f"Approval {approval_id} {approval.decision.value} by {approver or 'unknown'}")
        return True

    def list_pending(self) -> List[PendingApproval]:
        with self._lock:
            return list(self._pending.values())


_global_approval_board: Optional[ApprovalBoard] = None


def get_approval_board() -> ApprovalBoard:
    """Process-wide approval board (singleton)."""
    global _global_approval_board
    if _global_approval_board is None:
        _global_approval_board = ApprovalBoard()
    return _global_approval_board


class AutoApprove(ApprovalProvider):
    """Answer every approval immediately (``decision`` option, default approved)."""

    collaborator_id = "auto_approve"

    def request(self, message: str, timeout: float, request_id: Optional[str] = None) -> GateDecision:
        decision = GateDecision(self.config.get("decision", GateDecision.APPROVED.value))
        logger.info(f"Auto-{decision.value}: {message}")
        return decision
