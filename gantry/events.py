"""Event broadcasting system for pipeline runs.

Provides a lightweight event system for tracking run progress, stage
execution, gates and completion hooks. Events can be consumed by:
- The HTTP API (run event history)
- Logging systems
- Notification hooks
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import threading

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events emitted during a pipeline run."""

    # Pipeline events
    PIPELINE_STARTED = "pipeline_started"
    PIPELINE_COMPLETED = "pipeline_completed"
    PIPELINE_ABORTED = "pipeline_aborted"

    # Stage events
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_SKIPPED = "stage_skipped"
    STAGE_FAILED = "stage_failed"

    # Step events
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"

    # Gate events
    GATE_WAITING = "gate_waiting"
    GATE_RESOLVED = "gate_resolved"

    # Artifact events
    ARTIFACT_REGISTERED = "artifact_registered"

    # Hook events
    HOOK_COMPLETED = "hook_completed"
    HOOK_FAILED = "hook_failed"

    # Status
    STATUS_CHANGED = "status_changed"

    # Error events
    ERROR = "error"
    WARNING = "warning"

    # Cancellation events
    CANCELLED = "cancelled"


@dataclass
class Event:
    """Base event class."""

    type: EventType
    run_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "type": self.type.value,
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Event":
        """Create event from dictionary."""
        return Event(
            type=EventType(data["type"]),
            run_id=data["run_id"],
            timestamp=data.get("timestamp", datetime.now(timezone.utc).isoformat()),
            data=data.get("data", {}),
        )


class EventBus:
    """Central event bus for publishing and subscribing to events.

    Supports:
    - Multiple subscribers per event type
    - Wildcard subscriptions (all events)
    - Bounded history for later inspection
    """

    def __init__(self, max_history: int = 5000):
        """Initialize event bus."""
        self._subscribers: Dict[EventType, List[Callable]] = {}
        self._wildcard_subscribers: List[Callable] = []
        self._event_history: List[Event] = []
        self._max_history = max_history
        self._lock = threading.Lock()

    def subscribe(self, event_type: Optional[EventType], callback: Callable[[Event], None]):
        """
        Subscribe to events.

        Args:
            event_type: Type of event to subscribe to, or None for all events
            callback: Function to call when event is published
        """
        if event_type is None:
            self._wildcard_subscribers.append(callback)
        else:
            self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: Optional[EventType], callback: Callable[[Event], None]):
        """Remove a previously registered callback."""
        if event_type is None:
            if callback in self._wildcard_subscribers:
                self._wildcard_subscribers.remove(callback)
        elif callback in self._subscribers.get(event_type, []):
            self._subscribers[event_type].remove(callback)

    def publish(self, event: Event):
        """
        Publish event to all subscribers.

        Subscriber errors are logged and never reach the publisher.
        """
        with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history.pop(0)

        logger.debug(f"Event published: {event.type.value} for run {event.run_id}")

        for callback in list(self._wildcard_subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in wildcard event callback: {e}")

        for callback in list(self._subscribers.get(event.type, [])):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in event callback for {event.type.value}: {e}")

    def get_history(self, run_id: Optional[str] = None, event_type: Optional[EventType] = None) -> List[Event]:
        """
        Get event history.

        Args:
            run_id: Filter by run ID (optional)
            event_type: Filter by event type (optional)

        Returns:
            List of events matching filters
        """
        with self._lock:
            events = list(self._event_history)

        if run_id:
            events = [e for e in events if e.run_id == run_id]

        if event_type:
            events = [e for e in events if e.type == event_type]

        return events

    def clear_history(self, run_id: Optional[str] = None):
        """Clear event history, optionally only for one run."""
        with self._lock:
            if run_id:
                self._event_history = [e for e in self._event_history if e.run_id != run_id]
            else:
                self._event_history.clear()


# Global event bus instance
_global_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """
    Get global event bus instance (singleton).

    Returns:
        Global EventBus instance
    """
    global _global_event_bus
    if _global_event_bus is None:
        _global_event_bus = EventBus()
    return _global_event_bus


class EventEmitter:
    """Helper class for emitting events from the executor and its components."""

    def __init__(self, run_id: str, event_bus: Optional[EventBus] = None):
        """
        Initialize event emitter.

        Args:
            run_id: Run ID for all events
            event_bus: EventBus to use (defaults to global)
        """
        self.run_id = run_id
        self.event_bus = event_bus or get_event_bus()

    def emit(self, event_type, data: Optional[Dict[str, Any]] = None):
        """
        Emit an event.

        Args:
            event_type: Type of event (EventType enum or string)
            data: Event data (optional)
        """
        if isinstance(event_type, str):
            try:
                event_type = EventType(event_type)
            except ValueError:
                logger.warning(f"Unknown event type: {event_type}")
                return

        event = Event(
            type=event_type,
            run_id=self.run_id,
            data=data or {},
        )
        self.event_bus.publish(event)

    def pipeline_started(self, pipeline_name: str, pipeline_version: str, branch_name: str):
        """Emit pipeline started event."""
        self.emit(EventType.PIPELINE_STARTED, {
            "pipeline_name": pipeline_name,
            "pipeline_version": pipeline_version,
            "branch_name": branch_name,
        })

    def pipeline_completed(self, status: str, state: str, duration_ms: int):
        """Emit pipeline completed event."""
        self.emit(EventType.PIPELINE_COMPLETED, {
            "status": status,
            "state": state,
            "duration_ms": duration_ms,
        })

    def pipeline_aborted(self, stage_name: Optional[str], reason: str):
        """Emit pipeline aborted event."""
        self.emit(EventType.PIPELINE_ABORTED, {
            "stage": stage_name,
            "reason": reason,
        })

    def stage_started(self, stage_name: str, agent: Optional[Dict[str, Any]] = None):
        """Emit stage started event."""
        self.emit(EventType.STAGE_STARTED, {
            "stage": stage_name,
            "agent": agent or {},
        })

    def stage_completed(self, stage_name: str, outcome: str, duration_ms: int):
        """Emit stage completed event."""
        self.emit(EventType.STAGE_COMPLETED, {
            "stage": stage_name,
            "outcome": outcome,
            "duration_ms": duration_ms,
        })

    def stage_skipped(self, stage_name: str, reason: str):
        """Emit stage skipped event."""
        self.emit(EventType.STAGE_SKIPPED, {
            "stage": stage_name,
            "reason": reason,
        })

    def stage_failed(self, stage_name: str, message: str):
        """Emit stage failed event."""
        self.emit(EventType.STAGE_FAILED, {
            "stage": stage_name,
            "message": message,
        })

    def step_started(self, stage_name: str, step_name: str, step_kind: str):
        """Emit step started event."""
        self.emit(EventType.STEP_STARTED, {
            "stage": stage_name,
            "step": step_name,
            "step_kind": step_kind,
        })

    def step_completed(self, stage_name: str, step_name: str, outcome: str, message: str):
        """Emit step completed event."""
        self.emit(EventType.STEP_COMPLETED, {
            "stage": stage_name,
            "step": step_name,
            "outcome": outcome,
            "message": message,
        })

    def gate_waiting(self, gate_id: str, kind: str, stage_name: str, timeout_seconds: float):
        """Emit gate waiting event."""
        self.emit(EventType.GATE_WAITING, {
            "gate_id": gate_id,
            "kind": kind,
            "stage": stage_name,
            "timeout_seconds": timeout_seconds,
        })

    def gate_resolved(self, gate_id: str, decision: str, waited_ms: int):
        """Emit gate resolved event."""
        self.emit(EventType.GATE_RESOLVED, {
            "gate_id": gate_id,
            "decision": decision,
            "waited_ms": waited_ms,
        })

    def artifact_registered(self, ref: str, name: str, stage_name: str, kind: str):
        """Emit artifact registered event."""
        self.emit(EventType.ARTIFACT_REGISTERED, {
            "ref": ref,
            "name": name,
            "stage": stage_name,
            "kind": kind,
        })

    def hook_completed(self, hook_name: str, when: str):
        """Emit hook completed event."""
        self.emit(EventType.HOOK_COMPLETED, {"hook": hook_name, "when": when})

    def hook_failed(self, hook_name: str, when: str, error: str):
        """Emit hook failed event."""
        self.emit(EventType.HOOK_FAILED, {
            "hook": hook_name,
            "when": when,
            "error": error,
        })

    def status_changed(self, previous: str, current: str, source: str):
        """Emit build status changed event."""
        self.emit(EventType.STATUS_CHANGED, {
            "previous": previous,
            "current": current,
            "source": source,
        })

    def cancelled(self, reason: str):
        """Emit run cancelled event."""
        self.emit(EventType.CANCELLED, {"reason": reason})

    def error(self, error_message: str, context: Optional[Dict[str, Any]] = None):
        """Emit error event."""
        self.emit(EventType.ERROR, {
            "error": error_message,
            "context": context or {},
        })

    def warning(self, warning_message: str, context: Optional[Dict[str, Any]] = None):
        """Emit warning event."""
        self.emit(EventType.WARNING, {
            "warning": warning_message,
            "context": context or {},
        })
