"""Build status aggregation.

StatusAggregator is the single authority for a run's overall BuildStatus.
Every stage outcome, abort and cancellation reaches the status only through
``fold``, so the status can only move up the SUCCESS < UNSTABLE < FAILURE <
ABORTED ordering.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from gantry.events import EventEmitter
from gantry.pipeline.schema import BuildStatus, Outcome

logger = logging.getLogger(__name__)


_OUTCOME_STATUS = {
    Outcome.OK: BuildStatus.SUCCESS,
    Outcome.DEGRADED: BuildStatus.UNSTABLE,
    Outcome.FAILED: BuildStatus.FAILURE,
}


def status_for_outcome(outcome: Outcome) -> BuildStatus:
    """Map a stage outcome to the build status it contributes."""
    return _OUTCOME_STATUS[outcome]


@dataclass
class StatusFold:
    """One recorded fold."""
    source: str
    incoming: BuildStatus
    result: BuildStatus


class StatusAggregator:
    """Owns the monotonic build status of one run."""

    def __init__(self, emitter: Optional[EventEmitter] = None):
        self._status = BuildStatus.SUCCESS
        self._history: List[StatusFold] = []
        self.emitter = emitter

    @staticmethod
    def fold(current: BuildStatus, incoming: BuildStatus) -> BuildStatus:
        """Return the worse of two statuses (max under the status ordering)."""
        return max(current, incoming)

    @property
    def status(self) -> BuildStatus:
        return self._status

    @property
    def history(self) -> List[StatusFold]:
        return list(self._history)

    def apply(self, incoming: BuildStatus, source: str) -> BuildStatus:
        """Fold ``incoming`` into the run status and return the new status."""
        previous = self._status
        self._status = self.fold(previous, incoming)
        self._history.append(StatusFold(source=source, incoming=incoming, result=self._status))

        if self._status != previous:
            logger.info(f"Build status {previous.value} -> {self._status.value} ({source})")
            if self.emitter:
                self.emitter.status_changed(previous.value, self._status.value, source)

        return self._status

    def apply_outcome(self, outcome: Outcome, source: str) -> BuildStatus:
        """Fold a stage outcome into the run status."""
        return self.apply(status_for_outcome(outcome), source)
