"""Background run worker with an in-process queue."""

from dataclasses import dataclass, field
import queue
import threading
from typing import Any, Dict, Optional

from gantry.pipeline.schema import PipelineConfig
from gantry.utils import debug_run_log


@dataclass
class RunJob:
    """Job for one pipeline run."""
    run_id: str
    pipeline: PipelineConfig
    branch_name: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    environment: Dict[str, str] = field(default_factory=dict)


class RunWorker:
    """Single-threaded background worker for pipeline runs.

    Runs execute one after another; a blocking gate in one run delays the
    runs queued behind it.
    """

    def __init__(self, run_service: Any):
        self.run_service = run_service
        self._queue: "queue.Queue[RunJob]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread:
            return
        self._thread = threading.Thread(target=self._run, name="gantry-run-worker", daemon=True)
        self._thread.start()
        debug_run_log("[run-debug] RunWorker started")

    def stop(self) -> None:
        self._stop_event.set()

    def enqueue(self, job: RunJob) -> None:
        self._queue.put(job)
        debug_run_log(f"[run-debug] enqueued run {job.run_id} ({job.pipeline.name}@{job.branch_name})")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self._queue.get(timeout=1.0)
            except queue.Empty:
                continue

            try:
                self.run_service.execute_job(job)
            finally:
                self._queue.task_done()
