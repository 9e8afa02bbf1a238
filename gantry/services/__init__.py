"""Services for running pipelines in the background."""

from gantry.services.run_service import RunRecord, RunService, build_registry, build_run_service
from gantry.services.run_worker import RunJob, RunWorker

__all__ = [
    "RunJob",
    "RunRecord",
    "RunService",
    "RunWorker",
    "build_registry",
    "build_run_service",
]
