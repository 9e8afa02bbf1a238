import logging
import os

from flask import current_app

logger = logging.getLogger("gantry")


def _debug_runs_enabled() -> bool:
    return os.environ.get("GANTRY_DEBUG_RUNS", "").lower() in ("1", "true", "yes")


def debug_run_log(message: str) -> None:
    if not _debug_runs_enabled():
        return
    try:
        current_app.logger.info(message)
    except RuntimeError:
        logger.info(message)
