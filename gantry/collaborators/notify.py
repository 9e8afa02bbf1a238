"""Completion hook actions: notifications and workspace cleanup."""

import logging
import shutil
from pathlib import Path
import requests

from gantry.collaborators.base import CollaboratorError, HookAction

logger = logging.getLogger(__name__)


def summarize(result) -> str:
    executed = ", ".join(result.executed_stages) or "none"
    text = f"[{result.status.value}] {result.pipeline} #{result.run_id[:8]} on {result.branch_name} (stages: {executed})"
    if result.message:
        text += f" - {result.message}"
    return text


class LogNotifier(HookAction):
    """Write a one-line run summary to the log."""

    collaborator_id = "log_notifier"

    def run(self, result) -> None:
        level = logging.INFO if result.status.value == "SUCCESS" else logging.WARNING
        logger.log(level, summarize(result))


class WebhookNotifier(HookAction):
    """POST the run summary as JSON (Slack/Teams compatible ``text`` field).

    Config:
        url: webhook URL (required)
        include_result: also send the full run result (default False)
        timeout: HTTP timeout in seconds
    """

    collaborator_id = "webhook_notifier"

    def run(self, result) -> None:
        url = self.config.get("url")
        if not url:
            raise CollaboratorError("webhook_notifier needs a 'url' option", self.collaborator_id)

        payload = {"text": summarize(result)}
        if self.config.get("include_result"):
            payload["run"] = result.to_dict()

        response = requests.post(url, json=payload, timeout=float(self.config.get("timeout", 10)))
        response.raise_for_status()


class WorkspaceCleanup(HookAction):
    """Remove the run workspace directory (or the configured ``path``)."""

    collaborator_id = "workspace_cleanup"

    def run(self, result) -> None:
        path = result.workspace or self.config.get("path")
        if not path:
            return
        workspace = Path(path)
        if workspace.exists():
            shutil.rmtree(workspace)
            logger.info(f"Removed workspace {workspace}")
