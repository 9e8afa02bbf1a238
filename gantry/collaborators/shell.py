"""Subprocess-backed collaborators: commands, scans, tests, git checkout.

Commands run in the run's workspace (the checked-out tree), or inside the stage's
container image (``docker run``) when the stage declares one.
"""

import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from gantry.collaborators.base import (
    CollaboratorError,
    CommandTool,
    ScanReport,
    ScanTool,
    SourceCheckout,
    TestRunner,
)
from gantry.pipeline.schema import ExecutionEnvironment, Outcome, SEVERITY_ORDER

logger = logging.getLogger(__name__)


def build_argv(command: str, cwd: str, environment: Optional[ExecutionEnvironment]) -> List[str]:
    """Wrap ``command`` for the execution environment."""
    if environment is None or not environment.image:
        return ["sh", "-c", command]

    workdir = environment.workdir or "/workspace"
    argv = ["docker", "run", "--rm", "-v", f"{os.path.abspath(cwd)}:{workdir}", "-w", workdir]
    for key, value in environment.env.items():
        argv.extend(["-e", f"{key}={value}"])
    argv.extend([environment.image, "sh", "-c", command])
    return argv


def run_command(
    command: str,
    cwd: str = ".",
    environment: Optional[ExecutionEnvironment] = None,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess:
    """Run a shell command and capture its output."""
    argv = build_argv(command, cwd, environment)
    env = dict(os.environ)
    if environment and not environment.image:
        env.update(environment.env)

    logger.debug(f"Running: {' '.join(argv)} (cwd={cwd})")
    try:
        return subprocess.run(
            argv,
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise CollaboratorError(f"Command failed to run: {e}") from e


class _ShellBase:
    def _command(self, target: Optional[str]) -> str:
        command = self.config.get("command")
        if not command:
            raise CollaboratorError(f"'{self.collaborator_id}' needs a 'command' option", self.collaborator_id)
        return command.replace("{target}", target or ".")

    def _workdir(self, workspace: Optional[Path]) -> Path:
        """Directory commands run in: ``cwd`` option, relative to the run workspace."""
        base = Path(workspace) if workspace else Path(".")
        return base / self.config.get("cwd", ".")

    def _run(
        self,
        target: Optional[str],
        environment: Optional[ExecutionEnvironment],
        workspace: Optional[Path],
    ):
        return run_command(
            self._command(target),
            cwd=str(self._workdir(workspace)),
            environment=environment,
            timeout=self.config.get("timeout_seconds"),
        )


class ShellCommand(_ShellBase, CommandTool):
    collaborator_id = "shell_command"
    description = "Run a shell command; non-zero exit fails the step."

    def run(
        self,
        target: Optional[str],
        environment: Optional[ExecutionEnvironment] = None,
        workspace: Optional[Path] = None,
    ) -> Outcome:
        proc = self._run(target, environment, workspace)
        if proc.returncode != 0:
            logger.warning(f"Command exited {proc.returncode}: {proc.stderr.strip()[-500:]}")
            return Outcome.FAILED
        return Outcome.OK


class ShellTestRunner(ShellCommand, TestRunner):
    collaborator_id = "shell_test"
    description = "Run a test command (pytest, mvn test, npm test ...)."


class ShellScanTool(_ShellBase, ScanTool):
    """Run a scanner command and capture its report.

    Config:
        command: scanner command line (``{target}`` is substituted)
        cwd: working directory relative to the run workspace (default: the workspace)
        report_name: artifact name for the report
        report_path: file the scanner writes (stdout is used when absent)
        degraded_exit_codes: exit codes meaning "issues found" (default [1])
    """

    collaborator_id = "shell_scan"
    description = "Run a scanner command and archive its report."

    def run(
        self,
        target: Optional[str],
        environment: Optional[ExecutionEnvironment] = None,
        workspace: Optional[Path] = None,
    ) -> ScanReport:
        proc = self._run(target, environment, workspace)
        report_name = self.config.get("report_name", f"{self.collaborator_id}-report.txt")

        content = proc.stdout
        report_path = self.config.get("report_path")
        if report_path:
            path = self._workdir(workspace) / report_path
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as e:
                logger.warning(f"Scan report {path} not readable: {e}")

        degraded_codes = self.config.get("degraded_exit_codes", [1])
        if proc.returncode == 0:
            outcome = Outcome.OK
        elif proc.returncode in degraded_codes:
            outcome = Outcome.DEGRADED
        else:
            outcome = Outcome.FAILED

        findings = count_severities(content)
        message = f"exit {proc.returncode}"
        if findings:
            message += ", " + ", ".join(f"{sev}={findings[sev]}" for sev in SEVERITY_ORDER if sev in findings)

        return ScanReport(outcome=outcome, name=report_name, content=content, findings=findings, message=message)


def count_severities(content: str) -> Dict[str, int]:
    """Count ``severity`` values anywhere in a JSON report (empty for non-JSON)."""
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        return {}

    counts: Dict[str, int] = {}

    def walk(node: Any) -> None:
        if isinstance(node, dict):
            for key, value in node.items():
                if key.lower() == "severity" and isinstance(value, str):
                    sev = value.lower()
                    if sev == "error":
                        sev = "high"
                    elif sev == "warning":
                        sev = "medium"
                    counts[sev] = counts.get(sev, 0) + 1
                else:
                    walk(value)
        elif isinstance(node, list):
            for item in node:
                walk(item)

    walk(data)
    return counts


class GitCheckout(SourceCheckout):
    collaborator_id = "git_checkout"
    description = "Shallow git clone of one branch into the run workspace."

    def checkout(self, repository: str, branch: str, workspace: Optional[Path]) -> Outcome:
        target_dir = Path(workspace) if workspace else Path(self.config.get("workspace", "workspace"))
        target_dir.parent.mkdir(parents=True, exist_ok=True)

        depth = self.config.get("depth", 1)
        command = f"git clone --depth {int(depth)} --branch '{branch}' '{repository}' '{target_dir}'"
        proc = run_command(command, cwd=str(target_dir.parent), timeout=self.config.get("timeout_seconds"))
        if proc.returncode != 0:
            logger.error(f"git clone of {repository}@{branch} failed: {proc.stderr.strip()}")
            return Outcome.FAILED
        return Outcome.OK
