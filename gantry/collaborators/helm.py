"""Helm deployment target.

Deploys the application chart with ``helm upgrade --install``. The values set
here are the ones the chart's deployment template consumes: ``namespace``,
``replicaCount``, ``image.repository``, ``image.tag``, ``image.pullPolicy``
and ``service.port``.
"""

import logging
import shlex
from typing import Any, Dict, List

from gantry.collaborators.base import CollaboratorError, DeploymentTarget, ImageRef
from gantry.collaborators.shell import run_command
from gantry.pipeline.schema import Outcome

logger = logging.getLogger(__name__)


class HelmDeploymentTarget(DeploymentTarget):
    """Deploy an image to a Kubernetes namespace via helm.

    Config:
        release: helm release name (required)
        chart: chart path or reference (required)
        namespace: default namespace
        values: default chart values (nested mapping)
        environments: per-environment overrides ``{name: {namespace, values, kube_context}}``
        wait_timeout: helm --timeout value (default "5m")
    """

    collaborator_id = "helm"

    def deploy(self, image: ImageRef, environment_name: str) -> Outcome:
        release = self.config.get("release")
        chart = self.config.get("chart")
        if not release or not chart:
            raise CollaboratorError("helm needs 'release' and 'chart' options", self.collaborator_id)

        overrides = (self.config.get("environments") or {}).get(environment_name, {})
        namespace = overrides.get("namespace") or self.config.get("namespace") or environment_name

        values: Dict[str, Any] = {}
        _merge(values, self.config.get("values") or {})
        _merge(values, overrides.get("values") or {})
        _merge(values, {
            "namespace": namespace,
            "image": {"repository": image.repository, "tag": image.tag},
        })

        command = self.build_command(release, chart, namespace, values, overrides.get("kube_context"))
        proc = run_command(command, timeout=self.config.get("timeout_seconds"))
        if proc.returncode != 0:
            logger.error(f"helm upgrade of {release} in {namespace} failed: {proc.stderr.strip()[-500:]}")
            return Outcome.FAILED

        logger.info(f"Deployed {image.reference} as {release} to {namespace} ({environment_name})")
        return Outcome.OK

    def build_command(self, release: str, chart: str, namespace: str, values: Dict[str, Any], kube_context=None) -> str:
        parts: List[str] = [
            "helm", "upgrade", "--install", release, chart,
            "--namespace", namespace, "--create-namespace",
            "--wait", "--timeout", str(self.config.get("wait_timeout", "5m")),
        ]
        if kube_context:
            parts.extend(["--kube-context", kube_context])
        for key, value in _flatten(values):
            parts.extend(["--set", f"{key}={value}"])
        return " ".join(shlex.quote(part) for part in parts)


def _merge(base: Dict[str, Any], extra: Dict[str, Any]) -> None:
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        elif isinstance(value, dict):
            base[key] = {}
            _merge(base[key], value)
        else:
            base[key] = value


def _flatten(values: Dict[str, Any], prefix: str = ""):
    for key in sorted(values):
        value = values[key]
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            yield from _flatten(value, path)
        else:
            yield path, value
