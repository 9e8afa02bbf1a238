"""SonarQube quality gate provider."""
import logging
import requests

from gantry.collaborators.base import QualityGateProvider, QualityGateStatus

logger = logging.getLogger(__name__)


class SonarQubeGate(QualityGateProvider):
    """Read the project quality gate status from the SonarQube web API.

    Config:
        host_url: SonarQube base URL
        token: user token (sent as basic-auth username)
        request_timeout: per-request HTTP timeout in seconds
    """

    collaborator_id = "sonarqube"

    _STATUS = {
        "OK": QualityGateStatus.PASSED,
        "WARN": QualityGateStatus.PASSED,
        "ERROR": QualityGateStatus.FAILED,
    }

    def check(self, project_key: str, timeout: float) -> QualityGateStatus:
        host_url = self.config.get("host_url", "http://localhost:9000").rstrip("/")
        token = self.config.get("token")
        request_timeout = min(float(self.config.get("request_timeout", 30)), max(timeout, 1.0))

        response = requests.get(
            f"{host_url}/api/qualitygates/project_status",
            params={"projectKey": project_key},
            auth=(token, "") if token else None,
            timeout=request_timeout,
        )
        if response.status_code == 404:
            # Analysis not processed yet
            return QualityGateStatus.PENDING
        response.raise_for_status()

        status = response.json().get("projectStatus", {}).get("status", "NONE")
        logger.debug(f"SonarQube gate for {project_key}: {status}")
        return self._STATUS.get(status, QualityGateStatus.PENDING)
