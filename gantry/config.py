import os
from pathlib import Path
from typing import Any


class Config:
    SECRET_KEY: str = (
        os.environ.get("SECRET_KEY") or "gantry-secret-key-change-in-production"
    )

    ARTIFACT_DIR: str = os.environ.get("GANTRY_ARTIFACT_DIR") or os.path.join(os.getcwd(), "artifacts")
    WORKSPACE_DIR: str = os.environ.get("GANTRY_WORKSPACE_DIR") or os.path.join(os.getcwd(), "workspace")
    COLLABORATORS_CONFIG: str = os.environ.get("GANTRY_COLLABORATORS_CONFIG") or str(
        Path(__file__).parent.parent / "config" / "collaborators.yaml"
    )
    GATE_POLL_SECONDS: float = float(os.environ.get("GANTRY_GATE_POLL_SECONDS") or 5.0)
    DEFAULT_BRANCH: str = os.environ.get("GANTRY_DEFAULT_BRANCH") or "main"

    @staticmethod
    def init_app(app: Any) -> None:
        os.makedirs(app.config["ARTIFACT_DIR"], exist_ok=True)
        os.makedirs(app.config["WORKSPACE_DIR"], exist_ok=True)
