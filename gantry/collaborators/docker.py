"""Container build and push through the docker CLI."""

import logging
import subprocess
from typing import Optional

from gantry.collaborators.base import CollaboratorError, ContainerBuilder, ContainerRegistry, ImageRef
from gantry.collaborators.shell import run_command
from gantry.pipeline.schema import Outcome

logger = logging.getLogger(__name__)


class DockerBuilder(ContainerBuilder):
    """``docker build`` an image.

    Config:
        repository: image repository (required, e.g. registry.local/team/app)
        tag: default tag when the step gives none (default "latest")
        dockerfile: Dockerfile path relative to the context
        build_args: mapping passed as --build-arg
    """

    collaborator_id = "docker_build"

    def build(self, context_dir: str, tag: Optional[str] = None) -> ImageRef:
        repository = self.config.get("repository")
        if not repository:
            raise CollaboratorError("docker_build needs a 'repository' option", self.collaborator_id)

        image = ImageRef(repository=repository, tag=str(tag or self.config.get("tag", "latest")))
        parts = ["docker", "build", "-t", image.reference]
        if self.config.get("dockerfile"):
            parts.extend(["-f", self.config["dockerfile"]])
        for key, value in (self.config.get("build_args") or {}).items():
            parts.extend(["--build-arg", f"{key}={value}"])
        parts.append(".")

        proc = run_command(" ".join(parts), cwd=context_dir, timeout=self.config.get("timeout_seconds"))
        if proc.returncode != 0:
            raise CollaboratorError(
                f"docker build failed ({proc.returncode}): {proc.stderr.strip()[-500:]}",
                self.collaborator_id,
            )
        logger.info(f"Built image {image.reference}")
        return image


class DockerRegistry(ContainerRegistry):
    """``docker push`` to a registry, logging in first when credentials are configured."""

    collaborator_id = "docker_push"

    def push(self, image: ImageRef) -> Outcome:
        registry = self.config.get("registry")
        username = self.config.get("username")
        password = self.config.get("password")
        if registry and username and password:
            login = subprocess.run(
                ["docker", "login", registry, "-u", username, "--password-stdin"],
                input=password,
                capture_output=True,
                text=True,
            )
            if login.returncode != 0:
                logger.error(f"docker login to {registry} failed: {login.stderr.strip()}")
                return Outcome.FAILED

        proc = run_command(f"docker push {image.reference}", timeout=self.config.get("timeout_seconds"))
        if proc.returncode != 0:
            logger.error(f"docker push {image.reference} failed: {proc.stderr.strip()[-500:]}")
            return Outcome.FAILED
        return Outcome.OK
