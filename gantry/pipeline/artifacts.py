"""Artifact archiving for pipeline runs.

Artifacts are named, content-addressed byproducts of a stage (scan reports,
image references, logs). They are kept for the life of the run and, when an
artifact directory is configured, written to ``<artifact_dir>/<run_id>/``.
Persisting is best effort: a storage error is reported but never affects the
build status.
"""

import hashlib
import logging
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from gantry.events import EventEmitter

logger = logging.getLogger(__name__)

ArtifactRef = str


@dataclass
class Artifact:
    """A registered run artifact."""
    ref: ArtifactRef
    name: str
    stage: str
    kind: str
    digest: str
    size: int
    content: bytes = field(repr=False)
    location: Optional[str] = None
    persisted: bool = False
    error: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (content excluded)."""
        return {
            "ref": self.ref,
            "name": self.name,
            "stage": self.stage,
            "kind": self.kind,
            "digest": self.digest,
            "size": self.size,
            "location": self.location,
            "persisted": self.persisted,
            "error": self.error,
            "created_at": self.created_at,
        }


class ArtifactArchiver:
    """Registry of the artifacts produced during one run."""

    def __init__(
        self,
        run_id: str,
        storage_dir: Optional[Path] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        """
        Initialize archiver.

        Args:
            run_id: Run the artifacts belong to
            storage_dir: Base directory for persistence (in-memory only when None)
            emitter: Event emitter for registration/warning events
        """
        self.run_id = run_id
        self.storage_dir = Path(storage_dir) if storage_dir else None
        self.emitter = emitter
        self._artifacts: Dict[ArtifactRef, Artifact] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        stage: str,
        content: Union[str, bytes],
        kind: str = "file",
    ) -> ArtifactRef:
        """
        Register an artifact produced by ``stage``.

        Args:
            name: Artifact name (need not be unique)
            stage: Producing stage name
            content: Artifact body
            kind: Artifact kind (report, image, file, log)

        Returns:
            A reference unique to this registration
        """
        if not stage:
            raise ValueError("Artifact must be attributed to a stage")

        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        artifact = Artifact(
            ref=uuid.uuid4().hex,
            name=name,
            stage=stage,
            kind=kind,
            digest=hashlib.sha256(data).hexdigest(),
            size=len(data),
            content=data,
        )

        if self.storage_dir is not None:
            self._persist(artifact)

        with self._lock:
            self._artifacts[artifact.ref] = artifact

        logger.debug(f"Registered artifact {name} ({kind}) from stage {stage}: {artifact.ref}")
        if self.emitter:
            self.emitter.artifact_registered(artifact.ref, name, stage, kind)

        return artifact.ref

    def get(self, ref: ArtifactRef) -> Optional[Artifact]:
        """Retrieve an artifact by reference."""
        return self._artifacts.get(ref)

    def list(self) -> List[Artifact]:
        """All artifacts in registration order."""
        with self._lock:
            return list(self._artifacts.values())

    def for_stage(self, stage: str) -> List[Artifact]:
        """Artifacts produced by one stage."""
        return [a for a in self.list() if a.stage == stage]

    def latest(self, kind: str) -> Optional[Artifact]:
        """Most recently registered artifact of a kind."""
        for artifact in reversed(self.list()):
            if artifact.kind == kind:
                return artifact
        return None

    def _persist(self, artifact: Artifact) -> None:
        safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", artifact.name) or "artifact"
        target_dir = self.storage_dir / self.run_id / re.sub(r"[^A-Za-z0-9._-]+", "_", artifact.stage)
        target = target_dir / f"{artifact.ref[:12]}-{safe_name}"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(artifact.content)
        except OSError as e:
            artifact.error = str(e)
            logger.warning(f"Could not persist artifact {artifact.name} for run {self.run_id}: {e}")
            if self.emitter:
                self.emitter.warning(
                    f"Artifact '{artifact.name}' was not persisted",
                    {"ref": artifact.ref, "stage": artifact.stage, "error": str(e)},
                )
            return

        artifact.location = str(target)
        artifact.persisted = True
