"""Registry for pipeline collaborators."""

import importlib
import logging
from typing import Any, Dict, Iterable, List, Optional, Type

from gantry.collaborators.base import Collaborator

logger = logging.getLogger(__name__)


class CollaboratorRegistry:
    """Holds configured collaborator instances by ID."""

    def __init__(self) -> None:
        self._collaborators: Dict[str, Collaborator] = {}
        self._types: Dict[str, Type[Collaborator]] = {}

    def register(self, collaborator: Collaborator, collaborator_id: Optional[str] = None) -> None:
        key = collaborator_id or collaborator.collaborator_id
        self._collaborators[key] = collaborator

    def register_type(self, type_name: str, collaborator_cls: Type[Collaborator]) -> None:
        self._types[type_name] = collaborator_cls

    def get(self, collaborator_id: str) -> Optional[Collaborator]:
        return self._collaborators.get(collaborator_id)

    def list_collaborators(self) -> Dict[str, Collaborator]:
        return dict(self._collaborators)

    def missing(self, collaborator_ids: Iterable[str]) -> List[str]:
        """IDs from ``collaborator_ids`` that are not registered."""
        return [cid for cid in collaborator_ids if cid not in self._collaborators]

    def create(self, type_name: str, config: Optional[Dict[str, Any]] = None) -> Collaborator:
        """Instantiate a collaborator by built-in type name or dotted class path."""
        collaborator_cls = self._types.get(type_name)
        if collaborator_cls is None and "." in type_name:
            collaborator_cls = self._load_from_path(type_name)
        if collaborator_cls is None:
            raise ValueError(f"Unknown collaborator type '{type_name}'")
        return collaborator_cls(config or {})

    def configure(self, entries: List[Dict[str, Any]]) -> None:
        """
        Register collaborators from configuration entries.

        Each entry: ``{"id": "...", "type": "<builtin or dotted path>", "config": {...}}``
        """
        for entry in entries:
            collaborator_id = entry.get("id")
            type_name = entry.get("type")
            if not collaborator_id or not type_name:
                raise ValueError(f"Collaborator entry needs 'id' and 'type': {entry}")
            collaborator = self.create(type_name, entry.get("config") or {})
            self.register(collaborator, collaborator_id)
            logger.debug(f"Registered collaborator {collaborator_id} ({type_name})")

    def _load_from_path(self, path: str) -> Optional[Type[Collaborator]]:
        module_path, class_name = path.rsplit(".", 1)
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            logger.error(f"Could not import collaborator module '{module_path}': {e}")
            return None
        klass = getattr(module, class_name, None)
        if isinstance(klass, type) and issubclass(klass, Collaborator):
            return klass
        return None


def register_builtin_types(registry: CollaboratorRegistry) -> CollaboratorRegistry:
    from gantry.collaborators.approvals import AutoApprove, get_approval_board
    from gantry.collaborators.docker import DockerBuilder, DockerRegistry
    from gantry.collaborators.helm import HelmDeploymentTarget
    from gantry.collaborators.notify import LogNotifier, WebhookNotifier, WorkspaceCleanup
    from gantry.collaborators.shell import GitCheckout, ShellCommand, ShellScanTool, ShellTestRunner
    from gantry.collaborators.sonarqube import SonarQubeGate
    from gantry.collaborators.static import (
        StaticApproval,
        StaticBuilder,
        StaticCommand,
        StaticDeployment,
        StaticQualityGate,
        StaticRegistry,
        StaticScanTool,
    )

    builtins = {
        "git_checkout": GitCheckout,
        "shell_command": ShellCommand,
        "shell_scan": ShellScanTool,
        "shell_test": ShellTestRunner,
        "docker_build": DockerBuilder,
        "docker_push": DockerRegistry,
        "sonarqube": SonarQubeGate,
        "auto_approve": AutoApprove,
        "helm": HelmDeploymentTarget,
        "log_notifier": LogNotifier,
        "webhook_notifier": WebhookNotifier,
        "workspace_cleanup": WorkspaceCleanup,
        "static_command": StaticCommand,
        "static_scan": StaticScanTool,
        "static_builder": StaticBuilder,
        "static_registry": StaticRegistry,
        "static_quality_gate": StaticQualityGate,
        "static_approval": StaticApproval,
        "static_deploy": StaticDeployment,
    }
    for type_name, collaborator_cls in builtins.items():
        registry.register_type(type_name, collaborator_cls)

    # The approval board is process-wide so the HTTP API can resolve its requests
    registry.register(get_approval_board(), "approval_board")
    return registry
