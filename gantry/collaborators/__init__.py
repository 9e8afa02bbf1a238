"""Collaborator interfaces and built-in implementations."""

from gantry.collaborators.base import (
    ApprovalProvider,
    Collaborator,
    CollaboratorError,
    CommandTool,
    ContainerBuilder,
    ContainerRegistry,
    DeploymentTarget,
    HookAction,
    ImageRef,
    QualityGateProvider,
    QualityGateStatus,
    ScanReport,
    ScanTool,
    SourceCheckout,
    TestRunner,
)
from gantry.collaborators.registry import CollaboratorRegistry, register_builtin_types

__all__ = [
    "ApprovalProvider",
    "Collaborator",
    "CollaboratorError",
    "CollaboratorRegistry",
    "CommandTool",
    "ContainerBuilder",
    "ContainerRegistry",
    "DeploymentTarget",
    "HookAction",
    "ImageRef",
    "QualityGateProvider",
    "QualityGateStatus",
    "ScanReport",
    "ScanTool",
    "SourceCheckout",
    "TestRunner",
    "register_builtin_types",
]
