"""Shared fixtures: static collaborators, recording hooks, a fake clock."""

from typing import Any, Dict, List, Optional

import pytest

from gantry.collaborators.base import HookAction
from gantry.collaborators.registry import CollaboratorRegistry, register_builtin_types
from gantry.events import EventBus
from gantry.pipeline.schema import (
    HookConfig,
    PipelineConfig,
    PipelineStage,
    PipelineStep,
    StageCondition,
    StepKind,
)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingHook(HookAction):
    """Hook action that records every run result it sees."""

    collaborator_id = "recording_hook"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.results: List[Any] = []

    def run(self, result) -> None:
        self.results.append(result)
        if self.config.get("raise_error"):
            raise RuntimeError(self.config["raise_error"])


STATIC_COLLABORATORS = {
    "checkout": "static_command",
    "sast": "static_scan",
    "tests": "static_command",
    "builder": "static_builder",
    "registry": "static_registry",
    "image-scan": "static_scan",
    "quality": "static_quality_gate",
    "approval": "static_approval",
    "deploy": "static_deploy",
}


def make_registry(**configs: Dict[str, Any]) -> CollaboratorRegistry:
    """Registry of static collaborators; keyword names use '_' for '-'."""
    registry = register_builtin_types(CollaboratorRegistry())
    overrides = {key.replace("_", "-"): value for key, value in configs.items()}
    registry.configure([
        {"id": cid, "type": type_name, "config": overrides.get(cid, {})}
        for cid, type_name in STATIC_COLLABORATORS.items()
    ])
    registry.register(RecordingHook(), "hook-always")
    registry.register(RecordingHook(), "hook-success")
    registry.register(RecordingHook(), "hook-failure")
    registry.register(RecordingHook(), "hook-aborted")
    return registry


def stage(name: str, kind: StepKind, uses: str, hard: bool = True, when=None, **step_fields) -> PipelineStage:
    return PipelineStage(
        name=name,
        hard=hard,
        when=StageCondition(**when) if when else None,
        steps=[PipelineStep(kind=kind, uses=uses, **step_fields)],
    )


def standard_hooks() -> List[HookConfig]:
    return [
        HookConfig(when="always", uses="hook-always"),
        HookConfig(when="success", uses="hook-success"),
        HookConfig(when="failure", uses="hook-failure"),
        HookConfig(when="aborted", uses="hook-aborted"),
    ]


def delivery_pipeline(*stages: PipelineStage, name: str = "delivery") -> PipelineConfig:
    return PipelineConfig(name=name, stages=list(stages), post=standard_hooks())


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()
