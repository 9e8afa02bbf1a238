#!/usr/bin/env python3
"""End-to-end tests for the pipeline executor."""

import threading

import pytest

from gantry.collaborators.base import QualityGateProvider, QualityGateStatus
from gantry.events import EventType
from gantry.pipeline.executor import PipelineExecutor
from gantry.pipeline.schema import (
    BuildStatus,
    GateDecision,
    HookConfig,
    PipelineConfig,
    RunContext,
    RunState,
    StepKind,
)

from conftest import delivery_pipeline, make_registry, stage


def run(pipeline, registry, branch="main", event_bus=None, cancel_event=None, **executor_kwargs):
    executor = PipelineExecutor(registry, gate_poll_interval=0.01, event_bus=event_bus, **executor_kwargs)
    context = RunContext(run_id="run-1", branch_name=branch)
    return executor.execute(pipeline, context, cancel_event)


def hook_calls(registry):
    return {hook_id: len(registry.get(hook_id).results) for hook_id in (
        "hook-always", "hook-success", "hook-failure", "hook-aborted",
    )}


# ============================================================================
# Scenarios
# ============================================================================

def test_degraded_soft_scan_makes_run_unstable(event_bus):
    """A degraded SAST stage yields UNSTABLE without aborting."""
    registry = make_registry(sast={"outcome": "degraded", "findings": {"medium": 3}})
    pipeline = delivery_pipeline(
        stage("checkout", StepKind.CHECKOUT, "checkout", target="https://example.invalid/app.git"),
        stage("sast", StepKind.SCAN, "sast", hard=False),
        stage("test", StepKind.TEST, "tests"),
        stage("build", StepKind.BUILD, "builder"),
        stage("image-scan", StepKind.SCAN, "image-scan", hard=False),
        stage("deploy", StepKind.DEPLOY, "deploy", environment="staging"),
    )

    result = run(pipeline, registry, event_bus=event_bus)

    assert result.status == BuildStatus.UNSTABLE
    assert result.state == RunState.DEGRADED
    assert result.executed_stages == ["checkout", "sast", "test", "build", "image-scan", "deploy"]
    assert 0 < len(result.artifacts) <= 6
    assert {a.kind for a in result.artifacts} == {"report", "image"}
    assert hook_calls(registry) == {"hook-always": 1, "hook-success": 0, "hook-failure": 0, "hook-aborted": 0}
    assert registry.get("deploy").calls == [{"image": "registry.local/app:latest", "environment": "staging"}]


def test_hard_test_failure_aborts_before_build(event_bus):
    """A failing hard test stage aborts; build and deploy never run."""
    registry = make_registry(tests={"outcome": "failed"})
    pipeline = delivery_pipeline(
        stage("checkout", StepKind.CHECKOUT, "checkout", target="https://example.invalid/app.git"),
        stage("sast", StepKind.SCAN, "sast", hard=False),
        stage("test", StepKind.TEST, "tests"),
        stage("build", StepKind.BUILD, "builder"),
        stage("deploy", StepKind.DEPLOY, "deploy", environment="staging"),
    )

    result = run(pipeline, registry, event_bus=event_bus)

    assert result.status == BuildStatus.FAILURE
    assert result.state == RunState.ABORTED
    assert result.executed_stages == ["checkout", "sast", "test"]
    assert registry.get("builder").calls == []
    assert registry.get("deploy").calls == []
    assert "test" in result.message
    assert hook_calls(registry) == {"hook-always": 1, "hook-success": 0, "hook-failure": 1, "hook-aborted": 0}


class NeverResolvingGate(QualityGateProvider):
    """Stays pending; each check costs a minute of fake time."""

    def __init__(self, clock):
        super().__init__({})
        self.clock = clock
        self.checks = 0

    def check(self, project_key, timeout):
        self.checks += 1
        self.clock.advance(60)
        return QualityGateStatus.PENDING


def test_quality_gate_timeout_fails_and_aborts(event_bus, fake_clock):
    """A quality gate that never resolves within 5 minutes times out like a rejection."""
    registry = make_registry()
    gate = NeverResolvingGate(fake_clock)
    registry.register(gate, "slow-sonar")
    pipeline = delivery_pipeline(
        stage("build", StepKind.BUILD, "builder"),
        stage("quality-gate", StepKind.QUALITY_GATE, "slow-sonar", project_key="app", timeout_seconds=300),
        stage("deploy", StepKind.DEPLOY, "deploy", environment="staging"),
    )

    result = run(pipeline, registry, event_bus=event_bus, clock=fake_clock)

    assert result.status == BuildStatus.FAILURE
    assert result.state == RunState.ABORTED
    assert result.executed_stages == ["build", "quality-gate"]
    gate_step = result.stages[1].result.steps[0]
    assert gate_step.gate_decision == GateDecision.TIMED_OUT
    assert gate.checks == 5
    assert registry.get("deploy").calls == []
    assert hook_calls(registry)["hook-failure"] == 1


def test_production_deploy_skipped_off_main(event_bus):
    """Production deploy is skipped on a feature branch and the run succeeds."""
    registry = make_registry()
    pipeline = delivery_pipeline(
        stage("build", StepKind.BUILD, "builder"),
        stage("deploy-staging", StepKind.DEPLOY, "deploy", environment="staging"),
        stage("deploy-production", StepKind.DEPLOY, "deploy", environment="production", when={"branch": "main"}),
    )

    result = run(pipeline, registry, branch="feature/x", event_bus=event_bus)

    assert result.status == BuildStatus.SUCCESS
    assert result.state == RunState.SUCCEEDED
    assert result.skipped_stages == ["deploy-production"]
    assert [call["environment"] for call in registry.get("deploy").calls] == ["staging"]
    assert hook_calls(registry) == {"hook-always": 1, "hook-success": 1, "hook-failure": 0, "hook-aborted": 0}

    skipped = event_bus.get_history(run_id="run-1", event_type=EventType.STAGE_SKIPPED)
    assert [e.data["stage"] for e in skipped] == ["deploy-production"]


def test_production_deploy_runs_on_main(event_bus):
    """The same pipeline deploys to production from main."""
    registry = make_registry()
    pipeline = delivery_pipeline(
        stage("build", StepKind.BUILD, "builder"),
        stage("deploy-production", StepKind.DEPLOY, "deploy", environment="production", when={"branch": "main"}),
    )

    result = run(pipeline, registry, branch="main", event_bus=event_bus)

    assert result.status == BuildStatus.SUCCESS
    assert result.executed_stages == ["build", "deploy-production"]


# ============================================================================
# Gates, hooks and cancellation
# ============================================================================

def test_rejected_approval_aborts(event_bus):
    """A rejected approval fails the run before the production deploy."""
    registry = make_registry(approval={"decision": "rejected"})
    pipeline = delivery_pipeline(
        stage("build", StepKind.BUILD, "builder"),
        stage("approve", StepKind.APPROVAL, "approval", message="Ship it?", timeout_seconds=5),
        stage("deploy-production", StepKind.DEPLOY, "deploy", environment="production"),
    )

    result = run(pipeline, registry, event_bus=event_bus)

    assert result.status == BuildStatus.FAILURE
    assert result.state == RunState.ABORTED
    assert result.stages[-1].stage == "approve"
    assert registry.get("deploy").calls == []


def test_approved_gate_continues(event_bus):
    """An approved gate lets the run continue to production."""
    registry = make_registry()
    pipeline = delivery_pipeline(
        stage("build", StepKind.BUILD, "builder"),
        stage("approve", StepKind.APPROVAL, "approval", message="Ship it?", timeout_seconds=5),
        stage("deploy-production", StepKind.DEPLOY, "deploy", environment="production"),
    )

    result = run(pipeline, registry, event_bus=event_bus)

    assert result.status == BuildStatus.SUCCESS
    assert registry.get("approval").calls == [{"message": "Ship it?", "timeout": 5}]
    resolved = event_bus.get_history(run_id="run-1", event_type=EventType.GATE_RESOLVED)
    assert resolved[0].data["decision"] == "approved"


def test_failing_hook_does_not_change_status_or_block_others(event_bus):
    """A raising hook is reported; remaining hooks still run and status stays SUCCESS."""
    registry = make_registry()
    registry.get("hook-always").config["raise_error"] = "notifier down"
    pipeline = delivery_pipeline(stage("test", StepKind.TEST, "tests"))

    result = run(pipeline, registry, event_bus=event_bus)

    assert result.status == BuildStatus.SUCCESS
    assert [(h.name, h.ok) for h in result.hooks] == [("hook-always", False), ("hook-success", True)]
    assert "notifier down" in result.hooks[0].error
    assert hook_calls(registry)["hook-success"] == 1
    assert event_bus.get_history(run_id="run-1", event_type=EventType.HOOK_FAILED)


def test_hook_for_unknown_collaborator_is_reported():
    """A hook whose collaborator is missing fails alone."""
    registry = make_registry()
    pipeline = PipelineConfig(
        name="missing-hook",
        stages=[stage("test", StepKind.TEST, "tests")],
        post=[HookConfig(uses="nobody"), HookConfig(uses="hook-always")],
    )

    result = run(pipeline, registry)

    assert result.status == BuildStatus.SUCCESS
    assert [h.ok for h in result.hooks] == [False, True]


def test_cancel_before_start_aborts_without_running_stages(event_bus):
    """A run cancelled before it starts executes nothing but still runs hooks."""
    registry = make_registry()
    cancel = threading.Event()
    cancel.set()
    pipeline = delivery_pipeline(stage("test", StepKind.TEST, "tests"))

    result = run(pipeline, registry, event_bus=event_bus, cancel_event=cancel)

    assert result.status == BuildStatus.ABORTED
    assert result.state == RunState.ABORTED
    assert result.stages == []
    assert registry.get("tests").calls == []
    assert hook_calls(registry) == {"hook-always": 1, "hook-success": 0, "hook-failure": 0, "hook-aborted": 1}


def test_cancel_between_stages(event_bus):
    """Cancellation requested during a stage stops the run before the next one."""
    registry = make_registry()
    cancel = threading.Event()
    event_bus.subscribe(
        EventType.STAGE_COMPLETED,
        lambda event: cancel.set() if event.data["stage"] == "build" else None,
    )
    pipeline = delivery_pipeline(
        stage("build", StepKind.BUILD, "builder"),
        stage("deploy", StepKind.DEPLOY, "deploy", environment="staging"),
    )

    result = run(pipeline, registry, event_bus=event_bus, cancel_event=cancel)

    assert result.status == BuildStatus.ABORTED
    assert result.executed_stages == ["build"]
    assert registry.get("deploy").calls == []
    assert hook_calls(registry)["hook-aborted"] == 1


@pytest.mark.parametrize("tests_outcome,expected", [
    ("ok", BuildStatus.SUCCESS),
    ("failed", BuildStatus.FAILURE),
])
def test_hooks_run_exactly_once(tests_outcome, expected):
    """Every terminal path dispatches hooks exactly once."""
    registry = make_registry(tests={"outcome": tests_outcome})
    pipeline = delivery_pipeline(stage("test", StepKind.TEST, "tests"))

    result = run(pipeline, registry)

    assert result.status == expected
    assert hook_calls(registry)["hook-always"] == 1
    assert registry.get("hook-always").results[0] is result


def test_collaborator_exception_becomes_failed_stage():
    """A raising collaborator fails its stage instead of crashing the run."""
    registry = make_registry(tests={"raise_error": "runner crashed"})
    pipeline = delivery_pipeline(stage("test", StepKind.TEST, "tests"))

    result = run(pipeline, registry)

    assert result.status == BuildStatus.FAILURE
    assert result.state == RunState.ABORTED
    assert "runner crashed" in result.stages[0].result.message


def test_artifacts_persisted_under_run_dir(tmp_path):
    """Artifacts are written below <artifact_dir>/<run_id>/<stage>/."""
    registry = make_registry(sast={"report": '{"results": []}', "report_name": "semgrep.json"})
    pipeline = delivery_pipeline(stage("sast", StepKind.SCAN, "sast", hard=False))

    result = run(pipeline, registry, artifact_dir=tmp_path)

    artifact = result.artifacts[0]
    assert artifact.persisted
    assert artifact.location.startswith(str(tmp_path / "run-1" / "sast"))
    assert (tmp_path / "run-1" / "sast").is_dir()


def test_run_result_serializes():
    """RunResult.to_dict exposes status, stages, artifacts and hooks."""
    registry = make_registry()
    pipeline = delivery_pipeline(
        stage("build", StepKind.BUILD, "builder"),
        stage("prod", StepKind.DEPLOY, "deploy", environment="production", when={"branch": "release/*"}),
    )

    data = run(pipeline, registry, branch="main").to_dict()

    assert data["status"] == "SUCCESS"
    assert data["state"] == "succeeded"
    assert [s["executed"] for s in data["stages"]] == [True, False]
    assert data["artifacts"][0]["kind"] == "image"
    assert "content" not in data["artifacts"][0]
    assert data["hooks"][0]["name"] == "hook-always"
