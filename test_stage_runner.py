#!/usr/bin/env python3
"""StageRunner tests: hard/soft semantics, capabilities, artifacts."""

import pytest

from gantry.collaborators.base import ApprovalProvider, CollaboratorError, CommandTool, SourceCheckout, TestRunner
from gantry.collaborators.shell import ShellScanTool, ShellTestRunner
from gantry.collaborators.static import StaticCommand
from gantry.events import EventBus, EventEmitter, EventType
from gantry.pipeline.artifacts import ArtifactArchiver
from gantry.pipeline.gates import GateWaiter
from gantry.pipeline.runner import StageRunner
from gantry.pipeline.schema import (
    ExecutionEnvironment,
    GateDecision,
    Outcome,
    PipelineStage,
    PipelineStep,
    RunContext,
    StepKind,
)

from conftest import make_registry

CTX = RunContext(run_id="run-r", branch_name="main")


def make_runner(registry, bus=None):
    emitter = EventEmitter("run-r", bus or EventBus())
    archiver = ArtifactArchiver("run-r", emitter=emitter)
    return StageRunner(registry, archiver, GateWaiter(poll_interval=0.01), emitter), archiver


def test_soft_stage_failure_degrades_and_continues():
    """A failed step in a soft stage is DEGRADED and later steps still run."""
    registry = make_registry(sast={"outcome": "failed"})
    runner, _ = make_runner(registry)
    stage = PipelineStage(
        name="scans",
        hard=False,
        steps=[
            PipelineStep(kind=StepKind.SCAN, uses="sast"),
            PipelineStep(kind=StepKind.SCAN, uses="image-scan"),
        ],
    )

    result = runner.run(stage, CTX)

    assert result.outcome == Outcome.DEGRADED
    assert not result.abort
    assert [s.outcome for s in result.steps] == [Outcome.DEGRADED, Outcome.OK]
    assert len(registry.get("image-scan").calls) == 1


def test_hard_stage_failure_stops_and_aborts():
    """The first failed step of a hard stage stops the stage."""
    registry = make_registry(tests={"outcome": "failed"})
    runner, _ = make_runner(registry)
    stage = PipelineStage(
        name="test",
        steps=[
            PipelineStep(kind=StepKind.TEST, uses="tests"),
            PipelineStep(kind=StepKind.BUILD, uses="builder"),
        ],
    )

    result = runner.run(stage, CTX)

    assert result.outcome == Outcome.FAILED
    assert result.abort
    assert len(result.steps) == 1
    assert registry.get("builder").calls == []
    assert result.message == "Tests failed"


def test_gate_failure_aborts_even_in_soft_stage():
    registry = make_registry(approval={"decision": "rejected"})
    runner, _ = make_runner(registry)
    stage = PipelineStage(
        name="approve",
        hard=False,
        steps=[PipelineStep(kind=StepKind.APPROVAL, uses="approval", message="ok?", timeout_seconds=5)],
    )

    result = runner.run(stage, CTX)

    assert result.outcome == Outcome.FAILED
    assert result.abort
    assert result.steps[0].gate_decision == GateDecision.REJECTED


def test_unknown_collaborator_fails_step():
    runner, _ = make_runner(make_registry())
    stage = PipelineStage(name="test", steps=[PipelineStep(kind=StepKind.TEST, uses="ghost")])

    result = runner.run(stage, CTX)

    assert result.outcome == Outcome.FAILED
    assert "Unknown collaborator 'ghost'" in result.message


def test_wrong_capability_fails_step():
    """A builder cannot be used as a scan tool."""
    runner, _ = make_runner(make_registry())
    stage = PipelineStage(name="scan", steps=[PipelineStep(kind=StepKind.SCAN, uses="builder")])

    result = runner.run(stage, CTX)

    assert result.outcome == Outcome.FAILED
    assert "does not provide ScanTool" in result.message


def test_scan_severity_policy():
    """fail_on_severity turns findings at or above the threshold into a failure."""
    registry = make_registry(sast={"findings": {"low": 4, "high": 1}})
    runner, archiver = make_runner(registry)

    lenient = PipelineStage(
        name="sast-lenient",
        hard=False,
        steps=[PipelineStep(kind=StepKind.SCAN, uses="sast", fail_on_severity="critical")],
    )
    strict = PipelineStage(
        name="sast-strict",
        steps=[PipelineStep(kind=StepKind.SCAN, uses="sast", fail_on_severity="high")],
    )

    assert runner.run(lenient, CTX).outcome == Outcome.OK
    result = runner.run(strict, CTX)
    assert result.outcome == Outcome.FAILED
    assert "1 finding(s) at or above high" in result.message
    assert [a.kind for a in archiver.list()] == ["report", "report"]


def test_build_then_push_uses_registered_image():
    registry = make_registry(builder={"repository": "registry.local/mealie"})
    runner, archiver = make_runner(registry)
    stage = PipelineStage(
        name="build",
        steps=[
            PipelineStep(**{"kind": "build", "uses": "builder", "with": {"tag": "abc123"}}),
            PipelineStep(kind=StepKind.PUSH, uses="registry"),
        ],
    )

    result = runner.run(stage, CTX)

    assert result.outcome == Outcome.OK
    assert archiver.latest("image").text == "registry.local/mealie:abc123"
    assert registry.get("registry").calls == [{"image": "registry.local/mealie:abc123"}]
    assert result.artifacts == [archiver.latest("image").ref]


def test_push_without_image_fails():
    runner, _ = make_runner(make_registry())
    stage = PipelineStage(name="push", steps=[PipelineStep(kind=StepKind.PUSH, uses="registry")])
    result = runner.run(stage, CTX)
    assert result.outcome == Outcome.FAILED
    assert result.message == "No image to push"


def test_explicit_target_image_for_deploy():
    registry = make_registry()
    runner, _ = make_runner(registry)
    stage = PipelineStage(
        name="deploy",
        steps=[PipelineStep(kind=StepKind.DEPLOY, uses="deploy", environment="staging", target="ghcr.io/app:2.0")],
    )

    assert runner.run(stage, CTX).outcome == Outcome.OK
    assert registry.get("deploy").calls == [{"image": "ghcr.io/app:2.0", "environment": "staging"}]


def test_checkout_uses_run_branch_and_agent_is_passed():
    registry = make_registry()
    runner, _ = make_runner(registry)
    agent = ExecutionEnvironment(image="python:3.12", label="linux")
    stage = PipelineStage(
        name="prepare",
        agent=agent,
        steps=[
            PipelineStep(kind=StepKind.CHECKOUT, uses="checkout", target="https://example.invalid/app.git"),
            PipelineStep(kind=StepKind.COMMAND, uses="checkout", target="make lint"),
        ],
    )

    runner.run(stage, RunContext(run_id="run-r", branch_name="feature/x"))

    calls = registry.get("checkout").calls
    assert calls[0]["branch"] == "feature/x"
    assert calls[1]["environment"] == agent


def test_step_events_are_emitted():
    bus = EventBus()
    runner, _ = make_runner(make_registry(), bus)
    stage = PipelineStage(name="test", steps=[PipelineStep(kind=StepKind.TEST, uses="tests")])

    runner.run(stage, CTX)

    types = [e.type for e in bus.get_history(run_id="run-r")]
    assert types == [
        EventType.STAGE_STARTED,
        EventType.STEP_STARTED,
        EventType.STEP_COMPLETED,
        EventType.STAGE_COMPLETED,
    ]


def test_static_command_covers_checkout_command_and_test():
    command = StaticCommand()
    assert isinstance(command, (CommandTool, TestRunner, SourceCheckout))
    assert command.run("x") == Outcome.OK
    with pytest.raises(CollaboratorError, match="boom"):
        StaticCommand({"raise_error": "boom"}).run("x")


def test_shell_steps_run_in_the_run_workspace(tmp_path):
    """Tests and scans see the checked-out tree, not the server's directory."""
    workspace = tmp_path / "ws"
    workspace.mkdir()
    (workspace / "marker").write_text("checked out", encoding="utf-8")
    (workspace / "semgrep.json").write_text('{"results": [{"severity": "ERROR"}]}', encoding="utf-8")

    registry = make_registry()
    registry.register(ShellTestRunner({"command": "test -f marker"}), "tests")
    registry.register(ShellScanTool({"command": "test -f marker", "report_path": "semgrep.json"}), "sast")
    runner, archiver = make_runner(registry)
    stage = PipelineStage(
        name="verify",
        steps=[
            PipelineStep(kind=StepKind.TEST, uses="tests"),
            PipelineStep(kind=StepKind.SCAN, uses="sast"),
        ],
    )

    result = runner.run(stage, RunContext(run_id="run-r", branch_name="main", workspace=workspace))

    assert result.outcome == Outcome.OK
    assert archiver.latest("report").text == '{"results": [{"severity": "ERROR"}]}'
    assert result.steps[1].message == "exit 0, high=1"


def test_workspace_is_passed_to_command_steps(tmp_path):
    registry = make_registry()
    runner, _ = make_runner(registry)
    stage = PipelineStage(name="test", steps=[PipelineStep(kind=StepKind.TEST, uses="tests")])

    runner.run(stage, RunContext(run_id="run-r", branch_name="main", workspace=tmp_path))

    assert registry.get("tests").calls[0]["workspace"] == tmp_path


def test_image_scan_uses_built_image():
    registry = make_registry()
    runner, _ = make_runner(registry)
    build = PipelineStage(name="build", steps=[PipelineStep(kind=StepKind.BUILD, uses="builder")])
    image_scan = PipelineStage(
        name="image-scan",
        hard=False,
        steps=[PipelineStep(**{"kind": "scan", "uses": "image-scan", "with": {"scan_image": True}})],
    )

    runner.run(build, CTX)
    result = runner.run(image_scan, CTX)

    assert result.outcome == Outcome.OK
    assert registry.get("image-scan").calls[0]["target"] == "registry.local/app:latest"


def test_image_scan_without_image_fails():
    runner, _ = make_runner(make_registry())
    stage = PipelineStage(
        name="image-scan",
        steps=[PipelineStep(**{"kind": "scan", "uses": "image-scan", "with": {"scan_image": True}})],
    )

    result = runner.run(stage, CTX)

    assert result.outcome == Outcome.FAILED
    assert result.message == "No image to scan"


class NoAnswerApproval(ApprovalProvider):
    def request(self, message, timeout, request_id=None):
        return None


@pytest.mark.parametrize("uses", ["no-answer", "ghost", "builder"])
def test_gate_without_decision_aborts_soft_stage(uses):
    """An approval that yields no valid decision is rejected, even on a soft stage."""
    registry = make_registry()
    registry.register(NoAnswerApproval(), "no-answer")
    runner, _ = make_runner(registry)
    stage = PipelineStage(
        name="approve",
        hard=False,
        steps=[PipelineStep(kind=StepKind.APPROVAL, uses=uses, message="Ship it?", timeout_seconds=5)],
    )

    result = runner.run(stage, CTX)

    assert result.outcome == Outcome.FAILED
    assert result.abort
    assert result.steps[0].gate_decision == GateDecision.REJECTED
