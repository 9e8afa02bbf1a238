#!/usr/bin/env python3
"""Status folding and stage run-condition tests."""

import itertools

import pytest

from gantry.events import EventBus, EventEmitter, EventType
from gantry.pipeline.gating import ConditionEvaluator
from gantry.pipeline.schema import (
    BuildStatus,
    Outcome,
    PipelineStage,
    PipelineStep,
    RunContext,
    StageCondition,
)
from gantry.pipeline.status import StatusAggregator, status_for_outcome

ALL_STATUSES = list(BuildStatus)


# ============================================================================
# Status aggregation
# ============================================================================

def test_fold_is_associative_and_commutative():
    fold = StatusAggregator.fold
    for a, b, c in itertools.product(ALL_STATUSES, repeat=3):
        assert fold(fold(a, b), c) == fold(a, fold(b, c))
        assert fold(a, b) == fold(b, a)


def test_fold_never_improves():
    """Every sequence of folds is monotonic and ends at the worst input."""
    for sequence in itertools.product(ALL_STATUSES, repeat=3):
        aggregator = StatusAggregator()
        previous = aggregator.status
        for index, incoming in enumerate(sequence):
            current = aggregator.apply(incoming, f"s{index}")
            assert current >= previous
            previous = current
        assert aggregator.status == max(sequence)


def test_outcome_mapping():
    assert status_for_outcome(Outcome.OK) == BuildStatus.SUCCESS
    assert status_for_outcome(Outcome.DEGRADED) == BuildStatus.UNSTABLE
    assert status_for_outcome(Outcome.FAILED) == BuildStatus.FAILURE


def test_status_changes_are_emitted_once_per_change():
    bus = EventBus()
    aggregator = StatusAggregator(EventEmitter("run-s", bus))

    aggregator.apply_outcome(Outcome.DEGRADED, "sast")
    aggregator.apply_outcome(Outcome.OK, "test")
    aggregator.apply_outcome(Outcome.DEGRADED, "image-scan")
    aggregator.apply(BuildStatus.ABORTED, "cancel")

    changes = bus.get_history(run_id="run-s", event_type=EventType.STATUS_CHANGED)
    assert [(e.data["previous"], e.data["current"]) for e in changes] == [
        ("SUCCESS", "UNSTABLE"),
        ("UNSTABLE", "ABORTED"),
    ]
    assert [fold.source for fold in aggregator.history] == ["sast", "test", "image-scan", "cancel"]


# ============================================================================
# Condition evaluation
# ============================================================================

def _stage(when=None):
    return PipelineStage(
        name="deploy-production",
        when=StageCondition(**when) if when else None,
        steps=[PipelineStep(kind="deploy", uses="helm", environment="production")],
    )


def _ctx(branch="main", **kwargs):
    return RunContext(run_id="r", branch_name=branch, **kwargs)


def test_no_condition_always_runs():
    assert ConditionEvaluator().should_run(_stage(), _ctx("anything"))


@pytest.mark.parametrize("pattern,branch,expected", [
    ("main", "main", True),
    ("main", "feature/x", False),
    ("main", "main-backup", False),
    ("release/*", "release/1.2", True),
    ("release/*", "hotfix/1.2", False),
])
def test_branch_condition(pattern, branch, expected):
    assert ConditionEvaluator().should_run(_stage({"branch": pattern}), _ctx(branch)) is expected


def test_skip_reason_names_the_branch():
    result = ConditionEvaluator().explain(_stage({"branch": "main"}), _ctx("feature/x"))
    assert result.result is False
    assert "feature/x" in result.debug_info


def test_environment_and_parameter_conditions():
    evaluator = ConditionEvaluator()
    stage = _stage({"environment": {"DEPLOY": "true"}, "parameters": {"replicas": 2}})

    assert evaluator.should_run(stage, _ctx(environment={"DEPLOY": "true"}, parameters={"replicas": "2"}))
    assert not evaluator.should_run(stage, _ctx(environment={"DEPLOY": "false"}, parameters={"replicas": 2}))
    assert not evaluator.should_run(stage, _ctx(environment={"DEPLOY": "true"}))


def test_any_of_and_all_of():
    evaluator = ConditionEvaluator()
    stage = _stage({
        "any_of": [{"branch": "main"}, {"branch": "release/*"}],
        "all_of": [{"parameters": {"deploy": "yes"}}],
    })

    assert evaluator.should_run(stage, _ctx("release/2", parameters={"deploy": "yes"}))
    assert not evaluator.should_run(stage, _ctx("feature/y", parameters={"deploy": "yes"}))
    result = evaluator.explain(stage, _ctx("main"))
    assert result.result is False
    assert result.debug_info.startswith("all_of failed")
