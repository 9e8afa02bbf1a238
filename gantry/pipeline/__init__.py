"""Pipeline orchestration core for Gantry.

This package provides:
- Pipeline schema definitions (schema.py)
- Pipeline loader and validator (loader.py)
- Stage run-conditions (gating.py)
- Build status aggregation (status.py)
- Gate waits with deadlines (gates.py)
- Stage execution (runner.py)
- Artifact archiving (artifacts.py)
- Completion hooks (hooks.py)
- Pipeline executor (executor.py)

Only the collaborator-free modules are re-exported here; import the
executor from ``gantry.pipeline.executor``.
"""

from gantry.pipeline.schema import (
    BuildStatus,
    ExecutionEnvironment,
    GateDecision,
    HookCondition,
    HookConfig,
    Outcome,
    PipelineConfig,
    PipelineStage,
    PipelineStep,
    RunContext,
    RunState,
    StageCondition,
    StepKind,
)
from gantry.pipeline.loader import (
    PipelineLoader,
    PipelineRegistry,
)
from gantry.pipeline.gating import ConditionEvaluator
from gantry.pipeline.status import StatusAggregator, status_for_outcome

__all__ = [
    "BuildStatus",
    "ExecutionEnvironment",
    "GateDecision",
    "HookCondition",
    "HookConfig",
    "Outcome",
    "PipelineConfig",
    "PipelineStage",
    "PipelineStep",
    "RunContext",
    "RunState",
    "StageCondition",
    "StepKind",
    "PipelineLoader",
    "PipelineRegistry",
    "ConditionEvaluator",
    "StatusAggregator",
    "status_for_outcome",
]
