"""Stage run-conditions.

Provides:
- ConditionEvaluator: decide whether a stage runs for a given run context
- EvaluationResult: the decision plus a human-readable explanation

Evaluation is pure: it only reads the (frozen) RunContext.
"""

import fnmatch
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from gantry.pipeline.schema import PipelineStage, RunContext, StageCondition

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    """Result of condition evaluation."""
    result: bool  # True if condition met
    debug_info: Optional[str] = None  # Human-readable explanation


class ConditionEvaluator:
    """Evaluate stage conditions against a run context.

    Supports:
    - Branch match: exact name or shell-style glob ("release/*")
    - Environment / parameter equality maps
    - Boolean combinators: all_of, any_of
    """

    def should_run(self, stage: PipelineStage, context: RunContext) -> bool:
        """Return True when the stage has no condition or its condition holds."""
        return self.explain(stage, context).result

    def explain(self, stage: PipelineStage, context: RunContext) -> EvaluationResult:
        """Evaluate a stage's condition and describe the decision."""
        if stage.when is None:
            return EvaluationResult(result=True, debug_info="No condition")
        return self.evaluate(stage.when, context)

    def evaluate(self, condition: StageCondition, context: RunContext) -> EvaluationResult:
        """
        Evaluate a stage condition.

        All fields set on one condition must hold (implicit AND); ``any_of``
        requires at least one nested condition to hold.

        Args:
            condition: Condition to evaluate
            context: Run context

        Returns:
            EvaluationResult with result and explanation
        """
        if condition.branch is not None and not self._match_branch(condition.branch, context.branch_name):
            return EvaluationResult(
                result=False,
                debug_info=f"branch '{context.branch_name}' does not match '{condition.branch}'",
            )

        if condition.environment:
            mismatch = self._first_mismatch(condition.environment, context.environment)
            if mismatch:
                return EvaluationResult(result=False, debug_info=f"environment {mismatch}")

        if condition.parameters:
            mismatch = self._first_mismatch(condition.parameters, context.parameters)
            if mismatch:
                return EvaluationResult(result=False, debug_info=f"parameter {mismatch}")

        if condition.all_of:
            for nested in condition.all_of:
                nested_result = self.evaluate(nested, context)
                if not nested_result.result:
                    return EvaluationResult(
                        result=False,
                        debug_info=f"all_of failed: {nested_result.debug_info}",
                    )

        if condition.any_of:
            reasons = []
            for nested in condition.any_of:
                nested_result = self.evaluate(nested, context)
                if nested_result.result:
                    break
                reasons.append(nested_result.debug_info)
            else:
                return EvaluationResult(
                    result=False,
                    debug_info=f"No any_of condition met ({'; '.join(r for r in reasons if r)})",
                )

        return EvaluationResult(result=True, debug_info="Condition met")

    def _match_branch(self, pattern: str, branch_name: str) -> bool:
        if any(ch in pattern for ch in "*?["):
            return fnmatch.fnmatchcase(branch_name, pattern)
        return branch_name == pattern

    def _first_mismatch(self, expected: Dict[str, Any], actual: Dict[str, Any]) -> Optional[str]:
        for key, value in expected.items():
            current = actual.get(key)
            if current is None or str(current) != str(value):
                logger.debug(f"Condition mismatch on {key}: {current!r} != {value!r}")
                return f"{key}={current!r} (expected {value!r})"
        return None
