"""Completion hooks.

PostHookDispatcher runs the ``always`` hooks and then the hooks whose
predicate matches the final build status. It runs once per run; every hook
failure is isolated so the remaining hooks still run.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from gantry.collaborators.base import HookAction
from gantry.events import EventEmitter
from gantry.pipeline.schema import BuildStatus, HookCondition

if TYPE_CHECKING:
    from gantry.pipeline.executor import RunResult

logger = logging.getLogger(__name__)


@dataclass
class CompletionHook:
    """A final-status predicate plus an action."""
    name: str
    when: HookCondition
    action: Union[HookAction, Callable[["RunResult"], None]]

    def invoke(self, result: "RunResult") -> None:
        if isinstance(self.action, HookAction):
            self.action.run(result)
        else:
            self.action(result)


@dataclass
class HookReport:
    """Execution record of one hook."""
    name: str
    when: str
    ok: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "when": self.when, "ok": self.ok, "error": self.error}


class PostHookDispatcher:
    """Runs terminal hooks exactly once per run."""

    def __init__(self, hooks: List[CompletionHook], emitter: Optional[EventEmitter] = None):
        self.hooks = list(hooks)
        self.emitter = emitter
        self._reports: Optional[List[HookReport]] = None

    @property
    def dispatched(self) -> bool:
        return self._reports is not None

    def dispatch(self, final_status: BuildStatus, result: "RunResult") -> List[HookReport]:
        """
        Run ``always`` hooks, then hooks matching ``final_status``.

        A repeated call does not run any hook again and returns the reports
        of the first dispatch.
        """
        if self._reports is not None:
            logger.warning(f"Hooks already dispatched for run {result.run_id}; ignoring repeat dispatch")
            return list(self._reports)

        self._reports = []
        always = [h for h in self.hooks if h.when == HookCondition.ALWAYS]
        matching = [h for h in self.hooks if h.when != HookCondition.ALWAYS and h.when.matches(final_status)]

        for hook in always + matching:
            self._reports.append(self._run_hook(hook, result))

        return list(self._reports)

    def _run_hook(self, hook: CompletionHook, result: "RunResult") -> HookReport:
        try:
            hook.invoke(result)
        except Exception as e:
            logger.exception(f"Completion hook '{hook.name}' ({hook.when.value}) failed")
            if self.emitter:
                self.emitter.hook_failed(hook.name, hook.when.value, str(e))
            return HookReport(name=hook.name, when=hook.when.value, ok=False, error=f"{type(e).__name__}: {e}")

        logger.debug(f"Completion hook '{hook.name}' ({hook.when.value}) done")
        if self.emitter:
            self.emitter.hook_completed(hook.name, hook.when.value)
        return HookReport(name=hook.name, when=hook.when.value, ok=True)
