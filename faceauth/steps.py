"""
Ordered teardown and rollback steps.

A `StepPlan` is a list of named, idempotent async actions. Workflows that
touch several external systems describe their cleanup as a plan so the order
is explicit and a failed run can simply be retried from the start.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    name: str
    action: Callable[[], Awaitable[Any]]


class StepFailed(Exception):
    """A step raised; `completed` lists the steps that ran before it."""

    def __init__(self, step: str, completed: List[str], cause: BaseException):
        super().__init__(f"Step '{step}' failed after {completed or 'no steps'}: {cause}")
        self.step = step
        self.completed = completed
        self.cause = cause


class StepPlan:

    def __init__(self, label: str):
        self.label = label
        self.steps: List[Step] = []

    def add(self, name: str, action: Callable[[], Awaitable[Any]]) -> "StepPlan":
        self.steps.append(Step(name, action))
        return self

    def __len__(self):
        return len(self.steps)

    @property
    def names(self) -> List[str]:
        return [step.name for step in self.steps]

    async def run(self) -> List[str]:
        """Run every step in order, stopping at the first failure."""
        completed = []
        for step in self.steps:
            try:
                await step.action()
            except Exception as e:
                logger.error(f"{self.label}: step '{step.name}' failed: {e}")
                raise StepFailed(step.name, completed, e) from e
            completed.append(step.name)
        return completed

    async def run_best_effort(self) -> List[str]:
        """
        Run every step in order regardless of failures.

        Returns:
            Names of the steps that failed
        """
        failed = []
        for step in self.steps:
            try:
                await step.action()
            except Exception as e:
                logger.error(f"{self.label}: step '{step.name}' failed, continuing: {e}")
                failed.append(step.name)
        return failed
