"""
Saga Runner

Runs an ordered list of (action, compensation) steps. When a step
fails, the compensations of the steps that already completed run in
reverse order and the outcome reports what happened to each step.

Steps are not retried here; retries belong to the collaborator calls
inside an action.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class SagaStepStatus(str, Enum):
    """Status for individual saga steps"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"
    SKIPPED = "skipped"


class StepFailed(Exception):
    """
    Raised by an action whose collaborator reported failure.

    result is kept on the outcome so callers can show what the
    collaborator returned.
    """

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.message = message
        self.result = result


@dataclass
class SagaStep:
    name: str
    action: Callable[[], Awaitable[Any]]
    # Receives the action's result
    compensation: Optional[Callable[[Any], Awaitable[None]]] = None


@dataclass
class SagaOutcome:
    """Result of running a saga."""
    completed: bool
    results: Dict[str, Any] = field(default_factory=dict)
    statuses: Dict[str, SagaStepStatus] = field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    compensated: List[str] = field(default_factory=list)
    compensation_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def fully_compensated(self) -> bool:
        """Every completed step was undone (steps without a compensation are skipped)."""
        return not self.compensation_errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completed": self.completed,
            "statuses": {name: status.value for name, status in self.statuses.items()},
            "failed_step": self.failed_step,
            "error": self.error,
            "compensated": self.compensated,
            "compensation_errors": self.compensation_errors,
        }


class Saga:
    """
    Ordered steps with compensations.

    Exceptions of the `reraise` types are raised to the caller once the
    completed steps have been compensated; any other exception fails the
    step like StepFailed does.

    Usage:
        saga = Saga("confirm_match", [
            SagaStep("local_log", create_log, delete_log),
            SagaStep("ghl", update_crm),
            SagaStep("wordpress", update_cms),
        ])
        outcome = await saga.run()
    """

    def __init__(self, name: str, steps: List[SagaStep], reraise: Tuple[Type[BaseException], ...] = ()):
        self.name = name
        self.steps = steps
        self.reraise = reraise

    async def run(self) -> SagaOutcome:
        outcome = SagaOutcome(
            completed=False,
            statuses={step.name: SagaStepStatus.PENDING for step in self.steps},
        )
        done: List[SagaStep] = []

        for step in self.steps:
            try:
                outcome.results[step.name] = await step.action()
            except StepFailed as e:
                outcome.results[step.name] = e.result
                self._fail(outcome, step, e.message)
                break
            except Exception as e:
                if isinstance(e, self.reraise):
                    self._fail(outcome, step, str(e) or e.__class__.__name__)
                    await self._compensate(outcome, done)
                    raise
                logger.exception(f"Saga {self.name}: step {step.name} raised")
                self._fail(outcome, step, str(e) or e.__class__.__name__)
                break

            outcome.statuses[step.name] = SagaStepStatus.COMPLETED
            done.append(step)
        else:
            outcome.completed = True
            return outcome

        for step in self.steps[len(done) + 1:]:
            outcome.statuses[step.name] = SagaStepStatus.SKIPPED

        await self._compensate(outcome, done)
        return outcome

    def _fail(self, outcome: SagaOutcome, step: SagaStep, error: str):
        outcome.statuses[step.name] = SagaStepStatus.FAILED
        outcome.failed_step = step.name
        outcome.error = error
        logger.warning(f"Saga {self.name}: step {step.name} failed: {error}")

    async def _compensate(self, outcome: SagaOutcome, done: List[SagaStep]):
        for step in reversed(done):
            if step.compensation is None:
                continue
            try:
                await step.compensation(outcome.results.get(step.name))
            except Exception as e:
                logger.exception(f"Saga {self.name}: compensation for {step.name} failed")
                outcome.statuses[step.name] = SagaStepStatus.COMPENSATION_FAILED
                outcome.compensation_errors[step.name] = str(e) or e.__class__.__name__
                continue

            outcome.statuses[step.name] = SagaStepStatus.COMPENSATED
            outcome.compensated.append(step.name)
