"""
Result values and the ordered fallback combinator.

Parsing stages return an Outcome instead of raising, so the orchestrator
can express its fallback policy as data: try A, on failure try B.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple

from errors import CommandError
from logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Outcome:
    """Success(value) or Failure(error), tagged with the stage that produced it."""
    stage: str
    value: Any = None
    error: Optional[CommandError] = None
    previous: Tuple["Outcome", ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, stage: str, value: Any) -> "Outcome":
        return cls(stage=stage, value=value)

    @classmethod
    def failure(cls, stage: str, error: CommandError) -> "Outcome":
        return cls(stage=stage, error=error)

    def unwrap(self) -> Any:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value


Step = Tuple[str, Callable[[], Awaitable[Outcome]]]


async def first_success(steps: Sequence[Step]) -> Outcome:
    """
    Run steps in order and return the first successful Outcome.

    When every step fails, the last failure is returned with all earlier
    failures attached in ``previous``.
    """
    if not steps:
        raise ValueError("first_success needs at least one step")

    failures = []
    for index, (name, run) in enumerate(steps):
        outcome = await run()
        if outcome.ok:
            return outcome

        failures.append(outcome)
        if index + 1 < len(steps):
            logger.fallback(
                failed_stage=name,
                next_stage=steps[index + 1][0],
                reason=outcome.error.message if outcome.error else "unknown",
            )

    last = failures[-1]
    return Outcome(stage=last.stage, error=last.error, previous=tuple(failures[:-1]))
