"""Bounded retry combinator shared by task execution and dependency auto-fix."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class RetryDecision(str, Enum):
    SUCCEED = "succeed"
    RETRY = "retry"
    ABORT = "abort"


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    succeeded: bool
    attempts: int
    last_result: T
    results: list[T] = field(default_factory=list)
    aborted: bool = False


@dataclass(frozen=True)
class BoundedRetry:
    """Run an action until the classifier accepts it or the bound is reached.

    ``action`` receives the 1-based attempt number. ``classify`` maps each
    result to SUCCEED, RETRY or ABORT; ABORT stops immediately without
    spending the remaining attempts. ``between`` runs after a RETRY decision
    and before the next attempt, and never after the final one.
    """

    max_attempts: int

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {self.max_attempts}")

    def run(
        self,
        action: Callable[[int], T],
        classify: Callable[[T], RetryDecision],
        *,
        between: Callable[[int, T], None] | None = None,
    ) -> RetryOutcome[T]:
        results: list[T] = []
        for attempt in range(1, self.max_attempts + 1):
            result = action(attempt)
            results.append(result)
            decision = classify(result)
            if decision == RetryDecision.SUCCEED:
                return RetryOutcome(succeeded=True, attempts=attempt, last_result=result, results=results)
            if decision == RetryDecision.ABORT:
                return RetryOutcome(
                    succeeded=False,
                    attempts=attempt,
                    last_result=result,
                    results=results,
                    aborted=True,
                )
            if between is not None and attempt < self.max_attempts:
                between(attempt, result)
        return RetryOutcome(
            succeeded=False,
            attempts=self.max_attempts,
            last_result=results[-1],
            results=results,
        )
