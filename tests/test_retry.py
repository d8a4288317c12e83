from __future__ import annotations

import pytest

from jett_build.retry import BoundedRetry, RetryDecision


def _classify(result: str) -> RetryDecision:
    if result == "ok":
        return RetryDecision.SUCCEED
    if result == "fatal":
        return RetryDecision.ABORT
    return RetryDecision.RETRY


def test_succeeds_on_first_acceptable_result() -> None:
    results = iter(["bad", "ok", "bad"])
    between: list[int] = []

    outcome = BoundedRetry(3).run(lambda _attempt: next(results), _classify, between=lambda n, _r: between.append(n))

    assert outcome.succeeded
    assert outcome.attempts == 2
    assert outcome.last_result == "ok"
    assert between == [1]


def test_exhausts_bound_without_running_between_after_last_attempt() -> None:
    seen: list[int] = []
    between: list[int] = []

    def action(attempt: int) -> str:
        seen.append(attempt)
        return "bad"

    outcome = BoundedRetry(3).run(action, _classify, between=lambda n, _r: between.append(n))

    assert not outcome.succeeded
    assert not outcome.aborted
    assert outcome.attempts == 3
    assert seen == [1, 2, 3]
    assert between == [1, 2]
    assert outcome.results == ["bad", "bad", "bad"]


def test_abort_stops_immediately() -> None:
    results = iter(["bad", "fatal", "ok"])

    outcome = BoundedRetry(5).run(lambda _attempt: next(results), _classify)

    assert outcome.aborted
    assert not outcome.succeeded
    assert outcome.attempts == 2


def test_bound_must_be_positive() -> None:
    with pytest.raises(ValueError):
        BoundedRetry(0)
