"""
Bounded Retry Tests
===================
"""
import pytest

from selfheal.orchestrator.retry import (
    ALL_TERMINATION_REASONS,
    CYCLE_DETECTED,
    MAX_ATTEMPTS,
    NO_IMPROVEMENT,
    NOOP,
    SUCCESS,
    clamp_attempts,
    run_bounded_retry,
)


class Work:
    """Pending counter plus a scripted hash per attempt."""

    def __init__(self, pending, hashes, resolves=()):
        self.pending = pending
        self.hashes = list(hashes)
        self.resolves = list(resolves)
        self.calls = []

    def count(self):
        return self.pending

    def attempt(self, number):
        self.calls.append(number)
        if self.resolves:
            self.pending -= self.resolves.pop(0)
        return self.hashes.pop(0)


@pytest.mark.parametrize("requested,expected", [(None, 1), (0, 1), (-3, 1), (3, 3), (5, 5), (9, 5)])
def test_clamp_attempts(requested, expected):
    assert clamp_attempts(requested) == expected


def test_nothing_pending_is_noop():
    work = Work(0, [])
    outcome = run_bounded_retry(work.count, work.attempt, 3)
    assert outcome.termination_reason == NOOP
    assert outcome.attempt_count == 0
    assert work.calls == []


def test_success_when_pending_reaches_zero():
    work = Work(2, ["h1", "h2"], resolves=[1, 1])
    outcome = run_bounded_retry(work.count, work.attempt, 5)
    assert outcome.termination_reason == SUCCESS
    assert [a.pending_after for a in outcome.attempts] == [1, 0]


def test_repeated_output_hash_is_a_cycle():
    work = Work(1, ["same", "same", "never"])
    outcome = run_bounded_retry(work.count, work.attempt, 5)
    assert outcome.termination_reason == CYCLE_DETECTED
    assert work.calls == [1, 2]


def test_two_empty_outputs_in_a_row_stop():
    work = Work(1, ["", "", "x"])
    outcome = run_bounded_retry(work.count, work.attempt, 5)
    assert outcome.termination_reason == NO_IMPROVEMENT
    assert outcome.attempt_count == 2


def test_budget_exhausted():
    work = Work(1, ["a", "b", "c", "d"])
    outcome = run_bounded_retry(work.count, work.attempt, 3)
    assert outcome.termination_reason == MAX_ATTEMPTS
    assert work.calls == [1, 2, 3]


def test_budget_is_clamped_to_ceiling():
    work = Work(1, [str(i) for i in range(10)])
    outcome = run_bounded_retry(work.count, work.attempt, 50)
    assert outcome.attempt_count == 5
    assert outcome.termination_reason in ALL_TERMINATION_REASONS
