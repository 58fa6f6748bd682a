"""
Bounded Retry
=============
Explicit, bounded retry loop with a closed set of termination reasons.

Used by the heal loop to re-verify the pending patch set. Each attempt
reports a hash of the output it produced; a hash seen on an earlier
attempt means the loop is going round in circles and stops.

Termination reasons:
    noop            — nothing was pending before the first attempt
    success         — no item remains pending
    no_improvement  — two consecutive attempts produced no output at all
    cycle_detected  — an attempt's output hash repeats an earlier attempt's
    max_attempts    — the attempt budget ran out with items still pending
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from selfheal.core.config import MAX_ATTEMPTS_CEILING, MIN_ATTEMPTS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Termination Reason Constants
# ---------------------------------------------------------------------------
SUCCESS = "success"
NOOP = "noop"
NO_IMPROVEMENT = "no_improvement"
CYCLE_DETECTED = "cycle_detected"
MAX_ATTEMPTS = "max_attempts"

ALL_TERMINATION_REASONS = frozenset({
    SUCCESS,
    NOOP,
    NO_IMPROVEMENT,
    CYCLE_DETECTED,
    MAX_ATTEMPTS,
})


@dataclass
class RetryAttempt:
    attempt: int
    pending_before: int
    pending_after: int
    output_hash: str


@dataclass
class RetryOutcome:
    termination_reason: str
    attempts: List[RetryAttempt] = field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


def clamp_attempts(max_attempts: Optional[int]) -> int:
    """Clamp a requested attempt budget to MIN_ATTEMPTS..MAX_ATTEMPTS_CEILING."""
    if max_attempts is None:
        return MIN_ATTEMPTS
    return max(MIN_ATTEMPTS, min(MAX_ATTEMPTS_CEILING, int(max_attempts)))


def run_bounded_retry(
    pending_count: Callable[[], int],
    attempt: Callable[[int], str],
    max_attempts: int,
) -> RetryOutcome:
    """
    Run ``attempt`` until nothing is pending or a stop condition holds.

    Parameters
    ----------
    pending_count : callable
        Returns how many items are still pending.
    attempt : callable
        Runs one attempt (1-based number) over the pending items and
        returns a hash of the output produced; empty string for none.
    max_attempts : int
        Attempt budget, clamped to the configured bounds.

    Returns
    -------
    RetryOutcome
        Termination reason plus one record per attempt made.
    """
    budget = clamp_attempts(max_attempts)
    outcome = RetryOutcome(termination_reason=MAX_ATTEMPTS)

    if pending_count() == 0:
        outcome.termination_reason = NOOP
        return outcome

    seen_hashes: List[str] = []
    for number in range(1, budget + 1):
        before = pending_count()
        output_hash = attempt(number)
        after = pending_count()
        outcome.attempts.append(RetryAttempt(number, before, after, output_hash))
        logger.info(
            "[VERIFY] Attempt %d/%d | pending=%d->%d | output=%s",
            number, budget, before, after, output_hash or "none",
        )

        if after == 0:
            outcome.termination_reason = SUCCESS
            break
        if not output_hash and seen_hashes and not seen_hashes[-1]:
            outcome.termination_reason = NO_IMPROVEMENT
            break
        if output_hash and output_hash in seen_hashes:
            outcome.termination_reason = CYCLE_DETECTED
            break
        seen_hashes.append(output_hash)

    logger.info("[VERIFY] Retry finished | reason=%s | attempts=%d", outcome.termination_reason, outcome.attempt_count)
    return outcome
