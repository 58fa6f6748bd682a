"""
Failure Classification
======================
Maps a failed step to a root-cause classification, a severity and the
generator subsystem suspected of producing it.

Strategy:
    1. ORDERED REGISTRY — the first matching rule wins
    2. SEVERITY PER RULE — never computed from step data
    3. DEFAULT — "unclassified" at p3 when nothing matches

Classification tags line up with the trace registries' classification_ids
so the patch engine can look the responsible rule up directly.
"""
import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from selfheal.core.constants import (
    ACTION_ASSERT_STYLE,
    ACTION_CHECK_CONSOLE,
    ACTION_VISUAL_SNAPSHOT,
    UNCLASSIFIED,
)
from selfheal.models.probe_result import StepResult


# ---------------------------------------------------------------------------
# Classification Result
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ClassificationResult:
    """Immutable outcome of classifying one failed step."""
    classification: str
    severity: str
    suspected_subsystem: str
    rule: str


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    classification: str
    severity: str
    suspected_subsystem: str
    matches: Callable[[StepResult], bool]


# ---------------------------------------------------------------------------
# Console error signatures
# ---------------------------------------------------------------------------
_CONSOLE_SIGNATURES: Tuple[re.Pattern, ...] = (
    re.compile(r"\b(TypeError|ReferenceError|SyntaxError|RangeError)\b"),
    re.compile(r"Uncaught", re.I),
    re.compile(r"Failed to (fetch|load resource)", re.I),
    re.compile(r"NetworkError|ERR_CONNECTION_REFUSED", re.I),
    re.compile(r"status of (4|5)\d\d", re.I),
    re.compile(r"Warning: Each child in a list", re.I),
)


def _reason(step: StepResult) -> str:
    return (step.failure_reason or "").lower()


def _is_style_mismatch(step: StepResult) -> bool:
    return step.action == ACTION_ASSERT_STYLE and "style mismatch" in _reason(step)


def _is_visual_regression(step: StepResult) -> bool:
    return step.action == ACTION_VISUAL_SNAPSHOT and _reason(step).startswith("visual diff")


def _is_dead_control(step: StepResult) -> bool:
    return step.dead_cta_detected


def _is_missing_element(step: StepResult) -> bool:
    reason = _reason(step)
    return "not visible" in reason or "not found" in reason


def _is_console_failure(step: StepResult) -> bool:
    if step.action == ACTION_CHECK_CONSOLE and "console error" in _reason(step):
        return True
    return any(
        pattern.search(line)
        for line in step.evidence.console_errors
        for pattern in _CONSOLE_SIGNATURES
    )


# Ordered: first match wins.
CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule("style-mismatch", "css-specificity-fight", "p2", "transpiler/scaffold", _is_style_mismatch),
    ClassificationRule("visual-regression", "layout-alignment-regression", "p2", "transpiler/layout", _is_visual_regression),
    ClassificationRule("dead-control", "dead-cta", "p1", "transpiler/react", _is_dead_control),
    ClassificationRule("element-missing", "element-not-found", "p1", "transpiler/routing", _is_missing_element),
    ClassificationRule("console-error", "console-errors", "p2", "transpiler/runtime", _is_console_failure),
)

UNCLASSIFIED_RESULT = ClassificationResult(
    classification=UNCLASSIFIED,
    severity="p3",
    suspected_subsystem="unknown",
    rule="default",
)


def classify_step(
    step: StepResult,
    rules: Tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
) -> ClassificationResult:
    """
    Classify one failed step.

    Parameters
    ----------
    step : StepResult
        A step whose status is fail or error.
    rules : tuple
        Ordered registry; defaults to CLASSIFICATION_RULES.

    Returns
    -------
    ClassificationResult
        First matching rule, or UNCLASSIFIED_RESULT.
    """
    for rule in rules:
        if rule.matches(step):
            return ClassificationResult(
                classification=rule.classification,
                severity=rule.severity,
                suspected_subsystem=rule.suspected_subsystem,
                rule=rule.name,
            )
    return UNCLASSIFIED_RESULT


def classification_for(step: StepResult) -> Optional[str]:
    """Classification tag, or None when the step is unclassified."""
    result = classify_step(step)
    return None if result.classification == UNCLASSIFIED else result.classification
