"""
Trace Rules
===========
Static mapping from a failure classification to the generator
file/function responsible and a pure fix for it.

Responsibilities:
    - Define the TraceRule shape shared by the parser and transpiler registries.
    - Provide the detection context (generated output, description source,
      parsed tree) every detection function receives.
    - Look rules up by id or classification and run whole registries.

Rules:
    - Registries are module-level tuples built once at import; nothing
      mutates them at runtime.
    - Detection and fix functions are pure: no file I/O, no side effects.
    - Lookup by classification walks the registry in order and returns the
      first rule whose detection fires (first match wins).
"""
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from selfheal.models.patch import AffectedLine, TraceDetection


@dataclass(frozen=True)
class TraceContext:
    """Inputs a detection function may look at."""
    files: Mapping[str, str] = field(default_factory=dict)
    description_source: Optional[str] = None
    parsed: Optional[Dict[str, Any]] = None


DetectFn = Callable[[TraceContext], TraceDetection]
FixFn = Callable[[str, TraceDetection], str]


@dataclass(frozen=True)
class TraceRule:
    id: str
    name: str
    lane: str
    classification_ids: Tuple[str, ...]
    target_file: str
    target_function: str
    strategy: str
    description: str
    detect: DetectFn
    fix: FixFn

    def matches(self, classification: str) -> bool:
        return classification in self.classification_ids


# ---------------------------------------------------------------------------
# Helpers for detection functions
# ---------------------------------------------------------------------------
def find_lines(content: str, pattern: "re.Pattern[str]") -> List[Tuple[int, str]]:
    """1-based line numbers and stripped text of every line matching pattern."""
    hits = []
    for i, line in enumerate(content.split("\n"), start=1):
        if pattern.search(line):
            hits.append((i, line.strip()))
    return hits


def files_matching(files: Mapping[str, str], pattern: "re.Pattern[str]") -> List[Tuple[str, str]]:
    return [(path, content) for path, content in files.items() if pattern.search(path)]


def not_detected(severity: str, details: str) -> TraceDetection:
    return TraceDetection(detected=False, severity=severity, details=details)


def affected(file: str, line: int, snippet: str) -> AffectedLine:
    return AffectedLine(file=file, line=line, snippet=snippet)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------
def get_rule_by_id(rules: Sequence[TraceRule], rule_id: str) -> Optional[TraceRule]:
    for rule in rules:
        if rule.id == rule_id:
            return rule
    return None


def trace_classification(
    classification: str,
    context: TraceContext,
    rules: Sequence[TraceRule],
) -> Optional[Tuple[TraceRule, TraceDetection]]:
    """
    Find the rule responsible for a classification.

    Parameters
    ----------
    classification : str
        Classification tag from the incident classifier.
    context : TraceContext
        Generated output (and optionally description source / parsed tree).
    rules : Sequence[TraceRule]
        Registry to search, in priority order.

    Returns
    -------
    tuple | None
        (rule, detection) for the first rule listing the classification
        whose detection reports detected=True, else None.
    """
    for rule in rules:
        if not rule.matches(classification):
            continue
        detection = rule.detect(context)
        if detection.detected:
            return rule, detection
    return None


def run_all_traces(
    context: TraceContext,
    rules: Sequence[TraceRule],
) -> List[Tuple[TraceRule, TraceDetection]]:
    """Run every rule's detection; return the ones that fired, in registry order."""
    hits = []
    for rule in rules:
        detection = rule.detect(context)
        if detection.detected:
            hits.append((rule, detection))
    return hits
