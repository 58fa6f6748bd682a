"""
Patch Model
===========
Pydantic models for generator patches and their verification.

A Patch is produced by applying a trace rule's (or UI rule's) pure fix to
the current content of its target generator file. It carries both
contents, a diff summary and a nullable Verification. Only a Patch whose
Verification passes all three gates may be promoted.

Verification gates:
    invariants_passed       — structural invariants over the post-patch output
    regeneration_succeeded  — the generator actually produced output
    style_checks_passed     — caller-supplied checker or style-tagged invariants
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from selfheal.core.constants import VERDICT_PENDING


class AffectedLine(BaseModel):
    file: str
    line: int
    snippet: str


class TraceDetection(BaseModel):
    """Outcome of one trace rule's detection function."""
    detected: bool
    severity: str
    details: str
    affected_files: List[str] = Field(default_factory=list)
    affected_lines: List[AffectedLine] = Field(default_factory=list)


class InvariantResult(BaseModel):
    id: str
    name: str
    passed: bool
    severity: str
    details: str
    tags: List[str] = Field(default_factory=list)
    file_path: Optional[str] = None
    line_hint: Optional[int] = None


class InvariantSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    results: List[InvariantResult] = Field(default_factory=list)


class Verification(BaseModel):
    invariants_passed: bool
    regeneration_succeeded: bool
    style_checks_passed: bool
    output_hash_before: str
    output_hash_after: str
    invariant_results: List[InvariantResult] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def all_passed(self) -> bool:
        return (
            self.invariants_passed
            and self.regeneration_succeeded
            and self.style_checks_passed
        )


class Patch(BaseModel):
    patch_id: str
    rule_id: str
    lane: str
    classification: Optional[str] = None
    target_file: str
    target_function: str = ""
    strategy: str = ""
    description: str = ""
    original_content: str
    patched_content: str
    diff_summary: str
    lines_added: int = 0
    lines_removed: int = 0
    lines_changed: int = 0
    unified_diff: str = ""
    patch_hash: str = ""
    verification: Optional[Verification] = None
    verdict: str = VERDICT_PENDING
    attempts: int = 0
    model_suggestions: Optional[str] = None

    def summary_dict(self) -> dict:
        """Patch as written into result documents (contents omitted)."""
        return self.model_dump(exclude={"original_content", "patched_content"})
