"""
Heal Loop Result Model
======================
Pydantic models for one orchestrator run.

Fields (HealLoopResult):
    loop_id             — HL-<date>-<time>-<random>
    mode                — shadow / propose / patch-verify / transpiler-patch
    probe_result_path   — where the initial probe document was written (None when not written)
    classifications     — deduplicated classification set from failed steps
    bridged_incidents   — incidents created for this run
    lanes               — one LaneOutcome per lane, in execution order
    patches             — every proposed Patch with its final verdict (contents omitted)
    verifications       — one entry per verified patch
    promoted_files      — generator files actually written by the Promotion step
    rerun               — post-promotion probe summary, when a rerun happened
    verdict             — pass / fail / partial
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class LaneOutcome(BaseModel):
    lane: str
    ran: bool
    details: str
    fixes_applied: int = 0
    termination_reason: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class VerificationRef(BaseModel):
    patch_id: str
    target_file: str
    verdict: str
    attempts: int
    invariants_passed: bool
    regeneration_succeeded: bool
    style_checks_passed: bool
    output_hash_before: str
    output_hash_after: str


class PromotionRef(BaseModel):
    patch_id: str
    target_file: str
    lane: str
    status: Literal["promoted", "skipped-conflict", "rejected", "failed"]


class RerunSummary(BaseModel):
    probe_run_id: str
    verdict: str
    failing_before: int
    failing_after: int
    delta: int
    folded: bool


class HealLoopSummary(BaseModel):
    dead_ctas_found: int = 0
    incidents_created: int = 0
    patches_proposed: int = 0
    patches_verified: int = 0
    patches_passed: int = 0
    files_promoted: int = 0
    failing_steps: int = 0


class HealLoopResult(BaseModel):
    schema_version: str = "1.0"
    loop_id: str
    mode: str
    timestamp: str
    flow_id: str
    probe_run_id: Optional[str] = None
    probe_result_path: Optional[str] = None
    classifications: List[str] = Field(default_factory=list)
    bridged_incidents: List[Dict[str, Any]] = Field(default_factory=list)
    lanes: List[LaneOutcome] = Field(default_factory=list)
    patches: List[Dict[str, Any]] = Field(default_factory=list)
    verifications: List[VerificationRef] = Field(default_factory=list)
    promotions: List[PromotionRef] = Field(default_factory=list)
    promoted_files: List[str] = Field(default_factory=list)
    rerun: Optional[RerunSummary] = None
    summary: HealLoopSummary = Field(default_factory=HealLoopSummary)
    verdict: Literal["pass", "fail", "partial"] = "fail"
    duration_ms: int = 0
    errors: List[str] = Field(default_factory=list)
