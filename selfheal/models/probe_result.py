"""
Probe Result Model
==================
Pydantic models produced by one Probe Runner invocation.

StepResult is created once per executed step and never modified; the
Evidence bundle it carries is captured at the moment the step finishes.
ProbeResult aggregates the preflight outcome and every StepResult into
summary counts and a pass/fail verdict.

Verdict rule:
    fail  — preflight failed OR at least one step has status "fail" or "error"
    pass  — otherwise (skips and dry runs count as pass)
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

StepStatus = Literal["pass", "fail", "skip", "error"]
PreflightStatus = Literal["pass", "fail", "skip"]


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector: Optional[str] = None
    text_content: Optional[str] = None
    url_before: Optional[str] = None
    url_after: Optional[str] = None
    screenshot_path: Optional[str] = None
    console_errors: List[str] = Field(default_factory=list)
    network_requests: List[str] = Field(default_factory=list)
    dom_snippet: Optional[str] = None
    dom_changed: bool = False
    computed_styles: Optional[Dict[str, str]] = None
    visual_screenshot_path: Optional[str] = None
    visual_diff_score: Optional[float] = None


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    label: str
    action: str
    status: StepStatus
    duration_ms: int = 0
    evidence: Evidence = Field(default_factory=Evidence)
    failure_reason: Optional[str] = None
    dead_cta_detected: bool = False
    # Copied from the step so downstream classifiers need not re-read the flow
    selector: Optional[str] = None
    severity: Optional[str] = None
    style_selector: Optional[str] = None
    baseline_name: Optional[str] = None


class PreflightResult(BaseModel):
    health_check_url: str
    status: PreflightStatus
    latency_ms: int = 0
    error: Optional[str] = None


class RunMetadata(BaseModel):
    headless: bool = True
    flow_path: str = ""
    dry_run: bool = False
    timeout_ms: Optional[int] = None
    baseline_mode: str = "compare"


class ProbeSummary(BaseModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    dead_ctas: int = 0
    console_errors: int = 0


class ProbeResult(BaseModel):
    schema_version: str = "1.0"
    probe_run_id: str
    flow_id: str
    timestamp: str
    run_metadata: RunMetadata
    preflight: PreflightResult
    steps: List[StepResult] = Field(default_factory=list)
    summary: ProbeSummary = Field(default_factory=ProbeSummary)
    verdict: Literal["pass", "fail"] = "fail"
    incident_paths: List[str] = Field(default_factory=list)

    def failed_steps(self) -> List[StepResult]:
        return [s for s in self.steps if s.status in ("fail", "error")]

    def failing_count(self) -> int:
        return len(self.failed_steps())
