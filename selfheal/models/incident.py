"""
Incident Model
==============
Pydantic models for the audit records the bridge derives from failed steps.

An Incident is derived 1:1 from one failed StepResult and is never
modified once written. The classification and suspected subsystem come
from the fixed pattern registry in bridge/classification.py.

Fields:
    incident_id         — SH-<date>-<time>-<random>
    classification      — taxonomy tag (e.g. "dead-cta"), "unclassified" when no rule matched
    severity            — p0..p3, assigned per classification rule
    suspected_subsystem — generator area the rule points at
    summary / message   — human readable description of the failure
    tags                — ["runtime-qa", flow_id, label, symptom kind, page name]
    step_id             — pointer to the originating step
    evidence            — rich evidence items copied from the step
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EvidenceKind = Literal[
    "console_line",
    "dom_snapshot_path",
    "screenshot_path",
    "raw_output",
    "request_response",
    "computed_style",
    "visual_diff",
]


class EvidenceItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EvidenceKind
    content: str
    label: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None


class Incident(BaseModel):
    model_config = ConfigDict(frozen=True)

    incident_id: str
    timestamp: str
    source: str = "runtime-qa"
    stage: str = "runtime-ui"
    flow_id: str
    step_id: str
    label: str
    classification: str
    severity: str
    suspected_subsystem: str = "unknown"
    summary: str
    message: str = ""
    page_name: str = ""
    tags: List[str] = Field(default_factory=list)
    evidence: List[EvidenceItem] = Field(default_factory=list)
    incident_path: Optional[str] = None
