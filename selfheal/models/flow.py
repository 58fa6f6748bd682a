"""
Interaction Flow Model
======================
Pydantic models for the declarative interaction script the probe drives.

Fields (InteractionFlow):
    flow_id                 — stable identifier, also used as a fallback page name
    base_url_client         — client-facing base URL; navigate targets are relative to it
    base_url_server         — server-facing base URL; the health check targets it
    preflight_health_path   — path appended to base_url_server for the health check
    steps                   — ordered, non-empty list of Step
    setup                   — free-form preparation notes, logged at run start

Fields (Step):
    action                  — one of ACTION_KINDS
    target / selector       — URL path (navigate) or CSS selector (everything else)
    expected                — ExpectedSignals the dead-control heuristic checks;
                              no_errors fails an otherwise passing step that
                              logged new console errors
    dead_cta_check          — enables the dead-control heuristic on click steps

Flows are immutable once loaded. Structural validation with readable
messages lives in probe/flow_loader.py; these models only carry the data.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExpectedSignals(BaseModel):
    model_config = ConfigDict(frozen=True)

    url_change: bool = False
    dom_mutation: bool = False
    network_request: bool = False
    assert_visible: Optional[str] = None
    no_errors: bool = False

    def declared(self) -> List[str]:
        """Names of the effect signals this step declared."""
        names = []
        if self.url_change:
            names.append("url_change")
        if self.dom_mutation:
            names.append("dom_mutation")
        if self.network_request:
            names.append("network_request")
        return names


class Viewport(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int


class AssertStyleFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    selector: str
    expected_styles: Dict[str, str]
    viewport: Optional[Viewport] = None


class VisualSnapshotFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    baseline_name: str
    selector: Optional[str] = None
    threshold: Optional[float] = None


class Step(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    label: str
    action: str
    target: Optional[str] = None
    selector: Optional[str] = None
    value: Optional[str] = None
    expected: ExpectedSignals = Field(default_factory=ExpectedSignals)
    dead_cta_check: bool = False
    severity: Optional[str] = None
    assert_style: Optional[AssertStyleFields] = None
    visual_snapshot: Optional[VisualSnapshotFields] = None


class InteractionFlow(BaseModel):
    model_config = ConfigDict(frozen=True)

    flow_id: str
    base_url_client: str
    base_url_server: str
    preflight_health_path: str
    steps: List[Step]
    description: str = ""
    setup: List[str] = Field(default_factory=list)

    @property
    def health_check_url(self) -> str:
        return f"{self.base_url_server}{self.preflight_health_path}"
