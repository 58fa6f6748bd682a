"""
Incident Bridge
===============
Turns failed probe steps into classified Incident records.

Responsibilities:
    - Skip passing and skipped steps; bridge "fail" and "error" steps.
    - Classify each step through bridge/classification.py.
    - Keep one incident per classification per probe run so a cascading
      failure does not produce redundant patches in one cycle.
    - Attach rich evidence copied from the step's evidence bundle.
    - Write each incident under <artifacts>/self-heal/incidents unless
      running dry.
"""
import json
import logging
from typing import List, Optional

from selfheal.bridge.classification import classify_step
from selfheal.core.config import ARTIFACTS_DIR
from selfheal.core.constants import ACTION_CHECK_CONSOLE, ACTION_CLICK, ACTION_NAVIGATE, UNCLASSIFIED
from selfheal.core.errors import SchemaValidationError
from selfheal.models.flow import InteractionFlow
from selfheal.models.incident import EvidenceItem, Incident
from selfheal.models.probe_result import ProbeResult, StepResult
from selfheal.services.results_writer import ResultsWriter
from selfheal.utils.ids import generate_incident_id, utc_timestamp

logger = logging.getLogger(__name__)

_PAGE_KEYWORDS = (
    ("home", "HomePage"),
    ("gallery", "GalleryPage"),
    ("contact", "ContactPage"),
    ("book", "BookingPage"),
    ("portfolio", "PortfolioPage"),
)


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------
def build_rich_evidence(step: StepResult) -> List[EvidenceItem]:
    ev = step.evidence
    items: List[EvidenceItem] = []

    for line in ev.console_errors:
        items.append(EvidenceItem(kind="console_line", content=line, label="Console error during QA step"))

    if ev.dom_snippet:
        items.append(EvidenceItem(
            kind="dom_snapshot_path",
            content=ev.dom_snippet,
            label=f"DOM snippet for {ev.selector or step.label}",
        ))

    if ev.screenshot_path:
        items.append(EvidenceItem(
            kind="screenshot_path",
            content=ev.screenshot_path,
            file_path=ev.screenshot_path,
            label=f"Screenshot after {step.label}",
        ))

    if ev.url_before or ev.url_after:
        items.append(EvidenceItem(
            kind="raw_output",
            content=(
                f"url_before: {ev.url_before or 'N/A'}\n"
                f"url_after: {ev.url_after or 'N/A'}\n"
                f"dom_changed: {str(ev.dom_changed).lower()}"
            ),
            label="URL transition and DOM change",
        ))

    if ev.network_requests:
        items.append(EvidenceItem(
            kind="request_response",
            content="\n".join(ev.network_requests),
            label="Network requests during step",
        ))

    if ev.computed_styles:
        items.append(EvidenceItem(
            kind="computed_style",
            content=json.dumps(ev.computed_styles, indent=2),
            label="Computed styles for style assertion",
        ))

    if ev.visual_screenshot_path:
        score = "N/A" if ev.visual_diff_score is None else ev.visual_diff_score
        items.append(EvidenceItem(
            kind="visual_diff",
            content=f"screenshot: {ev.visual_screenshot_path}\ndiff_score: {score}",
            file_path=ev.visual_screenshot_path,
            label="Visual snapshot comparison",
        ))

    return items


def extract_page_name(step: StepResult, flow_id: str) -> str:
    label = step.label.lower()
    for keyword, page in _PAGE_KEYWORDS:
        if keyword in label:
            return page
    return flow_id


# ---------------------------------------------------------------------------
# Step -> Incident
# ---------------------------------------------------------------------------
def step_to_incident(step: StepResult, flow_id: str) -> Incident:
    """Build an incident for one failed step using the matching template."""
    page_name = extract_page_name(step, flow_id)
    classified = classify_step(step)
    tags = ["runtime-qa", flow_id, step.label]
    severity = classified.severity
    reason = step.failure_reason or "unknown"
    ev = step.evidence

    if step.dead_cta_detected:
        summary = f'Dead CTA: "{step.label}" — click produced no effect'
        message = (
            f'Button "{ev.text_content or ev.selector or step.label}" has no onClick handler '
            f"or navigation effect. URL unchanged ({ev.url_before}), DOM unchanged."
        )
        severity = step.severity or severity
        tags += ["dead-cta", page_name]
    elif step.action == ACTION_CHECK_CONSOLE and ev.console_errors:
        summary = f"Console errors detected during {flow_id} flow"
        message = "; ".join(ev.console_errors)
        tags += ["console-error", page_name]
    elif step.action == ACTION_NAVIGATE and step.status == "fail":
        summary = f'Navigation failure: "{step.label}" did not reach expected state'
        message = step.failure_reason or "Navigation did not produce expected visible element"
        tags += ["navigation-failure", page_name]
    elif step.action == ACTION_CLICK and step.status == "fail":
        summary = f'Click failure: "{step.label}" — {reason}'
        message = reason
        tags += ["click-failure", page_name]
    else:
        summary = f'QA step failed: "{step.label}" — {reason}'
        message = step.failure_reason or f'Step "{step.label}" failed'
        tags.append(page_name)

    return Incident(
        incident_id=generate_incident_id(),
        timestamp=utc_timestamp(),
        flow_id=flow_id,
        step_id=step.step_id,
        label=step.label,
        classification=classified.classification,
        severity=severity,
        suspected_subsystem=classified.suspected_subsystem,
        summary=summary,
        message=message,
        page_name=page_name,
        tags=tags,
        evidence=build_rich_evidence(step),
    )


def bridge_failed_steps(
    probe_result: ProbeResult,
    flow: Optional[InteractionFlow] = None,
    dry_run: bool = False,
    artifacts_dir: str = ARTIFACTS_DIR,
) -> List[Incident]:
    """
    Bridge every failed step of a probe run into incidents.

    Parameters
    ----------
    probe_result : ProbeResult
        Probe run to bridge.
    flow : InteractionFlow, optional
        Source flow; only its id is used, falling back to probe_result.flow_id.
    dry_run : bool
        Build incidents without writing them.
    artifacts_dir : str
        Root of the artifacts tree.

    Returns
    -------
    list[Incident]
        At most one incident per classification, in step order.
    """
    flow_id = flow.flow_id if flow is not None else probe_result.flow_id
    seen = set()
    incidents: List[Incident] = []

    for step in probe_result.failed_steps():
        incident = step_to_incident(step, flow_id)
        if incident.classification in seen:
            logger.info(
                "[BRIDGE] Dropped duplicate incident | step=%s | classification=%s",
                step.step_id, incident.classification,
            )
            continue
        seen.add(incident.classification)

        if not dry_run:
            try:
                path = ResultsWriter.write_incident(incident, artifacts_dir)
                incident = incident.model_copy(update={"incident_path": path})
            except (SchemaValidationError, OSError) as e:
                logger.error("[BRIDGE] Could not write incident %s: %s", incident.incident_id, e)

        logger.info(
            "[BRIDGE] Incident %s | step=%s | classification=%s | severity=%s",
            incident.incident_id, step.step_id, incident.classification, incident.severity,
        )
        incidents.append(incident)

    return incidents


def classify_failed_steps(probe_result: ProbeResult) -> List[str]:
    """Deduplicated classification set of a probe run, in first-seen order (unclassified excluded)."""
    seen: List[str] = []
    for step in probe_result.failed_steps():
        classification = classify_step(step).classification
        if classification != UNCLASSIFIED and classification not in seen:
            seen.append(classification)
    return seen
