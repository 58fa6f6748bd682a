"""
Classification & Incident Bridge Tests
======================================
"""
import json
import os

from selfheal.bridge.classification import UNCLASSIFIED_RESULT, classification_for, classify_step
from selfheal.bridge.incident_bridge import bridge_failed_steps, build_rich_evidence, classify_failed_steps
from selfheal.services.results_writer import ResultsWriter

from probe_doubles import make_probe_result, make_step_result


# ===================================================================
# Classification registry
# ===================================================================
def test_dead_cta_classified_p1():
    step = make_step_result(dead=True, failure_reason='Dead CTA: "Book now" — click produced no effect')
    result = classify_step(step)
    assert result.classification == "dead-cta"
    assert result.severity == "p1"
    assert result.rule == "dead-control"


def test_style_mismatch_wins_over_missing_element():
    step = make_step_result(
        action="assert_style",
        failure_reason='Style mismatches: display: expected "flex", got "block"',
    )
    assert classification_for(step) == "css-specificity-fight"


def test_visual_regression():
    step = make_step_result(action="visual_snapshot", failure_reason="Visual diff: 4.00% exceeds 1.00% threshold")
    assert classification_for(step) == "layout-alignment-regression"


def test_missing_element_and_console():
    missing = make_step_result(action="assert_visible", failure_reason="Element not visible: #hero")
    console = make_step_result(
        action="check_console",
        failure_reason="Console errors detected: 1",
        console_errors=["Uncaught TypeError: cannot read properties of undefined"],
    )
    assert classification_for(missing) == "element-not-found"
    assert classification_for(console) == "console-errors"


def test_unmatched_step_is_unclassified():
    step = make_step_result(action="type", status="error", failure_reason="Type action requires selector and value")
    assert classify_step(step) == UNCLASSIFIED_RESULT
    assert classification_for(step) is None


# ===================================================================
# Bridge
# ===================================================================
def test_bridge_skips_passing_and_dedupes_by_classification(tmp_path):
    steps = [
        make_step_result("s1", status="pass", action="navigate"),
        make_step_result("s2", dead=True, failure_reason='Dead CTA: "Book now" — click produced no effect',
                         selector="#book", url_before="http://localhost:3000/", url_after="http://localhost:3000/"),
        make_step_result("s3", label="Contact now", dead=True,
                         failure_reason='Dead CTA: "Contact now" — click produced no effect'),
        make_step_result("s4", status="skip", action="visual_snapshot", failure_reason="Baseline not found"),
        make_step_result("s5", action="assert_visible", label="Gallery grid",
                         failure_reason="Element not visible: .grid"),
    ]
    incidents = bridge_failed_steps(make_probe_result(steps), artifacts_dir=str(tmp_path))

    assert [i.step_id for i in incidents] == ["s2", "s5"]
    assert [i.classification for i in incidents] == ["dead-cta", "element-not-found"]
    assert incidents[0].incident_id.startswith("SH-")
    assert incidents[0].summary == 'Dead CTA: "Book now" — click produced no effect'
    assert "dead-cta" in incidents[0].tags
    assert incidents[0].page_name == "BookingPage"
    assert incidents[1].page_name == "GalleryPage"

    for incident in incidents:
        assert incident.incident_path is not None
        with open(incident.incident_path) as f:
            document = json.load(f)
        assert ResultsWriter.validate_incident(document) == []
        assert "incident_path" not in document


def test_dry_run_bridge_writes_nothing(tmp_path):
    steps = [make_step_result("s2", dead=True, failure_reason="Dead CTA")]
    incidents = bridge_failed_steps(make_probe_result(steps), dry_run=True, artifacts_dir=str(tmp_path))

    assert len(incidents) == 1
    assert incidents[0].incident_path is None
    assert not os.path.exists(tmp_path / "self-heal")


def test_step_severity_overrides_dead_cta_default(tmp_path):
    steps = [make_step_result("s2", dead=True, failure_reason="Dead CTA", severity="p0")]
    incidents = bridge_failed_steps(make_probe_result(steps), dry_run=True)
    assert incidents[0].severity == "p0"


def test_rich_evidence_kinds():
    step = make_step_result(
        action="assert_style",
        failure_reason="Style mismatches: x",
        console_errors=["boom"],
        url_before="http://a/",
        url_after="http://a/",
        network_requests=["GET /api"],
        computed_styles={"display": "block"},
        visual_screenshot_path="/tmp/snap.png",
        visual_diff_score=0.2,
    )
    kinds = [item.kind for item in build_rich_evidence(step)]
    assert kinds == ["console_line", "raw_output", "request_response", "computed_style", "visual_diff"]


def test_classify_failed_steps_excludes_unclassified():
    steps = [
        make_step_result("s1", dead=True, failure_reason="Dead CTA"),
        make_step_result("s2", dead=True, failure_reason="Dead CTA"),
        make_step_result("s3", action="type", status="error", failure_reason="Type action requires selector and value"),
        make_step_result("s4", action="assert_visible", failure_reason="Element not visible: #x"),
    ]
    assert classify_failed_steps(make_probe_result(steps)) == ["dead-cta", "element-not-found"]
