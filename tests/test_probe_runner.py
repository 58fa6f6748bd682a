"""
Probe Runner Tests
==================
Step handlers, dry run and result aggregation against the in-memory page.
"""
import asyncio

from PIL import Image

from selfheal.probe.runner import ProbeOptions, execute_flow, style_mismatches
from selfheal.services.results_writer import ResultsWriter

from probe_doubles import FakePage, make_flow, preflight_ok


def _run(steps, page, options=None):
    return asyncio.run(execute_flow(make_flow(steps), options or ProbeOptions(), page=page, preflight=preflight_ok))


def test_dry_run_skips_everything():
    steps = [
        {"step_id": "s1", "label": "Open", "action": "navigate", "target": "/"},
        {"step_id": "s2", "label": "Book", "action": "click", "selector": "#book"},
    ]
    page = FakePage()
    result = _run(steps, page, ProbeOptions(dry_run=True))

    assert result.preflight.status == "skip"
    assert [s.status for s in result.steps] == ["skip", "skip"]
    assert all(s.failure_reason == "dry-run" for s in result.steps)
    assert result.verdict == "pass"
    assert result.run_metadata.dry_run is True
    assert page.clicks == []


def test_navigate_type_and_visible_pass():
    steps = [
        {"step_id": "s1", "label": "Open contact", "action": "navigate", "target": "/contact",
         "expected": {"assert_visible": "form"}},
        {"step_id": "s2", "label": "Name", "action": "type", "selector": "#name", "value": "Ada"},
        {"step_id": "s3", "label": "Submit visible", "action": "assert_visible", "selector": "#submit"},
    ]
    page = FakePage(present={"form", "#name", "#submit"})
    result = _run(steps, page)

    assert result.verdict == "pass"
    assert result.summary.passed == 3
    assert page.url() == "http://localhost:3000/contact"
    assert page.filled == {"#name": "Ada"}
    assert result.probe_run_id.startswith("QR-")


def test_failure_reasons():
    steps = [
        {"step_id": "s1", "label": "Open", "action": "navigate", "target": "/", "expected": {"assert_visible": "main"}},
        {"step_id": "s2", "label": "Missing", "action": "assert_visible", "selector": "#gone"},
        {"step_id": "s3", "label": "No value", "action": "type", "selector": "#name"},
        {"step_id": "s4", "label": "No selector", "action": "click"},
        {"step_id": "s5", "label": "Broken click", "action": "click", "selector": "#nowhere"},
    ]
    result = _run(steps, FakePage(present={"#name"}))
    by_id = {s.step_id: s for s in result.steps}

    assert by_id["s1"].failure_reason == "Expected element not visible: main"
    assert by_id["s2"].failure_reason == "Element not visible: #gone"
    assert by_id["s3"].status == "error"
    assert by_id["s3"].failure_reason == "Type action requires selector and value"
    assert by_id["s4"].failure_reason == "Click action requires selector"
    assert by_id["s5"].status == "error"
    assert result.summary.failed == 2
    assert result.summary.errors == 3
    assert result.verdict == "fail"


def test_check_console_reports_accumulated_errors():
    steps = [
        {"step_id": "s1", "label": "Open", "action": "navigate", "target": "/"},
        {"step_id": "s2", "label": "Console clean", "action": "check_console"},
    ]
    page = FakePage(goto_console_errors=["TypeError: x is undefined", "Failed to load resource"])
    result = _run(steps, page)

    console_step = result.steps[1]
    assert console_step.status == "fail"
    assert console_step.failure_reason == "Console errors detected: 2"
    assert console_step.evidence.console_errors == ["TypeError: x is undefined", "Failed to load resource"]
    assert result.summary.console_errors >= 1


def test_no_errors_fails_step_that_logged_console_errors():
    steps = [
        {"step_id": "s1", "label": "Open", "action": "navigate", "target": "/", "expected": {"no_errors": True}},
        {"step_id": "s2", "label": "Save", "action": "click", "selector": "#save", "expected": {"no_errors": True}},
        {"step_id": "s3", "label": "Visible", "action": "assert_visible", "selector": "#save",
         "expected": {"no_errors": True}},
    ]
    page = FakePage(present={"#save"}, click_effects={"#save": {"console": "TypeError: save is not a function"}})
    result = _run(steps, page)

    assert [s.status for s in result.steps] == ["pass", "fail", "pass"]
    assert result.steps[1].failure_reason == "Console errors detected: 1"
    assert result.steps[1].evidence.console_errors == ["TypeError: save is not a function"]


def test_console_errors_ignored_without_no_errors():
    steps = [{"step_id": "s1", "label": "Open", "action": "navigate", "target": "/"}]
    result = _run(steps, FakePage(goto_console_errors=["Failed to load resource"]))
    assert result.steps[0].status == "pass"


def test_setup_notes_are_logged(caplog):
    flow = make_flow([{"step_id": "s1", "label": "Open", "action": "navigate", "target": "/"}])
    flow = flow.model_copy(update={"setup": ["seed two products"]})
    with caplog.at_level("INFO", logger="selfheal.probe.runner"):
        asyncio.run(execute_flow(flow, ProbeOptions(dry_run=True)))
    assert "Setup: seed two products" in caplog.text


def test_assert_style_mismatch():
    steps = [{
        "step_id": "s1", "label": "Nav aligned", "action": "assert_style",
        "assert_style": {
            "selector": "nav",
            "expected_styles": {"display": "flex", "padding-left": "16px"},
            "viewport": {"width": 1280, "height": 800},
        },
    }]
    page = FakePage(computed_styles={"nav": {"display": "flex", "padding-left": "24px"}})
    result = _run(steps, page)

    step = result.steps[0]
    assert step.status == "fail"
    assert step.failure_reason == 'Style mismatches: padding-left: expected "16px", got "24px"'
    assert step.evidence.computed_styles == {"display": "flex", "padding-left": "24px"}
    assert step.style_selector == "nav"
    assert page.viewports == [(1280, 800)]


def test_assert_style_element_missing():
    steps = [{
        "step_id": "s1", "label": "Sidebar", "action": "assert_style",
        "assert_style": {"selector": "aside", "expected_styles": {"width": "240px"}},
    }]
    result = _run(steps, FakePage())
    assert result.steps[0].failure_reason == "Element not found: aside"


def test_style_mismatches_helper():
    assert style_mismatches({"color": "red"}, {"color": "red"}) == []
    assert style_mismatches({"color": "red"}, {}) == ['color: expected "red", got ""']


def test_visual_snapshot_record_then_compare(tmp_path):
    step = {
        "step_id": "s1", "label": "Hero snapshot", "action": "visual_snapshot",
        "visual_snapshot": {"baseline_name": "hero"},
    }
    options = ProbeOptions(
        artifacts_dir=str(tmp_path / "artifacts"),
        baseline_dir=str(tmp_path / "baselines"),
        baseline_mode="record-missing",
    )

    missing = _run([step], FakePage(screenshot_image=Image.new("RGB", (20, 20), "white")),
                   ProbeOptions(artifacts_dir=options.artifacts_dir, baseline_dir=options.baseline_dir))
    assert missing.steps[0].status == "skip"
    assert missing.steps[0].failure_reason.startswith("Baseline not found:")

    recorded = _run([step], FakePage(screenshot_image=Image.new("RGB", (20, 20), "white")), options)
    assert recorded.steps[0].status == "pass"
    assert (tmp_path / "baselines" / "hero.png").is_file()

    same = _run([step], FakePage(screenshot_image=Image.new("RGB", (20, 20), "white")), options)
    assert same.steps[0].status == "pass"
    assert same.steps[0].evidence.visual_diff_score == 0.0

    changed = _run([step], FakePage(screenshot_image=Image.new("RGB", (20, 20), "red")), options)
    assert changed.steps[0].status == "fail"
    assert changed.steps[0].failure_reason == "Visual diff: 100.00% exceeds 1.00% threshold"


def test_screenshot_step_records_path(tmp_path):
    steps = [{"step_id": "s1", "label": "Shot", "action": "screenshot"}]
    page = FakePage(screenshot_image=Image.new("RGB", (4, 4), "blue"))
    result = _run(steps, page, ProbeOptions(artifacts_dir=str(tmp_path)))

    path = result.steps[0].evidence.screenshot_path
    assert path is not None and path.endswith(".png")
    assert "screenshots" in path


def test_result_document_is_schema_valid():
    steps = [
        {"step_id": "s1", "label": "Open", "action": "navigate", "target": "/"},
        {"step_id": "s2", "label": "Book now", "action": "click", "selector": "#book",
         "dead_cta_check": True, "expected": {"url_change": True}},
    ]
    result = _run(steps, FakePage(present={"#book"}))
    assert ResultsWriter.validate_probe_result(result.model_dump(mode="json")) == []
