"""
Flow Loader Tests
=================
Flow documents are validated before anything runs.
"""
import json

import pytest

from selfheal.core.errors import FlowValidationError
from selfheal.probe.flow_loader import load_flow, parse_flow_text, validate_flow_document


def _doc(**overrides):
    doc = {
        "flow_id": "home",
        "base_url_client": "http://localhost:3000",
        "base_url_server": "http://localhost:3001",
        "preflight_health_path": "/api/health",
        "steps": [
            {"step_id": "s1", "label": "Open home", "action": "navigate", "target": "/"},
            {
                "step_id": "s2", "label": "Book now", "action": "click", "selector": "#book",
                "dead_cta_check": True, "expected": {"url_change": True, "dom_mutation": True},
            },
        ],
    }
    doc.update(overrides)
    return doc


# ===================================================================
# Valid documents
# ===================================================================
def test_valid_document_builds_flow():
    flow = validate_flow_document(_doc())
    assert flow.flow_id == "home"
    assert len(flow.steps) == 2
    assert flow.steps[1].expected.declared() == ["url_change", "dom_mutation"]
    assert flow.health_check_url == "http://localhost:3001/api/health"


def test_load_json_and_yaml(tmp_path):
    json_path = tmp_path / "flow.json"
    json_path.write_text(json.dumps(_doc()))
    yaml_path = tmp_path / "flow.yaml"
    yaml_path.write_text(
        "flow_id: home\n"
        "base_url_client: http://localhost:3000\n"
        "base_url_server: http://localhost:3001\n"
        "preflight_health_path: /api/health\n"
        "steps:\n"
        "  - step_id: s1\n"
        "    label: Open home\n"
        "    action: navigate\n"
        "    target: /\n"
    )

    assert load_flow(str(json_path)).flow_id == "home"
    flow = load_flow(str(yaml_path))
    assert flow.steps[0].action == "navigate"


# ===================================================================
# Fail fast
# ===================================================================
@pytest.mark.parametrize("field", ["flow_id", "base_url_client", "base_url_server", "preflight_health_path"])
def test_missing_top_level_field(field):
    doc = _doc()
    del doc[field]
    with pytest.raises(FlowValidationError, match=f"Flow spec missing {field}"):
        validate_flow_document(doc)


def test_empty_steps_rejected():
    with pytest.raises(FlowValidationError, match="at least one step"):
        validate_flow_document(_doc(steps=[]))


def test_step_field_messages():
    with pytest.raises(FlowValidationError, match="Step missing step_id"):
        validate_flow_document(_doc(steps=[{"label": "x", "action": "click"}]))
    with pytest.raises(FlowValidationError, match="Step s9 missing label"):
        validate_flow_document(_doc(steps=[{"step_id": "s9", "action": "click"}]))
    with pytest.raises(FlowValidationError, match="Step s9 missing action"):
        validate_flow_document(_doc(steps=[{"step_id": "s9", "label": "x"}]))


def test_unknown_action_rejected():
    with pytest.raises(FlowValidationError, match="unknown action"):
        validate_flow_document(_doc(steps=[{"step_id": "s1", "label": "x", "action": "hover"}]))


def test_missing_file_and_bad_text(tmp_path):
    with pytest.raises(FlowValidationError, match="not found"):
        load_flow(str(tmp_path / "nope.json"))
    with pytest.raises(FlowValidationError, match="could not be parsed"):
        parse_flow_text("{not json", "json")


def test_undecodable_file_is_a_validation_error(tmp_path):
    path = tmp_path / "latin1.json"
    path.write_bytes(b'{"flow_id": "caf\xe9"}')
    with pytest.raises(FlowValidationError, match="could not be read"):
        load_flow(str(path))
