"""
Results Writer Tests
====================
Schema validation, artifact layout and lookup by run id.
"""
import json

import pytest

from selfheal.core.errors import SchemaValidationError
from selfheal.services.results_writer import ResultsWriter

from probe_doubles import make_probe_result, make_step_result

RUN_ID = "QR-20260101-120000-abc123"


def test_write_probe_result_layout(tmp_path):
    result = make_probe_result([make_step_result(failure_reason="Element not found: #cta")])

    path = ResultsWriter.write_probe_result(result, str(tmp_path))

    assert path == str(tmp_path / "runtime-qa" / RUN_ID / "result.json")
    with open(path) as f:
        doc = json.load(f)
    assert doc["probe_run_id"] == RUN_ID
    assert doc["verdict"] == "fail"
    assert ResultsWriter.validate_probe_result(doc) == []


def test_invalid_probe_result_is_not_written(tmp_path):
    result = make_probe_result([], run_id="not-an-id")
    with pytest.raises(SchemaValidationError):
        ResultsWriter.write_probe_result(result, str(tmp_path))
    assert not (tmp_path / "runtime-qa").exists()


def test_validate_reports_field_paths():
    doc = make_probe_result([make_step_result()]).model_dump(mode="json")
    doc["steps"][0]["status"] = "maybe"
    del doc["verdict"]

    errors = ResultsWriter.validate_probe_result(doc)

    assert any(e.startswith("<root>: 'verdict' is a required property") for e in errors)
    assert any(e.startswith("steps/0/status") for e in errors)


def test_result_path_by_prefix(tmp_path):
    base = str(tmp_path)
    assert ResultsWriter.result_path(RUN_ID, base).endswith("runtime-qa/QR-20260101-120000-abc123/result.json")
    assert ResultsWriter.result_path("HL-20260101-120000-abc123", base).endswith("self-heal/loops/HL-20260101-120000-abc123.json")
    assert ResultsWriter.result_path("SH-20260101-120000-abc123", base).endswith("self-heal/incidents/SH-20260101-120000-abc123.json")
    assert ResultsWriter.result_path("../../etc/passwd", base) is None


def test_load_result_round_trip(tmp_path):
    ResultsWriter.write_probe_result(make_probe_result([]), str(tmp_path))

    doc = ResultsWriter.load_result(RUN_ID, str(tmp_path))

    assert doc["verdict"] == "pass"
    assert ResultsWriter.load_result("QR-20260101-120000-zzzzzz", str(tmp_path)) is None
    assert ResultsWriter.load_result("bogus", str(tmp_path)) is None
