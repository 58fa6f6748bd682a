"""
Result Document Schemas
=======================
JSON Schemas (draft-07) for every document the subsystem writes.

    PROBE_RESULT_SCHEMA   artifacts/runtime-qa/<QR-id>/result.json
    HEAL_LOOP_SCHEMA      artifacts/self-heal/loops/<HL-id>.json
    INCIDENT_SCHEMA       artifacts/self-heal/incidents/<SH-id>.json
"""
_NULLABLE_STRING = {"type": ["string", "null"]}

_RUN_ID = {"type": "string", "pattern": r"^QR-\d{8}-\d{6}-[0-9a-z]{6}$"}
_LOOP_ID = {"type": "string", "pattern": r"^HL-\d{8}-\d{6}-[0-9a-z]{6}$"}
_INCIDENT_ID = {"type": "string", "pattern": r"^SH-\d{8}-\d{6}-[0-9a-z]{6}$"}

_EVIDENCE = {
    "type": "object",
    "required": ["selector", "url_before", "url_after", "console_errors", "network_requests", "dom_changed"],
    "properties": {
        "selector": _NULLABLE_STRING,
        "text_content": _NULLABLE_STRING,
        "url_before": _NULLABLE_STRING,
        "url_after": _NULLABLE_STRING,
        "screenshot_path": _NULLABLE_STRING,
        "console_errors": {"type": "array", "items": {"type": "string"}},
        "network_requests": {"type": "array", "items": {"type": "string"}},
        "dom_snippet": _NULLABLE_STRING,
        "dom_changed": {"type": "boolean"},
        "computed_styles": {"type": ["object", "null"], "additionalProperties": {"type": "string"}},
        "visual_screenshot_path": _NULLABLE_STRING,
        "visual_diff_score": {"type": ["number", "null"], "minimum": 0, "maximum": 1},
    },
}

_STEP_RESULT = {
    "type": "object",
    "required": ["step_id", "label", "action", "status", "duration_ms", "evidence", "failure_reason", "dead_cta_detected"],
    "properties": {
        "step_id": {"type": "string", "minLength": 1},
        "label": {"type": "string"},
        "action": {"type": "string"},
        "status": {"enum": ["pass", "fail", "skip", "error"]},
        "duration_ms": {"type": "integer", "minimum": 0},
        "evidence": _EVIDENCE,
        "failure_reason": _NULLABLE_STRING,
        "dead_cta_detected": {"type": "boolean"},
    },
}

PROBE_RESULT_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "ProbeResult",
    "type": "object",
    "required": [
        "schema_version", "probe_run_id", "flow_id", "timestamp",
        "run_metadata", "preflight", "steps", "summary", "verdict",
    ],
    "properties": {
        "schema_version": {"const": "1.0"},
        "probe_run_id": _RUN_ID,
        "flow_id": {"type": "string", "minLength": 1},
        "timestamp": {"type": "string"},
        "run_metadata": {
            "type": "object",
            "required": ["headless", "flow_path"],
            "properties": {
                "headless": {"type": "boolean"},
                "flow_path": {"type": "string"},
                "dry_run": {"type": "boolean"},
                "timeout_ms": {"type": ["integer", "null"]},
                "baseline_mode": {"enum": ["compare", "record-missing"]},
            },
        },
        "preflight": {
            "type": "object",
            "required": ["health_check_url", "status", "latency_ms", "error"],
            "properties": {
                "health_check_url": {"type": "string"},
                "status": {"enum": ["pass", "fail", "skip"]},
                "latency_ms": {"type": "integer", "minimum": 0},
                "error": _NULLABLE_STRING,
            },
        },
        "steps": {"type": "array", "items": _STEP_RESULT},
        "summary": {
            "type": "object",
            "required": ["total", "passed", "failed", "skipped", "dead_ctas", "console_errors"],
            "properties": {
                name: {"type": "integer", "minimum": 0}
                for name in ("total", "passed", "failed", "skipped", "errors", "dead_ctas", "console_errors")
            },
        },
        "verdict": {"enum": ["pass", "fail"]},
        "incident_paths": {"type": "array", "items": {"type": "string"}},
    },
}

INCIDENT_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Incident",
    "type": "object",
    "required": ["incident_id", "timestamp", "flow_id", "step_id", "classification", "severity", "summary", "tags", "evidence"],
    "properties": {
        "incident_id": _INCIDENT_ID,
        "timestamp": {"type": "string"},
        "flow_id": {"type": "string"},
        "step_id": {"type": "string"},
        "classification": {"type": "string", "minLength": 1},
        "severity": {"enum": ["p0", "p1", "p2", "p3"]},
        "summary": {"type": "string", "minLength": 1},
        "tags": {"type": "array", "items": {"type": "string"}},
        "evidence": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["kind", "content", "label"],
                "properties": {
                    "kind": {"enum": [
                        "console_line", "dom_snapshot_path", "screenshot_path", "raw_output",
                        "request_response", "computed_style", "visual_diff",
                    ]},
                    "content": {"type": "string"},
                    "label": {"type": "string"},
                },
            },
        },
    },
}

_PATCH_REF = {
    "type": "object",
    "required": ["patch_id", "rule_id", "lane", "target_file", "diff_summary", "verdict"],
    "properties": {
        "patch_id": {"type": "string"},
        "rule_id": {"type": "string"},
        "lane": {"enum": ["parser", "transpiler", "ui"]},
        "target_file": {"type": "string", "not": {"pattern": r"^(/|[A-Za-z]:/|output/|dist/|artifacts/)"}},
        "diff_summary": {"type": "string"},
        "verdict": {"enum": ["pending", "pass", "fail", "skipped-conflict"]},
    },
}

_LANE = {
    "type": "object",
    "required": ["lane", "ran", "details"],
    "properties": {
        "lane": {"enum": ["runtime", "parser", "transpiler", "ui"]},
        "ran": {"type": "boolean"},
        "details": {"type": "string"},
        "fixes_applied": {"type": "integer", "minimum": 0},
        "termination_reason": {"enum": [None, "success", "noop", "no_improvement", "cycle_detected", "max_attempts"]},
    },
}

HEAL_LOOP_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "HealLoopResult",
    "type": "object",
    "required": [
        "schema_version", "loop_id", "mode", "timestamp", "flow_id",
        "bridged_incidents", "lanes", "patches", "verifications",
        "promoted_files", "summary", "verdict",
    ],
    "properties": {
        "schema_version": {"const": "1.0"},
        "loop_id": _LOOP_ID,
        "mode": {"enum": ["shadow", "propose", "patch-verify", "transpiler-patch"]},
        "timestamp": {"type": "string"},
        "flow_id": {"type": "string"},
        "probe_run_id": {"type": ["string", "null"]},
        "classifications": {"type": "array", "items": {"type": "string"}},
        "bridged_incidents": {"type": "array", "items": {"type": "object"}},
        "lanes": {"type": "array", "items": _LANE},
        "patches": {"type": "array", "items": _PATCH_REF},
        "verifications": {"type": "array", "items": {"type": "object"}},
        "promotions": {"type": "array", "items": {"type": "object"}},
        "promoted_files": {"type": "array", "items": {"type": "string"}},
        "rerun": {"type": ["object", "null"]},
        "summary": {"type": "object"},
        "verdict": {"enum": ["pass", "fail", "partial"]},
        "duration_ms": {"type": "integer", "minimum": 0},
        "errors": {"type": "array", "items": {"type": "string"}},
    },
}
