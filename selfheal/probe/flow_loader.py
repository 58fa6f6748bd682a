"""
Flow Loader
===========
Reads an interaction flow document and validates it before anything runs.

Supported formats:
    - JSON (.json)
    - YAML (.yml, .yaml)

Fail fast:
    Validation runs before any network or browser activity. A malformed
    flow raises FlowValidationError with a readable message; there is no
    partial execution.
"""
import json
import logging
import os
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from selfheal.core.constants import ACTION_KINDS
from selfheal.core.errors import FlowValidationError
from selfheal.models.flow import InteractionFlow

logger = logging.getLogger(__name__)

_REQUIRED_FLOW_FIELDS = (
    "flow_id",
    "base_url_client",
    "base_url_server",
    "preflight_health_path",
)


def validate_flow_document(doc: Any) -> InteractionFlow:
    """
    Validate a parsed flow document and build the immutable flow.

    Parameters
    ----------
    doc : Any
        Parsed JSON/YAML content.

    Returns
    -------
    InteractionFlow

    Raises
    ------
    FlowValidationError
        On the first structural problem found.
    """
    if not isinstance(doc, dict):
        raise FlowValidationError("Flow spec must be a mapping")

    for name in _REQUIRED_FLOW_FIELDS:
        if not doc.get(name):
            raise FlowValidationError(f"Flow spec missing {name}")

    steps = doc.get("steps")
    if not isinstance(steps, list) or len(steps) == 0:
        raise FlowValidationError("Flow spec must have at least one step")

    for step in steps:
        if not isinstance(step, dict) or not step.get("step_id"):
            raise FlowValidationError("Step missing step_id")
        if not step.get("label"):
            raise FlowValidationError(f"Step {step['step_id']} missing label")
        if not step.get("action"):
            raise FlowValidationError(f"Step {step['step_id']} missing action")
        if step["action"] not in ACTION_KINDS:
            raise FlowValidationError(f"Step {step['step_id']} has unknown action: {step['action']}")

    try:
        return InteractionFlow.model_validate(doc)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        raise FlowValidationError(f"Flow spec invalid at {location}: {first.get('msg')}") from e


def parse_flow_text(text: str, fmt: str = "json") -> Dict[str, Any]:
    try:
        if fmt == "yaml":
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise FlowValidationError(f"Flow spec could not be parsed: {e}") from e


def load_flow(path: str) -> InteractionFlow:
    """Load and validate a flow document from disk."""
    if not os.path.isfile(path):
        raise FlowValidationError(f"Flow spec not found: {path}")

    fmt = "yaml" if path.lower().endswith((".yml", ".yaml")) else "json"
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise FlowValidationError(f"Flow spec could not be read: {e}") from e
    doc = parse_flow_text(text, fmt)

    flow = validate_flow_document(doc)
    logger.info("[PROBE] Loaded flow %s | steps=%d | path=%s", flow.flow_id, len(flow.steps), path)
    return flow
