"""
Results Writer
==============
Validates result documents against their JSON schemas and writes them
under the artifacts directory.

Layout:
    <artifacts>/runtime-qa/<QR-id>/result.json
    <artifacts>/self-heal/loops/<HL-id>.json
    <artifacts>/self-heal/incidents/<SH-id>.json
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from selfheal.core.config import ARTIFACTS_DIR
from selfheal.core.errors import SchemaValidationError
from selfheal.models.heal_result import HealLoopResult
from selfheal.models.incident import Incident
from selfheal.models.probe_result import ProbeResult
from selfheal.services.schemas import HEAL_LOOP_SCHEMA, INCIDENT_SCHEMA, PROBE_RESULT_SCHEMA
from selfheal.utils.ids import HEAL_LOOP_PREFIX, INCIDENT_PREFIX, PROBE_RUN_PREFIX, is_valid_run_id

logger = logging.getLogger(__name__)

_PROBE_VALIDATOR = Draft7Validator(PROBE_RESULT_SCHEMA)
_LOOP_VALIDATOR = Draft7Validator(HEAL_LOOP_SCHEMA)
_INCIDENT_VALIDATOR = Draft7Validator(INCIDENT_SCHEMA)


def _errors(validator: Draft7Validator, document: Dict[str, Any]) -> List[str]:
    errors = sorted(validator.iter_errors(document), key=lambda err: list(err.absolute_path))
    return [
        f"{'/'.join(str(part) for part in err.absolute_path) or '<root>'}: {err.message}"
        for err in errors
    ]


class ResultsWriter:
    """
    Service responsible for persisting probe, incident and heal loop
    documents. Every document is validated before it touches disk.
    """

    @staticmethod
    def validate_probe_result(document: Dict[str, Any]) -> List[str]:
        return _errors(_PROBE_VALIDATOR, document)

    @staticmethod
    def validate_heal_loop_result(document: Dict[str, Any]) -> List[str]:
        return _errors(_LOOP_VALIDATOR, document)

    @staticmethod
    def validate_incident(document: Dict[str, Any]) -> List[str]:
        return _errors(_INCIDENT_VALIDATOR, document)

    @staticmethod
    def _write(path: str, document: Dict[str, Any]) -> str:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)
        logger.info("Wrote %s", os.path.abspath(path))
        return path

    @staticmethod
    def write_probe_result(result: ProbeResult, artifacts_dir: str = ARTIFACTS_DIR) -> str:
        """
        Validate and write a probe result.

        Raises
        ------
        SchemaValidationError
            The document does not match PROBE_RESULT_SCHEMA.
        """
        document = result.model_dump(mode="json")
        errors = ResultsWriter.validate_probe_result(document)
        if errors:
            raise SchemaValidationError("probe result", errors)
        path = os.path.join(artifacts_dir, "runtime-qa", result.probe_run_id, "result.json")
        return ResultsWriter._write(path, document)

    @staticmethod
    def write_heal_loop_result(result: HealLoopResult, artifacts_dir: str = ARTIFACTS_DIR) -> str:
        document = result.model_dump(mode="json")
        errors = ResultsWriter.validate_heal_loop_result(document)
        if errors:
            raise SchemaValidationError("heal loop result", errors)
        path = os.path.join(artifacts_dir, "self-heal", "loops", f"{result.loop_id}.json")
        return ResultsWriter._write(path, document)

    @staticmethod
    def write_incident(incident: Incident, artifacts_dir: str = ARTIFACTS_DIR) -> str:
        document = incident.model_dump(mode="json", exclude={"incident_path"})
        errors = ResultsWriter.validate_incident(document)
        if errors:
            raise SchemaValidationError("incident", errors)
        path = os.path.join(artifacts_dir, "self-heal", "incidents", f"{incident.incident_id}.json")
        return ResultsWriter._write(path, document)

    @staticmethod
    def result_path(run_id: str, artifacts_dir: str = ARTIFACTS_DIR) -> Optional[str]:
        """Location of a previously written document, by id prefix."""
        if not is_valid_run_id(run_id):
            return None
        prefix = run_id.split("-", 1)[0]
        if prefix == PROBE_RUN_PREFIX:
            return os.path.join(artifacts_dir, "runtime-qa", run_id, "result.json")
        if prefix == HEAL_LOOP_PREFIX:
            return os.path.join(artifacts_dir, "self-heal", "loops", f"{run_id}.json")
        if prefix == INCIDENT_PREFIX:
            return os.path.join(artifacts_dir, "self-heal", "incidents", f"{run_id}.json")
        return None

    @staticmethod
    def load_result(run_id: str, artifacts_dir: str = ARTIFACTS_DIR) -> Optional[Dict[str, Any]]:
        path = ResultsWriter.result_path(run_id, artifacts_dir)
        if path is None or not os.path.isfile(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
