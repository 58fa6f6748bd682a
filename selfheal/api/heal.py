"""
Heal Endpoints
==============
HTTP surface for the probe runner and the heal loop.

Routes:
    POST /heal/probe              — run a flow once, write and return the probe result
    POST /heal/run                — run one heal cycle, return the loop result
    GET  /heal/results/{run_id}   — fetch a written QR- / HL- / SH- document

Safety:
    - POST routes are disabled by default (requires ENABLE_HEAL_ENDPOINT=true)
      and answer 404 when disabled.
    - Hard timeout ceiling on every run.
    - Flow validation errors are 422 and happen before any network activity.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, field_validator, model_validator

from selfheal.core.config import ARTIFACTS_DIR, ENABLE_HEAL_ENDPOINT, HEAL_MAX_ATTEMPTS
from selfheal.core.constants import BASELINE_COMPARE, BASELINE_RECORD_MISSING, HEAL_MODES, MODE_SHADOW
from selfheal.core.errors import FlowValidationError, SchemaValidationError
from selfheal.models.flow import InteractionFlow
from selfheal.orchestrator.heal_loop import HealLoop, HealOptions
from selfheal.probe.flow_loader import load_flow, validate_flow_document
from selfheal.probe.runner import ProbeOptions, execute_flow
from selfheal.services.results_writer import ResultsWriter
from selfheal.utils.ids import is_valid_run_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/heal", tags=["Heal"])

# ---------------------------------------------------------------------------
# Environment gate
# ---------------------------------------------------------------------------
_HEAL_ENABLED = ENABLE_HEAL_ENDPOINT

# Hard timeout ceiling (seconds)
_MAX_TIMEOUT = 600


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class FlowRequest(BaseModel):
    flow_path: Optional[str] = None
    flow: Optional[Dict[str, Any]] = None
    headless: bool = True
    dry_run: bool = False

    @model_validator(mode="after")
    def require_flow(self):
        if not self.flow_path and self.flow is None:
            raise ValueError("Either flow_path or flow is required")
        return self


class ProbeRequest(FlowRequest):
    record_missing: bool = False


class HealRequest(FlowRequest):
    mode: str = MODE_SHADOW
    max_attempts: int = HEAL_MAX_ATTEMPTS
    model_assisted: bool = False
    description_source: Optional[str] = None

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        if v not in HEAL_MODES:
            raise ValueError(f"mode must be one of: {', '.join(HEAL_MODES)}")
        return v


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _require_enabled() -> None:
    if not _HEAL_ENABLED:
        raise HTTPException(status_code=404, detail="Not found")


def _resolve_flow(request: FlowRequest) -> InteractionFlow:
    try:
        if request.flow is not None:
            return validate_flow_document(request.flow)
        return load_flow(request.flow_path)
    except FlowValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/probe")
async def run_probe(request: ProbeRequest):
    """Run a flow once and return its schema-validated result."""
    _require_enabled()
    flow = _resolve_flow(request)
    options = ProbeOptions(
        headless=request.headless,
        dry_run=request.dry_run,
        flow_path=request.flow_path or "<inline>",
        baseline_mode=BASELINE_RECORD_MISSING if request.record_missing else BASELINE_COMPARE,
        artifacts_dir=ARTIFACTS_DIR,
    )

    try:
        result = await asyncio.wait_for(execute_flow(flow, options), timeout=_MAX_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning("[PROBE] Hard timeout reached for flow=%s", flow.flow_id)
        raise HTTPException(status_code=504, detail="Probe run timed out")
    except Exception as exc:
        logger.error("[PROBE] Run error for flow=%s: %s", flow.flow_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Probe error: {str(exc)}")

    result_path = None
    try:
        result_path = ResultsWriter.write_probe_result(result, ARTIFACTS_DIR)
    except (SchemaValidationError, OSError) as e:
        logger.error("[PROBE] Could not write result %s: %s", result.probe_run_id, e)

    return {
        "probe_run_id": result.probe_run_id,
        "verdict": result.verdict,
        "result_path": result_path,
        "result": result.model_dump(mode="json"),
    }


@router.post("/run")
async def run_heal(request: HealRequest):
    """Run one heal cycle and return the loop result."""
    _require_enabled()
    flow = _resolve_flow(request)
    options = HealOptions(
        mode=request.mode,
        max_attempts=request.max_attempts,
        dry_run=request.dry_run,
        headless=request.headless,
        model_assisted=request.model_assisted,
        description_source=request.description_source,
        artifacts_dir=ARTIFACTS_DIR,
        flow_path=request.flow_path or "<inline>",
    )

    try:
        result = await asyncio.wait_for(HealLoop(flow, options).run(), timeout=_MAX_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning("[HEAL] Hard timeout reached for flow=%s", flow.flow_id)
        raise HTTPException(status_code=504, detail="Heal loop timed out")
    except Exception as exc:
        logger.error("[HEAL] Loop error for flow=%s: %s", flow.flow_id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Heal loop error: {str(exc)}")

    return result.model_dump(mode="json")


@router.get("/results/{run_id}")
async def get_result(run_id: str):
    """Return a previously written probe, loop or incident document."""
    if not is_valid_run_id(run_id):
        raise HTTPException(status_code=400, detail="Invalid run id")
    document = ResultsWriter.load_result(run_id, ARTIFACTS_DIR)
    if document is None:
        raise HTTPException(status_code=404, detail=f"No result for {run_id}")
    return document
