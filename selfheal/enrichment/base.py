"""
Enrichment Strategy
===================
Optional enrichment of patch proposals with external suggestions.

The deterministic proposal path never depends on enrichment. The heal
loop always holds an Enricher; when --model-assisted is off, or the
model-backed strategy cannot be loaded, it holds a NoopEnricher.

Rules:
    - enrich() must never raise into the orchestrator.
    - Enrichment only annotates a Patch (model_suggestions); it never
      changes contents, targets or verdicts.
"""
import importlib
import logging
from typing import Optional, Protocol

from selfheal.models.incident import Incident
from selfheal.models.patch import Patch

logger = logging.getLogger(__name__)

MODEL_ASSISTED_MODULE = "selfheal.enrichment.model_assisted"


class Enricher(Protocol):
    async def enrich(self, incident: Optional[Incident], patch: Patch) -> Patch:
        ...


class NoopEnricher:
    """Default strategy: returns the patch untouched."""

    async def enrich(self, incident: Optional[Incident], patch: Patch) -> Patch:
        return patch


def load_enricher(enabled: bool) -> Enricher:
    """
    Resolve the enrichment strategy for one heal run.

    The model-backed module is imported lazily so that its absence (or a
    missing API key) leaves the loop on the no-op path.
    """
    if not enabled:
        return NoopEnricher()
    try:
        module = importlib.import_module(MODEL_ASSISTED_MODULE)
        return module.build_enricher()
    except Exception as e:
        logger.warning("[HEAL] Model-assisted enrichment unavailable, continuing without it: %s", e)
        return NoopEnricher()
