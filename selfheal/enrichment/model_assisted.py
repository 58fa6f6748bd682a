"""
Model-Assisted Enrichment
=========================
Enricher that asks a hosted model for reviewer-facing notes on a
deterministic patch proposal.

The model never writes the patch. It receives the incident summary, the
responsible generator file/function and the unified diff, and its reply
is stored verbatim on Patch.model_suggestions for human review.

Requires ANTHROPIC_API_KEY. Any transport or API failure leaves the
patch unchanged.
"""
import logging
from typing import Optional

import httpx

from selfheal.core.config import ANTHROPIC_API_KEY, MODEL_ASSIST_MODEL, MODEL_ASSIST_TIMEOUT_SECONDS
from selfheal.models.incident import Incident
from selfheal.models.patch import Patch

logger = logging.getLogger(__name__)

MESSAGES_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
MAX_TOKENS = 2048

SYSTEM_PROMPT = """You review deterministic patches to a code generator.
Each patch was produced by a fixed trace rule and has already been gated
by an allow-list and a line-change ceiling. Do not rewrite the patch.
Point out risks, missed call sites and follow-up checks in at most ten
short bullet points."""


def build_prompt(incident: Optional[Incident], patch: Patch) -> str:
    lines = []
    if incident is not None:
        lines.append(f"Incident: {incident.incident_id} ({incident.classification}, {incident.severity})")
        lines.append(f"Summary: {incident.summary}")
        if incident.message:
            lines.append(f"Message: {incident.message}")
    lines.append(f"Rule: {patch.rule_id} | strategy: {patch.strategy or 'n/a'}")
    lines.append(f"Target: {patch.target_file} :: {patch.target_function or 'n/a'}")
    lines.append(f"Change: {patch.diff_summary}")
    lines.append("")
    lines.append(patch.unified_diff)
    return "\n".join(lines)


def extract_text(data: dict) -> str:
    """Join the text blocks of a messages API response."""
    blocks = data.get("content") or []
    return "".join(
        block.get("text", "")
        for block in blocks
        if isinstance(block, dict) and block.get("type") == "text"
    )


class ModelAssistedEnricher:
    """
    Async enricher backed by the Anthropic messages API.

    Usage:
        enricher = ModelAssistedEnricher(api_key)
        patch = await enricher.enrich(incident, patch)
        await enricher.close()
    """

    def __init__(
        self,
        api_key: str,
        model: str = MODEL_ASSIST_MODEL,
        timeout_seconds: float = MODEL_ASSIST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def call(self, prompt: str, system_prompt: str = SYSTEM_PROMPT) -> str:
        http = await self._get_http()
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
        }
        payload = {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
        }
        resp = await http.post(MESSAGES_URL, json=payload, headers=headers)
        resp.raise_for_status()
        return extract_text(resp.json())

    async def enrich(self, incident: Optional[Incident], patch: Patch) -> Patch:
        try:
            text = await self.call(build_prompt(incident, patch))
        except httpx.TimeoutException:
            logger.warning("[PATCH] Model enrichment timed out for %s", patch.patch_id)
            return patch
        except httpx.HTTPStatusError as e:
            logger.warning("[PATCH] Model enrichment HTTP %d for %s", e.response.status_code, patch.patch_id)
            return patch
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[PATCH] Model enrichment failed for %s: %s", patch.patch_id, e)
            return patch

        if text.strip():
            patch.model_suggestions = text.strip()
            logger.info("[PATCH] Model suggestions attached to %s | chars=%d", patch.patch_id, len(patch.model_suggestions))
        return patch


def build_enricher() -> ModelAssistedEnricher:
    """Entry point used by load_enricher(); raises when no API key is configured."""
    if not ANTHROPIC_API_KEY:
        raise RuntimeError("ANTHROPIC_API_KEY required for model-assisted enrichment")
    return ModelAssistedEnricher(ANTHROPIC_API_KEY)
