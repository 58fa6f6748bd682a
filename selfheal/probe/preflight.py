"""
Preflight Health Check
======================
Bounded-retry reachability check run before any interaction step.

    attempts  PREFLIGHT_RETRIES (3)
    timeout   PREFLIGHT_TIMEOUT_SECONDS per attempt
    backoff   linear: PREFLIGHT_BACKOFF_SECONDS * attempt

Any 2xx short-circuits to pass. Exhausting the attempts yields a fail
result carrying the last HTTP status or transport error.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import httpx

from selfheal.core.config import PREFLIGHT_BACKOFF_SECONDS, PREFLIGHT_RETRIES, PREFLIGHT_TIMEOUT_SECONDS
from selfheal.models.flow import InteractionFlow
from selfheal.models.probe_result import PreflightResult

logger = logging.getLogger(__name__)


async def run_preflight(
    flow: InteractionFlow,
    retries: int = PREFLIGHT_RETRIES,
    timeout_seconds: float = PREFLIGHT_TIMEOUT_SECONDS,
    backoff_seconds: float = PREFLIGHT_BACKOFF_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PreflightResult:
    """
    Check that the application under test answers its health endpoint.

    Parameters
    ----------
    flow : InteractionFlow
        Supplies base_url_server and preflight_health_path.
    retries : int
        Total attempts.
    timeout_seconds : float
        Per-attempt timeout.
    backoff_seconds : float
        Base of the linear backoff between attempts.
    transport : httpx.AsyncBaseTransport, optional
        Injected transport (httpx.MockTransport in tests).
    sleep : callable
        Awaitable sleep, injectable so tests do not wait.

    Returns
    -------
    PreflightResult
    """
    url = flow.health_check_url
    error = "Max retries exceeded"
    latency_ms = 0

    async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
        for attempt in range(1, retries + 1):
            start = time.monotonic()
            try:
                response = await client.get(url)
                latency_ms = int((time.monotonic() - start) * 1000)
                if response.is_success:
                    logger.info("[PROBE] Preflight passed | url=%s | latency=%dms", url, latency_ms)
                    return PreflightResult(health_check_url=url, status="pass", latency_ms=latency_ms)
                error = f"App not reachable at {url} — HTTP {response.status_code}"
            except httpx.HTTPError as e:
                latency_ms = int((time.monotonic() - start) * 1000)
                error = f"App not reachable at {url} — {str(e) or type(e).__name__}"

            logger.warning("[PROBE] Preflight attempt %d/%d failed | %s", attempt, retries, error)
            if attempt < retries:
                await sleep(backoff_seconds * attempt)

    return PreflightResult(health_check_url=url, status="fail", latency_ms=latency_ms, error=error)


def skipped_preflight(flow: InteractionFlow) -> PreflightResult:
    return PreflightResult(health_check_url=flow.health_check_url, status="skip", latency_ms=0)
