"""
Dead-Control Heuristic
======================
Decides whether a click produced none of the effects its step declared.

Sequence:
    1. Before clicking, check whether the target opens a new browsing
       context (target="_blank"). If so, race a popup wait against the click.
    2. If dom_mutation is expected, install a MutationObserver first.
    3. Click, then wait DEAD_CONTROL_SETTLE_MS unless a popup already
       confirmed the effect.
    4. The control is dead only when EVERY declared signal is absent:
           url_change       URL unchanged and no popup opened
           dom_mutation     observer saw no mutation
           network_request  no new request appended to the log
       Signals the step did not declare are never checked. A step that
       declares no signals at all is reported dead.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict

from selfheal.core.config import DEAD_CONTROL_CLICK_TIMEOUT_MS, DEAD_CONTROL_SETTLE_MS, POPUP_TIMEOUT_MS
from selfheal.models.flow import Step
from selfheal.probe.evidence import capture_evidence, primary_selector
from selfheal.probe.page import ProbeLogs, ProbePage

logger = logging.getLogger(__name__)

_INSTALL_OBSERVER = """
window.__selfheal_domChanged = false;
window.__selfheal_observer = new MutationObserver(() => { window.__selfheal_domChanged = true; });
window.__selfheal_observer.observe(document.body, { childList: true, subtree: true });
"""

_READ_OBSERVER = """
(() => {
  if (window.__selfheal_observer) window.__selfheal_observer.disconnect();
  return !!window.__selfheal_domChanged;
})()
"""


@dataclass
class DeadControlOutcome:
    dead: bool
    evidence: Dict[str, Any]
    popup_opened: bool = False


async def _opens_new_context(page: ProbePage, selector: str) -> bool:
    script = f"""
    (() => {{
      const el = document.querySelector({json.dumps(primary_selector(selector))});
      return el ? el.getAttribute('target') === '_blank' : false;
    }})()
    """
    try:
        return bool(await page.evaluate(script))
    except Exception as e:
        logger.debug("target check failed for %s: %s", selector, e)
        return False


async def _click_quietly(page: ProbePage, selector: str, timeout_ms: int) -> None:
    try:
        await page.click(selector, timeout_ms)
    except Exception as e:
        # a click that cannot land counts as "no effect"
        logger.info("[PROBE] Click did not land on %s: %s", selector, e)


def all_declared_signals_absent(
    step: Step,
    url_changed: bool,
    popup_opened: bool,
    dom_changed: bool,
    new_requests: int,
) -> bool:
    expected = step.expected
    if expected.url_change and (url_changed or popup_opened):
        return False
    if expected.dom_mutation and dom_changed:
        return False
    if expected.network_request and new_requests > 0:
        return False
    return True


async def detect_dead_control(
    page: ProbePage,
    step: Step,
    logs: ProbeLogs,
    settle_ms: int = DEAD_CONTROL_SETTLE_MS,
    popup_timeout_ms: int = POPUP_TIMEOUT_MS,
    click_timeout_ms: int = DEAD_CONTROL_CLICK_TIMEOUT_MS,
) -> DeadControlOutcome:
    """
    Click the step's selector and judge whether the control is dead.

    Parameters
    ----------
    page : ProbePage
        Live page or test double.
    step : Step
        Click step with dead_cta_check set and a selector.
    logs : ProbeLogs
        Run-wide console/network log; new network records after the click
        count as the network_request signal.

    Returns
    -------
    DeadControlOutcome
    """
    expected = step.expected
    selector = step.selector or ""
    url_before = page.url()

    opens_new_context = await _opens_new_context(page, selector) if selector else False

    if expected.dom_mutation:
        try:
            await page.evaluate(_INSTALL_OBSERVER)
        except Exception as e:
            logger.debug("MutationObserver install failed: %s", e)

    requests_before = len(logs.network_requests)
    popup_opened = False

    if opens_new_context:
        popup_task = asyncio.ensure_future(page.wait_for_popup(popup_timeout_ms))
        await asyncio.sleep(0)
        if selector:
            await _click_quietly(page, selector, click_timeout_ms)
        popup_opened = bool(await popup_task)
    elif selector:
        await _click_quietly(page, selector, click_timeout_ms)

    if not popup_opened:
        await page.wait(settle_ms)

    dom_changed = False
    if expected.dom_mutation:
        try:
            dom_changed = bool(await page.evaluate(_READ_OBSERVER))
        except Exception as e:
            logger.debug("MutationObserver read failed: %s", e)
            dom_changed = False

    url_changed = page.url() != url_before
    new_requests = len(logs.network_requests) - requests_before
    dead = all_declared_signals_absent(step, url_changed, popup_opened, dom_changed, new_requests)

    evidence = await capture_evidence(page, step, logs, dom_changed=dom_changed, url_before=url_before)
    logger.info(
        "[PROBE] Dead-control check %s | dead=%s | declared=%s | url_changed=%s | popup=%s | dom=%s | requests=+%d",
        step.step_id, dead, ",".join(expected.declared()) or "none",
        url_changed, popup_opened, dom_changed, new_requests,
    )
    return DeadControlOutcome(dead=dead, evidence=evidence, popup_opened=popup_opened)
