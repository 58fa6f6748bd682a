"""
Evidence capture helpers shared by step execution and the dead-control heuristic.
"""
import json
import logging
from typing import Any, Dict, Optional

from selfheal.models.flow import Step
from selfheal.probe.page import ProbeLogs, ProbePage

logger = logging.getLogger(__name__)

_DOM_SNIPPET_CHARS = 500


def primary_selector(selector: str) -> str:
    """First plain CSS fragment of a selector (drops ', …' alternatives and ':has-text')."""
    return selector.split(":has-text")[0].split(",")[0].strip()


def empty_evidence() -> Dict[str, Any]:
    return {
        "selector": None,
        "text_content": None,
        "url_before": None,
        "url_after": None,
        "screenshot_path": None,
        "console_errors": [],
        "network_requests": [],
        "dom_snippet": None,
        "dom_changed": False,
    }


async def read_element(page: ProbePage, selector: str) -> Optional[Dict[str, str]]:
    script = f"""
    (() => {{
      const el = document.querySelector({json.dumps(primary_selector(selector))});
      if (!el) return null;
      return {{ text: (el.textContent || '').trim(), html: (el.outerHTML || '').slice(0, {_DOM_SNIPPET_CHARS}) }};
    }})()
    """
    try:
        info = await page.evaluate(script)
    except Exception as e:
        # page may have navigated away mid-read
        logger.debug("Element read failed for %s: %s", selector, e)
        return None
    return info if isinstance(info, dict) else None


async def capture_evidence(
    page: ProbePage,
    step: Step,
    logs: ProbeLogs,
    dom_changed: bool = False,
    url_before: Optional[str] = None,
) -> Dict[str, Any]:
    """Snapshot the page state after a step into an evidence dict."""
    evidence = empty_evidence()
    evidence["selector"] = step.selector or step.target
    evidence["url_before"] = url_before
    evidence["url_after"] = page.url()
    evidence["console_errors"] = list(logs.console_errors)
    evidence["network_requests"] = list(logs.network_requests)
    evidence["dom_changed"] = dom_changed

    if step.selector:
        info = await read_element(page, step.selector)
        if info:
            evidence["text_content"] = info.get("text") or None
            evidence["dom_snippet"] = info.get("html") or None
    return evidence
