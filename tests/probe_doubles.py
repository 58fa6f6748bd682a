"""
Probe test doubles
==================
In-memory ProbePage plus small builders for flows and probe results.
No browser, no network.
"""
import asyncio
import json
import re
from typing import Dict, Iterable, List, Optional

from selfheal.models.flow import InteractionFlow
from selfheal.models.probe_result import Evidence, PreflightResult, ProbeResult, ProbeSummary, RunMetadata, StepResult
from selfheal.probe.page import ProbeLogs

_SELECTOR_RE = re.compile(r"querySelector\((\".*?\")\)")


def _selector_in(script: str) -> Optional[str]:
    match = _SELECTOR_RE.search(script)
    return json.loads(match.group(1)) if match else None


class FakePage:
    """
    Scripted page: a current URL, the selectors that exist, and what each
    click does ({"url": path, "dom": bool, "request": str, "popup": bool,
    "console": str}).
    """

    def __init__(
        self,
        url: str = "http://localhost:3000/",
        present: Iterable[str] = (),
        click_effects: Optional[Dict[str, dict]] = None,
        computed_styles: Optional[Dict[str, Dict[str, str]]] = None,
        new_tab: Iterable[str] = (),
        goto_console_errors: Iterable[str] = (),
        screenshot_image=None,
    ):
        self.logs = ProbeLogs()
        self._url = url
        self.present = set(present)
        self.click_effects = click_effects or {}
        self.computed_styles = computed_styles or {}
        self.new_tab = set(new_tab)
        self.goto_console_errors = list(goto_console_errors)
        self.screenshot_image = screenshot_image
        self.clicks: List[str] = []
        self.filled: Dict[str, str] = {}
        self.waits: List[int] = []
        self.viewports: List[tuple] = []
        self.closed = False
        self._dom_changed = False
        self._popup_fired = False

    def url(self) -> str:
        return self._url

    async def goto(self, url: str, timeout_ms: int) -> None:
        self._url = url
        self.logs.network_requests.append(f"GET {url}")
        self.logs.console_errors.extend(self.goto_console_errors)

    async def click(self, selector: str, timeout_ms: int) -> None:
        if selector not in self.present and selector not in self.click_effects:
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded waiting for {selector}")
        self.clicks.append(selector)
        effect = self.click_effects.get(selector, {})
        if effect.get("url"):
            base = re.match(r"^https?://[^/]+", self._url).group(0)
            self._url = f"{base}{effect['url']}"
        if effect.get("dom"):
            self._dom_changed = True
        if effect.get("request"):
            self.logs.network_requests.append(effect["request"])
        if effect.get("console"):
            self.logs.console_errors.append(effect["console"])
        if effect.get("popup"):
            self._popup_fired = True

    async def fill(self, selector: str, value: str) -> None:
        if selector not in self.present:
            raise TimeoutError(f"Timeout waiting for {selector}")
        self.filled[selector] = value

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        if selector not in self.present:
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded waiting for {selector}")

    async def evaluate(self, script: str):
        if "new MutationObserver" in script:
            self._dom_changed = False
            return None
        if "__selfheal_domChanged" in script:
            return self._dom_changed
        selector = _selector_in(script)
        if "getAttribute('target')" in script:
            return selector in self.new_tab
        if "getComputedStyle" in script:
            return self.computed_styles.get(selector)
        if "getBoundingClientRect" in script:
            return None
        if "outerHTML" in script:
            if selector in self.present or selector in self.click_effects:
                return {"text": selector, "html": f"<button>{selector}</button>"}
            return None
        return None

    async def screenshot(self, path: str, full_page: bool = True, clip=None) -> bytes:
        if self.screenshot_image is None:
            return b""
        self.screenshot_image.save(path, format="PNG")
        with open(path, "rb") as f:
            return f.read()

    async def wait_for_popup(self, timeout_ms: int) -> bool:
        for _ in range(20):
            if self._popup_fired:
                return True
            await asyncio.sleep(0)
        return False

    async def set_viewport_size(self, width: int, height: int) -> None:
        self.viewports.append((width, height))

    async def wait(self, ms: int) -> None:
        self.waits.append(ms)

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def make_flow(steps: List[dict], flow_id: str = "demo-flow") -> InteractionFlow:
    return InteractionFlow.model_validate({
        "flow_id": flow_id,
        "base_url_client": "http://localhost:3000",
        "base_url_server": "http://localhost:3001",
        "preflight_health_path": "/api/health",
        "steps": steps,
    })


def passing_preflight(url: str = "http://localhost:3001/api/health") -> PreflightResult:
    return PreflightResult(health_check_url=url, status="pass", latency_ms=3)


async def preflight_ok(flow: InteractionFlow) -> PreflightResult:
    return passing_preflight(flow.health_check_url)


def make_step_result(
    step_id: str = "s1",
    status: str = "fail",
    action: str = "click",
    label: str = "Book now",
    failure_reason: Optional[str] = None,
    dead: bool = False,
    **evidence,
) -> StepResult:
    return StepResult(
        step_id=step_id,
        label=label,
        action=action,
        status=status,
        failure_reason=failure_reason,
        dead_cta_detected=dead,
        selector=evidence.pop("selector", None),
        severity=evidence.pop("severity", None),
        style_selector=evidence.pop("style_selector", None),
        evidence=Evidence(**evidence),
    )


def make_probe_result(
    steps: List[StepResult],
    run_id: str = "QR-20260101-120000-abc123",
    preflight_status: str = "pass",
    preflight_error: Optional[str] = None,
    flow_id: str = "demo-flow",
) -> ProbeResult:
    failing = [s for s in steps if s.status in ("fail", "error")]
    preflight = PreflightResult(
        health_check_url="http://localhost:3001/api/health",
        status=preflight_status,
        error=preflight_error,
    )
    return ProbeResult(
        probe_run_id=run_id,
        flow_id=flow_id,
        timestamp="2026-01-01T12:00:00+00:00",
        run_metadata=RunMetadata(),
        preflight=preflight,
        steps=steps,
        summary=ProbeSummary(
            total=len(steps),
            passed=sum(1 for s in steps if s.status == "pass"),
            failed=sum(1 for s in steps if s.status == "fail"),
            skipped=sum(1 for s in steps if s.status == "skip"),
            errors=sum(1 for s in steps if s.status == "error"),
            dead_ctas=sum(1 for s in steps if s.dead_cta_detected),
        ),
        verdict="fail" if failing or preflight_status == "fail" else "pass",
    )
