"""
Probe Runner
============
Drives a live application through an interaction flow and records one
StepResult per step.

Responsibilities:
    - Preflight: bounded-retry health check; a failed preflight returns a
      fail result with no steps executed.
    - Dry run: preflight and every step are skipped with reason "dry-run";
      no browser is launched and nothing is written.
    - Steps run strictly in order on one page. Console errors and network
      requests accumulate in one ProbeLogs shared by every step.
    - Aggregate the results into summary counts and a pass/fail verdict.

A failing step never stops the flow; an unexpected exception inside a
step becomes that step's "error" status.
"""
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from selfheal.core.config import (
    ARTIFACTS_DIR,
    BASELINE_DIR,
    CLICK_SETTLE_MS,
    CLICK_TIMEOUT_MS,
    NAVIGATION_TIMEOUT_MS,
    VISIBLE_TIMEOUT_MS,
    VISUAL_DIFF_THRESHOLD,
)
from selfheal.core.constants import (
    ACTION_ASSERT_STYLE,
    ACTION_ASSERT_VISIBLE,
    ACTION_CHECK_CONSOLE,
    ACTION_CLICK,
    ACTION_NAVIGATE,
    ACTION_SCREENSHOT,
    ACTION_TYPE,
    ACTION_VISUAL_SNAPSHOT,
    BASELINE_COMPARE,
    BASELINE_RECORD_MISSING,
    SCHEMA_VERSION,
)
from selfheal.models.flow import InteractionFlow, Step
from selfheal.models.probe_result import (
    Evidence,
    PreflightResult,
    ProbeResult,
    ProbeSummary,
    RunMetadata,
    StepResult,
)
from selfheal.probe.dead_control import detect_dead_control
from selfheal.probe.evidence import empty_evidence
from selfheal.probe.page import PlaywrightSession, ProbeLogs, ProbePage
from selfheal.probe.preflight import run_preflight, skipped_preflight
from selfheal.probe.visual_diff import compare_screenshots
from selfheal.utils.ids import generate_probe_run_id, utc_timestamp

logger = logging.getLogger(__name__)

PreflightFn = Callable[[InteractionFlow], Awaitable[PreflightResult]]


@dataclass
class ProbeOptions:
    headless: bool = True
    dry_run: bool = False
    timeout_ms: Optional[int] = None
    flow_path: str = ""
    baseline_mode: str = BASELINE_COMPARE
    artifacts_dir: str = ARTIFACTS_DIR
    baseline_dir: str = BASELINE_DIR


def _millis() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Per-action handlers: each returns (status, failure_reason) and fills evidence
# ---------------------------------------------------------------------------
async def _navigate(page, step, flow, evidence, options):
    evidence["url_before"] = page.url()
    await page.goto(f"{flow.base_url_client}{step.target or '/'}", options.timeout_ms or NAVIGATION_TIMEOUT_MS)
    evidence["url_after"] = page.url()
    visible = step.expected.assert_visible
    if visible:
        try:
            await page.wait_for_selector(visible, VISIBLE_TIMEOUT_MS)
        except Exception:
            return "fail", f"Expected element not visible: {visible}"
    return "pass", None


async def _type(page, step, evidence):
    if not step.selector or not step.value:
        return "error", "Type action requires selector and value"
    evidence["selector"] = step.selector
    await page.fill(step.selector, step.value)
    return "pass", None


async def _assert_visible(page, step, evidence):
    if not step.selector:
        return "error", "assert_visible action requires selector"
    evidence["selector"] = step.selector
    try:
        await page.wait_for_selector(step.selector, VISIBLE_TIMEOUT_MS)
    except Exception:
        return "fail", f"Element not visible: {step.selector}"
    return "pass", None


async def _screenshot(page, step, evidence, options):
    directory = os.path.join(options.artifacts_dir, "runtime-qa", "screenshots")
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"{step.step_id}-{_millis()}.png")
    if await page.screenshot(path, full_page=True):
        evidence["screenshot_path"] = path
    return "pass", None


def _style_script(selector: str, props: List[str]) -> str:
    return f"""
    (() => {{
      const el = document.querySelector({json.dumps(selector)});
      if (!el) return null;
      const cs = window.getComputedStyle(el);
      const result = {{}};
      for (const p of {json.dumps(props)}) {{ result[p] = cs.getPropertyValue(p); }}
      return result;
    }})()
    """


def style_mismatches(expected: dict, computed: dict) -> List[str]:
    mismatches = []
    for prop, want in expected.items():
        got = computed.get(prop, "")
        if got != want:
            mismatches.append(f'{prop}: expected "{want}", got "{got}"')
    return mismatches


async def _assert_style(page, step, evidence):
    fields = step.assert_style
    if fields is None:
        return "error", "assert_style action requires assert_style fields"
    evidence["selector"] = fields.selector
    if fields.viewport is not None:
        await page.set_viewport_size(fields.viewport.width, fields.viewport.height)

    computed = await page.evaluate(_style_script(fields.selector, list(fields.expected_styles)))
    if not computed:
        return "fail", f"Element not found: {fields.selector}"

    evidence["computed_styles"] = {k: str(v) for k, v in computed.items()}
    mismatches = style_mismatches(fields.expected_styles, evidence["computed_styles"])
    if mismatches:
        return "fail", f"Style mismatches: {'; '.join(mismatches)}"
    return "pass", None


async def _element_clip(page, selector: str):
    script = f"""
    (() => {{
      const el = document.querySelector({json.dumps(selector)});
      if (!el) return null;
      const r = el.getBoundingClientRect();
      return {{ x: r.x, y: r.y, width: r.width, height: r.height }};
    }})()
    """
    try:
        box = await page.evaluate(script)
    except Exception as e:
        logger.debug("Bounding box read failed for %s: %s", selector, e)
        return None
    if isinstance(box, dict) and box.get("width", 0) > 0 and box.get("height", 0) > 0:
        return box
    return None


async def _visual_snapshot(page, step, evidence, options):
    fields = step.visual_snapshot
    if fields is None:
        return "error", "visual_snapshot action requires visual_snapshot fields"

    directory = os.path.join(options.artifacts_dir, "runtime-qa", "snapshots")
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"{fields.baseline_name}-{_millis()}.png")

    clip = await _element_clip(page, fields.selector) if fields.selector else None
    captured = await page.screenshot(path, full_page=fields.selector is None, clip=clip)
    if not captured:
        return "pass", None
    evidence["visual_screenshot_path"] = path

    baseline = os.path.join(options.baseline_dir, f"{fields.baseline_name}.png")
    if not os.path.isfile(baseline):
        if options.baseline_mode == BASELINE_RECORD_MISSING:
            os.makedirs(options.baseline_dir, exist_ok=True)
            shutil.copyfile(path, baseline)
            logger.info("[PROBE] Recorded new baseline %s", baseline)
            return "pass", None
        return "skip", f"Baseline not found: {baseline} — save a baseline image to enable comparison"

    threshold = fields.threshold if fields.threshold is not None else VISUAL_DIFF_THRESHOLD
    diff = compare_screenshots(baseline, path, threshold)
    evidence["visual_diff_score"] = diff.diff_score
    if not diff.match:
        return "fail", f"Visual diff: {diff.diff_score * 100:.2f}% exceeds {threshold * 100:.2f}% threshold"
    return "pass", None


# ---------------------------------------------------------------------------
# Step execution
# ---------------------------------------------------------------------------
def _step_result(step: Step, status: str, duration_ms: int, evidence: dict, reason: Optional[str], dead: bool) -> StepResult:
    return StepResult(
        step_id=step.step_id,
        label=step.label,
        action=step.action,
        status=status,
        duration_ms=duration_ms,
        evidence=Evidence(**evidence),
        failure_reason=reason,
        dead_cta_detected=dead,
        selector=step.selector,
        severity=step.severity,
        style_selector=step.assert_style.selector if step.assert_style else None,
        baseline_name=step.visual_snapshot.baseline_name if step.visual_snapshot else None,
    )


async def execute_step(
    page: ProbePage,
    step: Step,
    flow: InteractionFlow,
    logs: ProbeLogs,
    options: Optional[ProbeOptions] = None,
) -> StepResult:
    """
    Run one step and return its immutable result.

    Parameters
    ----------
    page : ProbePage
        Shared page for the whole flow.
    step : Step
        Step to run.
    flow : InteractionFlow
        Supplies the client base URL for navigate.
    logs : ProbeLogs
        Run-wide console/network log.
    options : ProbeOptions, optional
        Artifact locations and baseline mode.
    """
    options = options or ProbeOptions()
    start = time.monotonic()
    evidence = empty_evidence()
    status, reason, dead = "pass", None, False
    errors_before = len(logs.console_errors)

    try:
        if step.action == ACTION_NAVIGATE:
            status, reason = await _navigate(page, step, flow, evidence, options)

        elif step.action == ACTION_CLICK:
            if not step.selector:
                status, reason = "error", "Click action requires selector"
            elif step.dead_cta_check:
                outcome = await detect_dead_control(page, step, logs)
                evidence = outcome.evidence
                dead = outcome.dead
                if dead:
                    status, reason = "fail", f'Dead CTA: "{step.label}" — click produced no effect'
            else:
                evidence["selector"] = step.selector
                evidence["url_before"] = page.url()
                await page.click(step.selector, CLICK_TIMEOUT_MS)
                await page.wait(CLICK_SETTLE_MS)
                evidence["url_after"] = page.url()

        elif step.action == ACTION_TYPE:
            status, reason = await _type(page, step, evidence)

        elif step.action == ACTION_CHECK_CONSOLE:
            if logs.console_errors:
                status, reason = "fail", f"Console errors detected: {len(logs.console_errors)}"
                evidence["console_errors"] = list(logs.console_errors)

        elif step.action == ACTION_ASSERT_VISIBLE:
            status, reason = await _assert_visible(page, step, evidence)

        elif step.action == ACTION_SCREENSHOT:
            status, reason = await _screenshot(page, step, evidence, options)

        elif step.action == ACTION_ASSERT_STYLE:
            status, reason = await _assert_style(page, step, evidence)

        elif step.action == ACTION_VISUAL_SNAPSHOT:
            status, reason = await _visual_snapshot(page, step, evidence, options)

        else:
            status, reason = "error", f"Unknown action: {step.action}"

    except Exception as e:
        status, reason = "error", str(e) or type(e).__name__

    new_errors = logs.console_errors[errors_before:]
    if status == "pass" and step.expected.no_errors and new_errors:
        status, reason = "fail", f"Console errors detected: {len(new_errors)}"
        evidence["console_errors"] = list(new_errors)

    duration_ms = int((time.monotonic() - start) * 1000)
    level = logging.INFO if status in ("pass", "skip") else logging.WARNING
    logger.log(level, "[PROBE] %s %s | status=%s | %dms%s", step.step_id, step.action, status, duration_ms,
               f" | reason={reason}" if reason else "")
    return _step_result(step, status, duration_ms, evidence, reason, dead)


# ---------------------------------------------------------------------------
# Flow execution
# ---------------------------------------------------------------------------
def build_result(
    run_id: str,
    flow: InteractionFlow,
    options: ProbeOptions,
    preflight: PreflightResult,
    steps: List[StepResult],
) -> ProbeResult:
    """Aggregate step results into summary counts and a verdict."""
    summary = ProbeSummary(
        total=len(steps),
        passed=sum(1 for s in steps if s.status == "pass"),
        failed=sum(1 for s in steps if s.status == "fail"),
        skipped=sum(1 for s in steps if s.status == "skip"),
        errors=sum(1 for s in steps if s.status == "error"),
        dead_ctas=sum(1 for s in steps if s.dead_cta_detected),
        console_errors=sum(
            1 for s in steps
            if s.evidence.console_errors or (s.action == ACTION_CHECK_CONSOLE and s.status == "fail")
        ),
    )
    failing = preflight.status == "fail" or summary.failed > 0 or summary.errors > 0
    return ProbeResult(
        schema_version=SCHEMA_VERSION,
        probe_run_id=run_id,
        flow_id=flow.flow_id,
        timestamp=utc_timestamp(),
        run_metadata=RunMetadata(
            headless=options.headless,
            flow_path=options.flow_path,
            dry_run=options.dry_run,
            timeout_ms=options.timeout_ms,
            baseline_mode=options.baseline_mode,
        ),
        preflight=preflight,
        steps=steps,
        summary=summary,
        verdict="fail" if failing else "pass",
    )


async def _run_steps(page: ProbePage, flow: InteractionFlow, logs: ProbeLogs, options: ProbeOptions) -> List[StepResult]:
    results = []
    for step in flow.steps:
        results.append(await execute_step(page, step, flow, logs, options))
    return results


async def execute_flow(
    flow: InteractionFlow,
    options: Optional[ProbeOptions] = None,
    page: Optional[ProbePage] = None,
    preflight: Optional[PreflightFn] = None,
) -> ProbeResult:
    """
    Run a whole flow and return its ProbeResult.

    Parameters
    ----------
    flow : InteractionFlow
        Validated flow.
    options : ProbeOptions, optional
        Headless/dry-run/baseline settings.
    page : ProbePage, optional
        Injected page double. A Chromium session is launched when absent.
        An injected page exposing a ``logs`` attribute shares it with the run.
    preflight : callable, optional
        Injected preflight; defaults to the HTTP health check.
    """
    options = options or ProbeOptions()
    run_id = generate_probe_run_id()
    logger.info("[PROBE] Run %s | flow=%s | steps=%d | dry_run=%s", run_id, flow.flow_id, len(flow.steps), options.dry_run)
    for note in flow.setup:
        logger.info("[PROBE] Setup: %s", note)

    if options.dry_run:
        steps = [
            _step_result(step, "skip", 0, empty_evidence(), "dry-run", False)
            for step in flow.steps
        ]
        return build_result(run_id, flow, options, skipped_preflight(flow), steps)

    preflight_result = await (preflight or run_preflight)(flow)
    if preflight_result.status == "fail":
        logger.error("[PROBE] Preflight failed, no steps executed | %s", preflight_result.error)
        return build_result(run_id, flow, options, preflight_result, [])

    if page is not None:
        logs = getattr(page, "logs", None) or ProbeLogs()
        try:
            steps = await _run_steps(page, flow, logs, options)
        finally:
            await page.close()
    else:
        async with PlaywrightSession(headless=options.headless) as session:
            steps = await _run_steps(session.page, flow, session.logs, options)

    result = build_result(run_id, flow, options, preflight_result, steps)
    logger.info(
        "[PROBE] Run %s finished | verdict=%s | passed=%d/%d | dead_ctas=%d",
        run_id, result.verdict, result.summary.passed, result.summary.total, result.summary.dead_ctas,
    )
    return result
