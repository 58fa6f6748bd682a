"""
Heal Loop Orchestrator
======================
Runs one self-heal cycle: Probe → Bridge → Lanes → Promotion → Rerun.

Lanes (in order):
    1) Runtime/environment — server, dependencies, database, ports, auth
    2) Parser patch        — PSH traces over description source + parsed tree
    3) Transpiler patch    — SH9 traces over generated output
    4) UI/layout           — style/visual failures, layout-owned generator files

Modes:
    shadow            — probe and bridge incidents only
    propose           — also compute parser/transpiler patches (unverified)
    patch-verify      — full cycle: runtime lane, verify, UI lane, promote, rerun
    transpiler-patch  — same as patch-verify

Rules:
    - Single-threaded: every phase awaits the previous one.
    - Subsystem failures never abort the loop; they are logged, recorded in
      the lane outcome / errors list, and the loop continues.
    - The real generator tree is written only by the Promotion phase, only
      for verified patches, and never in dry-run mode.
    - Verification retry is bounded (1..5 attempts) with explicit
      termination reasons.
    - A target promoted earlier in the cycle is never re-applied; later
      patches for it are marked skipped-conflict.
"""
import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from selfheal.bridge.incident_bridge import bridge_failed_steps, classify_failed_steps
from selfheal.core.config import (
    ARTIFACTS_DIR,
    CLIENT_PORT,
    HEAL_MAX_ATTEMPTS,
    MAX_FILES_PER_PATCH,
    MAX_LINES_CHANGED,
    OUTPUT_DIR,
    PROJECT_ROOT,
    SERVER_PORT,
)
from selfheal.core.constants import (
    ACTIVE_MODES,
    BASELINE_COMPARE,
    HEAL_MODES,
    LANE_PARSER,
    LANE_RUNTIME,
    LANE_TRANSPILER,
    LANE_UI,
    MODE_PROPOSE,
    MODE_SHADOW,
    PATCH_LANE_ORDER,
    VERDICT_FAIL,
    VERDICT_PASS,
    VERDICT_SKIPPED_CONFLICT,
)
from selfheal.core.errors import GeneratorInvocationError, SchemaValidationError
from selfheal.enrichment.base import Enricher, load_enricher
from selfheal.lanes.runtime_lane import (
    RemediationContext,
    RemediationReport,
    RuntimeIssue,
    classify_runtime_issues,
    has_runtime_issues,
    run_remediation,
)
from selfheal.lanes.ui_lane import classify_ui_issues, has_ui_issues, propose_ui_patches, proposals_to_dicts
from selfheal.models.flow import InteractionFlow
from selfheal.models.heal_result import (
    HealLoopResult,
    LaneOutcome,
    PromotionRef,
    RerunSummary,
    VerificationRef,
)
from selfheal.models.incident import Incident
from selfheal.models.patch import Patch, TraceDetection
from selfheal.models.probe_result import ProbeResult
from selfheal.orchestrator.retry import RetryOutcome, clamp_attempts, run_bounded_retry
from selfheal.patching.codegen_trace import TRANSPILER_TRACE_RULES
from selfheal.patching.generator_runner import run_generator
from selfheal.patching.isolated_tree import IsolatedTreeRegenerator, read_generated_files
from selfheal.patching.parser_trace import PARSER_TRACE_RULES
from selfheal.patching.patch_engine import (
    Regenerator,
    StyleChecker,
    apply_patch,
    dedupe_by_target,
    is_patch_batch_within_scope,
    propose_from_detection,
    propose_patch,
    verify_patch,
)
from selfheal.patching.path_guard import is_promotion_allowed, normalize_patch_path
from selfheal.patching.trace_rules import TraceContext, TraceRule, run_all_traces
from selfheal.probe.runner import ProbeOptions, execute_flow
from selfheal.services.results_writer import ResultsWriter
from selfheal.utils.ids import generate_loop_id, utc_timestamp
from selfheal.utils.patch_hash import hash_content
from selfheal.utils.rejection_reasons import BATCH_OUT_OF_SCOPE, DUPLICATE_TARGET, NO_MATCHING_RULE

logger = logging.getLogger(__name__)

ProbeFn = Callable[[], Awaitable[ProbeResult]]
RemediateFn = Callable[[List[RuntimeIssue], RemediationContext], RemediationReport]
OutputRegenerator = Callable[[], bool]


@dataclass
class HealOptions:
    mode: str = MODE_SHADOW
    max_attempts: int = HEAL_MAX_ATTEMPTS
    dry_run: bool = False
    headless: bool = True
    model_assisted: bool = False
    project_root: str = PROJECT_ROOT
    output_dir: str = OUTPUT_DIR
    artifacts_dir: str = ARTIFACTS_DIR
    description_source: Optional[str] = None
    has_backend: Optional[bool] = None
    client_port: int = CLIENT_PORT
    server_port: int = SERVER_PORT
    baseline_mode: str = BASELINE_COMPARE
    flow_path: str = ""
    max_lines_changed: int = MAX_LINES_CHANGED
    max_files: int = MAX_FILES_PER_PATCH
    write_results: bool = True


def _millis(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _no_regeneration(target_file: str, patched_content: str) -> Optional[Dict[str, str]]:
    logger.warning("[VERIFY] No description source configured; cannot re-generate for %s", target_file)
    return None


class HealLoop:
    """
    One self-heal cycle over one flow.

    Every external effect is injectable so the same orchestration runs
    against a live app or in-memory doubles.

    Usage:
        loop = HealLoop(flow, HealOptions(mode="patch-verify"))
        result = await loop.run()
    """

    def __init__(
        self,
        flow: InteractionFlow,
        options: Optional[HealOptions] = None,
        probe: Optional[ProbeFn] = None,
        regenerate: Optional[Regenerator] = None,
        regenerate_output: Optional[OutputRegenerator] = None,
        remediate: Optional[RemediateFn] = None,
        enricher: Optional[Enricher] = None,
        parsed_source: Optional[Dict[str, Any]] = None,
        style_checker: Optional[StyleChecker] = None,
    ) -> None:
        self.flow = flow
        self.options = options or HealOptions()
        if self.options.mode not in HEAL_MODES:
            raise ValueError(f"Unknown heal mode: {self.options.mode}")
        self.project_root = os.path.abspath(self.options.project_root)
        self.probe = probe or self._default_probe
        self.regenerate = regenerate or self._default_regenerator()
        self.regenerate_output = regenerate_output or self._regenerate_real_output
        self.remediate = remediate or run_remediation
        self.enricher = enricher or load_enricher(self.options.model_assisted)
        self.parsed_source = parsed_source
        self.style_checker = style_checker

    # -----------------------------------------------------------------------
    # Defaults
    # -----------------------------------------------------------------------
    async def _default_probe(self) -> ProbeResult:
        options = ProbeOptions(
            headless=self.options.headless,
            dry_run=self.options.dry_run,
            flow_path=self.options.flow_path,
            baseline_mode=self.options.baseline_mode,
            artifacts_dir=self.options.artifacts_dir,
        )
        return await execute_flow(self.flow, options)

    def _default_regenerator(self) -> Regenerator:
        if self.options.description_source:
            return IsolatedTreeRegenerator(self.project_root, self.options.description_source)
        return _no_regeneration

    def _regenerate_real_output(self) -> bool:
        if not self.options.description_source:
            logger.warning("[HEAL] No description source configured; skipping output re-generation")
            return False
        run_generator(self.project_root, self.options.description_source, self.options.output_dir)
        return True

    def _output_path(self) -> str:
        return os.path.join(self.project_root, self.options.output_dir)

    def _description_text(self) -> Optional[str]:
        source = self.options.description_source
        if not source:
            return None
        path = os.path.join(self.project_root, normalize_patch_path(source))
        if not os.path.isfile(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------
    async def run(self) -> HealLoopResult:
        """Execute the full cycle; always returns a complete result."""
        start = time.monotonic()
        mode = self.options.mode
        result = HealLoopResult(
            loop_id=generate_loop_id(),
            mode=mode,
            timestamp=utc_timestamp(),
            flow_id=self.flow.flow_id,
        )
        logger.info(
            "[HEAL] Loop %s | flow=%s | mode=%s | max_attempts=%d | dry_run=%s",
            result.loop_id, self.flow.flow_id, mode,
            clamp_attempts(self.options.max_attempts), self.options.dry_run,
        )

        # ===========================================================
        # 1. Probe
        # ===========================================================
        probe_result = await self._run_probe(result, "initial")
        if probe_result is None:
            return self._finish(result, None, 0, start)
        result.probe_run_id = probe_result.probe_run_id
        result.probe_result_path = self._write_probe(result, probe_result)
        result.summary.dead_ctas_found = probe_result.summary.dead_ctas

        if probe_result.verdict == "pass":
            logger.info("[HEAL] Probe passed; nothing to heal")
            return self._finish(result, probe_result, 0, start)

        # ===========================================================
        # 2. Bridge + classify
        # ===========================================================
        incidents = self._bridge(result, probe_result)
        try:
            result.classifications = classify_failed_steps(probe_result)
        except Exception as e:
            logger.exception("[HEAL] Classification failed")
            result.errors.append(f"classify: {e}")

        if mode == MODE_SHADOW:
            logger.info("[HEAL] Shadow mode: %d incident(s) bridged, no remediation", len(incidents))
            return self._finish(result, probe_result, 0, start)

        # ===========================================================
        # 3. Runtime/environment lane
        # ===========================================================
        runtime_fixed = 0
        if mode in ACTIVE_MODES:
            probe_result, runtime_fixed, healed = await self._runtime_lane(result, probe_result)
            if healed:
                logger.info("[HEAL] Runtime remediation healed the app; later lanes skipped")
                return self._finish(result, probe_result, runtime_fixed, start)
        else:
            result.lanes.append(LaneOutcome(lane=LANE_RUNTIME, ran=False, details=f"Not applicable in {mode} mode"))

        # ===========================================================
        # 4. Parser + transpiler patch lanes
        # ===========================================================
        files_before = self._read_output(result)
        parser_lane = LaneOutcome(lane=LANE_PARSER, ran=False, details="No parser trace matches")
        transpiler_lane = LaneOutcome(lane=LANE_TRANSPILER, ran=False, details="No codegen trace matches")
        result.lanes.extend([parser_lane, transpiler_lane])

        code_patches: List[Patch] = []
        try:
            code_patches = self._propose_code_patches(
                files_before, result.classifications, parser_lane, transpiler_lane,
            )
        except Exception as e:
            logger.exception("[HEAL] Patch proposal failed")
            result.errors.append(f"propose: {e}")
        await self._enrich(code_patches, incidents, result)

        if mode == MODE_PROPOSE:
            for lane in (parser_lane, transpiler_lane):
                count = sum(1 for p in code_patches if p.lane == lane.lane)
                if count:
                    lane.details = f"{count} patches proposed (unverified)"
            result.lanes.append(LaneOutcome(lane=LANE_UI, ran=False, details=f"Not applicable in {mode} mode"))
            result.patches = [p.summary_dict() for p in code_patches]
            return self._finish(result, probe_result, runtime_fixed, start)

        # ===========================================================
        # 5. Verify (bounded retry)
        # ===========================================================
        if code_patches:
            outcome = await self._verify(code_patches, files_before, result)
            for lane in (parser_lane, transpiler_lane):
                lane_patches = [p for p in code_patches if p.lane == lane.lane]
                if lane_patches:
                    passed = sum(1 for p in lane_patches if p.verdict == VERDICT_PASS)
                    lane.details = f"{passed}/{len(lane_patches)} verified"
                    lane.data["attempts"] = outcome.attempt_count
            transpiler_lane.termination_reason = outcome.termination_reason

        # ===========================================================
        # 6. UI/layout lane
        # ===========================================================
        ui_lane = LaneOutcome(lane=LANE_UI, ran=False, details="No UI issues classified")
        result.lanes.append(ui_lane)
        ui_patches = await self._ui_lane(probe_result, files_before, ui_lane, incidents, result)

        # ===========================================================
        # 7. Promotion
        # ===========================================================
        all_patches = code_patches + ui_patches
        lanes_by_name = {LANE_PARSER: parser_lane, LANE_TRANSPILER: transpiler_lane, LANE_UI: ui_lane}
        if self.options.dry_run:
            logger.info("[PROMOTE] Dry run: promotion disabled")
        else:
            self._promote(all_patches, result, lanes_by_name)

        result.patches = [p.summary_dict() for p in all_patches]
        result.verifications = [
            VerificationRef(
                patch_id=p.patch_id,
                target_file=p.target_file,
                verdict=p.verdict,
                attempts=p.attempts,
                invariants_passed=p.verification.invariants_passed,
                regeneration_succeeded=p.verification.regeneration_succeeded,
                style_checks_passed=p.verification.style_checks_passed,
                output_hash_before=p.verification.output_hash_before,
                output_hash_after=p.verification.output_hash_after,
            )
            for p in all_patches
            if p.verification is not None
        ]

        # ===========================================================
        # 8. Rerun after promotion
        # ===========================================================
        if result.promoted_files:
            probe_result = await self._rerun(result, probe_result)

        return self._finish(result, probe_result, runtime_fixed, start)

    # -----------------------------------------------------------------------
    # Phases
    # -----------------------------------------------------------------------
    async def _run_probe(self, result: HealLoopResult, label: str) -> Optional[ProbeResult]:
        try:
            probe_result = await self.probe()
        except Exception as e:
            logger.exception("[HEAL] %s probe run failed", label.capitalize())
            result.errors.append(f"probe ({label}): {e}")
            return None
        logger.info(
            "[HEAL] %s probe %s | verdict=%s | failing=%d",
            label.capitalize(), probe_result.probe_run_id, probe_result.verdict, probe_result.failing_count(),
        )
        return probe_result

    def _write_probe(self, result: HealLoopResult, probe_result: ProbeResult) -> Optional[str]:
        if not self.options.write_results:
            return None
        try:
            return ResultsWriter.write_probe_result(probe_result, self.options.artifacts_dir)
        except (SchemaValidationError, OSError) as e:
            logger.error("[HEAL] Could not write probe result %s: %s", probe_result.probe_run_id, e)
            result.errors.append(f"write probe result: {e}")
            return None

    def _bridge(self, result: HealLoopResult, probe_result: ProbeResult) -> List[Incident]:
        try:
            incidents = bridge_failed_steps(
                probe_result,
                self.flow,
                dry_run=self.options.dry_run or not self.options.write_results,
                artifacts_dir=self.options.artifacts_dir,
            )
        except Exception as e:
            logger.exception("[HEAL] Incident bridge failed")
            result.errors.append(f"bridge: {e}")
            return []
        result.bridged_incidents = [i.model_dump(mode="json") for i in incidents]
        result.summary.incidents_created = len(incidents)
        return incidents

    async def _runtime_lane(
        self, result: HealLoopResult, probe_result: ProbeResult,
    ) -> Tuple[ProbeResult, int, bool]:
        lane = LaneOutcome(lane=LANE_RUNTIME, ran=False, details="No runtime issues detected")
        result.lanes.append(lane)
        try:
            if not has_runtime_issues(probe_result):
                return probe_result, 0, False

            output_path = self._output_path()
            has_backend = self.options.has_backend
            if has_backend is None:
                has_backend = os.path.isdir(os.path.join(output_path, "server"))
            issues = classify_runtime_issues(probe_result, output_path, has_backend)
            if not issues:
                lane.details = "No runtime issues classified"
                return probe_result, 0, False

            ctx = RemediationContext(
                output_dir=output_path,
                client_port=self.options.client_port,
                server_port=self.options.server_port,
                has_backend=has_backend,
                dry_run=self.options.dry_run,
            )
            report = await asyncio.to_thread(self.remediate, issues, ctx)
        except Exception as e:
            logger.exception("[RUNTIME] Remediation lane failed")
            lane.details = f"Lane error: {e}"
            result.errors.append(f"runtime lane: {e}")
            return probe_result, 0, False

        kinds = ", ".join(i.kind for i in report.issues)
        lane.ran = True
        lane.fixes_applied = report.issues_fixed
        lane.details = f"{report.issues_fixed} fixed, {report.issues_pending} pending ({kinds})"
        lane.data = report.to_dict()

        if report.issues_fixed == 0:
            return probe_result, 0, False

        rerun = await self._run_probe(result, "runtime rerun")
        if rerun is None:
            return probe_result, report.issues_fixed, False
        lane.data["rerun_probe_run_id"] = rerun.probe_run_id
        lane.data["rerun_verdict"] = rerun.verdict
        return rerun, report.issues_fixed, rerun.verdict == "pass"

    def _read_output(self, result: HealLoopResult) -> Dict[str, str]:
        try:
            return read_generated_files(self._output_path())
        except OSError as e:
            logger.error("[HEAL] Could not read generated output: %s", e)
            result.errors.append(f"read output: {e}")
            return {}

    def _propose_code_patches(
        self,
        files_before: Dict[str, str],
        classifications: List[str],
        parser_lane: LaneOutcome,
        transpiler_lane: LaneOutcome,
    ) -> List[Patch]:
        """
        Propose parser then transpiler patches, one per target file.

        Parser rules run against description source + parsed tree. Each
        classification is proposed through its first detected transpiler
        rule, then every remaining rule runs directly against generated
        output. Later proposals for an already claimed target are dropped.
        """
        context = TraceContext(
            files=files_before,
            description_source=self._description_text(),
            parsed=self.parsed_source,
        )
        used_rules: Set[str] = set()
        rejections: List[Dict[str, str]] = []
        candidates: List[Patch] = []

        candidates.extend(self._propose_hits(run_all_traces(context, PARSER_TRACE_RULES), used_rules, rejections))

        for classification in classifications:
            patch, reason = propose_patch(
                classification, context, self.project_root, TRANSPILER_TRACE_RULES, self.options.max_lines_changed,
            )
            if patch is None:
                if reason != NO_MATCHING_RULE:
                    rejections.append({"classification": classification, "reason": reason})
                continue
            used_rules.add(patch.rule_id)
            candidates.append(patch)
        candidates.extend(self._propose_hits(run_all_traces(context, TRANSPILER_TRACE_RULES), used_rules, rejections))

        patches, duplicates = dedupe_by_target(candidates)
        for dropped in duplicates:
            logger.info("[PATCH] %s skipped | reason=%s | target=%s", dropped.rule_id, DUPLICATE_TARGET, dropped.target_file)
            rejections.append({"rule_id": dropped.rule_id, "reason": DUPLICATE_TARGET})

        in_scope, reason = is_patch_batch_within_scope(patches, self.options.max_files, self.options.max_lines_changed)
        if not in_scope:
            logger.warning("[PATCH] Batch out of scope (%s); keeping first %d target(s)", reason, self.options.max_files)
            for dropped in patches[self.options.max_files:]:
                rejections.append({"rule_id": dropped.rule_id, "reason": BATCH_OUT_OF_SCOPE})
            patches = patches[:self.options.max_files]

        for lane in (parser_lane, transpiler_lane):
            lane_patches = [p for p in patches if p.lane == lane.lane]
            lane.ran = bool(lane_patches)
            if lane_patches:
                lane.details = f"{len(lane_patches)} patches proposed"
            lane.data["proposed"] = [p.patch_id for p in lane_patches]
        transpiler_lane.data["rejections"] = rejections
        return patches

    def _propose_hits(
        self,
        hits: List[Tuple[TraceRule, TraceDetection]],
        used_rules: Set[str],
        rejections: List[Dict[str, str]],
    ) -> List[Patch]:
        patches = []
        for rule, detection in hits:
            if rule.id in used_rules:
                continue
            used_rules.add(rule.id)
            patch, reason = propose_from_detection(
                rule, detection, self.project_root, None, self.options.max_lines_changed,
            )
            if patch is None:
                rejections.append({"rule_id": rule.id, "reason": reason})
                continue
            patches.append(patch)
        return patches

    async def _enrich(self, patches: List[Patch], incidents: List[Incident], result: HealLoopResult) -> None:
        by_classification = {i.classification: i for i in incidents}
        for patch in patches:
            incident = by_classification.get(patch.classification) if patch.classification else None
            try:
                await self.enricher.enrich(incident, patch)
            except Exception as e:
                logger.warning("[PATCH] Enrichment failed for %s: %s", patch.patch_id, e)
                result.errors.append(f"enrich {patch.patch_id}: {e}")

    async def _verify(self, patches: List[Patch], files_before: Dict[str, str], result: HealLoopResult) -> RetryOutcome:
        """Bounded verification retry, run in a worker thread."""
        def pending() -> int:
            return sum(1 for p in patches if p.verdict != VERDICT_PASS)

        def attempt(number: int) -> str:
            produced = []
            for patch in patches:
                if patch.verdict == VERDICT_PASS:
                    continue
                try:
                    verification = verify_patch(
                        patch, files_before, self.regenerate, style_checker=self.style_checker,
                    )
                except Exception as e:
                    logger.exception("[VERIFY] Verification of %s failed", patch.patch_id)
                    patch.verdict = VERDICT_FAIL
                    result.errors.append(f"verify {patch.patch_id}: {e}")
                    continue
                if verification.output_hash_after:
                    produced.append(f"{patch.patch_id}:{verification.output_hash_after}")
            return hash_content("\n".join(produced)) if produced else ""

        return await asyncio.to_thread(run_bounded_retry, pending, attempt, self.options.max_attempts)

    async def _ui_lane(
        self,
        probe_result: ProbeResult,
        files_before: Dict[str, str],
        lane: LaneOutcome,
        incidents: List[Incident],
        result: HealLoopResult,
    ) -> List[Patch]:
        try:
            if not has_ui_issues(probe_result):
                return []
            issues = classify_ui_issues(probe_result)
            if not issues:
                return []
            patches, proposals = propose_ui_patches(issues, self.project_root)
        except Exception as e:
            logger.exception("[UI] UI lane failed")
            lane.details = f"Lane error: {e}"
            result.errors.append(f"ui lane: {e}")
            return []

        lane.ran = True
        lane.data["issues"] = [i.kind for i in issues]
        lane.data["proposals"] = proposals_to_dicts(proposals)
        if not patches:
            lane.details = f"0 patches proposed ({', '.join(i.kind for i in issues)})"
            return []

        await self._enrich(patches, incidents, result)
        outcome = await self._verify(patches, files_before, result)
        passed = sum(1 for p in patches if p.verdict == VERDICT_PASS)
        lane.details = f"{passed}/{len(patches)} verified ({', '.join(i.kind for i in issues)})"
        lane.termination_reason = outcome.termination_reason
        lane.data["attempts"] = outcome.attempt_count
        return patches

    def _promote(self, patches: List[Patch], result: HealLoopResult, lanes: Dict[str, LaneOutcome]) -> None:
        promoted: Set[str] = set()
        for lane_name in PATCH_LANE_ORDER:
            for patch in patches:
                if patch.lane != lane_name or patch.verdict != VERDICT_PASS:
                    continue
                target = normalize_patch_path(patch.target_file)
                if target in promoted:
                    patch.verdict = VERDICT_SKIPPED_CONFLICT
                    status = "skipped-conflict"
                    logger.info("[PROMOTE] %s skipped | target already promoted: %s", patch.patch_id, target)
                elif not is_promotion_allowed(target):
                    status = "rejected"
                else:
                    try:
                        applied = apply_patch(patch, self.project_root)
                    except OSError as e:
                        logger.error("[PROMOTE] Writing %s failed: %s", target, e)
                        result.errors.append(f"promote {patch.patch_id}: {e}")
                        applied = False
                    status = "promoted" if applied else "failed"
                    if applied:
                        promoted.add(target)
                        result.promoted_files.append(target)
                        lanes[lane_name].fixes_applied += 1
                result.promotions.append(
                    PromotionRef(patch_id=patch.patch_id, target_file=target, lane=lane_name, status=status)
                )

        for lane_name, lane in lanes.items():
            if lane.fixes_applied:
                lane.details = f"{lane.details}, {lane.fixes_applied} promoted"

    async def _rerun(self, result: HealLoopResult, probe_result: ProbeResult) -> ProbeResult:
        try:
            await asyncio.to_thread(self.regenerate_output)
        except (GeneratorInvocationError, OSError) as e:
            logger.error("[HEAL] Re-generation after promotion failed: %s", e)
            result.errors.append(f"regenerate output: {e}")
            return probe_result

        rerun = await self._run_probe(result, "post-promotion")
        if rerun is None:
            return probe_result

        before = probe_result.failing_count()
        after = rerun.failing_count()
        folded = rerun.verdict == "pass" or after < before
        result.rerun = RerunSummary(
            probe_run_id=rerun.probe_run_id,
            verdict=rerun.verdict,
            failing_before=before,
            failing_after=after,
            delta=before - after,
            folded=folded,
        )
        logger.info("[HEAL] Rerun %s | failing %d -> %d | folded=%s", rerun.probe_run_id, before, after, folded)
        return rerun if folded else probe_result

    # -----------------------------------------------------------------------
    # Finish
    # -----------------------------------------------------------------------
    def _finish(
        self,
        result: HealLoopResult,
        probe_result: Optional[ProbeResult],
        runtime_fixed: int,
        start: float,
    ) -> HealLoopResult:
        patches = result.patches
        result.summary.patches_proposed = len(patches)
        result.summary.patches_verified = len(result.verifications)
        result.summary.patches_passed = sum(
            1 for v in result.verifications if v.invariants_passed and v.regeneration_succeeded and v.style_checks_passed
        )
        result.summary.files_promoted = len(result.promoted_files)
        result.summary.failing_steps = probe_result.failing_count() if probe_result is not None else 0

        fixes = runtime_fixed + len(result.promoted_files)
        if probe_result is not None and probe_result.verdict == "pass":
            result.verdict = "pass"
        elif fixes > 0:
            result.verdict = "partial"
        else:
            result.verdict = "fail"

        result.duration_ms = _millis(start)
        logger.info(
            "[HEAL] Loop %s finished | verdict=%s | proposed=%d | promoted=%d | failing=%d | duration_ms=%d",
            result.loop_id, result.verdict, result.summary.patches_proposed,
            result.summary.files_promoted, result.summary.failing_steps, result.duration_ms,
        )

        if self.options.write_results:
            try:
                ResultsWriter.write_heal_loop_result(result, self.options.artifacts_dir)
            except (SchemaValidationError, OSError) as e:
                logger.error("[HEAL] Could not write loop result %s: %s", result.loop_id, e)
                result.errors.append(f"write loop result: {e}")
        return result


async def run_heal_loop(flow: InteractionFlow, options: Optional[HealOptions] = None, **overrides) -> HealLoopResult:
    """Convenience wrapper: build a HealLoop and run it once."""
    return await HealLoop(flow, options, **overrides).run()
