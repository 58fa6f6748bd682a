"""
Patch Engine
============
Propose, verify and apply generator patches.

Responsibilities:
    - propose: trace a classification to a rule, apply its pure fix to the
      current content of the rule's target file, and gate the result on the
      allow-list, "did anything change" and the line-change ceiling.
    - verify: obtain post-patch output from an isolated tree (or an injected
      double) and run the three gates: invariants, re-generation, style.
    - apply: write a verified patch into the real working tree. This is the
      only function in the package that mutates generator source.

Rules:
    - Guardrail violations never raise; they return no patch plus a
      rejection reason from selfheal.utils.rejection_reasons.
    - A patch is promotable only when every verification gate passed.
"""
import logging
import os
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from selfheal.core.config import MAX_FILES_PER_PATCH, MAX_LINES_CHANGED
from selfheal.core.constants import VERDICT_FAIL, VERDICT_PASS
from selfheal.models.patch import InvariantSummary, Patch, TraceDetection, Verification
from selfheal.patching.diff_utils import compute_diff_summary, compute_unified_diff
from selfheal.patching.invariants import run_invariants, style_invariants_passed
from selfheal.patching.path_guard import is_allowed_patch_target, is_promotion_allowed, normalize_patch_path
from selfheal.patching.trace_rules import TraceContext, TraceRule, trace_classification
from selfheal.utils.patch_hash import compute_patch_hash, hash_output_map
from selfheal.utils.rejection_reasons import (
    BATCH_OUT_OF_SCOPE,
    DIFF_TOO_LARGE,
    FIX_FAILED,
    NO_CHANGE,
    NO_MATCHING_RULE,
    TARGET_MISSING,
    TARGET_NOT_ALLOWED,
)

logger = logging.getLogger(__name__)

Regenerator = Callable[[str, str], Optional[Dict[str, str]]]
InvariantRunner = Callable[[Mapping[str, str]], InvariantSummary]
StyleChecker = Callable[[Mapping[str, str]], bool]


# ---------------------------------------------------------------------------
# Propose
# ---------------------------------------------------------------------------
def build_patch(
    rule_id: str,
    lane: str,
    target_file: str,
    original_content: str,
    patched_content: str,
    classification: Optional[str] = None,
    target_function: str = "",
    strategy: str = "",
    description: str = "",
    max_lines_changed: int = MAX_LINES_CHANGED,
) -> Tuple[Optional[Patch], Optional[str]]:
    """
    Gate a candidate edit and wrap it in a Patch.

    Shared by trace-rule proposals and the UI lane so both pass through
    the same allow-list, no-change and ceiling checks.

    Returns
    -------
    tuple
        (patch, None) when accepted, (None, rejection_reason) otherwise.
    """
    target = normalize_patch_path(target_file)
    if not is_allowed_patch_target(target):
        logger.warning("[PATCH] Rejected %s | reason=%s | target=%s", rule_id, TARGET_NOT_ALLOWED, target)
        return None, TARGET_NOT_ALLOWED

    if original_content == patched_content:
        logger.info("[PATCH] Rejected %s | reason=%s | target=%s", rule_id, NO_CHANGE, target)
        return None, NO_CHANGE

    summary = compute_diff_summary(original_content, patched_content)
    if summary.lines_changed > max_lines_changed:
        logger.warning(
            "[PATCH] Rejected %s | reason=%s | changed=%d | ceiling=%d",
            rule_id, DIFF_TOO_LARGE, summary.lines_changed, max_lines_changed,
        )
        return None, DIFF_TOO_LARGE

    unified = compute_unified_diff(original_content, patched_content, target)
    patch_hash = compute_patch_hash(unified)
    patch = Patch(
        patch_id=f"{rule_id}-{patch_hash[:8]}",
        rule_id=rule_id,
        lane=lane,
        classification=classification,
        target_file=target,
        target_function=target_function,
        strategy=strategy,
        description=description,
        original_content=original_content,
        patched_content=patched_content,
        diff_summary=summary.text,
        lines_added=summary.added,
        lines_removed=summary.removed,
        lines_changed=summary.lines_changed,
        unified_diff=unified,
        patch_hash=patch_hash,
    )
    logger.info("[PATCH] Proposed %s | target=%s | %s", patch.patch_id, target, summary.text)
    return patch, None


def read_target(project_root: str, target_file: str) -> Optional[str]:
    path = os.path.join(project_root, normalize_patch_path(target_file))
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def propose_from_detection(
    rule: TraceRule,
    detection: TraceDetection,
    project_root: str,
    classification: Optional[str] = None,
    max_lines_changed: int = MAX_LINES_CHANGED,
) -> Tuple[Optional[Patch], Optional[str]]:
    """
    Apply a rule's fix for a detection that already fired.

    Parameters
    ----------
    rule : TraceRule
        Rule whose detection fired.
    detection : TraceDetection
        Detection result passed through to the fix function.
    project_root : str
        Root of the real generator tree; the target is read from here.
    classification : str, optional
        Classification that led to the rule, recorded on the patch.

    Returns
    -------
    tuple
        (patch, None) or (None, rejection_reason).
    """
    target = normalize_patch_path(rule.target_file)
    if not is_allowed_patch_target(target):
        logger.warning("[PATCH] Rejected %s | reason=%s | target=%s", rule.id, TARGET_NOT_ALLOWED, target)
        return None, TARGET_NOT_ALLOWED

    original = read_target(project_root, target)
    if original is None:
        logger.warning("[PATCH] Rejected %s | reason=%s | target=%s", rule.id, TARGET_MISSING, target)
        return None, TARGET_MISSING

    try:
        patched = rule.fix(original, detection)
    except Exception as e:
        logger.error("[PATCH] Fix function for %s raised: %s", rule.id, e)
        return None, FIX_FAILED

    return build_patch(
        rule_id=rule.id,
        lane=rule.lane,
        target_file=target,
        original_content=original,
        patched_content=patched,
        classification=classification,
        target_function=rule.target_function,
        strategy=rule.strategy,
        description=rule.description,
        max_lines_changed=max_lines_changed,
    )


def propose_patch(
    classification: str,
    context: TraceContext,
    project_root: str,
    rules: Sequence[TraceRule],
    max_lines_changed: int = MAX_LINES_CHANGED,
) -> Tuple[Optional[Patch], Optional[str]]:
    """
    Propose a patch for one classification.

    The first rule listing the classification whose detection fires is
    used. When no rule fires there is nothing to patch.
    """
    match = trace_classification(classification, context, rules)
    if match is None:
        logger.info("[PATCH] No detected rule for classification=%s", classification)
        return None, NO_MATCHING_RULE
    rule, detection = match
    return propose_from_detection(rule, detection, project_root, classification, max_lines_changed)


def is_patch_batch_within_scope(
    patches: Iterable[Patch],
    max_files: int = MAX_FILES_PER_PATCH,
    max_lines_changed: int = MAX_LINES_CHANGED,
) -> Tuple[bool, Optional[str]]:
    """A batch is in scope when it touches at most max_files distinct files, each allowed and small."""
    patches = list(patches)
    targets = {normalize_patch_path(p.target_file) for p in patches}
    if len(targets) > max_files:
        return False, BATCH_OUT_OF_SCOPE
    for p in patches:
        if not is_allowed_patch_target(p.target_file):
            return False, TARGET_NOT_ALLOWED
        if compute_diff_summary(p.original_content, p.patched_content).lines_changed > max_lines_changed:
            return False, DIFF_TOO_LARGE
    return True, None


# ---------------------------------------------------------------------------
# Verify
# ---------------------------------------------------------------------------
def verify_patch(
    patch: Patch,
    files_before: Mapping[str, str],
    regenerate: Regenerator,
    invariant_runner: InvariantRunner = run_invariants,
    style_checker: Optional[StyleChecker] = None,
) -> Verification:
    """
    Verify a proposed patch and set its verdict.

    Parameters
    ----------
    patch : Patch
        Proposed patch; its verification, verdict and attempts are updated.
    files_before : Mapping[str, str]
        Generated output before the patch.
    regenerate : callable
        (target_file, patched_content) -> output map, or None when
        re-generation failed. The default implementation is
        IsolatedTreeRegenerator, which never touches the real tree.
    invariant_runner : callable
        Runs structural invariants over the post-patch output.
    style_checker : callable, optional
        Style contract over the post-patch output. Defaults to the
        style-tagged invariants.

    Returns
    -------
    Verification
        The three gate outcomes plus output hashes.
    """
    patch.attempts += 1
    error = None
    try:
        files_after = regenerate(patch.target_file, patch.patched_content)
    except Exception as e:
        logger.error("[VERIFY] Re-generation raised for %s: %s", patch.patch_id, e)
        files_after = None
        error = str(e)

    regeneration_succeeded = bool(files_after)
    checked = files_after if regeneration_succeeded else files_before

    summary = invariant_runner(checked)
    invariants_passed = summary.failed == 0

    if style_checker is not None:
        try:
            style_passed = bool(style_checker(checked))
        except Exception as e:
            logger.error("[VERIFY] Style checker raised for %s: %s", patch.patch_id, e)
            style_passed = False
    else:
        style_passed = style_invariants_passed(summary)

    if not regeneration_succeeded and error is None:
        error = "re-generation produced no output"

    verification = Verification(
        invariants_passed=invariants_passed,
        regeneration_succeeded=regeneration_succeeded,
        style_checks_passed=style_passed,
        output_hash_before=hash_output_map(files_before),
        output_hash_after=hash_output_map(files_after or {}),
        invariant_results=summary.results,
        error=error,
    )
    patch.verification = verification
    patch.verdict = VERDICT_PASS if verification.all_passed else VERDICT_FAIL
    logger.info(
        "[VERIFY] %s | verdict=%s | invariants=%s | regenerated=%s | style=%s",
        patch.patch_id, patch.verdict, invariants_passed, regeneration_succeeded, style_passed,
    )
    return verification


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------
def apply_patch(patch: Patch, project_root: str) -> bool:
    """
    Write a verified patch into the real generator tree.

    Returns False when the patch is unverified, any gate failed, the
    target fails the promotion allow-list, or the target no longer exists.
    """
    if not is_promotion_allowed(patch.target_file):
        logger.warning("[PROMOTE] Refused %s | target not allowed: %s", patch.patch_id, patch.target_file)
        return False
    if patch.verification is None or not patch.verification.all_passed:
        logger.warning("[PROMOTE] Refused %s | not verified", patch.patch_id)
        return False

    path = os.path.join(project_root, normalize_patch_path(patch.target_file))
    if not os.path.isfile(path):
        logger.warning("[PROMOTE] Refused %s | target missing: %s", patch.patch_id, path)
        return False

    with open(path, "w", encoding="utf-8") as f:
        f.write(patch.patched_content)
    logger.info("[PROMOTE] Applied %s -> %s", patch.patch_id, patch.target_file)
    return True


def dedupe_by_target(patches: Iterable[Patch], claimed: Optional[set] = None) -> Tuple[List[Patch], List[Patch]]:
    """
    Keep the first patch per target file.

    Returns (kept, dropped). Targets already in ``claimed`` are dropped;
    ``claimed`` is updated in place.
    """
    claimed = claimed if claimed is not None else set()
    kept, dropped = [], []
    for p in patches:
        target = normalize_patch_path(p.target_file)
        if target in claimed:
            dropped.append(p)
            continue
        claimed.add(target)
        kept.append(p)
    return kept, dropped
