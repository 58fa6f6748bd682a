"""
UI/Layout Remediation Lane
==========================
Classifies style-assertion and visual-snapshot failures and proposes
targeted fixes to the layout-owned generator files.

Target files:
    src/transpiler/scaffold.ts           base CSS (UI-001, UI-004, UI-005)
    src/transpiler/react/layout-gen.ts   sidebar/nav shell (UI-002, UI-003)
    src/transpiler/react/page-gen.ts     page grids (UI-006)
    src/transpiler/react/jsx-gen.ts      card grids (UI-007)

Every fix becomes a regular Patch (lane "ui") and goes through the
patch engine's allow-list, verification and promotion gates.
"""
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional, Tuple

from selfheal.core.constants import ACTION_ASSERT_STYLE, ACTION_VISUAL_SNAPSHOT, LANE_UI
from selfheal.models.patch import Patch
from selfheal.models.probe_result import ProbeResult
from selfheal.patching.patch_engine import build_patch, read_target
from selfheal.utils.rejection_reasons import TARGET_MISSING

logger = logging.getLogger(__name__)

VISUAL_ALIGNMENT_THRESHOLD = 0.1
_LAYOUT_SELECTOR_HINTS = ("nav", "sidebar", "aside")
_LAYOUT_ELEMENT_HINTS = ("nav", "header", "aside", "sidebar")


@dataclass
class UIIssue:
    kind: str
    severity: str  # high / medium / low
    details: str
    selector: Optional[str] = None
    evidence: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class UIPatchRule:
    id: str
    kind: str
    target_file: str
    description: str
    apply: Callable[[str], str]


@dataclass
class UIProposal:
    rule_id: str
    kind: str
    target_file: str
    status: str  # proposed / skip
    details: str


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------
_STYLE_KEYWORDS: Tuple[Tuple[str, str, Tuple[str, ...], str], ...] = (
    ("alignment-mismatch", "medium", ("align", "justify", "text-align"), "Alignment mismatch"),
    ("overflow-clipping", "high", ("overflow", "clip", "truncat"), "Overflow/clipping"),
    ("spacing-inconsistency", "medium", ("padding", "margin", "gap", "spacing"), "Spacing issue"),
    ("typography-hierarchy", "medium", ("font-size", "font-weight", "line-height", "contrast"), "Typography issue"),
    ("z-index-stacking", "high", ("z-index", "stack", "behind", "overlay"), "Z-index/stacking issue"),
)


def classify_ui_issues(probe_result: ProbeResult) -> List[UIIssue]:
    """
    Classify layout issues from failed style, visual and layout-element steps.

    Returns
    -------
    list[UIIssue]
        Deduplicated by kind, first occurrence wins.
    """
    issues: List[UIIssue] = []

    for step in probe_result.steps:
        if step.status != "fail":
            continue
        reason = (step.failure_reason or "").lower()

        if step.action == ACTION_ASSERT_STYLE:
            selector = step.style_selector
            computed = json.dumps(step.evidence.computed_styles or {})
            for kind, severity, keywords, title in _STYLE_KEYWORDS:
                if any(k in reason for k in keywords):
                    issues.append(UIIssue(
                        kind, severity, f"{title} on {selector or 'unknown'}: {reason}",
                        selector, [reason, computed],
                    ))
            if "style mismatch" in reason and not any(i.selector == selector for i in issues):
                sel = selector or ""
                if any(h in sel for h in _LAYOUT_SELECTOR_HINTS):
                    issues.append(UIIssue(
                        "nav-sidebar-overlap", "high", f"Nav/sidebar style mismatch: {reason}", sel, [reason],
                    ))

        score = step.evidence.visual_diff_score
        if step.action == ACTION_VISUAL_SNAPSHOT and score is not None and score > VISUAL_ALIGNMENT_THRESHOLD:
            issues.append(UIIssue(
                "alignment-mismatch", "high",
                f"Visual regression: {step.baseline_name} diff={score * 100:.1f}%", None, [str(score)],
            ))

        if "not found" in reason or "not visible" in reason:
            sel = step.selector or ""
            if any(h in sel for h in _LAYOUT_ELEMENT_HINTS):
                issues.append(UIIssue(
                    "nav-sidebar-overlap", "high", f"Layout element not visible: {sel}", sel, [reason],
                ))

    seen = set()
    unique = []
    for issue in issues:
        if issue.kind in seen:
            continue
        seen.add(issue.kind)
        unique.append(issue)
    return unique


def has_ui_issues(probe_result: ProbeResult) -> bool:
    return any(
        s.status == "fail" and (
            s.action in (ACTION_ASSERT_STYLE, ACTION_VISUAL_SNAPSHOT)
            or "style mismatch" in (s.failure_reason or "").lower()
        )
        for s in probe_result.steps
    )


# ---------------------------------------------------------------------------
# Deterministic fixes
# ---------------------------------------------------------------------------
def _overflow_safety(source: str) -> str:
    if "overflow-wrap: break-word" in source:
        return source
    return re.sub(r"(\* \{ box-sizing: border-box;)", r"\1 overflow-wrap: break-word;", source, count=1)


def _sidebar_z_index(source: str) -> str:
    if "z-50 h-screen w-64" in source and "lg:ml-64" in source:
        return source
    return re.sub(
        r"fixed lg:sticky top-0 left-0 z-\d+ h-screen w-64",
        "fixed lg:sticky top-0 left-0 z-50 h-screen w-64",
        source,
    )


def _sidebar_padding(source: str) -> str:
    return re.sub(r"(w-full text-left justify-start\s+)px-\d+(\s+py-2)", r"\1px-3\2", source)


def _heading_hierarchy(source: str) -> str:
    if ":where(h1) { font-size: 2rem" in source:
        return source
    for tag in ("h1", "h2", "h3"):
        source = re.sub(rf"^{tag}\s*\{{", f":where({tag}) {{", source, flags=re.M)
    return source


def _z_index_layers(source: str) -> str:
    if "--z-modal: 50" in source or "--z-nav" in source:
        return source
    layers = "\n  --z-nav: 40;\n  --z-sidebar: 50;\n  --z-modal: 50;\n  --z-toast: 60;"
    return re.sub(r"(--radius:\s*[^;]+;)", lambda m: m.group(1) + layers, source, count=1)


def _grid_gap(source: str) -> str:
    return re.sub(r"grid grid-cols-(\d) gap-2", r"grid grid-cols-\1 gap-4", source)


def _responsive_grid(source: str) -> str:
    if "grid-cols-1 md:grid-cols-2 lg:grid-cols-3" in source:
        return source
    return re.sub(r"grid grid-cols-3 gap", "grid grid-cols-1 md:grid-cols-2 lg:grid-cols-3 gap", source)


UI_PATCH_RULES = (
    UIPatchRule("UI-001", "overflow-clipping", "src/transpiler/scaffold.ts",
                "Add overflow safety to card and content containers in base CSS", _overflow_safety),
    UIPatchRule("UI-002", "nav-sidebar-overlap", "src/transpiler/react/layout-gen.ts",
                "Coordinate sidebar z-index with main content offset", _sidebar_z_index),
    UIPatchRule("UI-003", "spacing-inconsistency", "src/transpiler/react/layout-gen.ts",
                "Normalize sidebar nav padding for consistent alignment", _sidebar_padding),
    UIPatchRule("UI-004", "typography-hierarchy", "src/transpiler/scaffold.ts",
                "Wrap heading selectors in :where() for a clear hierarchy", _heading_hierarchy),
    UIPatchRule("UI-005", "z-index-stacking", "src/transpiler/scaffold.ts",
                "Establish z-index layering custom properties in base CSS", _z_index_layers),
    UIPatchRule("UI-006", "alignment-mismatch", "src/transpiler/react/page-gen.ts",
                "Use consistent gap in grid layouts", _grid_gap),
    # classify_ui_issues never emits responsive-breakpoint; this rule only
    # fires for issues passed directly to propose_ui_patches.
    UIPatchRule("UI-007", "responsive-breakpoint", "src/transpiler/react/jsx-gen.ts",
                "Give card grids responsive column counts", _responsive_grid),
)


def ui_remediation_targets() -> List[str]:
    return sorted({rule.target_file for rule in UI_PATCH_RULES})


def propose_ui_patches(issues: List[UIIssue], project_root: str) -> Tuple[List[Patch], List[UIProposal]]:
    """
    Propose one patch per UI issue kind.

    Parameters
    ----------
    issues : list[UIIssue]
        Output of classify_ui_issues.
    project_root : str
        Real generator tree; targets are read from here and never written.

    Returns
    -------
    tuple
        (patches, proposals): accepted patches plus a per-rule record of
        what happened, including skips.
    """
    patches: List[Patch] = []
    proposals: List[UIProposal] = []
    handled = set()

    for issue in issues:
        if issue.kind in handled:
            continue
        rule = next((r for r in UI_PATCH_RULES if r.kind == issue.kind), None)
        if rule is None:
            continue
        handled.add(issue.kind)

        original = read_target(project_root, rule.target_file)
        if original is None:
            proposals.append(UIProposal(rule.id, rule.kind, rule.target_file, "skip", TARGET_MISSING))
            continue

        patch, rejection = build_patch(
            rule_id=rule.id,
            lane=LANE_UI,
            target_file=rule.target_file,
            original_content=original,
            patched_content=rule.apply(original),
            classification=issue.kind,
            strategy="ui-layout",
            description=rule.description,
        )
        if patch is None:
            proposals.append(UIProposal(rule.id, rule.kind, rule.target_file, "skip", rejection))
            continue

        patches.append(patch)
        proposals.append(UIProposal(rule.id, rule.kind, rule.target_file, "proposed", patch.diff_summary))
        logger.info("[UI] %s proposed for %s | %s", rule.id, issue.kind, patch.diff_summary)

    return patches, proposals


def proposals_to_dicts(proposals: List[UIProposal]) -> List[dict]:
    return [asdict(p) for p in proposals]
