"""
Transpiler Trace Registry
=========================
Maps incident classifications to transpiler source locations.

Each entry detects a known defect in generated output and carries a
deterministic fix for the transpiler function that emits it:

    SH9-001  bare element selectors in index.css      -> scaffold.ts generateIndexCss
    SH9-002  page generated but unreachable           -> react/index.ts generateApp
    SH9-003  page wraps itself in Layout twice        -> react/page-gen.ts generatePageComponents
    SH9-004  sidebar heading/button padding mismatch  -> transpiler/index.ts generateEcommercePages
    SH9-005  unresolved handler stub (dead control)   -> react/mutation-gen.ts generateMutations
    SH9-006  handler contract scaffold only           -> express/api-router-gen.ts

SH9-005 and SH9-006 are resolved in the description source, not in the
transpiler, so their fixes are identity functions and never yield a patch.
"""
import re

from selfheal.core.constants import LANE_TRANSPILER
from selfheal.models.patch import TraceDetection
from selfheal.patching.trace_rules import (
    TraceContext,
    TraceRule,
    affected,
    files_matching,
    find_lines,
    not_detected,
)


# ---------------------------------------------------------------------------
# SH9-001: CSS specificity fight
# ---------------------------------------------------------------------------
_INDEX_CSS_RE = re.compile(r"index\.css$")
# code, pre, hr and a are low-risk reset rules and are not reported
_BARE_SELECTOR_RE = re.compile(
    r"^(h[1-6]|p|button|table|th|td|tbody|input|select|textarea|aside)\s*\{"
)
_WRAPPABLE_ELEMENTS = (
    "h1", "h2", "h3", "p", "table", "th", "td", "tbody tr", "button",
    "input", "select", "textarea", "a", "aside", "pre", "code", "hr",
)


def _detect_css_specificity(ctx: TraceContext) -> TraceDetection:
    affected_files = []
    lines = []
    for path, content in files_matching(ctx.files, _INDEX_CSS_RE):
        hits = find_lines(content, _BARE_SELECTOR_RE)
        if hits:
            affected_files.append(path)
            lines.extend(affected(path, n, snippet) for n, snippet in hits)

    return TraceDetection(
        detected=bool(lines),
        severity="p2",
        details=(
            f"Found {len(lines)} bare element selector(s) without :where() wrapper"
            if lines else "All element selectors properly wrapped in :where()"
        ),
        affected_files=affected_files,
        affected_lines=lines,
    )


def _fix_css_specificity(source: str, detection: TraceDetection) -> str:
    result = source
    for element in _WRAPPABLE_ELEMENTS:
        pattern = re.compile(rf"^({re.escape(element)})\s*\{{", re.MULTILINE)
        result = pattern.sub(f":where({element}) {{", result)
    return result


# ---------------------------------------------------------------------------
# SH9-002: page exists but unreachable from App.jsx
# ---------------------------------------------------------------------------
_PAGE_FILE_RE = re.compile(r"pages/(\w+)Page\.jsx$")
_MISSING_PAGE_RE = re.compile(r"(\w+)Page not imported")
_PAGE_IMPORT_MARKER = "// Ecommerce: import AccountPage"


def _find_app_jsx(files):
    for path, content in files.items():
        if path.endswith("App.jsx"):
            return path, content
    return None


def _detect_page_unreachable(ctx: TraceContext) -> TraceDetection:
    app = _find_app_jsx(ctx.files)
    if app is None:
        return not_detected("p1", "No App.jsx found")

    app_path, app_content = app
    missing = []
    lines = []
    for page_path, _ in files_matching(ctx.files, _PAGE_FILE_RE):
        name = _PAGE_FILE_RE.search(page_path).group(1)
        if f"{name}Page" not in app_content:
            missing.append(name)
            lines.append(affected(page_path, 1, f"{name}Page not imported or routed in App.jsx"))

    return TraceDetection(
        detected=bool(missing),
        severity="p1",
        details=(
            f"{len(missing)} page(s) unreachable: {', '.join(missing)}"
            if missing else "All pages have imports and routes in App.jsx"
        ),
        affected_files=[app_path] + [f"pages/{name}Page.jsx" for name in missing] if missing else [],
        affected_lines=lines,
    )


def _fix_page_unreachable(source: str, detection: TraceDetection) -> str:
    missing = []
    for line in detection.affected_lines:
        match = _MISSING_PAGE_RE.search(line.snippet)
        if match:
            missing.append(match.group(1))
    if not missing or _PAGE_IMPORT_MARKER not in source:
        return source

    additions = "\n".join(
        f"    // ensure {name}Page is imported\n"
        f"    if (useLazy) {{\n"
        f"      lines.push(`const {name}Page = lazy(() => import('./pages/{name}Page.jsx'));`);\n"
        f"    }} else {{\n"
        f"      lines.push(`import {name}Page from './pages/{name}Page.jsx';`);\n"
        f"    }}"
        for name in missing
    )
    return source.replace(_PAGE_IMPORT_MARKER, additions + "\n  " + _PAGE_IMPORT_MARKER, 1)


# ---------------------------------------------------------------------------
# SH9-003: double Layout wrapping
# ---------------------------------------------------------------------------
_PAGE_COMPONENT_RE = re.compile(r"pages/\w+Page\.jsx$")
_LAYOUT_IMPORT_LINE_RE = re.compile(r"import.*Layout")
_LAYOUT_IMPORT_RE = re.compile(r"import Layout from ['\"]\.\./Layout\.jsx['\"];\n?")
_LAYOUT_OPEN_RE = re.compile(r"<Layout[^>]*>\n?")
_LAYOUT_CLOSE_RE = re.compile(r"</Layout>\n?")


def _detect_double_layout(ctx: TraceContext) -> TraceDetection:
    app = _find_app_jsx(ctx.files)
    if app is None:
        return not_detected("p1", "No App.jsx found")
    if "<Layout" not in app[1]:
        return not_detected("p1", "App.jsx does not use Layout")

    wrapped = []
    lines = []
    for path, content in files_matching(ctx.files, _PAGE_COMPONENT_RE):
        if "import Layout" in content or "from './Layout" in content or "from '../Layout" in content:
            wrapped.append(path)
            lines.extend(affected(path, n, s) for n, s in find_lines(content, _LAYOUT_IMPORT_LINE_RE))

    return TraceDetection(
        detected=bool(wrapped),
        severity="p1",
        details=(
            f"{len(wrapped)} page(s) import Layout while App.jsx already wraps in Layout"
            if wrapped else "No double Layout wrapping detected"
        ),
        affected_files=wrapped,
        affected_lines=lines,
    )


def _fix_double_layout(source: str, detection: TraceDetection) -> str:
    result = _LAYOUT_IMPORT_RE.sub("", source)
    result = _LAYOUT_OPEN_RE.sub("", result)
    return _LAYOUT_CLOSE_RE.sub("", result)


# ---------------------------------------------------------------------------
# SH9-004: sidebar heading/button padding mismatch
# ---------------------------------------------------------------------------
_HEADING_PADDING_RE = re.compile(r'h3[^>]*className="[^"]*px-(\d+)')
_BUTTON_PADDING_RE = re.compile(r"button[^>]*className[^>]*px-(\d+)")
_PADDED_LINE_RE = re.compile(r'className="[^"]*px-\d+')
_HEADING_FIX_RE = re.compile(r'(h3\s+className="[^"]*?)px-\d+([^"]*Department)')
_BUTTON_FIX_RE = re.compile(r"(w-full text-left justify-start\s+)px-\d+(\s+py-2 rounded-lg text-sm)")


def _detect_sidebar_alignment(ctx: TraceContext) -> TraceDetection:
    shop = next(((p, c) for p, c in ctx.files.items() if "ShopPage.jsx" in p), None)
    if shop is None:
        return not_detected("p2", "No ShopPage found")

    path, content = shop
    heading = _HEADING_PADDING_RE.search(content)
    button = _BUTTON_PADDING_RE.search(content)
    if heading and button and heading.group(1) != button.group(1):
        lines = [affected(path, n, s) for n, s in find_lines(content, _PADDED_LINE_RE)[:2]]
        return TraceDetection(
            detected=True,
            severity="p2",
            details=f"Sidebar heading uses px-{heading.group(1)} but buttons use px-{button.group(1)}",
            affected_files=[path],
            affected_lines=lines,
        )
    return not_detected("p2", "Sidebar padding is consistent")


def _fix_sidebar_alignment(source: str, detection: TraceDetection) -> str:
    result = _HEADING_FIX_RE.sub(r"\1px-3\2", source)
    return _BUTTON_FIX_RE.sub(r"\1px-3\2", result)


# ---------------------------------------------------------------------------
# SH9-005: unresolved handler stub
# ---------------------------------------------------------------------------
_STUB_RE = re.compile(r"console\.log\('(\w+)',\s*\.\.\.args\)")


def _detect_handler_stub(ctx: TraceContext) -> TraceDetection:
    affected_files = []
    lines = []
    names = []
    for path, content in ctx.files.items():
        if not path.endswith(".jsx"):
            continue
        for n, snippet in find_lines(content, _STUB_RE):
            if path not in affected_files:
                affected_files.append(path)
            lines.append(affected(path, n, snippet))
            names.append(_STUB_RE.search(snippet).group(1))

    return TraceDetection(
        detected=bool(lines),
        severity="p1",
        details=(
            f"Found {len(lines)} unresolved handler stub(s): {', '.join(names)}"
            if lines else "No unresolved handler stubs detected"
        ),
        affected_files=affected_files,
        affected_lines=lines,
    )


# ---------------------------------------------------------------------------
# SH9-006: handler contract scaffold without executable target
# ---------------------------------------------------------------------------
_SCAFFOLD_RE = re.compile(r"res\.json\(\{\s*success:\s*true,\s*handler:\s*'(\w+)',\s*received:")


def _detect_handler_scaffold(ctx: TraceContext) -> TraceDetection:
    affected_files = []
    lines = []
    names = []
    for path, content in ctx.files.items():
        if not path.endswith(".ts"):
            continue
        for n, snippet in find_lines(content, _SCAFFOLD_RE):
            if path not in affected_files:
                affected_files.append(path)
            lines.append(affected(path, n, snippet))
            names.append(_SCAFFOLD_RE.search(snippet).group(1))

    return TraceDetection(
        detected=bool(lines),
        severity="p2",
        details=(
            f"Found {len(lines)} scaffold-only handler endpoint(s): {', '.join(names)}"
            if lines else "All handler contracts have executable targets"
        ),
        affected_files=affected_files,
        affected_lines=lines,
    )


def _identity(source: str, detection: TraceDetection) -> str:
    return source


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
TRANSPILER_TRACE_RULES = (
    TraceRule(
        id="SH9-001",
        name="CSS element selector specificity fight",
        lane=LANE_TRANSPILER,
        classification_ids=("style-specificity-conflict", "style-global-selector-leak", "css-specificity-fight"),
        target_file="src/transpiler/scaffold.ts",
        target_function="generateIndexCss",
        strategy="wrap-selector",
        description="Wrap bare element selectors in :where() so utility classes win.",
        detect=_detect_css_specificity,
        fix=_fix_css_specificity,
    ),
    TraceRule(
        id="SH9-002",
        name="Page exists but unreachable in App.jsx",
        lane=LANE_TRANSPILER,
        classification_ids=("codegen-route-navigation-bug", "runtime-navigation-failure", "dead-cta", "element-not-found"),
        target_file="src/transpiler/react/index.ts",
        target_function="generateApp",
        strategy="add-import-route",
        description="Add the missing import for pages that App.jsx never references.",
        detect=_detect_page_unreachable,
        fix=_fix_page_unreachable,
    ),
    TraceRule(
        id="SH9-003",
        name="Double Layout wrapping in page components",
        lane=LANE_TRANSPILER,
        classification_ids=("layout-auth-wrapper-composition", "element-not-found"),
        target_file="src/transpiler/react/page-gen.ts",
        target_function="generatePageComponents",
        strategy="remove-wrapper",
        description="Remove Layout import and wrapper from pages already wrapped by App.jsx.",
        detect=_detect_double_layout,
        fix=_fix_double_layout,
    ),
    TraceRule(
        id="SH9-004",
        name="Sidebar heading/button padding mismatch",
        lane=LANE_TRANSPILER,
        classification_ids=("layout-alignment-regression",),
        target_file="src/transpiler/index.ts",
        target_function="generateEcommercePages",
        strategy="add-class",
        description="Align sidebar heading and button horizontal padding to px-3.",
        detect=_detect_sidebar_alignment,
        fix=_fix_sidebar_alignment,
    ),
    TraceRule(
        id="SH9-005",
        name="Unresolved handler stub (dead CTA)",
        lane=LANE_TRANSPILER,
        classification_ids=("dead-cta", "unresolved-handler-stub"),
        target_file="src/transpiler/react/mutation-gen.ts",
        target_function="generateMutations",
        strategy="normalize-token",
        description="Declare a @handler contract for the mutation in the description source.",
        detect=_detect_handler_stub,
        fix=_identity,
    ),
    TraceRule(
        id="SH9-006",
        name="Handler contract scaffold (no executable target)",
        lane=LANE_TRANSPILER,
        classification_ids=("handler-scaffold-only", "handler-runtime-execution-failure"),
        target_file="src/transpiler/express/api-router-gen.ts",
        target_function="generateHandlerContractEndpoint",
        strategy="add-target",
        description="Give the @handler contract an executable target in the description source.",
        detect=_detect_handler_scaffold,
        fix=_identity,
    ),
)
