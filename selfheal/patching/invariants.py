"""
Output Invariants
=================
Deterministic checks for known bad patterns in generated output.

Each invariant is a pure function over the generated-output map
(relative path -> content) returning an InvariantResult. The patch
engine runs the whole registry against post-patch output; invariants
tagged "style" double as the default style-contract check.

    INV-001  paginated list fetch unwrapping       p1
    INV-002  auth pages not wrapped in Layout      p1
    INV-003  no global submit width: 100%          p2  style
    INV-004  public routes exempt from auth        p0
    INV-005  public API calls send no auth header  p1
    INV-006  slug routes look up by slug           p1
    INV-007  no bare element selectors in CSS      p2  style
"""
import re
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from selfheal.models.patch import InvariantResult, InvariantSummary

STYLE_TAG = "style"


@dataclass(frozen=True)
class Invariant:
    id: str
    name: str
    severity: str
    check: Callable[[Mapping[str, str]], Tuple[List[str], Optional[str]]]
    ok_details: str
    tags: Tuple[str, ...] = ()
    skip_when: Optional[Callable[[Mapping[str, str]], Optional[str]]] = None

    def run(self, files: Mapping[str, str]) -> InvariantResult:
        if self.skip_when is not None:
            reason = self.skip_when(files)
            if reason:
                return self._result(True, reason, None)
        violations, file_path = self.check(files)
        if not violations:
            return self._result(True, self.ok_details, None)
        details = f"{self.name}: {len(violations)} violation(s):\n" + "\n".join(violations)
        return self._result(False, details, file_path)

    def _result(self, passed: bool, details: str, file_path: Optional[str]) -> InvariantResult:
        return InvariantResult(
            id=self.id,
            name=self.name,
            passed=passed,
            severity=self.severity,
            details=details,
            tags=list(self.tags),
            file_path=file_path,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _get_file(files: Mapping[str, str], needle: str):
    for path, content in files.items():
        if needle in path:
            return path, content
    return None


def _get_files(files: Mapping[str, str], needle: str):
    return [(path, content) for path, content in files.items() if needle in path]


def _first_path(violations: List[str]) -> Optional[str]:
    return violations[0].split(":")[0] if violations else None


# ---------------------------------------------------------------------------
# INV-001: paginated list fetch unwrapping
# ---------------------------------------------------------------------------
_DIRECT_FETCH_RE = re.compile(
    r"api\.get\w+\(\)\.then\(\s*(?:r|res|result)\s*=>\s*set\w+\((?:r|res|result)\s*\)\s*\)"
)


def _check_paginated_unwrapping(files):
    violations = []
    for path, content in _get_files(files, "pages/"):
        for match in _DIRECT_FETCH_RE.finditer(content):
            violations.append(f"{path}: {match.group(0)[:60]}...")
    return violations, _first_path(violations)


# ---------------------------------------------------------------------------
# INV-002: auth wrapper composition
# ---------------------------------------------------------------------------
_AUTH_PAGES = ("LoginPage", "SignupPage", "RegisterPage")


def _skip_without_app(files):
    return None if _get_file(files, "App.jsx") else "No App.jsx found, skipped."


def _check_auth_wrapper(files):
    path, content = _get_file(files, "App.jsx")
    lines = content.split("\n")
    violations = []
    for page in _AUTH_PAGES:
        if page not in content:
            continue
        for i, line in enumerate(lines):
            if f"<{page}" not in line:
                continue
            window = lines[max(0, i - 5):i]
            if any("<Layout" in prev for prev in window):
                violations.append(f"{path}:{i + 1}: {page} wrapped in <Layout>")
    return violations, path if violations else None


# ---------------------------------------------------------------------------
# INV-003: global auth submit width
# ---------------------------------------------------------------------------
_SUBMIT_RULE_RE = re.compile(r"""^button\s*\[type=["']submit["']\]\s*\{""")
_BUTTON_RULE_RE = re.compile(r"^button\s*\{")
_INLINE_WIDTH_RE = re.compile(
    r"""^(?:button|input)\s*(?:\[type=["']submit["']\])?\s*\{[^}]*width:\s*100%""",
    re.IGNORECASE,
)


def _check_submit_width(files):
    violations = []
    for path, content in _get_files(files, ".css"):
        lines = content.split("\n")
        for i, raw in enumerate(lines):
            line = raw.strip()
            if _SUBMIT_RULE_RE.match(line) or _BUTTON_RULE_RE.match(line):
                for j in range(i, min(len(lines), i + 5)):
                    if "width" in lines[j] and "100%" in lines[j]:
                        violations.append(f"{path}:{j + 1}: Unscoped button width: 100% rule")
            if _INLINE_WIDTH_RE.match(line):
                violations.append(f"{path}:{i + 1}: Unscoped button/submit width: 100% rule")
    return violations, _first_path(violations)


# ---------------------------------------------------------------------------
# INV-004: public route auth exemption
# ---------------------------------------------------------------------------
_ROUTE_VERBS = ("router.get", "router.post", "router.put", "router.delete")


def _skip_without_public_routes(files):
    if any("/public/" in content for content in files.values()):
        return None
    return "No /public/ routes found, skipped."


def _check_public_route_auth(files):
    server = _get_file(files, "server.ts") or _get_file(files, "server.js")
    api = _get_file(files, "api.ts") or _get_file(files, "api.js")
    violations = []

    if server:
        path, content = server
        if not ("/public/" in content and "next()" in content):
            violations.append(f"{path}: Auth middleware does not exempt /public/ paths")

    if api:
        path, content = api
        global_guard = bool(server and "requireAuth" in server[1])
        for line in content.split("\n"):
            if not any(verb in line for verb in _ROUTE_VERBS):
                continue
            if "/public/" in line or "/auth/" in line or "/health" in line:
                continue
            if "requireAuth" not in line and server and not global_guard:
                violations.append(f"{path}: Non-public route may lack auth guard: {line.strip()[:80]}")

    return violations, _first_path(violations)


# ---------------------------------------------------------------------------
# INV-005: public API auth-header
# ---------------------------------------------------------------------------
_PUBLIC_FN_RE = re.compile(
    r"export\s+async\s+function\s+(getPublic\w+|createPublic\w+|submitPublic\w+)\s*\([^)]*\)\s*\{"
)


def _skip_without_api_client(files):
    if _get_file(files, "api.js") or _get_file(files, "api.ts"):
        return None
    return "No api.js/api.ts found, skipped."


def _check_public_api_headers(files):
    path, content = _get_file(files, "api.js") or _get_file(files, "api.ts")
    violations = []
    for match in _PUBLIC_FN_RE.finditer(content):
        next_fn = content.find("\nexport ", match.start() + 1)
        body = content[match.start():] if next_fn == -1 else content[match.start():next_fn]
        if "authHeaders()" in body or "Authorization" in body:
            line = content.count("\n", 0, match.start()) + 1
            violations.append(f"{path}:{line}: {match.group(1)}() sends auth headers on public endpoint")
    return violations, path if violations else None


# ---------------------------------------------------------------------------
# INV-006: slug route support
# ---------------------------------------------------------------------------
def _server_files(files):
    found = []
    for needle in ("server.ts", "api.ts", "server.js", "api.js"):
        found.extend(_get_files(files, needle))
    return found


def _has_slug(content: str) -> bool:
    return ":slug" in content or "req.params.slug" in content


def _skip_without_slug(files):
    if any(_has_slug(content) for _, content in _server_files(files)):
        return None
    return "No :slug routes found, skipped."


def _check_slug_routes(files):
    violations = []
    for path, content in _server_files(files):
        if not _has_slug(content):
            continue
        has_lookup = "findFirst" in content or "findUnique" in content
        has_where = "slug" in content and ("where" in content or "req.params" in content)
        if not has_lookup or not has_where:
            violations.append(f"{path}: :slug route does not use findFirst/findUnique with slug where clause")
    return violations, _first_path(violations)


# ---------------------------------------------------------------------------
# INV-007: bare element selectors in generated CSS
# ---------------------------------------------------------------------------
_BARE_ELEMENT_RE = re.compile(
    r"^(h[1-6]|p|button|table|th|td|tbody|input|select|textarea|aside)\s*\{"
)


def _check_bare_selectors(files):
    violations = []
    for path, content in _get_files(files, ".css"):
        for i, line in enumerate(content.split("\n"), start=1):
            if _BARE_ELEMENT_RE.match(line):
                violations.append(f"{path}:{i}: bare element selector '{line.strip()[:40]}'")
    return violations, _first_path(violations)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
INVARIANTS = (
    Invariant("INV-001", "Paginated list fetch unwrapping", "p1", _check_paginated_unwrapping,
              "All list fetches properly unwrap paginated responses."),
    Invariant("INV-002", "Auth wrapper composition", "p1", _check_auth_wrapper,
              "Auth pages are not wrapped in Layout.", skip_when=_skip_without_app),
    Invariant("INV-003", "Global auth submit width", "p2", _check_submit_width,
              "No unscoped button width: 100% rules found.", tags=(STYLE_TAG,)),
    Invariant("INV-004", "Public route auth exemption", "p0", _check_public_route_auth,
              "Public routes exempted from auth; protected routes guarded.",
              skip_when=_skip_without_public_routes),
    Invariant("INV-005", "Public API auth-header", "p1", _check_public_api_headers,
              "Public API functions do not send Authorization headers.",
              skip_when=_skip_without_api_client),
    Invariant("INV-006", "Slug route support", "p1", _check_slug_routes,
              "Slug routes properly use findFirst/findUnique with slug lookup.",
              skip_when=_skip_without_slug),
    Invariant("INV-007", "Element selector specificity", "p2", _check_bare_selectors,
              "All element selectors in generated CSS are wrapped in :where().", tags=(STYLE_TAG,)),
)


def run_invariants(
    files: Mapping[str, str],
    invariants: Sequence[Invariant] = INVARIANTS,
) -> InvariantSummary:
    results = [inv.run(files) for inv in invariants]
    passed = sum(1 for r in results if r.passed)
    return InvariantSummary(
        total=len(results),
        passed=passed,
        failed=len(results) - passed,
        results=results,
    )


def style_invariants_passed(summary: InvariantSummary) -> bool:
    """Default style-contract gate: no style-tagged invariant failed."""
    return not any(
        STYLE_TAG in result.tags and not result.passed
        for result in summary.results
    )
