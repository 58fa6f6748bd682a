"""
Runtime Remediation Lane
========================
Classifies environment failures that are not generator defects and runs
deterministic, idempotent remediation actions for them.

Issue kinds:
    preflight-health-down, server-not-running, db-connection-failure,
    dependency-missing, migration-seed-missing, port-conflict,
    auth-session-boot

Rules:
    - At most one action per issue kind and REMEDIATION_MAX_ACTIONS per run.
    - Actions only touch the generated app's infrastructure files
      (.env, node_modules, database); never generator source.
    - Every action honours dry_run and reports "skip" without side effects.
    - Read-only checks (REM-004, REM-006, REM-007) report "info" when
      nothing is wrong; only "pass" (something was changed) counts as fixed.
"""
import logging
import os
import subprocess
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional

from selfheal.core.config import CLIENT_PORT, REMEDIATION_MAX_ACTIONS, SERVER_PORT
from selfheal.models.probe_result import ProbeResult

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2}

_NPM_INSTALL_TIMEOUT = 60
_PRISMA_TIMEOUT = 30
_LSOF_TIMEOUT = 5

_RUNTIME_HINTS = (
    "econnrefused", "module not found", "cannot find module", "err_module_not_found",
    "prisma", "database", "eaddrinuse", "jwt", "unauthorized",
)
_NETWORK_FAILURE_HINTS = ("ERR_CONNECTION_REFUSED", "EADDRINUSE")

STATUS_FIXED = "pass"
STATUS_INFO = "info"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------
@dataclass
class RuntimeIssue:
    kind: str
    severity: str
    details: str
    evidence: List[str] = field(default_factory=list)


@dataclass
class RemediationContext:
    output_dir: str
    client_port: int = CLIENT_PORT
    server_port: int = SERVER_PORT
    has_backend: bool = True
    dry_run: bool = False


@dataclass
class RemediationActionResult:
    action_id: str
    status: str  # pass / fail / skip / info
    description: str
    details: str
    duration_ms: int = 0


@dataclass
class RemediationReport:
    issues: List[RuntimeIssue]
    actions: List[RemediationActionResult]
    issues_fixed: int
    issues_pending: int
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RemediationAction:
    id: str
    kind: str
    description: str
    execute: Callable[[RemediationContext], RemediationActionResult]


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------
def _add_once(issues: List[RuntimeIssue], issue: RuntimeIssue) -> None:
    if not any(i.kind == issue.kind for i in issues):
        issues.append(issue)


def classify_runtime_issues(probe_result: ProbeResult, output_dir: str, has_backend: bool) -> List[RuntimeIssue]:
    """
    Classify environment issues from preflight, console text, network log
    and the generated app's directory state.

    Returns
    -------
    list[RuntimeIssue]
        Sorted critical -> high -> medium.
    """
    issues: List[RuntimeIssue] = []

    if probe_result.preflight.status == "fail":
        error = probe_result.preflight.error or "unknown"
        lowered = error.lower()
        if "connection refused" in lowered or "econnrefused" in lowered or "connecterror" in lowered:
            issues.append(RuntimeIssue("server-not-running", "critical", f"Server not responding: {error}", [error]))
        else:
            issues.append(RuntimeIssue("preflight-health-down", "critical", f"Health check failed: {error}", [error]))

    for line in (e for step in probe_result.steps for e in step.evidence.console_errors if e):
        lower = line.lower()
        if "prisma" in lower or "database" in lower or ("econnrefused" in lower and "5432" in lower):
            _add_once(issues, RuntimeIssue("db-connection-failure", "critical", "Database connection failed", [line]))
        if "module not found" in lower or "cannot find module" in lower or "err_module_not_found" in lower:
            _add_once(issues, RuntimeIssue("dependency-missing", "high", "Missing npm dependency detected", [line]))
        if ("migration" in lower
                or ("table" in lower and "does not exist" in lower)
                or ("relation" in lower and "does not exist" in lower)):
            _add_once(issues, RuntimeIssue("migration-seed-missing", "high", "Database migration or seed data missing", [line]))
        if ("jwt" in lower
                or ("token" in lower and "invalid" in lower)
                or "unauthorized" in lower
                or ("session" in lower and "expired" in lower)):
            _add_once(issues, RuntimeIssue("auth-session-boot", "medium", "Auth/session boot issue detected", [line]))

    app_dirs = (
        [("Server", os.path.join(output_dir, "server")), ("Client", os.path.join(output_dir, "client"))]
        if has_backend else [("Client", output_dir)]
    )
    for name, directory in app_dirs:
        if os.path.isdir(directory) and not os.path.isdir(os.path.join(directory, "node_modules")):
            issues.append(RuntimeIssue(
                "dependency-missing", "high", f"{name} node_modules missing",
                [f"{directory}/node_modules not found"],
            ))

    network_errors = [
        r for step in probe_result.steps for r in step.evidence.network_requests
        if r and any(h in r for h in _NETWORK_FAILURE_HINTS)
    ]
    if network_errors:
        _add_once(issues, RuntimeIssue(
            "port-conflict", "high", "Port conflict or connection refused on expected port", network_errors,
        ))

    issues.sort(key=lambda i: SEVERITY_ORDER[i.severity])
    return issues


def has_runtime_issues(probe_result: ProbeResult) -> bool:
    """Quick check: could runtime remediation help this probe run?"""
    if probe_result.preflight.status == "fail":
        return True
    for step in probe_result.steps:
        if any(h in r for r in step.evidence.network_requests for h in _NETWORK_FAILURE_HINTS):
            return True
        for line in step.evidence.console_errors:
            lower = line.lower()
            if any(h in lower for h in _RUNTIME_HINTS):
                return True
    return False


# ---------------------------------------------------------------------------
# Remediation Actions
# ---------------------------------------------------------------------------
def _elapsed(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _dry(action_id: str, description: str) -> RemediationActionResult:
    return RemediationActionResult(action_id, "skip", f"{description} (dry run)", "Skipped in dry run")


def _install_dependencies(ctx: RemediationContext) -> RemediationActionResult:
    if ctx.dry_run:
        return _dry("REM-001", "Install dependencies")
    start = time.monotonic()

    candidates = (
        [os.path.join(ctx.output_dir, "client"), os.path.join(ctx.output_dir, "server")]
        if ctx.has_backend else [ctx.output_dir]
    )
    dirs = [d for d in candidates if os.path.isfile(os.path.join(d, "package.json"))]

    done = []
    for directory in dirs:
        try:
            subprocess.run(
                ["npm", "install", "--prefer-offline"],
                cwd=directory, check=True, capture_output=True, text=True, timeout=_NPM_INSTALL_TIMEOUT,
            )
            done.append(f"Installed deps in {directory}")
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            return RemediationActionResult(
                "REM-001", "fail", "Install dependencies",
                f"npm install failed in {directory}: {e}", _elapsed(start),
            )

    return RemediationActionResult(
        "REM-001", "pass" if dirs else "skip", "Install dependencies",
        "; ".join(done) or "No package.json found", _elapsed(start),
    )


def _read_text(path: str) -> Optional[str]:
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _create_env(ctx: RemediationContext) -> RemediationActionResult:
    if ctx.dry_run:
        return _dry("REM-002", "Create .env")
    start = time.monotonic()
    server_dir = os.path.join(ctx.output_dir, "server")
    env_path = os.path.join(server_dir, ".env")

    if not os.path.isdir(server_dir):
        return RemediationActionResult("REM-002", "skip", "Create .env", "No server directory", _elapsed(start))

    existing = _read_text(env_path)
    if existing is not None and "DATABASE_URL" in existing:
        return RemediationActionResult("REM-002", "skip", "Create .env", "DATABASE_URL already set", _elapsed(start))

    lines = [
        "# Generated by selfheal runtime remediation",
        'DATABASE_URL="file:./dev.db"',
        'JWT_SECRET="dev-secret-change-in-production"',
        f"PORT={ctx.server_port}",
        "",
    ]
    with open(env_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))
    return RemediationActionResult(
        "REM-002", "pass", "Create .env with SQLite fallback",
        f"Created {env_path} with DATABASE_URL=file:./dev.db", _elapsed(start),
    )


def _push_schema(ctx: RemediationContext) -> RemediationActionResult:
    if ctx.dry_run:
        return _dry("REM-003", "Run migration/seed")
    start = time.monotonic()
    server_dir = os.path.join(ctx.output_dir, "server")
    if not os.path.isdir(os.path.join(server_dir, "prisma")):
        return RemediationActionResult("REM-003", "skip", "Run migration/seed", "No prisma directory", _elapsed(start))

    try:
        subprocess.run(
            ["npx", "prisma", "db", "push", "--accept-data-loss"],
            cwd=server_dir, check=True, capture_output=True, text=True, timeout=_PRISMA_TIMEOUT,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        return RemediationActionResult(
            "REM-003", "fail", "Run Prisma db push", f"prisma db push failed: {e}", _elapsed(start),
        )
    return RemediationActionResult(
        "REM-003", "pass", "Run Prisma db push", "Database schema pushed successfully", _elapsed(start),
    )


def _check_ports(ctx: RemediationContext) -> RemediationActionResult:
    if ctx.dry_run:
        return _dry("REM-004", "Check ports")
    start = time.monotonic()
    conflicts = []
    for port in (ctx.client_port, ctx.server_port):
        try:
            completed = subprocess.run(
                ["lsof", "-i", f":{port}", "-t"],
                capture_output=True, text=True, timeout=_LSOF_TIMEOUT,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug("lsof unavailable for port %s: %s", port, e)
            continue
        pid = completed.stdout.strip()
        if completed.returncode == 0 and pid:
            conflicts.append(f"Port {port} in use by PID {pid.splitlines()[0]}")

    return RemediationActionResult(
        "REM-004", "fail" if conflicts else STATUS_INFO, "Check port availability",
        "; ".join(conflicts) if conflicts else "Ports available", _elapsed(start),
    )


def _ensure_jwt_secret(ctx: RemediationContext) -> RemediationActionResult:
    if ctx.dry_run:
        return _dry("REM-005", "Check JWT_SECRET")
    start = time.monotonic()
    server_dir = os.path.join(ctx.output_dir, "server")
    env_path = os.path.join(server_dir, ".env")

    if not os.path.isdir(server_dir):
        return RemediationActionResult("REM-005", "skip", "Check JWT_SECRET", "No server directory", _elapsed(start))

    existing = _read_text(env_path)
    if existing is not None and "JWT_SECRET" in existing:
        return RemediationActionResult("REM-005", "skip", "Check JWT_SECRET", "JWT_SECRET already set", _elapsed(start))

    secret_line = 'JWT_SECRET="dev-secret-change-in-production"\n'
    with open(env_path, "w", encoding="utf-8") as f:
        f.write((existing + "\n" + secret_line) if existing else secret_line)
    return RemediationActionResult(
        "REM-005", "pass", "Set JWT_SECRET in .env", f"Added JWT_SECRET to {env_path}", _elapsed(start),
    )


def _check_server_entry(ctx: RemediationContext) -> RemediationActionResult:
    if ctx.dry_run:
        return _dry("REM-006", "Check server")
    start = time.monotonic()
    if not ctx.has_backend:
        return RemediationActionResult("REM-006", "skip", "Check server", "No backend", _elapsed(start))
    if not os.path.isfile(os.path.join(ctx.output_dir, "server", "server.ts")):
        return RemediationActionResult(
            "REM-006", "fail", "Check server entry", "server.ts not found in server directory", _elapsed(start),
        )
    return RemediationActionResult(
        "REM-006", STATUS_INFO, "Server entry file exists",
        "server.ts found; the dev server manages the process", _elapsed(start),
    )


def _check_health_route(ctx: RemediationContext) -> RemediationActionResult:
    if ctx.dry_run:
        return _dry("REM-007", "Check health endpoint")
    start = time.monotonic()
    entry = os.path.join(ctx.output_dir, "server", "server.ts")
    content = _read_text(entry)
    if content is None:
        return RemediationActionResult("REM-007", "skip", "Check health endpoint", "No server.ts", _elapsed(start))
    if "/api/health" in content or "/health" in content:
        return RemediationActionResult(
            "REM-007", STATUS_INFO, "Health endpoint present", "/api/health route found in server.ts", _elapsed(start),
        )
    return RemediationActionResult(
        "REM-007", "fail", "Health endpoint missing", "No /api/health route found in server.ts", _elapsed(start),
    )


REMEDIATION_ACTIONS = (
    RemediationAction("REM-001", "dependency-missing", "Install missing npm dependencies", _install_dependencies),
    RemediationAction("REM-002", "db-connection-failure", "Create .env with default DATABASE_URL if missing", _create_env),
    RemediationAction("REM-003", "migration-seed-missing", "Run Prisma migration and seed", _push_schema),
    RemediationAction("REM-004", "port-conflict", "Detect and report port conflicts", _check_ports),
    RemediationAction("REM-005", "auth-session-boot", "Ensure JWT_SECRET is set in .env", _ensure_jwt_secret),
    RemediationAction("REM-006", "server-not-running", "Verify server process entry", _check_server_entry),
    RemediationAction("REM-007", "preflight-health-down", "Verify health endpoint configuration", _check_health_route),
)

_ACTIONS_BY_KIND: Dict[str, RemediationAction] = {a.kind: a for a in REMEDIATION_ACTIONS}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------
def run_remediation(
    issues: List[RuntimeIssue],
    ctx: RemediationContext,
    max_actions: int = REMEDIATION_MAX_ACTIONS,
) -> RemediationReport:
    """
    Run one remediation action per issue kind, in issue order.

    Parameters
    ----------
    issues : list[RuntimeIssue]
        Output of classify_runtime_issues (already severity-sorted).
    ctx : RemediationContext
        Where the generated app lives and whether to run dry.
    max_actions : int
        Upper bound on actions executed.
    """
    start = time.monotonic()
    results: List[RemediationActionResult] = []
    handled = set()

    for issue in issues:
        if issue.kind in handled:
            continue
        if len(results) >= max_actions:
            break
        action = _ACTIONS_BY_KIND.get(issue.kind)
        if action is None:
            continue
        handled.add(issue.kind)
        try:
            result = action.execute(ctx)
        except OSError as e:
            result = RemediationActionResult(action.id, "fail", action.description, str(e))
        logger.info("[RUNTIME] %s %s | status=%s | %s", action.id, issue.kind, result.status, result.details)
        results.append(result)

    fixed = sum(1 for r in results if r.status == STATUS_FIXED)
    return RemediationReport(
        issues=issues,
        actions=results,
        issues_fixed=fixed,
        issues_pending=max(0, len(issues) - fixed),
        duration_ms=_elapsed(start),
    )
