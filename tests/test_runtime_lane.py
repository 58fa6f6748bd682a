"""
Runtime Lane Tests
==================
Environment issue classification and idempotent remediation actions.
"""
import subprocess
from unittest.mock import patch

from selfheal.lanes.runtime_lane import (
    RemediationContext,
    RuntimeIssue,
    classify_runtime_issues,
    has_runtime_issues,
    run_remediation,
)

from probe_doubles import make_probe_result, make_step_result


def _app(tmp_path, modules=False):
    out = tmp_path / "output"
    for name in ("client", "server"):
        (out / name).mkdir(parents=True)
        (out / name / "package.json").write_text("{}")
        if modules:
            (out / name / "node_modules").mkdir()
    return out


# ===================================================================
# Classifier
# ===================================================================
def test_refused_preflight_means_server_not_running(tmp_path):
    probe = make_probe_result(
        [], preflight_status="fail",
        preflight_error="App not reachable at http://localhost:3001/api/health — connection refused",
    )
    issues = classify_runtime_issues(probe, str(tmp_path / "none"), has_backend=True)
    assert [i.kind for i in issues] == ["server-not-running"]
    assert issues[0].severity == "critical"

    http_500 = make_probe_result([], preflight_status="fail", preflight_error="App not reachable — HTTP 500")
    assert classify_runtime_issues(http_500, str(tmp_path), True)[0].kind == "preflight-health-down"


def test_console_and_directory_signals_sorted_by_severity(tmp_path):
    out = _app(tmp_path)
    step = make_step_result(
        action="check_console",
        failure_reason="Console errors detected: 3",
        console_errors=[
            "Error: invalid token signature",
            "Error: Cannot find module 'express'",
            "PrismaClientInitializationError: database unreachable",
        ],
        network_requests=["GET http://localhost:3001/api/items net::ERR_CONNECTION_REFUSED"],
    )
    issues = classify_runtime_issues(make_probe_result([step]), str(out), has_backend=True)
    kinds = [i.kind for i in issues]

    assert kinds[0] == "db-connection-failure"
    assert kinds[-1] == "auth-session-boot"
    assert "port-conflict" in kinds
    assert kinds.count("dependency-missing") == 3


def test_has_runtime_issues():
    clean = make_probe_result([make_step_result(action="assert_visible", failure_reason="Element not visible: #x")])
    assert has_runtime_issues(clean) is False

    refused = make_probe_result([make_step_result(network_requests=["ERR_CONNECTION_REFUSED"])])
    assert has_runtime_issues(refused) is True
    assert has_runtime_issues(make_probe_result([], preflight_status="fail")) is True


# ===================================================================
# Actions
# ===================================================================
def test_dry_run_skips_every_action(tmp_path):
    out = _app(tmp_path)
    issues = [
        RuntimeIssue("dependency-missing", "high", "x"),
        RuntimeIssue("db-connection-failure", "critical", "x"),
    ]
    report = run_remediation(issues, RemediationContext(output_dir=str(out), dry_run=True))

    assert [a.status for a in report.actions] == ["skip", "skip"]
    assert report.issues_fixed == 0
    assert report.issues_pending == 2
    assert not (out / "server" / ".env").exists()


def test_create_env_is_idempotent(tmp_path):
    out = _app(tmp_path)
    ctx = RemediationContext(output_dir=str(out), server_port=4001)
    issues = [RuntimeIssue("db-connection-failure", "critical", "x")]

    first = run_remediation(issues, ctx)
    content = (out / "server" / ".env").read_text()
    assert first.actions[0].status == "pass"
    assert 'DATABASE_URL="file:./dev.db"' in content
    assert "PORT=4001" in content

    second = run_remediation(issues, ctx)
    assert second.actions[0].status == "skip"
    assert (out / "server" / ".env").read_text() == content


def test_jwt_secret_appended_to_existing_env(tmp_path):
    out = _app(tmp_path)
    (out / "server" / ".env").write_text('DATABASE_URL="postgres://db"')
    report = run_remediation(
        [RuntimeIssue("auth-session-boot", "medium", "x")],
        RemediationContext(output_dir=str(out)),
    )
    assert report.issues_fixed == 1
    content = (out / "server" / ".env").read_text()
    assert content.startswith('DATABASE_URL="postgres://db"')
    assert "JWT_SECRET=" in content


@patch("selfheal.lanes.runtime_lane.subprocess.run")
def test_install_dependencies_runs_npm_in_each_app_dir(mock_run, tmp_path):
    out = _app(tmp_path)
    mock_run.return_value = subprocess.CompletedProcess(args=[], returncode=0)

    report = run_remediation([RuntimeIssue("dependency-missing", "high", "x")], RemediationContext(output_dir=str(out)))

    assert report.actions[0].status == "pass"
    cwds = [call.kwargs["cwd"] for call in mock_run.call_args_list]
    assert cwds == [str(out / "client"), str(out / "server")]


@patch("selfheal.lanes.runtime_lane.subprocess.run")
def test_npm_failure_reported(mock_run, tmp_path):
    out = _app(tmp_path)
    mock_run.side_effect = subprocess.CalledProcessError(1, ["npm", "install"])
    report = run_remediation([RuntimeIssue("dependency-missing", "high", "x")], RemediationContext(output_dir=str(out)))
    assert report.actions[0].status == "fail"
    assert report.issues_fixed == 0


def test_one_action_per_kind_and_cap(tmp_path):
    out = _app(tmp_path)
    (out / "server" / "server.ts").write_text("app.get('/api/health', ok)")
    issues = [
        RuntimeIssue("server-not-running", "critical", "x"),
        RuntimeIssue("server-not-running", "critical", "again"),
        RuntimeIssue("preflight-health-down", "critical", "x"),
        RuntimeIssue("unknown-kind", "medium", "x"),
    ]
    report = run_remediation(issues, RemediationContext(output_dir=str(out)))
    assert [a.action_id for a in report.actions] == ["REM-006", "REM-007"]
    assert [a.status for a in report.actions] == ["info", "info"]
    assert report.issues_fixed == 0
    assert report.issues_pending == 4

    capped = run_remediation(issues, RemediationContext(output_dir=str(out)), max_actions=1)
    assert [a.action_id for a in capped.actions] == ["REM-006"]
    assert "actions" in capped.to_dict()


def test_read_only_checks_never_count_as_fixes(tmp_path):
    out = _app(tmp_path, modules=True)
    (out / "server" / "server.ts").write_text("app.get('/api/health', ok)")
    issues = [
        RuntimeIssue("preflight-health-down", "critical", "x"),
        RuntimeIssue("port-conflict", "high", "x"),
    ]
    with patch("selfheal.lanes.runtime_lane.subprocess.run") as mock_run:
        mock_run.return_value = subprocess.CompletedProcess(args=[], returncode=1, stdout="")
        report = run_remediation(issues, RemediationContext(output_dir=str(out)))

    assert [(a.action_id, a.status) for a in report.actions] == [("REM-007", "info"), ("REM-004", "info")]
    assert report.issues_fixed == 0
    assert report.issues_pending == 2


def test_missing_health_route_is_a_failed_check(tmp_path):
    out = _app(tmp_path, modules=True)
    (out / "server" / "server.ts").write_text("app.listen(3001)")
    report = run_remediation(
        [RuntimeIssue("preflight-health-down", "critical", "x")], RemediationContext(output_dir=str(out)),
    )
    assert report.actions[0].status == "fail"
    assert report.issues_fixed == 0
