"""
Command Line
============
`selfheal probe` and `selfheal heal` entry points.

Usage:
    selfheal probe --flow flows/home.json [--no-headless] [--dry-run] [--record-missing]
    selfheal heal --flow flows/home.json --mode patch-verify [--max-attempts N]
                  [--source app.air] [--no-headless] [--dry-run] [--model-assisted]

Exit status:
    0 — verdict pass
    1 — verdict fail / partial, or an unexpected error
    2 — the flow document failed validation
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from selfheal.core.config import HEAL_MAX_ATTEMPTS
from selfheal.core.constants import BASELINE_COMPARE, BASELINE_RECORD_MISSING, HEAL_MODES, MODE_SHADOW
from selfheal.core.errors import FlowValidationError, SchemaValidationError
from selfheal.orchestrator.heal_loop import HealLoop, HealOptions
from selfheal.probe.flow_loader import load_flow
from selfheal.probe.runner import ProbeOptions, execute_flow
from selfheal.services.results_writer import ResultsWriter
from selfheal.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_INVALID_FLOW = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="selfheal", description="Probe a generated app and heal its generator.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    probe = sub.add_parser("probe", help="Run a flow once and write the probe result")
    probe.add_argument("--flow", required=True, help="Path to the flow document (.json/.yml)")
    probe.add_argument("--no-headless", dest="headless", action="store_false", help="Show the browser window")
    probe.add_argument("--dry-run", action="store_true", help="Skip browser and network activity")
    probe.add_argument("--record-missing", action="store_true", help="Record visual baselines that do not exist yet")

    heal = sub.add_parser("heal", help="Run one heal cycle")
    heal.add_argument("--flow", required=True, help="Path to the flow document (.json/.yml)")
    heal.add_argument("--mode", choices=HEAL_MODES, default=MODE_SHADOW, help="Heal mode (default: shadow)")
    heal.add_argument("--max-attempts", type=int, default=HEAL_MAX_ATTEMPTS, help="Verification attempts (1..5)")
    heal.add_argument("--source", dest="description_source", default=None,
                      help="Description source the generator consumes, relative to the project root")
    heal.add_argument("--no-headless", dest="headless", action="store_false", help="Show the browser window")
    heal.add_argument("--dry-run", action="store_true", help="Skip browser activity and every mutating action")
    heal.add_argument("--model-assisted", action="store_true", help="Attach model suggestions to proposals")
    return parser


def _probe(args: argparse.Namespace) -> int:
    flow = load_flow(args.flow)
    options = ProbeOptions(
        headless=args.headless,
        dry_run=args.dry_run,
        flow_path=args.flow,
        baseline_mode=BASELINE_RECORD_MISSING if args.record_missing else BASELINE_COMPARE,
    )
    result = asyncio.run(execute_flow(flow, options))
    try:
        path = ResultsWriter.write_probe_result(result)
    except (SchemaValidationError, OSError) as e:
        logger.error("[PROBE] Could not write result %s: %s", result.probe_run_id, e)
        path = None

    s = result.summary
    print(f"{result.probe_run_id}: {result.verdict.upper()} "
          f"({s.passed}/{s.total} passed, {s.failed} failed, {s.dead_ctas} dead CTAs)")
    if path:
        print(f"Result: {path}")
    return EXIT_PASS if result.verdict == "pass" else EXIT_FAIL


def _heal(args: argparse.Namespace) -> int:
    flow = load_flow(args.flow)
    options = HealOptions(
        mode=args.mode,
        max_attempts=args.max_attempts,
        dry_run=args.dry_run,
        headless=args.headless,
        model_assisted=args.model_assisted,
        description_source=args.description_source,
        flow_path=args.flow,
    )
    result = asyncio.run(HealLoop(flow, options).run())

    s = result.summary
    print(f"{result.loop_id}: {result.verdict.upper()} (mode={result.mode})")
    print(f"  incidents={s.incidents_created} proposed={s.patches_proposed} "
          f"verified={s.patches_passed}/{s.patches_verified} promoted={s.files_promoted} "
          f"failing_steps={s.failing_steps}")
    for lane in result.lanes:
        print(f"  [{lane.lane}] {lane.details}")
    for error in result.errors:
        print(f"  error: {error}", file=sys.stderr)
    return EXIT_PASS if result.verdict == "pass" else EXIT_FAIL


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=getattr(logging, str(args.log_level).upper(), logging.INFO))

    try:
        if args.command == "probe":
            return _probe(args)
        return _heal(args)
    except FlowValidationError as e:
        print(f"Invalid flow: {e}", file=sys.stderr)
        return EXIT_INVALID_FLOW
    except Exception as e:
        logger.exception("Command %s failed", args.command)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
