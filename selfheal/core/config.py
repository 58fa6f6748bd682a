"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    PROJECT_ROOT               — Generator source tree root (default: cwd)
    OUTPUT_DIR                 — Generated output directory, relative to root (default: output)
    ARTIFACTS_DIR              — Result/incident artifact root (default: artifacts)
    BASELINE_DIR               — Visual snapshot baselines (default: qa-baselines)
    HEAL_MAX_ATTEMPTS          — Verification attempts per heal cycle (default: 1, clamped 1..5)
    MAX_LINES_CHANGED          — Per-patch line-change ceiling (default: 50)
    MAX_FILES_PER_PATCH        — Max distinct files in one patch batch (default: 3)
    PREFLIGHT_RETRIES          — Health check attempts (default: 3)
    PREFLIGHT_TIMEOUT_SECONDS  — Per-attempt health check timeout (default: 5)
    PREFLIGHT_BACKOFF_SECONDS  — Linear backoff unit between attempts (default: 1.0)
    GENERATOR_COMMAND          — Generator invocation with {source} and {output} placeholders
    GENERATOR_TIMEOUT_SECONDS  — Max seconds for one re-generation (default: 30)
    GENERATOR_DOCKER_IMAGE     — Run re-generation inside this image (default: host)
    ANTHROPIC_API_KEY          — Enables the model-assisted enrichment strategy
    MODEL_ASSIST_MODEL         — Model name for enrichment calls
    ENABLE_HEAL_ENDPOINT       — Enable POST /heal/* endpoints (default: false)

Retry Limit:
    HEAL_MAX_ATTEMPTS bounds the verify loop. The loop is never unbounded;
    values outside 1..5 are clamped by the orchestrator.

Timeouts:
    Every suspension point (health check, click, popup race, generator
    subprocess) has an explicit timeout defined here.
"""
import os
from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = os.getenv("PROJECT_ROOT", os.getcwd())
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "output")
ARTIFACTS_DIR = os.getenv("ARTIFACTS_DIR", "artifacts")
BASELINE_DIR = os.getenv("BASELINE_DIR", "qa-baselines")

# Heal loop bounds
HEAL_MAX_ATTEMPTS = int(os.getenv("HEAL_MAX_ATTEMPTS", 1))
MIN_ATTEMPTS = 1
MAX_ATTEMPTS_CEILING = 5

# Patch scope limits
MAX_LINES_CHANGED = int(os.getenv("MAX_LINES_CHANGED", 50))
MAX_FILES_PER_PATCH = int(os.getenv("MAX_FILES_PER_PATCH", 3))

# Preflight health check
PREFLIGHT_RETRIES = int(os.getenv("PREFLIGHT_RETRIES", 3))
PREFLIGHT_TIMEOUT_SECONDS = float(os.getenv("PREFLIGHT_TIMEOUT_SECONDS", 5))
PREFLIGHT_BACKOFF_SECONDS = float(os.getenv("PREFLIGHT_BACKOFF_SECONDS", 1.0))

# Browser interaction timeouts (milliseconds, as the driver expects)
CLICK_TIMEOUT_MS = int(os.getenv("CLICK_TIMEOUT_MS", 5000))
DEAD_CONTROL_CLICK_TIMEOUT_MS = int(os.getenv("DEAD_CONTROL_CLICK_TIMEOUT_MS", 2000))
DEAD_CONTROL_SETTLE_MS = int(os.getenv("DEAD_CONTROL_SETTLE_MS", 2000))
POPUP_TIMEOUT_MS = int(os.getenv("POPUP_TIMEOUT_MS", 5000))
VISIBLE_TIMEOUT_MS = int(os.getenv("VISIBLE_TIMEOUT_MS", 5000))
CLICK_SETTLE_MS = int(os.getenv("CLICK_SETTLE_MS", 500))
NAVIGATION_TIMEOUT_MS = int(os.getenv("NAVIGATION_TIMEOUT_MS", 30000))

# Visual snapshots
VISUAL_DIFF_THRESHOLD = float(os.getenv("VISUAL_DIFF_THRESHOLD", 0.01))

# Generator invocation
GENERATOR_COMMAND = os.getenv(
    "GENERATOR_COMMAND",
    "npx tsx src/cli/index.ts transpile {source} -o {output}",
)
GENERATOR_TIMEOUT_SECONDS = int(os.getenv("GENERATOR_TIMEOUT_SECONDS", 30))
GENERATOR_DOCKER_IMAGE = os.getenv("GENERATOR_DOCKER_IMAGE", "")

# Runtime remediation
REMEDIATION_MAX_ACTIONS = int(os.getenv("REMEDIATION_MAX_ACTIONS", 5))
CLIENT_PORT = int(os.getenv("CLIENT_PORT", 3000))
SERVER_PORT = int(os.getenv("SERVER_PORT", 3001))

# Model-assisted enrichment (optional)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
MODEL_ASSIST_MODEL = os.getenv("MODEL_ASSIST_MODEL", "claude-sonnet-4-20250514")
MODEL_ASSIST_TIMEOUT_SECONDS = float(os.getenv("MODEL_ASSIST_TIMEOUT_SECONDS", 60))

# HTTP surface
ENABLE_HEAL_ENDPOINT = os.getenv("ENABLE_HEAL_ENDPOINT", "false").lower() == "true"
