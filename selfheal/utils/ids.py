"""
Run Identifiers
===============
Generates the timestamped identifiers used to key result artifacts.

Format:
    <PREFIX>-<YYYYMMDD>-<HHMMSS>-<6 lowercase base36 chars>

Prefixes:
    QR  — probe run (result.json under artifacts/runtime-qa/<id>/)
    HL  — heal loop run (artifacts/self-heal/loops/<id>.json)
    SH  — incident (artifacts/self-heal/incidents/<id>.json)
"""
import re
import secrets
from datetime import datetime, timezone
from typing import Optional

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_RUN_ID_RE = re.compile(r"^(QR|HL|SH)-\d{8}-\d{6}-[0-9a-z]{6}$")

PROBE_RUN_PREFIX = "QR"
HEAL_LOOP_PREFIX = "HL"
INCIDENT_PREFIX = "SH"


def generate_run_id(prefix: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    rand = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{prefix}-{now.strftime('%Y%m%d')}-{now.strftime('%H%M%S')}-{rand}"


def generate_probe_run_id() -> str:
    return generate_run_id(PROBE_RUN_PREFIX)


def generate_loop_id() -> str:
    return generate_run_id(HEAL_LOOP_PREFIX)


def generate_incident_id() -> str:
    return generate_run_id(INCIDENT_PREFIX)


def is_valid_run_id(value: str) -> bool:
    """True for identifiers produced by generate_run_id (guards file lookups)."""
    return bool(_RUN_ID_RE.match(value or ""))


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
