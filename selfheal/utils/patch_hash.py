"""
Patch Hash Utility
==================
Deterministic hashes for patches and generated-output maps.

Rules:
    - SHA-256 truncated to 16 hex chars for compactness.
    - Deterministic: same input always produces same hash.
    - Output maps are hashed as sorted "path:hash(content)" lines so the
      result does not depend on dict ordering.
"""
import hashlib
from typing import Mapping


def hash_content(content: str) -> str:
    """16-char hex SHA-256 of a string."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


def compute_patch_hash(diff: str) -> str:
    """
    Generate a deterministic hash from a unified diff.

    Parameters
    ----------
    diff : str
        Unified diff string (output of difflib.unified_diff).

    Returns
    -------
    str
        16-character hex hash of the diff. Empty string if diff is empty.
    """
    if not diff or not diff.strip():
        return ""

    return hash_content(diff)


def hash_output_map(files: Mapping[str, str]) -> str:
    """
    Hash a generated-output map (relative path -> content).

    Returns an empty string for an empty map so callers can tell
    "nothing generated" apart from any real output.
    """
    if not files:
        return ""
    lines = [f"{path}:{hash_content(files[path])}" for path in sorted(files)]
    return hash_content("\n".join(lines))
