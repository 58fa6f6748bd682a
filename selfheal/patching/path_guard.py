"""
Patch Path Guard
================
The allow-list that separates generator-owned source (eligible for
patching) from generated output and artifacts (never eligible).

Rules:
    - Normalize separators ("\\" -> "/") and strip a leading "./".
    - Reject empty, absolute (POSIX or drive-letter) and ".." paths.
    - Reject anything under a generated-output or artifact prefix.
    - Accept description-language sources (*.air) anywhere else.
    - Accept framework source under the generator prefixes only.

Both the proposal path and the promotion path call ``is_allowed_patch_target``;
promotion additionally blocks vendored dependency trees.
"""
import re

# Generator-owned source trees
FRAMEWORK_PATCH_PREFIXES = (
    "src/transpiler/",
    "src/self-heal/",
    "src/parser/",
    "scripts/",
)

# Generated output and artifact trees
GENERATED_OUTPUT_PREFIXES = (
    "output/",
    "demo-output/",
    "dist/",
    "artifacts/",
    ".air-artifacts/",
    "test-output/",
)

# test-output-auth/, test-output-dashboard/, ...
_TEST_OUTPUT_RE = re.compile(r"^test-output[\w-]*/")
_DRIVE_LETTER_RE = re.compile(r"^[A-Za-z]:/")

PROMOTION_BLOCKED_PREFIXES = GENERATED_OUTPUT_PREFIXES + ("node_modules/",)

DESCRIPTION_SUFFIX = ".air"


def normalize_patch_path(target_file: str) -> str:
    normalized = (target_file or "").strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def is_generated_path(target_file: str) -> bool:
    """True when the path lives under a generated-output or artifact prefix."""
    normalized = normalize_patch_path(target_file)
    if any(normalized.startswith(prefix) for prefix in GENERATED_OUTPUT_PREFIXES):
        return True
    return bool(_TEST_OUTPUT_RE.match(normalized))


def is_allowed_patch_target(target_file: str) -> bool:
    """
    Check whether a patch may name this path.

    Parameters
    ----------
    target_file : str
        Path relative to the generator project root.

    Returns
    -------
    bool
        True only for generator-owned source files.
    """
    normalized = normalize_patch_path(target_file)
    if not normalized:
        return False

    if normalized.startswith("/") or _DRIVE_LETTER_RE.match(normalized):
        return False
    if ".." in normalized.split("/"):
        return False

    if is_generated_path(normalized):
        return False

    if normalized.endswith(DESCRIPTION_SUFFIX):
        return True

    return any(normalized.startswith(prefix) for prefix in FRAMEWORK_PATCH_PREFIXES)


def is_promotion_allowed(target_file: str) -> bool:
    """Allow-list check used right before writing to the real tree."""
    normalized = normalize_patch_path(target_file)
    if not normalized:
        return False
    if any(normalized.startswith(prefix) for prefix in PROMOTION_BLOCKED_PREFIXES):
        return False
    return is_allowed_patch_target(normalized)
