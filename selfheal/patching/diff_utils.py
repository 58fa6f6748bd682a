"""
Diff Utilities
==============
Line-level diff accounting for proposed patches.

Two views of the same change are kept:
    - a positional summary ("+A -R lines (N changed)") used for the
      line-change ceiling, where N = max(A, R);
    - a unified diff (difflib) used for reporting and the patch hash.
"""
import difflib
from dataclasses import dataclass


@dataclass(frozen=True)
class DiffSummary:
    added: int
    removed: int

    @property
    def lines_changed(self) -> int:
        return max(self.added, self.removed)

    @property
    def text(self) -> str:
        return f"+{self.added} -{self.removed} lines ({self.lines_changed} changed)"


def compute_diff_summary(original: str, patched: str) -> DiffSummary:
    """
    Count changed lines position by position.

    A line index counts as removed when it exists in the original and
    differs, and as added when it exists in the patched text and differs.
    """
    original_lines = original.split("\n")
    patched_lines = patched.split("\n")
    added = 0
    removed = 0

    for i in range(max(len(original_lines), len(patched_lines))):
        before = original_lines[i] if i < len(original_lines) else ""
        after = patched_lines[i] if i < len(patched_lines) else ""
        if before != after:
            if i < len(original_lines):
                removed += 1
            if i < len(patched_lines):
                added += 1

    return DiffSummary(added=added, removed=removed)


def compute_unified_diff(original: str, patched: str, file_path: str) -> str:
    """
    Compute a unified diff between original and patched content.

    Parameters
    ----------
    original : str
        Original file content.
    patched : str
        Patched file content.
    file_path : str
        File path for diff headers.

    Returns
    -------
    str
        Unified diff string.
    """
    diff = difflib.unified_diff(
        original.splitlines(keepends=True),
        patched.splitlines(keepends=True),
        fromfile=f"a/{file_path}",
        tofile=f"b/{file_path}",
        lineterm="",
    )
    return "\n".join(diff)
