"""
Rejection Reasons
=================
Standardised constants for why a patch proposal or promotion was refused.

Guardrail violations are never raised: the patch engine returns no patch
and records one of these reasons so the orchestrator and result documents
carry clean, machine-readable explanations.
"""


# ---------------------------------------------------------------------------
# Rejection Reason Constants
# ---------------------------------------------------------------------------
NOT_DETECTED = "not_detected"
NO_MATCHING_RULE = "no_matching_rule"
TARGET_NOT_ALLOWED = "target_not_allowed"
TARGET_MISSING = "target_missing"
NO_CHANGE = "no_change"
DIFF_TOO_LARGE = "diff_too_large"
DUPLICATE_TARGET = "duplicate_target"
BATCH_OUT_OF_SCOPE = "batch_out_of_scope"
NOT_VERIFIED = "not_verified"
FIX_FAILED = "fix_failed"

# All valid reasons (for validation)
ALL_REJECTION_REASONS = frozenset({
    NOT_DETECTED,
    NO_MATCHING_RULE,
    TARGET_NOT_ALLOWED,
    TARGET_MISSING,
    NO_CHANGE,
    DIFF_TOO_LARGE,
    DUPLICATE_TARGET,
    BATCH_OUT_OF_SCOPE,
    NOT_VERIFIED,
    FIX_FAILED,
})
