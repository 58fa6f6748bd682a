"""
Constants
Closed vocabularies shared by the probe, the patch engine and the heal loop.
"""
SCHEMA_VERSION = "1.0"

# Step action kinds
ACTION_NAVIGATE = "navigate"
ACTION_CLICK = "click"
ACTION_TYPE = "type"
ACTION_CHECK_CONSOLE = "check_console"
ACTION_ASSERT_VISIBLE = "assert_visible"
ACTION_SCREENSHOT = "screenshot"
ACTION_ASSERT_STYLE = "assert_style"
ACTION_VISUAL_SNAPSHOT = "visual_snapshot"

ACTION_KINDS = (
    ACTION_NAVIGATE,
    ACTION_CLICK,
    ACTION_TYPE,
    ACTION_CHECK_CONSOLE,
    ACTION_ASSERT_VISIBLE,
    ACTION_SCREENSHOT,
    ACTION_ASSERT_STYLE,
    ACTION_VISUAL_SNAPSHOT,
)

SEVERITIES = ("p0", "p1", "p2", "p3")

# Heal modes
MODE_SHADOW = "shadow"
MODE_PROPOSE = "propose"
MODE_PATCH_VERIFY = "patch-verify"
MODE_TRANSPILER_PATCH = "transpiler-patch"

HEAL_MODES = (MODE_SHADOW, MODE_PROPOSE, MODE_PATCH_VERIFY, MODE_TRANSPILER_PATCH)
ACTIVE_MODES = frozenset({MODE_PATCH_VERIFY, MODE_TRANSPILER_PATCH})

# Lanes, in promotion order
LANE_RUNTIME = "runtime"
LANE_PARSER = "parser"
LANE_TRANSPILER = "transpiler"
LANE_UI = "ui"

PATCH_LANE_ORDER = (LANE_PARSER, LANE_TRANSPILER, LANE_UI)

# Patch verdicts
VERDICT_PENDING = "pending"
VERDICT_PASS = "pass"
VERDICT_FAIL = "fail"
VERDICT_SKIPPED_CONFLICT = "skipped-conflict"

# Visual baseline modes
BASELINE_COMPARE = "compare"
BASELINE_RECORD_MISSING = "record-missing"

# Classification used when no pattern matches
UNCLASSIFIED = "unclassified"
