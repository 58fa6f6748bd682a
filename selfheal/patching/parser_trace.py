"""
Parser Trace Registry
=====================
Trace rules for defects introduced by the description-language parser.

Parallel to codegen_trace.py but detection runs over the description
source plus the parsed tree instead of generated output, and fixes target
src/parser/. Both registries share the TraceRule shape, so the patch
engine proposes and verifies parser patches exactly like transpiler ones.

    PSH-001  relation onDelete dropped  -> parsers.ts parseDbBlock
    PSH-002  UI scope name lost         -> parsers.ts parseUIBlock (identity fix)

When no description source or parsed tree is available the rules report
detected=False.
"""
import re
from typing import Any, Dict, List, Optional

from selfheal.core.constants import LANE_PARSER
from selfheal.models.patch import TraceDetection
from selfheal.patching.trace_rules import TraceContext, TraceRule, affected, not_detected

PARSER_SOURCE_FILE = "src/parser/parsers.ts"

_RELATION_ACTION_RE = re.compile(r"@relation\s*\([^)]*:(cascade|set-null|restrict)")
_SCOPE_NAME_RE = re.compile(r"@(page|section):(\w+)")

_RESTORE_BLOCK = """} else {
            s.restore(save);
          }
        }
        const rel: AirDbRelation = { from, to };"""

_CONSUME_BLOCK = """} else if (s.is('identifier')) {
            // consume unknown referential action identifier
            // instead of restoring the stream position
            s.advance();
          } else {
            s.restore(save);
          }
        }
        const rel: AirDbRelation = { from, to };"""


def _find_block(parsed: Optional[Dict[str, Any]], kind: str) -> Optional[Dict[str, Any]]:
    for block in (parsed or {}).get("blocks", []) or []:
        if isinstance(block, dict) and block.get("kind") == kind:
            return block
    return None


def _line_of(source: str, offset: int) -> int:
    return source.count("\n", 0, offset) + 1


def _source_line(source: str, line: int) -> str:
    lines = source.split("\n")
    return lines[line - 1].strip() if 0 < line <= len(lines) else ""


# ---------------------------------------------------------------------------
# PSH-001: relation onDelete dropped
# ---------------------------------------------------------------------------
def _detect_relation_on_delete(ctx: TraceContext) -> TraceDetection:
    source = ctx.description_source or ""
    matches = list(_RELATION_ACTION_RE.finditer(source))
    if not matches:
        return not_detected("p1", "No explicit referential actions in source")

    db_block = _find_block(ctx.parsed, "db")
    if not db_block or not db_block.get("relations"):
        return not_detected("p1", "No @db block or relations in parsed tree")

    on_deletes = {rel.get("onDelete") for rel in db_block["relations"] if isinstance(rel, dict)}
    dropped = []
    for match in matches:
        action = match.group(1)
        expected = "setNull" if action == "set-null" else action
        if expected not in on_deletes:
            line = _line_of(source, match.start())
            dropped.append(affected(PARSER_SOURCE_FILE, line, _source_line(source, line)))

    return TraceDetection(
        detected=bool(dropped),
        severity="p1",
        details=(
            f"{len(dropped)} referential action(s) in source but missing from parsed tree"
            if dropped else "All referential actions preserved in parsed tree"
        ),
        affected_files=[PARSER_SOURCE_FILE] if dropped else [],
        affected_lines=dropped,
    )


def _fix_relation_on_delete(source: str, detection: TraceDetection) -> str:
    if _RESTORE_BLOCK not in source:
        return source
    return source.replace(_RESTORE_BLOCK, _CONSUME_BLOCK, 1)


# ---------------------------------------------------------------------------
# PSH-002: UI scope name lost
# ---------------------------------------------------------------------------
def _has_scoped_node(nodes: List[Any], name: str) -> bool:
    for node in nodes:
        if not isinstance(node, dict):
            continue
        if node.get("kind") == "scoped" and node.get("name") == name:
            return True
        children = node.get("children")
        if isinstance(children, list) and _has_scoped_node(children, name):
            return True
    return False


def _detect_scope_name_lost(ctx: TraceContext) -> TraceDetection:
    source = ctx.description_source or ""
    matches = list(_SCOPE_NAME_RE.finditer(source))
    if not matches:
        return not_detected("p2", "No @page/@section with names in source")

    ui_block = _find_block(ctx.parsed, "ui")
    if not ui_block or not ui_block.get("nodes"):
        return not_detected("p2", "No @ui block in parsed tree")

    missing = []
    for match in matches:
        if not _has_scoped_node(ui_block["nodes"], match.group(2)):
            line = _line_of(source, match.start())
            missing.append(affected(PARSER_SOURCE_FILE, line, _source_line(source, line)))

    return TraceDetection(
        detected=bool(missing),
        severity="p2",
        details=(
            f"{len(missing)} scope name(s) in source but missing from parsed tree"
            if missing else "All scope names preserved in parsed tree"
        ),
        affected_files=[PARSER_SOURCE_FILE] if missing else [],
        affected_lines=missing,
    )


def _identity(source: str, detection: TraceDetection) -> str:
    return source


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
PARSER_TRACE_RULES = (
    TraceRule(
        id="PSH-001",
        name="Relation onDelete dropped by parser",
        lane=LANE_PARSER,
        classification_ids=("db-relation-action-lost", "cascade-missing", "referential-action-dropped"),
        target_file=PARSER_SOURCE_FILE,
        target_function="parseDbBlock",
        strategy="ensure-colon-consume",
        description="Consume an unknown identifier after a relation colon instead of restoring.",
        detect=_detect_relation_on_delete,
        fix=_fix_relation_on_delete,
    ),
    TraceRule(
        id="PSH-002",
        name="UI scope name lost in parser",
        lane=LANE_PARSER,
        classification_ids=("page-name-mismatch", "section-name-lost"),
        target_file=PARSER_SOURCE_FILE,
        target_function="parseUIBlock",
        strategy="identity",
        description="No known parser defect yet; detection only.",
        detect=_detect_scope_name_lost,
        fix=_identity,
    ),
)
