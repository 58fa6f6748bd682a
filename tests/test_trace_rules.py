"""
Trace Registry Tests
====================
Detection and fix functions of the transpiler and parser registries.
"""
from selfheal.patching.codegen_trace import TRANSPILER_TRACE_RULES
from selfheal.patching.parser_trace import PARSER_TRACE_RULES
from selfheal.patching.trace_rules import TraceContext, get_rule_by_id, run_all_traces, trace_classification

APP_WITHOUT_ABOUT = (
    "import HomePage from './pages/HomePage.jsx';\n"
    "export default function App() { return <Layout><HomePage /></Layout>; }\n"
)


def _rule(rule_id):
    return get_rule_by_id(TRANSPILER_TRACE_RULES, rule_id) or get_rule_by_id(PARSER_TRACE_RULES, rule_id)


# ===================================================================
# Registry shape
# ===================================================================
def test_registry_ids_are_unique_and_lanes_set():
    ids = [r.id for r in TRANSPILER_TRACE_RULES + PARSER_TRACE_RULES]
    assert len(ids) == len(set(ids))
    assert {r.lane for r in TRANSPILER_TRACE_RULES} == {"transpiler"}
    assert {r.lane for r in PARSER_TRACE_RULES} == {"parser"}
    assert get_rule_by_id(TRANSPILER_TRACE_RULES, "nope") is None


# ===================================================================
# Transpiler rules
# ===================================================================
def test_css_specificity_detect_and_fix():
    rule = _rule("SH9-001")
    ctx = TraceContext(files={"client/src/index.css": "h1 {\n}\n:where(p) {\n}\ncode {\n}\n"})
    detection = rule.detect(ctx)
    assert detection.detected is True
    assert [line.line for line in detection.affected_lines] == [1]

    fixed = rule.fix("h2 {\n}\np {\n}\npre {\n}\n", detection)
    assert fixed == ":where(h2) {\n}\n:where(p) {\n}\n:where(pre) {\n}\n"


def test_unreachable_page_detect_and_fix():
    rule = _rule("SH9-002")
    ctx = TraceContext(files={
        "client/src/App.jsx": APP_WITHOUT_ABOUT,
        "client/src/pages/HomePage.jsx": "export default function HomePage() {}",
        "client/src/pages/AboutPage.jsx": "export default function AboutPage() {}",
    })
    detection = rule.detect(ctx)
    assert detection.detected is True
    assert detection.details == "1 page(s) unreachable: About"

    source = "function generateApp() {\n  // Ecommerce: import AccountPage\n}\n"
    fixed = rule.fix(source, detection)
    assert "import AboutPage from './pages/AboutPage.jsx';" in fixed
    assert fixed.count("// Ecommerce: import AccountPage") == 1
    assert rule.fix("no marker here", detection) == "no marker here"


def test_double_layout_detect_and_fix():
    rule = _rule("SH9-003")
    page = "import Layout from '../Layout.jsx';\nexport default () => (\n<Layout>\n<h1/>\n</Layout>\n);\n"
    ctx = TraceContext(files={"client/src/App.jsx": APP_WITHOUT_ABOUT, "client/src/pages/HomePage.jsx": page})
    detection = rule.detect(ctx)
    assert detection.detected is True
    assert detection.affected_files == ["client/src/pages/HomePage.jsx"]
    assert rule.fix(page, detection) == "export default () => (\n<h1/>\n);\n"


def test_sidebar_alignment():
    rule = _rule("SH9-004")
    shop = (
        '<h3 className="px-4 text-sm Department">Department</h3>\n'
        '<button className="w-full text-left justify-start px-2 py-2 rounded-lg text-sm">x</button>\n'
    )
    detection = rule.detect(TraceContext(files={"client/src/pages/ShopPage.jsx": shop}))
    assert detection.detected is True
    assert detection.details == "Sidebar heading uses px-4 but buttons use px-2"

    fixed = rule.fix(shop, detection)
    assert "px-3 text-sm Department" in fixed
    assert "justify-start px-3 py-2" in fixed


def test_handler_stub_rules_have_identity_fixes():
    stub = _rule("SH9-005")
    ctx = TraceContext(files={"client/src/pages/HomePage.jsx": "const onBook = (...args) => console.log('bookNow', ...args);"})
    detection = stub.detect(ctx)
    assert detection.detected is True
    assert "bookNow" in detection.details
    assert stub.fix("source", detection) == "source"

    scaffold = _rule("SH9-006")
    api = "router.post('/h', (req, res) => res.json({ success: true, handler: 'bookNow', received: req.body }));"
    assert scaffold.detect(TraceContext(files={"server/api.ts": api})).detected is True


def test_trace_classification_first_detected_rule_wins():
    # SH9-002 lists element-not-found first but finds every page routed,
    # so the lookup falls through to SH9-003
    page = "import Layout from '../Layout.jsx';\n"
    ctx = TraceContext(files={"client/src/App.jsx": APP_WITHOUT_ABOUT, "client/src/pages/HomePage.jsx": page})
    rule, detection = trace_classification("element-not-found", ctx, TRANSPILER_TRACE_RULES)
    assert rule.id == "SH9-003"
    assert trace_classification("unknown-tag", ctx, TRANSPILER_TRACE_RULES) is None


def test_run_all_traces_returns_fired_rules_in_order():
    ctx = TraceContext(files={
        "client/src/index.css": "p {\n}\n",
        "client/src/pages/HomePage.jsx": "console.log('save', ...args)",
    })
    assert [rule.id for rule, _ in run_all_traces(ctx, TRANSPILER_TRACE_RULES)] == ["SH9-001", "SH9-005"]


# ===================================================================
# Parser rules
# ===================================================================
SOURCE = "@db{\n  Order {\n    user: @relation(User:cascade)\n  }\n}\n@ui{ @page:checkout }\n"


def test_relation_on_delete_dropped():
    rule = _rule("PSH-001")
    parsed = {"blocks": [{"kind": "db", "relations": [{"from": "Order.user", "to": "User", "onDelete": None}]}]}
    detection = rule.detect(TraceContext(description_source=SOURCE, parsed=parsed))
    assert detection.detected is True
    assert detection.affected_lines[0].line == 3
    assert detection.affected_files == ["src/parser/parsers.ts"]

    kept = {"blocks": [{"kind": "db", "relations": [{"onDelete": "cascade"}]}]}
    assert rule.detect(TraceContext(description_source=SOURCE, parsed=kept)).detected is False


def test_relation_fix_consumes_identifier():
    rule = _rule("PSH-001")
    source = (
        "          } else {\n"
        "            s.restore(save);\n"
        "          }\n"
        "        }\n"
        "        const rel: AirDbRelation = { from, to };\n"
    )
    fixed = rule.fix(source, None)
    assert "s.advance();" in fixed
    assert rule.fix("unrelated", None) == "unrelated"


def test_scope_name_lost():
    rule = _rule("PSH-002")
    lost = {"blocks": [{"kind": "ui", "nodes": [{"kind": "element", "name": "div"}]}]}
    kept = {"blocks": [{"kind": "ui", "nodes": [{"kind": "element", "children": [{"kind": "scoped", "name": "checkout"}]}]}]}
    assert rule.detect(TraceContext(description_source=SOURCE, parsed=lost)).detected is True
    assert rule.detect(TraceContext(description_source=SOURCE, parsed=kept)).detected is False


def test_parser_rules_need_source_and_tree():
    for rule in PARSER_TRACE_RULES:
        assert rule.detect(TraceContext()).detected is False
