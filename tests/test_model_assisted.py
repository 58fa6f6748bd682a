"""
Enrichment Tests
================
Model-backed enricher against an httpx.MockTransport; no real API calls.
"""
import asyncio
import json
from unittest.mock import patch

import httpx
import pytest

from selfheal.enrichment import model_assisted
from selfheal.enrichment.base import NoopEnricher, load_enricher
from selfheal.enrichment.model_assisted import ModelAssistedEnricher, build_enricher, build_prompt, extract_text
from selfheal.models.incident import Incident
from selfheal.models.patch import Patch


def _patch():
    return Patch(
        patch_id="P-1",
        rule_id="SH9-001",
        lane="transpiler",
        target_file="src/transpiler/scaffold.ts",
        target_function="generateIndexCss",
        strategy="wrap-where",
        original_content="h1 {}\n",
        patched_content=":where(h1) {}\n",
        diff_summary="+1 -1 lines (1 changed)",
        unified_diff="--- a/x\n+++ b/x\n-h1 {}\n+:where(h1) {}",
    )


def _incident():
    return Incident(
        incident_id="SH-20260101-120000-abc123",
        timestamp="2026-01-01T12:00:00Z",
        flow_id="demo-flow",
        step_id="s1",
        label="Heading styled",
        classification="css-specificity-fight",
        severity="p2",
        summary="Heading styled: style mismatch",
    )


def _enrich(handler, incident=None):
    enricher = ModelAssistedEnricher("test-key", transport=httpx.MockTransport(handler))

    async def go():
        try:
            return await enricher.enrich(incident, _patch())
        finally:
            await enricher.close()

    return asyncio.run(go())


# ===================================================================
# Prompt and response handling
# ===================================================================
def test_build_prompt_carries_incident_target_and_diff():
    prompt = build_prompt(_incident(), _patch())
    assert "SH-20260101-120000-abc123 (css-specificity-fight, p2)" in prompt
    assert "Target: src/transpiler/scaffold.ts :: generateIndexCss" in prompt
    assert prompt.endswith("+:where(h1) {}")


def test_extract_text_joins_text_blocks_only():
    data = {"content": [{"type": "text", "text": "a"}, {"type": "tool_use"}, {"type": "text", "text": "b"}]}
    assert extract_text(data) == "ab"
    assert extract_text({}) == ""


# ===================================================================
# enrich()
# ===================================================================
def test_enrich_attaches_suggestions():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "  - check dark mode\n"}]})

    result = _enrich(handler, _incident())

    assert result.model_suggestions == "- check dark mode"
    assert result.patched_content == ":where(h1) {}\n"
    assert seen["headers"]["x-api-key"] == "test-key"
    assert seen["body"]["messages"][0]["role"] == "user"


def test_http_error_leaves_patch_unchanged():
    result = _enrich(lambda request: httpx.Response(500, json={"error": "boom"}))
    assert result.model_suggestions is None


def test_transport_error_leaves_patch_unchanged():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert _enrich(handler).model_suggestions is None


def test_blank_reply_is_ignored():
    result = _enrich(lambda request: httpx.Response(200, json={"content": [{"type": "text", "text": "   "}]}))
    assert result.model_suggestions is None


# ===================================================================
# Strategy loading
# ===================================================================
def test_build_enricher_requires_key():
    with patch.object(model_assisted, "ANTHROPIC_API_KEY", None):
        with pytest.raises(RuntimeError, match="ANTHROPIC_API_KEY"):
            build_enricher()


def test_load_enricher_disabled_is_noop():
    assert isinstance(load_enricher(False), NoopEnricher)


def test_load_enricher_falls_back_without_key():
    with patch.object(model_assisted, "ANTHROPIC_API_KEY", None):
        assert isinstance(load_enricher(True), NoopEnricher)


def test_load_enricher_with_key_returns_model_strategy():
    with patch.object(model_assisted, "ANTHROPIC_API_KEY", "k"):
        assert isinstance(load_enricher(True), ModelAssistedEnricher)


def test_noop_enricher_returns_same_patch():
    p = _patch()
    assert asyncio.run(NoopEnricher().enrich(None, p)) is p
