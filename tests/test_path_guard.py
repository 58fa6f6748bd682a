"""
Path Guard Tests
================
Only generator-owned source is ever eligible for a patch.
"""
import pytest

from selfheal.patching.path_guard import (
    is_allowed_patch_target,
    is_generated_path,
    is_promotion_allowed,
    normalize_patch_path,
)


@pytest.mark.parametrize("path", [
    "src/transpiler/scaffold.ts",
    "./src/transpiler/react/index.ts",
    "src\\parser\\parsers.ts",
    "src/self-heal/runtime-qa/flow.ts",
    "scripts/build.mjs",
    "examples/shop.air",
])
def test_generator_sources_allowed(path):
    assert is_allowed_patch_target(path) is True


@pytest.mark.parametrize("path", [
    "output/client/src/App.jsx",
    "dist/index.js",
    "artifacts/self-heal/loops/x.json",
    "test-output-auth/client/src/App.jsx",
    "/etc/passwd",
    "C:/Windows/system.ini",
    "src/transpiler/../../etc/passwd",
    "README.md",
    "",
    "output/app.air",
])
def test_everything_else_rejected(path):
    assert is_allowed_patch_target(path) is False


def test_normalize_and_generated():
    assert normalize_patch_path(" ././src\\parser\\x.ts ") == "src/parser/x.ts"
    assert is_generated_path("./output/client/src/index.css") is True
    assert is_generated_path("src/transpiler/scaffold.ts") is False


def test_promotion_blocks_vendored_trees():
    assert is_promotion_allowed("src/transpiler/scaffold.ts") is True
    assert is_promotion_allowed("node_modules/pkg/app.air") is False
    assert is_promotion_allowed("output/client/src/App.jsx") is False
