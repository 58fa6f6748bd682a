"""
Isolated Tree
=============
Disposable copy of the generator source used to verify a patch without
touching the real working tree.

Responsibilities:
    - Copy the project root into a fresh temporary directory, leaving out
      generated output, artifacts, VCS metadata and dependency trees
      (node_modules is symlinked back so the generator can still run).
    - Write patched generator files into the copy only.
    - Run the generator there and read its output back as a
      relative-path -> content map.
    - Remove the copy when the context exits, whatever happened inside.

Rules:
    - Writes are confined to the copy; paths that escape it are refused.
    - Only text files the generator emits (js/jsx/ts/tsx/css/html/json/prisma)
      are read back.
"""
import logging
import os
import re
import shutil
import tempfile
from typing import Callable, Dict, Optional

from selfheal.core.config import GENERATOR_COMMAND, GENERATOR_DOCKER_IMAGE, GENERATOR_TIMEOUT_SECONDS
from selfheal.core.errors import GeneratorInvocationError
from selfheal.patching.generator_runner import run_generator
from selfheal.patching.path_guard import GENERATED_OUTPUT_PREFIXES, normalize_patch_path

logger = logging.getLogger(__name__)

_GENERATED_FILE_RE = re.compile(r"\.(jsx?|tsx?|css|html|json|prisma)$")
_SKIP_DIRS = {"node_modules", ".git"}
_COPY_IGNORE_TOP = {p.rstrip("/") for p in GENERATED_OUTPUT_PREFIXES} | _SKIP_DIRS | {"logs"}
TREE_OUTPUT_DIR = ".selfheal-output"


def read_generated_files(directory: str) -> Dict[str, str]:
    """
    Read generated output into memory.

    Parameters
    ----------
    directory : str
        Output directory to walk.

    Returns
    -------
    dict
        Relative POSIX path -> file content. Empty when the directory is missing.
    """
    files: Dict[str, str] = {}
    if not os.path.isdir(directory):
        return files

    for current, dirs, names in os.walk(directory):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
        for name in sorted(names):
            if not _GENERATED_FILE_RE.search(name):
                continue
            full = os.path.join(current, name)
            rel = os.path.relpath(full, directory).replace(os.sep, "/")
            try:
                with open(full, "r", encoding="utf-8") as f:
                    files[rel] = f.read()
            except (OSError, UnicodeDecodeError):
                logger.debug("Skipping unreadable generated file %s", full)
    return files


def _copy_ignore(root: str) -> Callable[[str, list], set]:
    def ignore(directory: str, names: list) -> set:
        if os.path.abspath(directory) == os.path.abspath(root):
            return {n for n in names if n in _COPY_IGNORE_TOP or n.startswith("test-output")}
        return {n for n in names if n in _SKIP_DIRS}
    return ignore


class IsolatedTree:
    """
    Context manager around one temporary copy of the project root.

    Usage::

        with IsolatedTree(project_root) as tree:
            tree.write_file("src/transpiler/scaffold.ts", patched)
            output = tree.regenerate("app.air")
    """

    def __init__(self, project_root: str, runner=run_generator):
        self.project_root = os.path.abspath(project_root)
        self.runner = runner
        self.path: Optional[str] = None

    def __enter__(self) -> "IsolatedTree":
        base = tempfile.mkdtemp(prefix="selfheal-verify-")
        self.path = os.path.join(base, "tree")
        shutil.copytree(self.project_root, self.path, ignore=_copy_ignore(self.project_root), symlinks=True)
        modules = os.path.join(self.project_root, "node_modules")
        if os.path.isdir(modules):
            os.symlink(modules, os.path.join(self.path, "node_modules"), target_is_directory=True)
        logger.info("[VERIFY] Isolated tree created at %s", self.path)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()

    def teardown(self) -> None:
        if self.path is None:
            return
        base = os.path.dirname(self.path)
        shutil.rmtree(base, ignore_errors=True)
        logger.info("[VERIFY] Isolated tree removed: %s", self.path)
        self.path = None

    def _resolve(self, rel_path: str) -> str:
        if self.path is None:
            raise RuntimeError("IsolatedTree used outside its context")
        full = os.path.abspath(os.path.join(self.path, normalize_patch_path(rel_path)))
        if os.path.commonpath([full, self.path]) != self.path:
            raise ValueError(f"Path escapes isolated tree: {rel_path}")
        return full

    def write_file(self, rel_path: str, content: str) -> None:
        full = self._resolve(rel_path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def read_file(self, rel_path: str) -> str:
        with open(self._resolve(rel_path), "r", encoding="utf-8") as f:
            return f.read()

    def regenerate(
        self,
        source: str,
        template: str = GENERATOR_COMMAND,
        timeout_seconds: int = GENERATOR_TIMEOUT_SECONDS,
        docker_image: str = GENERATOR_DOCKER_IMAGE,
    ) -> Dict[str, str]:
        """Run the generator in the copy and return what it produced."""
        output_dir = self._resolve(TREE_OUTPUT_DIR)
        shutil.rmtree(output_dir, ignore_errors=True)
        self.runner(
            self.path,
            normalize_patch_path(source),
            TREE_OUTPUT_DIR,
            template=template,
            timeout_seconds=timeout_seconds,
            docker_image=docker_image,
        )
        return read_generated_files(output_dir)


class IsolatedTreeRegenerator:
    """
    Default post-patch output provider for the patch engine.

    Each call builds a fresh isolated tree, writes the patched file,
    re-generates, and tears the tree down. Returns None when
    re-generation fails so the verification gate records the failure.
    """

    def __init__(self, project_root: str, description_source: str, runner=run_generator):
        self.project_root = project_root
        self.description_source = description_source
        self.runner = runner

    def __call__(self, target_file: str, patched_content: str) -> Optional[Dict[str, str]]:
        try:
            with IsolatedTree(self.project_root, runner=self.runner) as tree:
                tree.write_file(target_file, patched_content)
                return tree.regenerate(self.description_source)
        except GeneratorInvocationError as e:
            logger.warning("[VERIFY] Re-generation failed for %s: %s", target_file, e)
            return None
        except (OSError, ValueError) as e:
            logger.error("[VERIFY] Isolated tree error for %s: %s", target_file, e)
            return None
