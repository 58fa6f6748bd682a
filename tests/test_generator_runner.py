"""
Generator Runner Tests
======================
Host and container backends with subprocess and the Docker SDK mocked.
"""
import subprocess
from unittest.mock import MagicMock, patch

import pytest
from docker.errors import ImageNotFound

from selfheal.core.errors import GeneratorInvocationError
from selfheal.patching.generator_runner import build_command, run_generator

TEMPLATE = "npx air transpile {source} -o {output}"


def test_build_command_quotes_paths():
    assert build_command("app.air", "out dir", TEMPLATE) == "npx air transpile app.air -o 'out dir'"


# ===================================================================
# Host backend
# ===================================================================
@patch("selfheal.patching.generator_runner.subprocess.run")
def test_host_run_success(mock_run):
    mock_run.return_value = subprocess.CompletedProcess(args=[], returncode=0, stdout="done\n", stderr="")

    run = run_generator("/tmp/tree", "app.air", "out", template=TEMPLATE, timeout_seconds=30, docker_image="")

    assert run.backend == "host"
    assert run.exit_code == 0
    args, kwargs = mock_run.call_args
    assert args[0] == ["npx", "air", "transpile", "app.air", "-o", "out"]
    assert kwargs["cwd"] == "/tmp/tree"
    assert kwargs["timeout"] == 30


@patch("selfheal.patching.generator_runner.subprocess.run")
def test_host_nonzero_exit_raises(mock_run):
    mock_run.return_value = subprocess.CompletedProcess(args=[], returncode=2, stdout="", stderr="parse error")
    with pytest.raises(GeneratorInvocationError, match="exited with 2: parse error"):
        run_generator("/tmp/tree", "app.air", "out", template=TEMPLATE, docker_image="")


@patch("selfheal.patching.generator_runner.subprocess.run")
def test_host_timeout_raises(mock_run):
    mock_run.side_effect = subprocess.TimeoutExpired(cmd="npx", timeout=5)
    with pytest.raises(GeneratorInvocationError, match="timed out after 5s"):
        run_generator("/tmp/tree", "app.air", "out", template=TEMPLATE, timeout_seconds=5, docker_image="")


# ===================================================================
# Docker backend
# ===================================================================
@patch("selfheal.patching.generator_runner.docker.from_env")
def test_container_run_success_removes_container(mock_from_env):
    container = MagicMock()
    container.wait.return_value = {"StatusCode": 0}
    container.logs.return_value = b"generated 12 files"
    mock_from_env.return_value.containers.run.return_value = container

    run = run_generator("/tmp/tree", "app.air", "out", template=TEMPLATE, docker_image="node:20")

    assert run.backend == "docker"
    assert run.log == "generated 12 files"
    kwargs = mock_from_env.return_value.containers.run.call_args.kwargs
    assert kwargs["volumes"] == {"/tmp/tree": {"bind": "/workspace", "mode": "rw"}}
    assert kwargs["network_mode"] == "none"
    container.remove.assert_called_once_with(force=True)


@patch("selfheal.patching.generator_runner.docker.from_env")
def test_container_nonzero_exit_raises(mock_from_env):
    container = MagicMock()
    container.wait.return_value = {"StatusCode": 1}
    container.logs.return_value = b"boom"
    mock_from_env.return_value.containers.run.return_value = container

    with pytest.raises(GeneratorInvocationError, match="exited with 1: boom"):
        run_generator("/tmp/tree", "app.air", "out", template=TEMPLATE, docker_image="node:20")
    container.remove.assert_called_once_with(force=True)


@patch("selfheal.patching.generator_runner.docker.from_env")
def test_missing_image_raises(mock_from_env):
    mock_from_env.return_value.containers.run.side_effect = ImageNotFound("nope")
    with pytest.raises(GeneratorInvocationError, match="not found"):
        run_generator("/tmp/tree", "app.air", "out", template=TEMPLATE, docker_image="ghost:latest")
