"""
Generator Runner
================
Invokes the code generator inside an isolated source tree.

Two execution backends, selected by configuration:
    host    : subprocess.run in the tree root (default)
    docker  : a throwaway container with the tree mounted at /workspace,
              used when GENERATOR_DOCKER_IMAGE is set

Both backends run the same command template with {source} and {output}
substituted by tree-relative paths, honour GENERATOR_TIMEOUT_SECONDS and
raise GeneratorInvocationError on any failure. The container is always
removed, even when the run fails.
"""
import logging
import shlex
import subprocess
import time
from dataclasses import dataclass

import docker
from docker.errors import APIError, ContainerError, ImageNotFound

from selfheal.core.config import (
    GENERATOR_COMMAND,
    GENERATOR_DOCKER_IMAGE,
    GENERATOR_TIMEOUT_SECONDS,
)
from selfheal.core.errors import GeneratorInvocationError

logger = logging.getLogger(__name__)

_CONTAINER_WORKDIR = "/workspace"
_MEMORY_LIMIT = "1g"
_LOG_TAIL_CHARS = 2000


@dataclass
class GeneratorRun:
    """Outcome of one successful generator invocation."""
    command: str
    exit_code: int
    log: str
    duration_seconds: float
    backend: str


def build_command(source: str, output: str, template: str = GENERATOR_COMMAND) -> str:
    return template.format(source=shlex.quote(source), output=shlex.quote(output))


def run_generator(
    tree_root: str,
    source: str,
    output: str,
    template: str = GENERATOR_COMMAND,
    timeout_seconds: int = GENERATOR_TIMEOUT_SECONDS,
    docker_image: str = GENERATOR_DOCKER_IMAGE,
) -> GeneratorRun:
    """
    Run the generator once.

    Parameters
    ----------
    tree_root : str
        Absolute path of the isolated tree; the command runs there.
    source : str
        Description source path, relative to tree_root.
    output : str
        Output directory, relative to tree_root.
    template : str
        Command template with {source} and {output} placeholders.
    timeout_seconds : int
        Hard limit for the whole run.
    docker_image : str
        Non-empty to run inside a container instead of on the host.

    Returns
    -------
    GeneratorRun
        Details of the successful run.

    Raises
    ------
    GeneratorInvocationError
        Non-zero exit, timeout, or backend failure.
    """
    command = build_command(source, output, template)
    if docker_image:
        return _run_in_container(tree_root, command, timeout_seconds, docker_image)
    return _run_on_host(tree_root, command, timeout_seconds)


def _run_on_host(tree_root: str, command: str, timeout_seconds: int) -> GeneratorRun:
    start = time.monotonic()
    logger.info("[VERIFY] Running generator | backend=host | cmd=%s", command)
    try:
        completed = subprocess.run(
            shlex.split(command),
            cwd=tree_root,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired as e:
        raise GeneratorInvocationError(f"Generator timed out after {timeout_seconds}s") from e
    except OSError as e:
        raise GeneratorInvocationError(f"Generator could not start: {e}") from e

    log = (completed.stdout or "") + (completed.stderr or "")
    if completed.returncode != 0:
        raise GeneratorInvocationError(
            f"Generator exited with {completed.returncode}: {log[-_LOG_TAIL_CHARS:]}"
        )
    return GeneratorRun(
        command=command,
        exit_code=completed.returncode,
        log=log,
        duration_seconds=round(time.monotonic() - start, 3),
        backend="host",
    )


def _run_in_container(tree_root: str, command: str, timeout_seconds: int, image: str) -> GeneratorRun:
    start = time.monotonic()
    container = None
    try:
        client = docker.from_env()
        logger.info(
            "[VERIFY] Running generator | backend=docker | image=%s | timeout=%ds",
            image, timeout_seconds,
        )
        container = client.containers.run(
            image=image,
            command=["bash", "-c", command],
            volumes={tree_root: {"bind": _CONTAINER_WORKDIR, "mode": "rw"}},
            working_dir=_CONTAINER_WORKDIR,
            mem_limit=_MEMORY_LIMIT,
            network_mode="none",
            labels={"project": "selfheal", "role": "regenerate"},
            detach=True,
        )
        wait_result = container.wait(timeout=timeout_seconds)
        exit_code = wait_result.get("StatusCode", -1)
        log = container.logs(stdout=True, stderr=True).decode("utf-8", errors="replace")
    except ImageNotFound as e:
        raise GeneratorInvocationError(f"Docker image '{image}' not found") from e
    except ContainerError as e:
        raise GeneratorInvocationError(f"Container execution error: {e}") from e
    except APIError as e:
        raise GeneratorInvocationError(f"Docker API error: {e}") from e
    except Exception as e:
        # container.wait raises requests' ReadTimeout on timeout
        raise GeneratorInvocationError(f"Unexpected container error: {type(e).__name__}: {e}") from e
    finally:
        if container is not None:
            try:
                container.remove(force=True)
            except Exception:
                logger.warning("Failed to remove generator container", exc_info=True)

    if exit_code != 0:
        raise GeneratorInvocationError(f"Generator exited with {exit_code}: {log[-_LOG_TAIL_CHARS:]}")
    return GeneratorRun(
        command=command,
        exit_code=exit_code,
        log=log,
        duration_seconds=round(time.monotonic() - start, 3),
        backend="docker",
    )
