"""Prerequisite checks run before any command touches the system.

Examples
--------
Fail fast when a tool is missing:

    require_exe("docker-compose")

Run every check for a configuration:

    check_prerequisites(ClusterConfig())

"""

from __future__ import annotations

import shutil
import subprocess
import typing as typ

from kid.errors import EngineUnreachableError, ExecutableNotFoundError
from kid.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    from kid.config import ClusterConfig

logger = get_logger(__name__)

# Seconds allowed for ``docker info`` before the engine counts as unreachable
_DOCKER_INFO_TIMEOUT = 30


def require_exe(name: str) -> None:
    """Verify a CLI tool is available in PATH.

    Parameters
    ----------
    name : str
        Name of the executable to check for.

    Raises
    ------
    ExecutableNotFoundError
        If the executable is not found in PATH.

    """
    if shutil.which(name) is None:
        msg = f"Required executable '{name}' not found in PATH"
        raise ExecutableNotFoundError(msg)


def check_docker_engine(timeout: float = _DOCKER_INFO_TIMEOUT) -> None:
    """Verify the Docker engine answers ``docker info``.

    Raises
    ------
    EngineUnreachableError
        If ``docker info`` fails, hangs, or cannot be started.

    """
    try:
        # S603/S607: docker via PATH is standard; no user input
        subprocess.run(
            ["docker", "info"],  # noqa: S607
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip()
        msg = "Docker engine is not reachable (docker info failed)"
        if detail:
            msg = f"{msg}: {detail}"
        raise EngineUnreachableError(msg) from e
    except subprocess.TimeoutExpired as e:
        msg = f"Docker engine did not answer docker info within {timeout} seconds"
        raise EngineUnreachableError(msg) from e
    except OSError as e:
        msg = f"Docker engine is not reachable: {e}"
        raise EngineUnreachableError(msg) from e


def check_prerequisites(cfg: ClusterConfig) -> None:
    """Check every required executable, then the Docker engine."""
    for exe in cfg.required_executables:
        require_exe(exe)
    log_debug(logger, "Found required tools: %s", ", ".join(cfg.required_executables))
    check_docker_engine()
