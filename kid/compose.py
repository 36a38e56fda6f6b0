"""docker-compose and docker operations for the cluster stack.

The compose definition is never written to disk: every docker-compose call
reads it from stdin (``-f -``) under a fixed project name, so ``up``,
``stop``, ``rm`` and the passthrough verbs all address the same stack.

Examples
--------
Start the stack and later remove it:

    cfg = ClusterConfig()
    start_stack(cfg)
    stop_stack(cfg)
    remove_stack(cfg)

"""

from __future__ import annotations

import typing as typ

from kid.manifests import ManifestName, render_manifest
from kid.process import passthrough, run_tool

if typ.TYPE_CHECKING:
    from kid.config import ClusterConfig

# Label the kubelet puts on every container it starts for a pod
CLUSTER_CONTAINER_LABEL = "io.kubernetes.pod.name"

# Image pulls on first start can be slow (seconds)
_COMPOSE_UP_TIMEOUT = 900
_COMPOSE_TIMEOUT = 300
_DOCKER_TIMEOUT = 120


def compose_command(cfg: ClusterConfig, *args: str) -> list[str]:
    """Return a docker-compose argv that reads the stack definition from stdin."""
    return ["docker-compose", "-p", cfg.project_name, "-f", "-", *args]


def _compose_text(cfg: ClusterConfig) -> str:
    return render_manifest(ManifestName.COMPOSE_FILE, cfg).text


def start_stack(cfg: ClusterConfig) -> None:
    """Start etcd, the kubelet and the proxy in the background.

    Raises:
        ExternalToolError: If docker-compose fails.

    """
    run_tool(
        compose_command(cfg, "up", "-d"),
        input_text=_compose_text(cfg),
        timeout=_COMPOSE_UP_TIMEOUT,
    )


def stop_stack(cfg: ClusterConfig) -> None:
    """Stop the stack's containers; stopping a stopped stack succeeds."""
    run_tool(
        compose_command(cfg, "stop"),
        input_text=_compose_text(cfg),
        timeout=_COMPOSE_TIMEOUT,
    )


def remove_stack(cfg: ClusterConfig) -> None:
    """Force-remove the stack's containers and their anonymous volumes."""
    run_tool(
        compose_command(cfg, "rm", "-f", "-v"),
        input_text=_compose_text(cfg),
        timeout=_COMPOSE_TIMEOUT,
    )


def compose_passthrough(cfg: ClusterConfig, verb: str, args: typ.Sequence[str]) -> int:
    """Run ``docker-compose <verb> args...`` against the stack.

    Returns:
        docker-compose's exit status.

    """
    return passthrough(
        compose_command(cfg, verb, *args),
        input_text=_compose_text(cfg),
    )


def list_cluster_containers() -> list[str]:
    """Return IDs of containers the kubelet created, running or not."""
    result = run_tool(
        [
            "docker",
            "ps",
            "-a",
            "-q",
            "--filter",
            f"label={CLUSTER_CONTAINER_LABEL}",
        ],
        capture=True,
        timeout=_DOCKER_TIMEOUT,
    )
    return result.stdout.split()


def remove_cluster_containers() -> int:
    """Force-remove leftover pod containers.

    Finding none is success.

    Returns:
        The number of containers removed.

    """
    container_ids = list_cluster_containers()
    if not container_ids:
        return 0
    run_tool(
        ["docker", "rm", "-f", "-v", *container_ids],
        capture=True,
        timeout=_DOCKER_TIMEOUT,
    )
    return len(container_ids)
