"""SSH port forwarding to a docker-machine host.

When the Docker daemon runs inside a docker-machine VM the API server
listens on the VM, not on localhost. The tunnel forwards the local API
port to the same port on the machine so kubectl and the readiness poller
can keep using ``localhost``.

Tunnels are fire and forget: kid spawns ``ssh -f`` and afterwards finds
the process again by its ``-L`` signature. Teardown is idempotent.
"""

from __future__ import annotations

import os
import subprocess
import typing as typ

import psutil

from kid.errors import ExternalToolError
from kid.logging import get_logger, log_debug, log_info, log_warning
from kid.process import run_tool

if typ.TYPE_CHECKING:
    from pathlib import Path

    from kid.config import ClusterConfig, HostEndpoint

logger = get_logger(__name__)

_KUBELET_STATE_DIR = "/var/lib/kubelet"
_REMOTE_CLEANUP_TIMEOUT = 120


def forward_spec(port: int) -> str:
    """Return the ``-L`` argument that identifies a kid tunnel."""
    return f"{port}:localhost:{port}"


def machine_key_path(cfg: ClusterConfig, machine: str) -> Path:
    """Return the SSH private key docker-machine created for ``machine``."""
    return cfg.machine_storage_path / "machines" / machine / "id_rsa"


def _ssh_base(cfg: ClusterConfig, endpoint: HostEndpoint) -> list[str]:
    return [
        "ssh",
        "-i",
        str(machine_key_path(cfg, endpoint.machine_name)),
        "-o",
        "StrictHostKeyChecking=no",
        "-o",
        "UserKnownHostsFile=/dev/null",
        "-o",
        "LogLevel=ERROR",
    ]


def tunnel_command(cfg: ClusterConfig, endpoint: HostEndpoint) -> list[str]:
    """Return the ssh command that forwards the API port to the machine."""
    return [
        *_ssh_base(cfg, endpoint),
        "-f",
        "-N",
        "-T",
        "-L",
        forward_spec(cfg.api_port),
        f"{cfg.ssh_user}@{endpoint.docker_host_ip}",
    ]


def _is_tunnel(cmdline: list[str] | None, spec: str) -> bool:
    if not cmdline:
        return False
    if os.path.basename(cmdline[0]) != "ssh":
        return False
    return any(spec in arg for arg in cmdline[1:])


def find_tunnel_processes(port: int) -> list[psutil.Process]:
    """Return running ssh processes forwarding ``port``."""
    spec = forward_spec(port)
    return [
        proc
        for proc in psutil.process_iter(attrs=["pid", "cmdline"])
        if _is_tunnel(proc.info.get("cmdline"), spec)
    ]


def establish_tunnel(cfg: ClusterConfig, endpoint: HostEndpoint) -> bool:
    """Start the SSH tunnel when a docker-machine backend is active.

    Parameters
    ----------
    cfg : ClusterConfig
        Configuration with the API port and machine storage path.
    endpoint : HostEndpoint
        Resolved Docker host; nothing happens unless it is remote.

    Returns
    -------
    bool
        True if a new tunnel was spawned.

    Raises
    ------
    ExternalToolError
        If ssh cannot be started.

    """
    if not endpoint.is_remote:
        log_debug(logger, "No docker-machine active; skipping SSH tunnel")
        return False

    existing = find_tunnel_processes(cfg.api_port)
    if existing:
        log_warning(
            logger,
            "SSH tunnel for port %d already running (pid %s); not starting another",
            cfg.api_port,
            ", ".join(str(proc.pid) for proc in existing),
        )
        return False

    command = tunnel_command(cfg, endpoint)
    log_info(
        logger,
        "Forwarding localhost:%d to %s:%d over SSH...",
        cfg.api_port,
        endpoint.machine_name,
        cfg.api_port,
    )
    try:
        # S603: argv list built from configuration, shell=False
        subprocess.Popen(  # noqa: S603
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        msg = f"ssh could not be started: {e}"
        raise ExternalToolError(msg, command=command) from e
    return True


def teardown_tunnel(cfg: ClusterConfig) -> int:
    """Terminate every SSH tunnel forwarding the API port.

    Finding nothing is not an error. Processes that exit or deny access while
    being terminated are skipped.

    Returns:
        The number of processes terminated.

    """
    terminated = 0
    for proc in find_tunnel_processes(cfg.api_port):
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            log_debug(logger, "Could not terminate tunnel pid %d: %s", proc.pid, e)
            continue
        terminated += 1

    if terminated:
        log_info(logger, "Stopped %d SSH tunnel(s)", terminated)
    else:
        log_debug(logger, "No SSH tunnel for port %d found", cfg.api_port)
    return terminated


def remote_cleanup_script() -> str:
    """Return the shell snippet that unmounts and removes kubelet state."""
    return (
        f"grep ' {_KUBELET_STATE_DIR}' /proc/mounts | cut -d' ' -f2 | sort -r"
        " | xargs -r sudo umount;"
        f" sudo rm -rf {_KUBELET_STATE_DIR}"
    )


def remote_cleanup(cfg: ClusterConfig, endpoint: HostEndpoint) -> bool:
    """Unmount and delete kubelet state on the docker-machine host.

    The kubelet container bind-mounts pod volumes under ``/var/lib/kubelet``
    on the machine; they outlive ``docker-compose rm``.

    Returns:
        True if the cleanup ran, False when there is no machine to clean.

    Raises:
        ExternalToolError: If the ssh command fails.

    """
    if not endpoint.is_remote:
        log_debug(logger, "No docker-machine active; skipping remote cleanup")
        return False

    log_info(
        logger,
        "Removing %s on %s...",
        _KUBELET_STATE_DIR,
        endpoint.machine_name,
    )
    run_tool(
        [
            *_ssh_base(cfg, endpoint),
            f"{cfg.ssh_user}@{endpoint.docker_host_ip}",
            remote_cleanup_script(),
        ],
        timeout=_REMOTE_CLEANUP_TIMEOUT,
    )
    return True
