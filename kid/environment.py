"""Docker host discovery.

Works out which address the Docker daemon is reachable on and whether a
docker-machine backend is in use. Resolution is best effort: every helper
returns an empty string rather than raising, and callers read an empty
value as "local daemon, no tunnel".
"""

from __future__ import annotations

import shutil
import socket
import subprocess
import typing as typ
from urllib.parse import urlsplit

from kid.config import HostEndpoint
from kid.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    from kid.config import ClusterConfig

logger = get_logger(__name__)

# Address used only to select the outbound interface; no packet is sent
_ROUTE_PROBE_ADDRESS = ("10.255.255.255", 1)
_MACHINE_LOOKUP_TIMEOUT = 15


def host_from_docker_url(url: str) -> str:
    """Return the host segment of a ``DOCKER_HOST`` style URL.

    ``tcp://192.168.99.100:2376`` yields ``192.168.99.100``. Unix socket URLs
    and empty values yield ``""``.
    """
    if not url:
        return ""
    parts = urlsplit(url if "://" in url else f"tcp://{url}")
    if parts.scheme in {"unix", "npipe", "fd"}:
        return ""
    return parts.hostname or ""


def local_interface_ip() -> str:
    """Return the address of the interface that carries outbound traffic."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(_ROUTE_PROBE_ADDRESS)
            return sock.getsockname()[0]
    except OSError:
        return ""


def active_machine(cfg: ClusterConfig) -> str:
    """Return the active docker-machine name, or ``""`` when there is none.

    ``DOCKER_MACHINE_NAME`` wins. Otherwise ``docker-machine active`` is asked,
    but only when ``DOCKER_HOST`` points somewhere, since that is what it
    inspects.
    """
    if cfg.machine_name:
        return cfg.machine_name
    if not cfg.docker_host_url or shutil.which("docker-machine") is None:
        return ""
    try:
        # S603/S607: docker-machine via PATH is standard; no user input
        result = subprocess.run(
            ["docker-machine", "active"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=_MACHINE_LOOKUP_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired):
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def resolve_host_endpoint(
    cfg: ClusterConfig,
    *,
    interface_ip: typ.Callable[[], str] = local_interface_ip,
    machine_lookup: typ.Callable[[ClusterConfig], str] = active_machine,
) -> HostEndpoint:
    """Resolve the Docker host address and active machine for ``cfg``.

    Parameters
    ----------
    cfg : ClusterConfig
        Configuration carrying the ``DOCKER_HOST`` and machine values.
    interface_ip : Callable[[], str], optional
        Fallback used when ``DOCKER_HOST`` names no host.
    machine_lookup : Callable[[ClusterConfig], str], optional
        Returns the active docker-machine name.

    Returns
    -------
    HostEndpoint
        The resolved endpoint; fields are empty when unresolved.

    """
    host_ip = host_from_docker_url(cfg.docker_host_url) or interface_ip()
    machine = machine_lookup(cfg)
    log_debug(
        logger,
        "Resolved Docker host ip=%r machine=%r",
        host_ip,
        machine,
    )
    return HostEndpoint(docker_host_ip=host_ip, machine_name=machine)
