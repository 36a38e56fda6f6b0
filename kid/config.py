"""Configuration for the local single-node cluster.

``ClusterConfig`` is built once, in :func:`kid.cli.main`, from the process
environment and then handed to every component. Nothing else in the package
reads ``os.environ``.

Environment variables
---------------------
- ``KID_API_PORT``: API server port (default 8080)
- ``KID_KUBERNETES_VERSION``: hyperkube image version (default 1.2.4)
- ``KID_PROJECT_NAME``: docker-compose project name (default ``kid``)
- ``KID_READY_TIMEOUT``: seconds to wait for the API server; ``0`` or
  ``none`` waits indefinitely (default 1800)
- ``KID_READY_MAX_ATTEMPTS``: probe attempt budget (default unbounded)
- ``KID_REMOTE_CLEANUP``: run the SSH cleanup step on ``down`` (default on)
- ``KID_LOG_LEVEL``: femtologging level (default INFO)
- ``DOCKER_HOST``, ``DOCKER_MACHINE_NAME``, ``MACHINE_STORAGE_PATH``: Docker
  and docker-machine discovery
"""

from __future__ import annotations

import dataclasses
import typing as typ
from pathlib import Path

from kid.errors import ConfigError

# TCP port number range limits
_MIN_PORT = 1
_MAX_PORT = 65535

_FALSE_VALUES = frozenset({"0", "false", "no", "off"})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_UNBOUNDED_VALUES = frozenset({"0", "none"})


def _parse_port(variable: str, raw: str) -> int:
    try:
        port = int(raw)
    except ValueError as exc:
        raise ConfigError.invalid(variable, raw, "an integer port") from exc
    if not _MIN_PORT <= port <= _MAX_PORT:
        raise ConfigError.invalid(variable, raw, f"{_MIN_PORT}-{_MAX_PORT}")
    return port


def _parse_timeout(variable: str, raw: str) -> float | None:
    if raw.strip().lower() in _UNBOUNDED_VALUES:
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError.invalid(variable, raw, "seconds or 'none'") from exc
    if value < 0:
        raise ConfigError.invalid(variable, raw, "a non-negative number")
    return value


def _parse_attempts(variable: str, raw: str) -> int | None:
    if raw.strip().lower() in _UNBOUNDED_VALUES:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError.invalid(variable, raw, "a positive integer") from exc
    if value < 1:
        raise ConfigError.invalid(variable, raw, "a positive integer")
    return value


def _parse_flag(variable: str, raw: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigError.invalid(variable, raw, "a boolean")


def _default_machine_storage() -> Path:
    return Path.home() / ".docker" / "machine"


@dataclasses.dataclass(frozen=True, slots=True)
class ClusterConfig:
    """Immutable settings for one kid invocation.

    Attributes:
        api_port: Port the API server listens on, on the Docker host.
        kubernetes_version: Tag of the hyperkube image, without the ``v``.
        project_name: docker-compose project name for the stack.
        ready_timeout: Seconds to wait for readiness; None waits forever.
        ready_max_attempts: Probe budget for readiness; None is unbounded.
        remote_cleanup: Whether ``down`` unmounts kubelet state over SSH.
        docker_host_url: Raw ``DOCKER_HOST`` value.
        machine_name: Raw ``DOCKER_MACHINE_NAME`` value.

    """

    api_port: int = 8080
    kubernetes_version: str = "1.2.4"
    etcd_version: str = "2.2.1"
    project_name: str = "kid"
    dns_namespace: str = "kube-system"
    dns_server_ip: str = "10.0.0.10"
    dns_domain: str = "cluster.local"
    dns_replicas: int = 1
    poll_interval: float = 7.0
    ready_timeout: float | None = 1800.0
    ready_max_attempts: int | None = None
    pod_poll_interval: float = 1.0
    remote_cleanup: bool = True
    docker_host_url: str = ""
    machine_name: str = ""
    machine_storage_path: Path = dataclasses.field(
        default_factory=_default_machine_storage
    )
    ssh_user: str = "docker"
    log_level: str = "INFO"
    required_executables: tuple[str, ...] = ("docker", "docker-compose", "kubectl")

    @property
    def api_url(self) -> str:
        """Return the URL kubectl and the kubeconfig point at."""
        return f"http://127.0.0.1:{self.api_port}"

    @property
    def probe_url(self) -> str:
        """Return the URL the readiness poller probes."""
        return f"http://localhost:{self.api_port}"

    @classmethod
    def from_env(cls, env: typ.Mapping[str, str]) -> ClusterConfig:
        """Build a configuration from an environment mapping.

        Parameters
        ----------
        env : Mapping[str, str]
            Usually ``os.environ``; tests pass plain dicts.

        Returns
        -------
        ClusterConfig
            Configuration with defaults for every unset variable.

        Raises
        ------
        ConfigError
            If a variable is set to a value that fails validation.

        """
        overrides: dict[str, typ.Any] = {}

        if raw := env.get("KID_API_PORT"):
            overrides["api_port"] = _parse_port("KID_API_PORT", raw)
        if raw := env.get("KID_KUBERNETES_VERSION"):
            overrides["kubernetes_version"] = raw.strip().removeprefix("v")
        if raw := env.get("KID_PROJECT_NAME"):
            overrides["project_name"] = raw.strip()
        if raw := env.get("KID_READY_TIMEOUT"):
            overrides["ready_timeout"] = _parse_timeout("KID_READY_TIMEOUT", raw)
        if raw := env.get("KID_READY_MAX_ATTEMPTS"):
            overrides["ready_max_attempts"] = _parse_attempts(
                "KID_READY_MAX_ATTEMPTS", raw
            )
        if raw := env.get("KID_REMOTE_CLEANUP"):
            overrides["remote_cleanup"] = _parse_flag("KID_REMOTE_CLEANUP", raw)
        if raw := env.get("KID_LOG_LEVEL"):
            overrides["log_level"] = raw
        if raw := env.get("MACHINE_STORAGE_PATH"):
            overrides["machine_storage_path"] = Path(raw).expanduser()

        overrides["docker_host_url"] = env.get("DOCKER_HOST", "").strip()
        overrides["machine_name"] = env.get("DOCKER_MACHINE_NAME", "").strip()
        return cls(**overrides)


@dataclasses.dataclass(frozen=True, slots=True)
class HostEndpoint:
    """Where the Docker daemon lives for this invocation.

    Empty strings mean the daemon is local and no tunnel is needed.
    """

    docker_host_ip: str = ""
    machine_name: str = ""

    @property
    def is_remote(self) -> bool:
        """Return True when a docker-machine backend is active."""
        return bool(self.machine_name)
