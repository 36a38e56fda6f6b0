"""Run a single-node Kubernetes cluster in Docker.

kid starts etcd, a containerised kubelet and kube-proxy with docker-compose,
waits for the API server, and installs cluster DNS. The primary entrypoints
are:

- cluster_up: Start the cluster and install DNS
- cluster_down: Tear the cluster down
- ClusterConfig: Immutable configuration, usually built with ``from_env``

For lower-level operations, import directly from submodules:

- kid.compose: docker-compose and docker operations
- kid.k8s: kubectl operations
- kid.manifests: Manifest rendering
- kid.readiness: Readiness polling
- kid.tunnel: SSH tunnel to docker-machine hosts
- kid.environment: Docker host discovery

"""

from __future__ import annotations

from kid._version import __version__
from kid.config import ClusterConfig, HostEndpoint
from kid.errors import (
    ConfigError,
    EngineUnreachableError,
    ExecutableNotFoundError,
    ExternalToolError,
    KidError,
    ReadinessTimeoutError,
    UsageError,
)
from kid.orchestration import cluster_down, cluster_up

__all__ = [
    "ClusterConfig",
    "ConfigError",
    "EngineUnreachableError",
    "ExecutableNotFoundError",
    "ExternalToolError",
    "HostEndpoint",
    "KidError",
    "ReadinessTimeoutError",
    "UsageError",
    "__version__",
    "cluster_down",
    "cluster_up",
]
