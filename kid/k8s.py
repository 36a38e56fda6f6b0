"""kubectl operations against the local API server.

Every kubectl invocation is pinned to the local API server with ``-s`` and
clears ``--context`` and ``--cluster``, so whatever the operator's own
kubeconfig selects is ignored.

Examples
--------
Apply a rendered manifest:

    apply_manifest(cfg, render_manifest(ManifestName.NAMESPACE, cfg))

Read a service's cluster IP:

    service_cluster_ip(cfg, "nginx")

"""

from __future__ import annotations

import subprocess
import typing as typ

from kid.process import passthrough, run_tool

if typ.TYPE_CHECKING:
    from kid.config import ClusterConfig
    from kid.manifests import ManifestDocument

_KUBECTL_TIMEOUT = 60
# Marker kubectl prints for objects the API server does not know
_NOT_FOUND = "NotFound"


def kubectl_command(cfg: ClusterConfig, *args: str) -> list[str]:
    """Return a kubectl argv pinned to the local API server.

    Parameters
    ----------
    cfg : ClusterConfig
        Configuration with the API URL.
    *args : str
        kubectl arguments appended verbatim.

    Returns
    -------
    list[str]
        For example ``kubectl -s http://127.0.0.1:8080 --context= --cluster=
        get pods``.

    """
    return ["kubectl", "-s", cfg.api_url, "--context=", "--cluster=", *args]


def kubectl_passthrough(cfg: ClusterConfig, args: typ.Sequence[str]) -> int:
    """Forward ``args`` to kubectl and return its exit status."""
    return passthrough(kubectl_command(cfg, *args))


def apply_manifest(cfg: ClusterConfig, document: ManifestDocument) -> None:
    """Apply a manifest via ``kubectl apply -f -``.

    Raises:
        ExternalToolError: If kubectl rejects the manifest.

    """
    run_tool(
        kubectl_command(cfg, "apply", "-f", "-"),
        input_text=document.text,
        timeout=_KUBECTL_TIMEOUT,
    )


def service_cluster_ip(cfg: ClusterConfig, name: str, namespace: str = "default") -> str:
    """Return the cluster IP of a Service.

    Raises
    ------
    ExternalToolError
        If kubectl fails, for instance because the Service does not exist.

    """
    result = run_tool(
        kubectl_command(
            cfg,
            "get",
            "service",
            name,
            f"--namespace={namespace}",
            "-o",
            "jsonpath={.spec.clusterIP}",
        ),
        capture=True,
        timeout=_KUBECTL_TIMEOUT,
    )
    return result.stdout.strip()


def pod_phase(cfg: ClusterConfig, name: str, namespace: str = "default") -> str:
    """Return a pod's phase, or ``""`` if it cannot be read yet."""
    try:
        # S603: argv list built from configuration, shell=False
        result = subprocess.run(  # noqa: S603
            kubectl_command(
                cfg,
                "get",
                "pod",
                name,
                f"--namespace={namespace}",
                "-o",
                "jsonpath={.status.phase}",
            ),
            capture_output=True,
            text=True,
            check=False,
            timeout=_KUBECTL_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def pod_exists(cfg: ClusterConfig, name: str, namespace: str = "default") -> bool:
    """Return False only once the API server reports the pod as NotFound.

    Any other failure, such as an unreachable API server, says nothing about
    the pod and counts as still present.
    """
    try:
        # S603: argv list built from configuration, shell=False
        result = subprocess.run(  # noqa: S603
            kubectl_command(cfg, "get", "pod", name, f"--namespace={namespace}"),
            capture_output=True,
            text=True,
            check=False,
            timeout=_KUBECTL_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        return True
    if result.returncode == 0:
        return True
    return _NOT_FOUND not in (result.stderr or "")


def exec_in_pod(
    cfg: ClusterConfig, name: str, command: typ.Sequence[str], namespace: str = "default"
) -> None:
    """Run ``command`` inside a pod with output on the terminal."""
    run_tool(
        kubectl_command(cfg, "exec", name, f"--namespace={namespace}", "--", *command),
        timeout=_KUBECTL_TIMEOUT,
    )


def delete_pod(cfg: ClusterConfig, name: str, namespace: str = "default") -> None:
    """Delete a pod; deleting a missing pod fails."""
    run_tool(
        kubectl_command(cfg, "delete", "pod", name, f"--namespace={namespace}"),
        timeout=_KUBECTL_TIMEOUT,
    )
