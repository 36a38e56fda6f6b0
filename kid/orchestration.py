"""Lifecycle flows behind the CLI verbs.

``up`` and ``down`` are lists of named steps. ``run_steps`` executes them in
order and decides per step what a failure means: a critical step aborts the
flow, a best-effort step is logged and the flow moves on. Only ``KidError``
is treated as a step failure; anything else is a bug and propagates.
"""

from __future__ import annotations

import dataclasses
import typing as typ
from pathlib import Path

from kid.compose import remove_cluster_containers, remove_stack, start_stack, stop_stack
from kid.errors import ExternalToolError, KidError
from kid.k8s import (
    apply_manifest,
    delete_pod,
    exec_in_pod,
    pod_exists,
    pod_phase,
    service_cluster_ip,
)
from kid.logging import get_logger, log_error, log_info, log_warning
from kid.manifests import ManifestName, render_manifest
from kid.readiness import poll_until, wait_for_api_server
from kid.tunnel import establish_tunnel, remote_cleanup, teardown_tunnel

if typ.TYPE_CHECKING:
    from kid.config import ClusterConfig, HostEndpoint

logger = get_logger(__name__)

KUBECONFIG_FILENAME = "kubeconfig"
_BUSYBOX_POD = "busybox"
_DNS_TEST_COMMAND = ("nslookup", "kubernetes.default")


@dataclasses.dataclass(frozen=True, slots=True)
class Step:
    """One step of a lifecycle flow.

    Attributes:
        name: Human-readable description, logged before the step runs.
        action: Callable performing the step.
        critical: Whether a failure aborts the rest of the flow.

    """

    name: str
    action: typ.Callable[[], object]
    critical: bool = True


@dataclasses.dataclass(frozen=True, slots=True)
class StepOutcome:
    """What happened when a step ran."""

    name: str
    error: KidError | None = None

    @property
    def ok(self) -> bool:
        """Return True if the step completed."""
        return self.error is None


@dataclasses.dataclass(frozen=True, slots=True)
class SequenceResult:
    """Outcomes of a flow, in execution order."""

    outcomes: tuple[StepOutcome, ...]
    aborted: bool = False

    @property
    def ok(self) -> bool:
        """Return True if every step that ran succeeded."""
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def exit_code(self) -> int:
        """Return 0 on success, else the status of the last failing step."""
        failures = [o for o in self.outcomes if o.error is not None]
        if not failures:
            return 0
        error = failures[-1].error
        if isinstance(error, ExternalToolError) and error.returncode:
            return error.returncode
        return 1


def run_steps(steps: typ.Iterable[Step]) -> SequenceResult:
    """Run ``steps`` in order, stopping at the first critical failure.

    Parameters
    ----------
    steps : Iterable[Step]
        The flow to execute.

    Returns
    -------
    SequenceResult
        One outcome per step that ran. ``aborted`` is True when a critical
        step failed and later steps were not attempted.

    """
    outcomes: list[StepOutcome] = []
    for step in steps:
        log_info(logger, "%s...", step.name)
        try:
            step.action()
        except KidError as e:
            outcomes.append(StepOutcome(step.name, e))
            if step.critical:
                log_error(logger, "%s failed: %s", step.name, e)
                return SequenceResult(tuple(outcomes), aborted=True)
            log_warning(logger, "%s failed, continuing: %s", step.name, e)
            continue
        outcomes.append(StepOutcome(step.name))
    return SequenceResult(tuple(outcomes))


def _api_host(endpoint: HostEndpoint) -> str:
    return endpoint.docker_host_ip or "127.0.0.1"


def up_steps(cfg: ClusterConfig, endpoint: HostEndpoint) -> list[Step]:
    """Return the steps that bring the cluster up, all critical."""
    return [
        Step("Starting the container stack", lambda: start_stack(cfg)),
        Step("Establishing the SSH tunnel", lambda: establish_tunnel(cfg, endpoint)),
        Step("Waiting for the API server", lambda: wait_for_api_server(cfg)),
        Step(
            f"Creating namespace {cfg.dns_namespace}",
            lambda: apply_manifest(cfg, render_manifest(ManifestName.NAMESPACE, cfg)),
        ),
        Step(
            "Installing cluster DNS",
            lambda: apply_manifest(
                cfg,
                render_manifest(
                    ManifestName.DNS_STACK, cfg, api_host=_api_host(endpoint)
                ),
            ),
        ),
    ]


def down_steps(cfg: ClusterConfig, endpoint: HostEndpoint) -> list[Step]:
    """Return the teardown steps.

    Stopping and removing the stack are critical; the rest is best effort.
    The SSH cleanup only appears when a machine is active and enabled.
    """
    steps = [
        Step("Stopping the SSH tunnel", lambda: teardown_tunnel(cfg), critical=False),
        Step("Stopping the container stack", lambda: stop_stack(cfg)),
        Step("Removing the container stack", lambda: remove_stack(cfg)),
        Step(
            "Removing leftover cluster containers",
            remove_cluster_containers,
            critical=False,
        ),
    ]
    if endpoint.is_remote and cfg.remote_cleanup:
        steps.append(
            Step(
                f"Cleaning kubelet state on {endpoint.machine_name}",
                lambda: remote_cleanup(cfg, endpoint),
                critical=False,
            )
        )
    return steps


def cluster_up(cfg: ClusterConfig, endpoint: HostEndpoint) -> int:
    """Bring the cluster up and install DNS.

    Returns:
        Exit code (0 for success, the failing step's status otherwise).

    """
    result = run_steps(up_steps(cfg, endpoint))
    if result.ok:
        log_info(logger, "Kubernetes is up at %s", cfg.api_url)
    return result.exit_code


def cluster_down(cfg: ClusterConfig, endpoint: HostEndpoint) -> int:
    """Tear the cluster down; safe to repeat when nothing is running.

    Returns:
        Exit code (0 for success, the last failing step's status otherwise).

    """
    result = run_steps(down_steps(cfg, endpoint))
    if result.ok:
        log_info(logger, "Kubernetes is down")
    return result.exit_code


def deploy_busybox(cfg: ClusterConfig) -> None:
    """Apply the busybox test pod."""
    apply_manifest(cfg, render_manifest(ManifestName.BUSYBOX_POD, cfg))


def write_kubeconfig_file(cfg: ClusterConfig, directory: Path | None = None) -> Path:
    """Write the client config for the local cluster.

    Args:
        cfg: Configuration with the API URL.
        directory: Target directory, the working directory by default.

    Returns:
        Path of the written file.

    """
    path = (directory or Path.cwd()) / KUBECONFIG_FILENAME
    path.write_text(render_manifest(ManifestName.KUBECONFIG, cfg).text)
    log_info(logger, "Wrote %s", path)
    return path


def deploy_nginx(cfg: ClusterConfig) -> str:
    """Deploy and expose nginx, returning the service's cluster IP."""
    apply_manifest(cfg, render_manifest(ManifestName.NGINX_DEPLOY, cfg))
    return service_cluster_ip(cfg, "nginx")


def run_dns_test(
    cfg: ClusterConfig,
    *,
    sleep: typ.Callable[[float], None] | None = None,
) -> None:
    """Check cluster DNS from inside a throwaway busybox pod.

    Applies the pod, waits for it to run, resolves ``kubernetes.default``
    inside it, then deletes it and waits for it to disappear.

    Raises:
        ExternalToolError: If kubectl fails or the lookup fails.
        ReadinessTimeoutError: If the pod does not start or stop in time.

    """
    wait_kwargs: dict[str, typ.Any] = {
        "interval": cfg.pod_poll_interval,
        "timeout": cfg.ready_timeout,
    }
    if sleep is not None:
        wait_kwargs["sleep"] = sleep

    deploy_busybox(cfg)
    log_info(logger, "Waiting for pod %s to run...", _BUSYBOX_POD)
    poll_until(
        lambda: pod_phase(cfg, _BUSYBOX_POD) == "Running",
        description=f"pod {_BUSYBOX_POD}",
        **wait_kwargs,
    )

    exec_in_pod(cfg, _BUSYBOX_POD, _DNS_TEST_COMMAND)

    delete_pod(cfg, _BUSYBOX_POD)
    log_info(logger, "Waiting for pod %s to terminate...", _BUSYBOX_POD)
    poll_until(
        lambda: not pod_exists(cfg, _BUSYBOX_POD),
        description=f"pod {_BUSYBOX_POD} deletion",
        **wait_kwargs,
    )
    log_info(logger, "DNS test passed")
