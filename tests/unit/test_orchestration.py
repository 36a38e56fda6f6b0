"""Unit tests for the lifecycle flows.

Run with:
    pytest tests/unit/test_orchestration.py
"""

from __future__ import annotations

import typing as typ

import pytest

from kid.config import ClusterConfig, HostEndpoint
from kid.errors import ExternalToolError, KidError, ReadinessTimeoutError
from kid.manifests import ManifestName, render_manifest
from kid.orchestration import (
    KUBECONFIG_FILENAME,
    SequenceResult,
    Step,
    StepOutcome,
    cluster_down,
    cluster_up,
    deploy_nginx,
    down_steps,
    run_dns_test,
    run_steps,
    write_kubeconfig_file,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import FakeSubprocess

_POD_NOT_FOUND = 'Error from server (NotFound): pods "busybox" not found'


def _fail(error: KidError) -> typ.Callable[[], None]:
    def action() -> None:
        raise error

    return action


@pytest.fixture
def events(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Replace tunnel and readiness steps with recorders."""
    recorded: list[str] = []
    monkeypatch.setattr(
        "kid.orchestration.establish_tunnel",
        lambda _cfg, endpoint: recorded.append(f"tunnel:{endpoint.machine_name}"),
    )
    monkeypatch.setattr(
        "kid.orchestration.teardown_tunnel",
        lambda _cfg: recorded.append("teardown") or 0,
    )
    monkeypatch.setattr(
        "kid.orchestration.wait_for_api_server",
        lambda _cfg: recorded.append("wait") or 1,
    )
    monkeypatch.setattr(
        "kid.orchestration.remote_cleanup",
        lambda _cfg, _endpoint: recorded.append("cleanup") or True,
    )
    return recorded


class TestRunSteps:
    """Tests for run_steps failure policy."""

    def test_all_succeed(self) -> None:
        """Every step runs and the result is ok."""
        ran: list[str] = []
        result = run_steps(
            [Step("a", lambda: ran.append("a")), Step("b", lambda: ran.append("b"))]
        )

        assert ran == ["a", "b"]
        assert result.ok
        assert not result.aborted
        assert result.exit_code == 0

    def test_critical_failure_aborts(self) -> None:
        """Steps after a critical failure are not attempted."""
        ran: list[str] = []
        error = ExternalToolError("boom", returncode=7)

        result = run_steps(
            [
                Step("a", _fail(error)),
                Step("b", lambda: ran.append("b")),
            ]
        )

        assert ran == []
        assert result.aborted
        assert result.outcomes == (StepOutcome("a", error),)
        assert result.exit_code == 7

    def test_best_effort_failure_continues(self) -> None:
        """A non-critical failure is recorded and the flow goes on."""
        ran: list[str] = []

        result = run_steps(
            [
                Step("a", _fail(KidError("meh")), critical=False),
                Step("b", lambda: ran.append("b")),
            ]
        )

        assert ran == ["b"]
        assert not result.aborted
        assert not result.ok
        assert result.exit_code == 1

    def test_non_kid_errors_propagate(self) -> None:
        """Programming errors are not swallowed as step failures."""

        def broken() -> None:
            msg = "bug"
            raise TypeError(msg)

        with pytest.raises(TypeError, match="bug"):
            run_steps([Step("a", broken)])

    def test_exit_code_uses_last_failure(self) -> None:
        """The status of the last failing step wins."""
        result = SequenceResult(
            (
                StepOutcome("a", ExternalToolError("x", returncode=3)),
                StepOutcome("b", ReadinessTimeoutError("y", attempts=2)),
            )
        )

        assert result.exit_code == 1


class TestClusterUp:
    """Tests for the up flow."""

    def test_up_sequence(
        self,
        cfg: ClusterConfig,
        machine_endpoint: HostEndpoint,
        fake_subprocess: FakeSubprocess,
        events: list[str],
    ) -> None:
        """Stack, tunnel, readiness, namespace and DNS run in order."""
        assert cluster_up(cfg, machine_endpoint) == 0

        assert fake_subprocess.calls == [
            ("docker-compose", "up", "-d"),
            ("kubectl", "apply", "-f", "-"),
            ("kubectl", "apply", "-f", "-"),
        ]
        assert events == ["tunnel:default", "wait"]
        namespace_run, dns_run = fake_subprocess.runs[1:]
        assert namespace_run.input == render_manifest(ManifestName.NAMESPACE, cfg).text
        assert dns_run.input == (
            render_manifest(
                ManifestName.DNS_STACK, cfg, api_host="192.168.99.100"
            ).text
        )

    def test_readiness_timeout_aborts(
        self,
        monkeypatch: pytest.MonkeyPatch,
        cfg: ClusterConfig,
        local_endpoint: HostEndpoint,
        fake_subprocess: FakeSubprocess,
    ) -> None:
        """Nothing is applied when the API server never answers."""
        monkeypatch.setattr("kid.orchestration.establish_tunnel", lambda *_a: False)

        def never_ready(_cfg: ClusterConfig) -> typ.NoReturn:
            msg = "API server not ready"
            raise ReadinessTimeoutError(msg, attempts=3)

        monkeypatch.setattr("kid.orchestration.wait_for_api_server", never_ready)

        assert cluster_up(cfg, local_endpoint) == 1
        assert fake_subprocess.calls_starting("kubectl") == []

    @pytest.mark.usefixtures("events")
    def test_compose_failure_aborts(
        self,
        cfg: ClusterConfig,
        local_endpoint: HostEndpoint,
        fake_subprocess: FakeSubprocess,
    ) -> None:
        """A failing docker-compose up stops the flow with its status."""
        fake_subprocess.respond("docker-compose", "up", returncode=2)

        assert cluster_up(cfg, local_endpoint) == 2
        assert fake_subprocess.calls == [("docker-compose", "up", "-d")]


class TestClusterDown:
    """Tests for the down flow."""

    def test_down_sequence(
        self,
        cfg: ClusterConfig,
        local_endpoint: HostEndpoint,
        fake_subprocess: FakeSubprocess,
        events: list[str],
    ) -> None:
        """Stack stop and removal precede the container sweep."""
        assert cluster_down(cfg, local_endpoint) == 0

        assert fake_subprocess.calls == [
            ("docker-compose", "stop"),
            ("docker-compose", "rm", "-f", "-v"),
            ("docker", "ps", "-a", "-q", "--filter", "label=io.kubernetes.pod.name"),
        ]
        assert events == ["teardown"]

    def test_down_twice_is_idempotent(
        self,
        cfg: ClusterConfig,
        local_endpoint: HostEndpoint,
        fake_subprocess: FakeSubprocess,
        events: list[str],
    ) -> None:
        """Tearing down a cluster that is already gone succeeds."""
        assert cluster_down(cfg, local_endpoint) == 0
        assert cluster_down(cfg, local_endpoint) == 0

        assert events == ["teardown", "teardown"]
        assert len(fake_subprocess.calls_starting("docker-compose", "rm")) == 2

    def test_remote_cleanup_runs_for_machine(
        self,
        cfg: ClusterConfig,
        machine_endpoint: HostEndpoint,
        events: list[str],
    ) -> None:
        """An active machine adds the best-effort SSH cleanup."""
        steps = down_steps(cfg, machine_endpoint)

        assert steps[-1].critical is False
        assert "default" in steps[-1].name
        assert events == []

    def test_remote_cleanup_can_be_disabled(
        self, machine_endpoint: HostEndpoint
    ) -> None:
        """KID_REMOTE_CLEANUP=off drops the step."""
        steps = down_steps(ClusterConfig(remote_cleanup=False), machine_endpoint)

        assert not any("kubelet state" in step.name for step in steps)

    @pytest.mark.usefixtures("events")
    def test_leftover_sweep_failure_is_tolerated(
        self,
        cfg: ClusterConfig,
        local_endpoint: HostEndpoint,
        fake_subprocess: FakeSubprocess,
    ) -> None:
        """A failing docker ps is reported but does not abort down."""
        fake_subprocess.respond("docker", "ps", returncode=1)

        result_code = cluster_down(cfg, local_endpoint)

        assert result_code == 1
        assert len(fake_subprocess.calls_starting("docker-compose", "rm")) == 1

    @pytest.mark.usefixtures("events")
    def test_stop_failure_aborts(
        self,
        cfg: ClusterConfig,
        local_endpoint: HostEndpoint,
        fake_subprocess: FakeSubprocess,
    ) -> None:
        """docker-compose stop is critical."""
        fake_subprocess.respond("docker-compose", "stop", returncode=1)

        assert cluster_down(cfg, local_endpoint) == 1
        assert fake_subprocess.calls_starting("docker-compose", "rm") == []


def test_write_kubeconfig_file(cfg: ClusterConfig, tmp_path: Path) -> None:
    """The kubeconfig is written into the target directory."""
    path = write_kubeconfig_file(cfg, tmp_path)

    assert path == tmp_path / KUBECONFIG_FILENAME
    assert path.read_text() == render_manifest(ManifestName.KUBECONFIG, cfg).text


def test_deploy_nginx_returns_cluster_ip(
    cfg: ClusterConfig, fake_subprocess: FakeSubprocess
) -> None:
    """nginx is applied, then its service IP is read."""
    fake_subprocess.respond("kubectl", "get", "service", stdout="10.0.0.42")

    assert deploy_nginx(cfg) == "10.0.0.42"
    assert fake_subprocess.calls[0] == ("kubectl", "apply", "-f", "-")


class TestDnsTest:
    """Tests for run_dns_test."""

    def test_full_cycle(self, fake_subprocess: FakeSubprocess) -> None:
        """Apply, wait for Running, nslookup, delete, wait for removal."""
        pod = ("kubectl", "get", "pod", "busybox", "--namespace=default")
        fake_subprocess.respond(*pod, "-o", stdout="Pending")
        fake_subprocess.respond(*pod, "-o", stdout="Running")
        fake_subprocess.respond(*pod, returncode=0)
        fake_subprocess.respond(*pod, returncode=1, stderr=_POD_NOT_FOUND)
        sleeps: list[float] = []

        run_dns_test(ClusterConfig(pod_poll_interval=0.5), sleep=sleeps.append)

        assert fake_subprocess.index_of("kubectl", "apply") < fake_subprocess.index_of(
            "kubectl", "exec"
        )
        assert fake_subprocess.index_of("kubectl", "exec") < fake_subprocess.index_of(
            "kubectl", "delete"
        )
        assert sleeps == [0.5, 0.5]

    def test_unreachable_api_server_keeps_waiting(
        self, fake_subprocess: FakeSubprocess
    ) -> None:
        """A refused connection after delete is not taken as the pod being gone."""
        pod = ("kubectl", "get", "pod", "busybox", "--namespace=default")
        fake_subprocess.respond(*pod, "-o", stdout="Running")
        fake_subprocess.respond(*pod, returncode=1, stderr="connection refused")
        fake_subprocess.respond(*pod, returncode=1, stderr=_POD_NOT_FOUND)
        sleeps: list[float] = []

        run_dns_test(ClusterConfig(pod_poll_interval=0.5), sleep=sleeps.append)

        existence_checks = [
            call for call in fake_subprocess.calls_starting(*pod) if "-o" not in call
        ]
        assert len(existence_checks) == 2
        assert sleeps == [0.5]

    def test_lookup_failure(
        self, cfg: ClusterConfig, fake_subprocess: FakeSubprocess
    ) -> None:
        """A failing nslookup is reported and the pod is left for inspection."""
        fake_subprocess.respond("kubectl", "get", "pod", stdout="Running")
        fake_subprocess.respond("kubectl", "exec", returncode=1)

        with pytest.raises(ExternalToolError):
            run_dns_test(cfg, sleep=lambda _s: None)

        assert fake_subprocess.calls_starting("kubectl", "delete") == []
