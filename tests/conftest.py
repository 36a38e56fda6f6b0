"""Shared fixtures for kid tests.

The cmd-mox plugin, registered in pyproject.toml, provides the ``cmd_mox``
fixture used by tests of single command wrappers. Flows that issue many
commands use ``FakeSubprocess`` instead, which records every
``subprocess.run`` call.
"""

from __future__ import annotations

import dataclasses
import subprocess
import typing as typ

import pytest

from kid.config import ClusterConfig, HostEndpoint

# kubectl -s URL --context= --cluster= / docker-compose -p NAME -f -
_KUBECTL_PREFIX_LEN = 5
_COMPOSE_PREFIX_LEN = 5


def logical_args(argv: typ.Sequence[str]) -> tuple[str, ...]:
    """Strip the fixed kubectl and docker-compose prefixes from ``argv``.

    ``kubectl -s http://127.0.0.1:8080 --context= --cluster= get pods``
    becomes ``("kubectl", "get", "pods")``.
    """
    args = tuple(argv)
    if args[:2] == ("kubectl", "-s"):
        return ("kubectl", *args[_KUBECTL_PREFIX_LEN:])
    if args[:2] == ("docker-compose", "-p"):
        return ("docker-compose", *args[_COMPOSE_PREFIX_LEN:])
    return args


@dataclasses.dataclass(slots=True)
class RecordedRun:
    """One captured ``subprocess.run`` call."""

    argv: tuple[str, ...]
    logical: tuple[str, ...]
    input: str | None


class FakeSubprocess:
    """``subprocess.run`` double answering by logical argv prefix.

    Unmatched commands succeed with empty output. The longest matching
    prefix wins.
    """

    def __init__(self) -> None:
        """Start with no canned responses."""
        self.runs: list[RecordedRun] = []
        self._responses: dict[tuple[str, ...], list[tuple[int, str, str]]] = {}

    def respond(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ) -> FakeSubprocess:
        """Queue a response for commands starting with ``prefix``.

        Repeated calls queue further responses; the last one repeats.
        """
        self._responses.setdefault(prefix, []).append((returncode, stdout, stderr))
        return self

    def _answer(self, logical: tuple[str, ...]) -> tuple[int, str, str]:
        matches = [p for p in self._responses if logical[: len(p)] == p]
        if not matches:
            return (0, "", "")
        queue = self._responses[max(matches, key=len)]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def __call__(
        self, args: list[str], **kwargs: object
    ) -> subprocess.CompletedProcess[str]:
        """Record the call and return the canned result."""
        argv = tuple(args)
        logical = logical_args(argv)
        raw_input = kwargs.get("input")
        self.runs.append(
            RecordedRun(argv, logical, None if raw_input is None else str(raw_input))
        )
        returncode, stdout, stderr = self._answer(logical)
        if kwargs.get("check") and returncode != 0:
            raise subprocess.CalledProcessError(returncode, args, stdout, stderr)
        return subprocess.CompletedProcess(
            args=args, returncode=returncode, stdout=stdout, stderr=stderr
        )

    @property
    def calls(self) -> list[tuple[str, ...]]:
        """Return the logical argv of every call, in order."""
        return [run.logical for run in self.runs]

    def calls_starting(self, *prefix: str) -> list[tuple[str, ...]]:
        """Return logical calls starting with ``prefix``."""
        return [c for c in self.calls if c[: len(prefix)] == prefix]

    def index_of(self, *prefix: str) -> int:
        """Return the position of the first call starting with ``prefix``."""
        for index, call in enumerate(self.calls):
            if call[: len(prefix)] == prefix:
                return index
        msg = f"no call starting with {prefix!r} in {self.calls!r}"
        raise AssertionError(msg)


@pytest.fixture
def fake_subprocess(monkeypatch: pytest.MonkeyPatch) -> FakeSubprocess:
    """Replace ``subprocess.run`` with a recording ``FakeSubprocess``."""
    fake = FakeSubprocess()
    monkeypatch.setattr("subprocess.run", fake)
    return fake


@pytest.fixture
def tools_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make every executable appear to be installed."""
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def cfg() -> ClusterConfig:
    """Provide a default configuration."""
    return ClusterConfig()


@pytest.fixture
def local_endpoint() -> HostEndpoint:
    """Provide an endpoint for a local Docker daemon."""
    return HostEndpoint(docker_host_ip="192.168.1.20", machine_name="")


@pytest.fixture
def machine_endpoint() -> HostEndpoint:
    """Provide an endpoint for a docker-machine VM."""
    return HostEndpoint(docker_host_ip="192.168.99.100", machine_name="default")
