"""Command-line entry point for kid.

Usage:
    kid up            # Start a single-node cluster and install DNS
    kid down          # Tear the cluster down
    kid kubectl ARGS  # Run kubectl against the local cluster
    kid logs|ps|events ARGS
    kid busybox | nginx | test | kubeconfig | ip | version | help

The verb is validated against ``Verb`` before anything runs, prerequisite
checks follow, and only then is the verb dispatched through the cyclopts
app built by ``create_app``.
"""

from __future__ import annotations

import dataclasses
import enum
import os
import sys
import typing as typ

from cyclopts import App, Parameter

from kid._version import __version__
from kid.compose import compose_passthrough
from kid.config import ClusterConfig, HostEndpoint
from kid.environment import resolve_host_endpoint
from kid.errors import ConfigError, ExternalToolError, KidError, UsageError
from kid.k8s import kubectl_passthrough
from kid.logging import configure_logging, get_logger, log_error, log_warning
from kid.orchestration import (
    cluster_down,
    cluster_up,
    deploy_busybox,
    deploy_nginx,
    run_dns_test,
    write_kubeconfig_file,
)
from kid.prerequisites import check_prerequisites

logger = get_logger(__name__)

EXIT_INTERRUPTED = 130


class Verb(enum.StrEnum):
    """Every verb kid accepts."""

    UP = "up"
    DOWN = "down"
    BUSYBOX = "busybox"
    KUBECONFIG = "kubeconfig"
    NGINX = "nginx"
    TEST = "test"
    IP = "ip"
    KUBECTL = "kubectl"
    LOGS = "logs"
    PS = "ps"
    EVENTS = "events"
    HELP = "help"
    VERSION = "version"


PASSTHROUGH_VERBS = frozenset({Verb.KUBECTL, Verb.LOGS, Verb.PS, Verb.EVENTS})
_HELP_TOKENS = frozenset({"-h", "--help"})
_SKIP_PREREQUISITES = frozenset({Verb.HELP})
_NEEDS_ENDPOINT = frozenset({Verb.UP, Verb.DOWN, Verb.IP})


@dataclasses.dataclass(frozen=True, slots=True)
class CommandInvocation:
    """A validated verb and the arguments that follow it."""

    verb: Verb
    args: tuple[str, ...] = ()

    def tokens(self) -> list[str]:
        """Return the tokens handed to the cyclopts app.

        Passthrough arguments follow an end-of-options marker so flags meant
        for kubectl or docker-compose are not parsed here.
        """
        if self.verb in PASSTHROUGH_VERBS and self.args:
            return [self.verb.value, "--", *self.args]
        return [self.verb.value]


def parse_command(argv: typ.Sequence[str]) -> CommandInvocation:
    """Validate ``argv`` into a ``CommandInvocation``.

    Parameters
    ----------
    argv : Sequence[str]
        Arguments after the program name.

    Returns
    -------
    CommandInvocation
        ``Verb.HELP`` for an empty command line or a help flag.

    Raises
    ------
    UsageError
        If the verb is unknown, or a non-passthrough verb gets arguments.

    """
    if not argv or argv[0] in _HELP_TOKENS:
        return CommandInvocation(Verb.HELP)

    head, *rest = argv
    try:
        verb = Verb(head)
    except ValueError as e:
        raise UsageError.unknown_verb(head) from e

    if rest and verb not in PASSTHROUGH_VERBS:
        msg = f"'{verb}' takes no arguments, got: {' '.join(rest)}"
        raise UsageError(msg)
    return CommandInvocation(verb, tuple(rest))


def create_app(cfg: ClusterConfig, endpoint: HostEndpoint | None = None) -> App:
    """Build the cyclopts app with ``cfg`` and ``endpoint`` bound in.

    Args:
        cfg: Configuration shared by every command.
        endpoint: Resolved Docker host; only ``up``, ``down`` and ``ip`` use it.

    Returns:
        The configured App.

    """
    host = endpoint or HostEndpoint()
    app = App(
        name="kid",
        help="Run a single-node Kubernetes cluster in Docker.",
        version=__version__,
    )

    def up() -> int:
        """Start the cluster, wait for the API server and install DNS."""
        return cluster_up(cfg, host)

    def down() -> int:
        """Stop the cluster and remove its containers."""
        return cluster_down(cfg, host)

    def busybox() -> int:
        """Start a busybox pod for poking around inside the cluster."""
        deploy_busybox(cfg)
        return 0

    def kubeconfig() -> int:
        """Write a kubeconfig for the local cluster to the working directory."""
        write_kubeconfig_file(cfg)
        return 0

    def nginx() -> int:
        """Deploy and expose nginx, then print its cluster IP."""
        print(deploy_nginx(cfg))
        return 0

    def test() -> int:
        """Check cluster DNS from a throwaway busybox pod."""
        run_dns_test(cfg)
        return 0

    def ip() -> int:
        """Print the Docker host IP address."""
        print(host.docker_host_ip)
        return 0

    def kubectl(*args: typ.Annotated[str, Parameter(allow_leading_hyphen=True)]) -> int:
        """Run kubectl against the local cluster."""
        return kubectl_passthrough(cfg, args)

    def logs(*args: typ.Annotated[str, Parameter(allow_leading_hyphen=True)]) -> int:
        """Show logs of the cluster's containers."""
        return compose_passthrough(cfg, "logs", args)

    def ps(*args: typ.Annotated[str, Parameter(allow_leading_hyphen=True)]) -> int:
        """List the cluster's containers."""
        return compose_passthrough(cfg, "ps", args)

    def events(*args: typ.Annotated[str, Parameter(allow_leading_hyphen=True)]) -> int:
        """Stream container events for the cluster."""
        return compose_passthrough(cfg, "events", args)

    def version() -> int:
        """Print the kid version."""
        print(__version__)
        return 0

    def help_() -> int:
        """Show this help."""
        app.help_print([])
        return 0

    for verb, handler in (
        (Verb.UP, up),
        (Verb.DOWN, down),
        (Verb.BUSYBOX, busybox),
        (Verb.KUBECONFIG, kubeconfig),
        (Verb.NGINX, nginx),
        (Verb.TEST, test),
        (Verb.IP, ip),
        (Verb.KUBECTL, kubectl),
        (Verb.LOGS, logs),
        (Verb.PS, ps),
        (Verb.EVENTS, events),
        (Verb.VERSION, version),
        (Verb.HELP, help_),
    ):
        app.command(handler, name=verb.value)
    return app


def _run(invocation: CommandInvocation, cfg: ClusterConfig) -> int:
    if invocation.verb not in _SKIP_PREREQUISITES:
        check_prerequisites(cfg)

    endpoint = (
        resolve_host_endpoint(cfg)
        if invocation.verb in _NEEDS_ENDPOINT
        else HostEndpoint()
    )
    result = create_app(cfg, endpoint)(invocation.tokens())
    return result if isinstance(result, int) else 0


def main(
    argv: typ.Sequence[str] | None = None,
    env: typ.Mapping[str, str] | None = None,
) -> int:
    """Entry point for the ``kid`` console script.

    Args:
        argv: Arguments after the program name; ``sys.argv[1:]`` by default.
        env: Environment mapping; ``os.environ`` by default.

    Returns:
        Process exit code.

    """
    arguments = list(sys.argv[1:] if argv is None else argv)
    environment = os.environ if env is None else env

    try:
        cfg = ClusterConfig.from_env(environment)
    except ConfigError as e:
        configure_logging("INFO", force=True)
        log_error(logger, "%s", e)
        return 1

    level, invalid_level = configure_logging(cfg.log_level, force=True)
    if invalid_level:
        log_warning(
            logger, "Invalid KID_LOG_LEVEL %r, falling back to %s", cfg.log_level, level
        )

    try:
        invocation = parse_command(arguments)
    except UsageError as e:
        # Reported on stderr, but exits like help
        print(f"kid: {e}", file=sys.stderr)
        create_app(cfg).help_print([])
        return 0

    if invocation.verb is Verb.HELP:
        create_app(cfg).help_print([])
        return 0

    try:
        return _run(invocation, cfg)
    except ExternalToolError as e:
        log_error(logger, "%s", e)
        return e.returncode or 1
    except KidError as e:
        log_error(logger, "%s", e)
        return 1
    except KeyboardInterrupt:
        log_warning(logger, "Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
