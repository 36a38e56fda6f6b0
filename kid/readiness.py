"""Readiness polling for the API server and cluster objects.

``poll_until`` is a fixed-interval retry loop. It is unbounded unless a
timeout or attempt budget is given, in which case exhausting the budget
raises ``ReadinessTimeoutError``. ``sleep`` and ``clock`` are injectable so
the loop can be driven without real waiting.

Examples
--------
Block until the API server answers, then confirm:

    wait_for_api_server(ClusterConfig())

Wait for an arbitrary condition, giving up after ten tries:

    poll_until(lambda: pod_phase(cfg, "busybox") == "Running",
               interval=1.0, max_attempts=10)

"""

from __future__ import annotations

import time
import typing as typ

import httpx

from kid.errors import ReadinessTimeoutError
from kid.logging import get_logger, log_debug, log_info

if typ.TYPE_CHECKING:
    from kid.config import ClusterConfig

logger = get_logger(__name__)

# Per-request timeout for readiness probes (seconds)
_PROBE_TIMEOUT = 5.0


def poll_until(  # noqa: PLR0913
    probe: typ.Callable[[], bool],
    *,
    interval: float,
    timeout: float | None = None,
    max_attempts: int | None = None,
    sleep: typ.Callable[[float], None] = time.sleep,
    clock: typ.Callable[[], float] = time.monotonic,
    description: str = "condition",
) -> int:
    """Call ``probe`` every ``interval`` seconds until it returns True.

    Parameters
    ----------
    probe : Callable[[], bool]
        Returns True once the target is ready.
    interval : float
        Seconds to sleep between failed attempts.
    timeout : float | None, optional
        Give up once this many seconds have elapsed. None means no limit.
    max_attempts : int | None, optional
        Give up after this many failed probes. None means no limit.
    sleep, clock : Callable, optional
        Injected for tests.
    description : str, optional
        Used in log and error messages.

    Returns
    -------
    int
        The number of probes issued, including the successful one.

    Raises
    ------
    ReadinessTimeoutError
        If either bound is exhausted before the probe succeeds.

    """
    started = clock()
    attempts = 0
    while True:
        attempts += 1
        if probe():
            log_debug(logger, "%s ready after %d attempt(s)", description, attempts)
            return attempts

        if max_attempts is not None and attempts >= max_attempts:
            msg = f"{description} not ready after {attempts} attempt(s)"
            raise ReadinessTimeoutError(msg, attempts=attempts)
        if timeout is not None and clock() - started >= timeout:
            msg = f"{description} not ready after {timeout} seconds"
            raise ReadinessTimeoutError(msg, attempts=attempts)

        log_debug(
            logger,
            "%s not ready (attempt %d), retrying in %ss",
            description,
            attempts,
            interval,
        )
        sleep(interval)


def http_probe(url: str, *, client: httpx.Client) -> bool:
    """Return True when ``url`` answers with any HTTP response."""
    try:
        client.get(url)
    except httpx.TransportError:
        return False
    return True


def wait_for_api_server(
    cfg: ClusterConfig,
    *,
    client: httpx.Client | None = None,
    sleep: typ.Callable[[float], None] = time.sleep,
) -> int:
    """Block until the API server answers, then issue one confirmation GET.

    Args:
        cfg: Configuration with the probe URL, interval and bounds.
        client: HTTP client to use; one is created and closed when omitted.
        sleep: Injected for tests.

    Returns:
        The number of probes issued before the confirmation request.

    Raises:
        ReadinessTimeoutError: If the configured bounds are exhausted.

    """
    owns_client = client is None
    http = client or httpx.Client(timeout=_PROBE_TIMEOUT)
    try:
        log_info(logger, "Waiting for the API server at %s...", cfg.probe_url)
        attempts = poll_until(
            lambda: http_probe(cfg.probe_url, client=http),
            interval=cfg.poll_interval,
            timeout=cfg.ready_timeout,
            max_attempts=cfg.ready_max_attempts,
            sleep=sleep,
            description="API server",
        )
        try:
            response = http.get(cfg.probe_url)
        except httpx.TransportError as e:
            msg = f"API server stopped answering at {cfg.probe_url}: {e}"
            raise ReadinessTimeoutError(msg, attempts=attempts) from e
        log_info(
            logger,
            "API server answered with HTTP %d %s",
            response.status_code,
            response.reason_phrase,
        )
        return attempts
    finally:
        if owns_client:
            http.close()
