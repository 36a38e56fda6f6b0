"""Subprocess helpers shared by the docker, docker-compose and kubectl wrappers.

``run_tool`` is the single place where a failing external command becomes an
``ExternalToolError``; ``passthrough`` hands the terminal to a tool and
returns its exit status untouched.
"""

from __future__ import annotations

import subprocess
import typing as typ

from kid.errors import ExternalToolError


def run_tool(
    args: typ.Sequence[str],
    *,
    input_text: str | None = None,
    capture: bool = False,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run an external command and fail loudly on a non-zero exit.

    Parameters
    ----------
    args : Sequence[str]
        Command and arguments; the command is resolved through ``PATH``.
    input_text : str | None, optional
        Text written to the command's stdin (manifests are piped this way).
    capture : bool, default False
        Capture stdout and stderr instead of inheriting the terminal.
    timeout : float | None, optional
        Seconds before the command is killed; None waits indefinitely.

    Returns
    -------
    subprocess.CompletedProcess[str]
        The completed process; ``stdout`` is populated when ``capture``.

    Raises
    ------
    ExternalToolError
        If the command is missing, times out, or exits non-zero.

    """
    command = list(args)
    try:
        # S603: argv list, shell=False; commands are fixed tool names
        return subprocess.run(  # noqa: S603
            command,
            input=input_text,
            text=True,
            capture_output=capture,
            check=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() if capture else ""
        msg = f"{command[0]} exited with status {e.returncode}"
        if detail:
            msg = f"{msg}: {detail}"
        raise ExternalToolError(msg, command=command, returncode=e.returncode) from e
    except subprocess.TimeoutExpired as e:
        msg = f"{command[0]} timed out after {timeout} seconds"
        raise ExternalToolError(msg, command=command) from e
    except OSError as e:
        msg = f"{command[0]} could not be started: {e}"
        raise ExternalToolError(msg, command=command) from e


def passthrough(args: typ.Sequence[str], *, input_text: str | None = None) -> int:
    """Run a command attached to the terminal and return its exit status."""
    # S603: argv list, shell=False; operator supplied the trailing arguments
    result = subprocess.run(  # noqa: S603
        list(args),
        input=input_text,
        text=True,
        check=False,
    )
    return result.returncode
