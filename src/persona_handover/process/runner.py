"""Run an external command with a wall-clock deadline.

Non-interactive children are started in their own session so that the whole
process group can be killed when the deadline passes.  Interactive children
share the parent's terminal and process group, and only the child itself is
killed.

Classes
-------
- CommandResult  — exit status and captured output of a finished command

Functions
---------
- run_command    — start, await and (on timeout) kill a child process
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from persona_handover.errors import HandoverTimeoutError, ProcessSpawnError

logger = logging.getLogger(__name__)

_REAP_TIMEOUT_SECONDS = 2.0


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a command that ran to exit."""

    exit_code: int
    stdout: str
    stderr: str
    elapsed_ms: int


def run_command(
    argv: Sequence[str],
    *,
    timeout_ms: int,
    capture: bool = True,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``argv`` to completion or until ``timeout_ms`` elapses.

    Parameters
    ----------
    argv:
        Program and arguments.  No shell is involved.
    timeout_ms:
        Wall-clock budget measured from process start.
    capture:
        Capture stdout and stderr in full when True; otherwise the child
        inherits the parent's standard streams and nothing is captured.
    cwd:
        Working directory for the child.
    env:
        Complete environment for the child.  Inherits the parent's when
        ``None``.

    Returns
    -------
    CommandResult

    Raises
    ------
    ProcessSpawnError
        If the process cannot be started.
    HandoverTimeoutError
        If the deadline passes; the child (and its process group when
        capturing) has been killed and reaped before this is raised.
    """
    popen_kwargs: dict[str, object] = {}
    if capture:
        popen_kwargs.update(
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        if os.name == "posix":
            popen_kwargs["start_new_session"] = True
        else:
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

    argv = list(argv)
    start = time.monotonic()
    try:
        process = subprocess.Popen(  # noqa: S603
            argv,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            **popen_kwargs,  # type: ignore[arg-type]
        )
    except FileNotFoundError as error:
        raise ProcessSpawnError(
            f"Failed to spawn persona process: {argv[0]!r} or working directory not found"
        ) from error
    except OSError as error:
        raise ProcessSpawnError(f"Failed to spawn persona process: {error}") from error

    logger.debug("Started pid %d: %s", process.pid, argv)
    try:
        stdout, stderr = process.communicate(timeout=timeout_ms / 1000.0)
    except subprocess.TimeoutExpired:
        logger.warning("pid %d exceeded %dms, killing", process.pid, timeout_ms)
        _kill(process, group=capture)
        raise HandoverTimeoutError(timeout_ms) from None

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.debug("pid %d exited with %d after %dms", process.pid, process.returncode, elapsed_ms)
    return CommandResult(
        exit_code=process.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        elapsed_ms=elapsed_ms,
    )


def _kill(process: subprocess.Popen[str], *, group: bool) -> None:
    """Forcibly stop ``process`` (and its group) and reap it."""
    try:
        if group and hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass

    try:
        process.communicate(timeout=_REAP_TIMEOUT_SECONDS)
    except subprocess.TimeoutExpired:
        # Descendants that left the group still hold the pipes open.
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()
        process.wait()
