"""Spawn the next persona process and report its outcome.

The child is launched as::

    <command...> --persona <name> --context-from <path> --task <text>
                 [--non-interactive] [extra args...]

and is expected to read the context file, perform its task, print any
artifact references to stdout, and exit 0 on success.

Classes
-------
- SpawnOptions                — per-spawn settings
- PersonaProcessOrchestrator  — builds the argument vector and runs the child
"""
from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from persona_handover.config import DEFAULT_PERSONA_COMMAND, DEFAULT_TIMEOUT_MS
from persona_handover.context.state import TaskResult, TaskStatus
from persona_handover.process.runner import CommandResult, run_command

logger = logging.getLogger(__name__)

HANDOVER_ENV_FLAG = "PERSONA_HANDOVER"


@dataclass(frozen=True)
class SpawnOptions:
    """Settings for a single persona process.

    Parameters
    ----------
    interactive:
        Let the child use the parent's terminal instead of capturing output.
    timeout_ms:
        Wall-clock budget for the child.
    working_directory:
        Working directory for the child.  Defaults to the parent's.
    env:
        Environment variable overrides on top of the parent environment.
    extra_args:
        Arguments appended after the standard ones.
    """

    interactive: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    working_directory: str | Path | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    extra_args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms!r}.")


class PersonaProcessOrchestrator:
    """Launch persona processes with a bounded execution time.

    Parameters
    ----------
    command:
        Program (and leading arguments) that starts a persona process.
    runner:
        Function used to execute the command; see
        :func:`persona_handover.process.runner.run_command`.
    """

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_PERSONA_COMMAND,
        runner: Callable[..., CommandResult] = run_command,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty.")
        self._command = tuple(command)
        self._runner = runner

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    def build_args(
        self,
        target_persona: str,
        context_path: str | Path,
        task_description: str,
        *,
        interactive: bool = False,
        extra_args: Sequence[str] = (),
    ) -> list[str]:
        """Return the full argument vector for a persona process."""
        args = [
            *self._command,
            "--persona",
            target_persona,
            "--context-from",
            str(context_path),
            "--task",
            task_description,
        ]
        if not interactive:
            args.append("--non-interactive")
        args.extend(extra_args)
        return args

    def spawn(
        self,
        target_persona: str,
        context_path: str | Path,
        task_description: str,
        options: SpawnOptions | None = None,
    ) -> TaskResult:
        """Run the target persona and wait for it to exit.

        A nonzero exit is reported as ``status="failed"`` with stderr (or a
        generic message) as ``error``; it is not raised.

        Raises
        ------
        ProcessSpawnError
            If the process cannot be started.
        HandoverTimeoutError
            If the process is killed for exceeding ``options.timeout_ms``.
        """
        opts = options or SpawnOptions()
        argv = self.build_args(
            target_persona,
            context_path,
            task_description,
            interactive=opts.interactive,
            extra_args=opts.extra_args,
        )
        env = {**os.environ, **opts.env, HANDOVER_ENV_FLAG: "true"}

        logger.debug("Spawning persona %s with context %s", target_persona, context_path)
        outcome = self._runner(
            argv,
            timeout_ms=opts.timeout_ms,
            capture=not opts.interactive,
            cwd=opts.working_directory,
            env=env,
        )

        if outcome.exit_code == 0:
            return TaskResult(
                status=TaskStatus.COMPLETED,
                output=outcome.stdout,
                execution_time_ms=outcome.elapsed_ms,
            )
        return TaskResult(
            status=TaskStatus.FAILED,
            output=outcome.stdout,
            execution_time_ms=outcome.elapsed_ms,
            error=outcome.stderr or f"Process exited with code {outcome.exit_code}",
        )

    def __repr__(self) -> str:
        return f"PersonaProcessOrchestrator(command={self._command!r})"
