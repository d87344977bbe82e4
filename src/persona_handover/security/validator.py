"""Security validation for contexts about to be handed over.

Checks run in a fixed order and all must pass before anything is written
to disk or a process is spawned:

1. every artifact path stays inside the working tree;
2. dangerous inherited environment variables are stripped;
3. every artifact's declared size is within the per-file cap.

Classes
-------
SecurityValidator
    Validates (and sanitises) a :class:`PersonaContext` in place.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from persona_handover.config import DEFAULT_DENIED_ENV_VARS, DEFAULT_MAX_FILE_SIZE
from persona_handover.context.state import FileReference, PersonaContext
from persona_handover.errors import SecurityViolation

logger = logging.getLogger(__name__)


class SecurityValidator:
    """Reject unsafe context content before persistence.

    Parameters
    ----------
    max_file_size:
        Largest declared artifact size accepted, in bytes.
    denied_env_vars:
        Environment variable names stripped from the context.
    """

    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        denied_env_vars: Iterable[str] = DEFAULT_DENIED_ENV_VARS,
    ) -> None:
        if max_file_size <= 0:
            raise ValueError(f"max_file_size must be positive, got {max_file_size!r}.")
        self._max_file_size = max_file_size
        self._denied_env_vars = frozenset(denied_env_vars)

    @property
    def max_file_size(self) -> int:
        return self._max_file_size

    def validate(self, context: PersonaContext) -> list[str]:
        """Validate ``context`` and strip denied environment variables.

        Parameters
        ----------
        context:
            The context to check.  ``environment.variables`` is modified in
            place.

        Returns
        -------
        list[str]
            Names of the environment variables that were removed.

        Raises
        ------
        SecurityViolation
            If an artifact path escapes the working tree or an artifact
            exceeds the size cap.
        """
        working_dir = Path(context.metadata.working_directory or Path.cwd()).resolve()
        for ref in context.artifacts.files:
            self._check_path(ref, working_dir)

        stripped = self._strip_environment(context)

        for ref in context.artifacts.files:
            self._check_size(ref)

        return stripped

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def _check_path(self, ref: FileReference, working_dir: Path) -> None:
        raw = Path(ref.path)
        if ".." in raw.parts:
            raise SecurityViolation(
                f"Insecure file path: {ref.path} (parent directory reference)",
                offending_value=ref.path,
            )
        resolved = (raw if raw.is_absolute() else working_dir / raw).resolve()
        if not resolved.is_relative_to(working_dir):
            raise SecurityViolation(
                f"Insecure file path: {ref.path} (outside {working_dir})",
                offending_value=ref.path,
            )

    def _strip_environment(self, context: PersonaContext) -> list[str]:
        variables = context.environment.variables
        stripped = [name for name in variables if name in self._denied_env_vars]
        for name in stripped:
            del variables[name]
            logger.warning(
                "Removed potentially dangerous environment variable %s from context %s",
                name,
                context.context_id,
            )
        return stripped

    def _check_size(self, ref: FileReference) -> None:
        if ref.size > self._max_file_size:
            raise SecurityViolation(
                f"File too large: {ref.path} ({ref.size} bytes > {self._max_file_size})",
                offending_value=ref.path,
            )
