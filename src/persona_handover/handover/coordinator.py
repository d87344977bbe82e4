"""Cross-process context handover.

Hand a :class:`PersonaContext` to the next persona process and collect its
result.  One call to :meth:`HandoverCoordinator.handover` walks the states::

    Created -> Validated -> Persisted -> Spawned -> Running
            -> {Completed | Failed | TimedOut} -> {Cleaned | Preserved}

A child that runs to exit (successfully or not) gets its context file
cleaned up.  A timeout or spawn failure leaves the context file in place
for inspection; it is reclaimed later by :meth:`HandoverCoordinator.sweep`.

Usage
-----
::

    from persona_handover import HandoverConfig, HandoverCoordinator, PersonaContext

    coordinator = HandoverCoordinator.from_config(HandoverConfig.from_env())
    context = PersonaContext.create("data-expert", "analysis-expert", "analyze file")
    result = coordinator.handover(context)
    print(result.status, result.artifacts)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from persona_handover.artifacts.extractor import ArtifactExtractor
from persona_handover.config import DEFAULT_TIMEOUT_MS, HandoverConfig
from persona_handover.context.serializer import ContextCodec
from persona_handover.context.state import PersonaContext, TaskResult
from persona_handover.errors import HandoverError
from persona_handover.process.orchestrator import PersonaProcessOrchestrator, SpawnOptions
from persona_handover.security.validator import SecurityValidator
from persona_handover.storage.base import DEFAULT_RETENTION_MS, ContextStore, format_for_path
from persona_handover.storage.filesystem import FilesystemContextStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HandoverOptions:
    """Per-call overrides for a handover.

    Parameters
    ----------
    interactive:
        Run the target persona on the parent's terminal.
    timeout_ms:
        Overrides ``context.environment.timeout_ms`` and the coordinator's
        default when set.
    working_directory:
        Overrides ``context.metadata.working_directory`` when set.
    env:
        Extra environment variables for the child, applied after the
        context's own (already sanitised) variables.
    """

    interactive: bool = False
    timeout_ms: int | None = None
    working_directory: str | Path | None = None
    env: dict[str, str] = field(default_factory=dict)


class HandoverCoordinator:
    """Validate, persist, spawn, await, extract, and clean up.

    Every collaborator is injected so that tests can substitute fakes.

    Parameters
    ----------
    store:
        Where context payloads are persisted.
    codec:
        Context encoder/decoder.  Defaults to :class:`ContextCodec`.
    validator:
        Security checks.  Defaults to :class:`SecurityValidator`.
    orchestrator:
        Child process launcher.  Defaults to
        :class:`PersonaProcessOrchestrator`.
    extractor:
        Output scanner.  Defaults to :class:`ArtifactExtractor`.
    retention_ms:
        Default age threshold for :meth:`sweep`.
    default_timeout_ms:
        Child time budget used when neither the call options nor the
        context set one.
    """

    def __init__(
        self,
        store: ContextStore,
        *,
        codec: ContextCodec | None = None,
        validator: SecurityValidator | None = None,
        orchestrator: PersonaProcessOrchestrator | None = None,
        extractor: ArtifactExtractor | None = None,
        retention_ms: int = DEFAULT_RETENTION_MS,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._store = store
        self._codec = codec or ContextCodec()
        self._validator = validator or SecurityValidator()
        self._orchestrator = orchestrator or PersonaProcessOrchestrator()
        self._extractor = extractor or ArtifactExtractor()
        self._retention_ms = retention_ms
        self._default_timeout_ms = default_timeout_ms

    @classmethod
    def from_config(cls, config: HandoverConfig) -> "HandoverCoordinator":
        """Wire a coordinator with default components sized by ``config``."""
        return cls(
            FilesystemContextStore(config.store_dir),
            validator=SecurityValidator(
                max_file_size=config.max_file_size,
                denied_env_vars=config.denied_env_vars,
            ),
            orchestrator=PersonaProcessOrchestrator(command=config.persona_command),
            retention_ms=config.retention_ms,
            default_timeout_ms=config.default_timeout_ms,
        )

    @property
    def store(self) -> ContextStore:
        return self._store

    @property
    def default_timeout_ms(self) -> int:
        return self._default_timeout_ms

    # ------------------------------------------------------------------
    # Context files
    # ------------------------------------------------------------------

    def create_context(self, context: PersonaContext) -> Path:
        """Validate, encode, and persist ``context``; return its path.

        Raises
        ------
        SecurityViolation
            If validation fails.  Nothing is written.
        ContextEncodingError
            If the context cannot be encoded.  Nothing is written.
        """
        self._validator.validate(context)
        data, encoding_format = self._codec.encode_with_format(context)
        return self._store.put(context.context_id, data, encoding_format)

    def load_context(self, path: str | Path) -> PersonaContext:
        """Read and decode a context file passed on the command line.

        Raises
        ------
        ChecksumMismatchError
            If a binary payload fails verification.
        ContextDecodeError
            If the payload cannot be decoded.
        """
        data = self._store.get(path)
        return self._codec.decode(data, format_for_path(path))

    def cleanup_context(self, path: str | Path) -> None:
        """Remove a context file and its checksum."""
        self._store.remove(path)

    def sweep(self, max_age_ms: int | None = None) -> list[Path]:
        """Remove preserved context files older than the retention window."""
        return self._store.sweep(self._retention_ms if max_age_ms is None else max_age_ms)

    # ------------------------------------------------------------------
    # Handover
    # ------------------------------------------------------------------

    def handover(
        self,
        context: PersonaContext,
        options: HandoverOptions | None = None,
    ) -> TaskResult:
        """Hand ``context`` over to its target persona and wait for the result.

        Parameters
        ----------
        context:
            The context to hand over.  Denied environment variables are
            stripped from it in place.
        options:
            Per-call overrides.

        Returns
        -------
        TaskResult
            ``completed`` or ``failed`` depending on the child's exit code,
            with artifacts extracted from its output.

        Raises
        ------
        SecurityViolation
            Before anything is written or spawned.
        ContextEncodingError
            Before anything is written or spawned.
        ProcessSpawnError
            The context file is preserved; its path is on the exception.
        HandoverTimeoutError
            The child was killed; the context file is preserved and its path
            is on the exception.
        """
        opts = options or HandoverOptions()
        meta = context.metadata

        context_path = self.create_context(context)
        logger.debug(
            "Handing over context %s from %s to %s",
            meta.context_id,
            meta.source_persona,
            meta.target_persona,
        )

        spawn_options = SpawnOptions(
            interactive=opts.interactive,
            timeout_ms=(
                opts.timeout_ms
                or context.environment.timeout_ms
                or self._default_timeout_ms
            ),
            working_directory=opts.working_directory or meta.working_directory or None,
            env={**context.environment.variables, **opts.env},
            extra_args=tuple(context.environment.extra_args),
        )
        try:
            result = self._orchestrator.spawn(
                meta.target_persona,
                context_path,
                meta.task_description,
                spawn_options,
            )
        except HandoverError as exc:
            logger.error(
                "Persona handover failed, context preserved at: %s", context_path
            )
            raise exc.preserve(context_path)
        except Exception:
            logger.error(
                "Persona handover failed, context preserved at: %s", context_path
            )
            raise

        result.artifacts = self._extractor.extract(result.output)
        self.cleanup_context(context_path)
        logger.debug(
            "Handover %s finished with status %s in %dms",
            meta.context_id,
            result.status.value,
            result.execution_time_ms,
        )
        return result

    def __repr__(self) -> str:
        return f"HandoverCoordinator(store={self._store!r})"
