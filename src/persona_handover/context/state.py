"""Persona context domain models.

All types are Pydantic BaseModel subclasses to enable runtime validation
and a stable field order for deterministic encoding.

Classes
-------
- EncodingFormat      — which codec produced a persisted payload
- FileRole            — role of a referenced file in the pipeline
- TaskStatus          — lifecycle states of a task result
- FileReference       — a file handed from one stage to the next
- MemoryFact          — a timestamped key/value fact
- MemorySnapshot      — facts plus opaque cache and persona state
- ConversationTurn    — one prior chat turn
- TaskResult          — the outcome of one handover
- HPCContext          — optional batch-scheduler descriptor
- ContextMetadata, ExecutionEnvironment, ArtifactBundle,
  ScientificContext, CommunicationPolicy — the sections of a context
- PersonaContext      — top-level record exchanged between stages
"""
from __future__ import annotations

import hashlib
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field

SCHEMA_VERSION = "1.0.0"

_CHUNK_SIZE = 1024 * 1024
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


# ---------------------------------------------------------------------------
# Identifier and timestamp helpers
# ---------------------------------------------------------------------------


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_context_id() -> str:
    """Return a new unique identifier: ``handover-<base36 ms>-<12 hex>``."""
    millis = time.time_ns() // 1_000_000
    return f"handover-{_to_base36(millis)}-{secrets.token_hex(6)}"


def _to_millis(value: datetime) -> datetime:
    """Coerce to an aware UTC datetime truncated to millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def utc_now() -> datetime:
    """Return the current UTC time at millisecond precision."""
    return _to_millis(datetime.now(timezone.utc))


Timestamp = Annotated[datetime, AfterValidator(_to_millis)]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class EncodingFormat(str, Enum):
    """Codec that produced a persisted context payload."""

    BINARY = "binary"
    JSON_FALLBACK = "json-fallback"


class FileRole(str, Enum):
    """Role of a referenced file within the pipeline."""

    INPUT = "input"
    OUTPUT = "output"
    INTERMEDIATE = "intermediate"


class TaskStatus(str, Enum):
    """Lifecycle states for the result of a handover."""

    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"


class ExecutionMode(str, Enum):
    SYNCHRONOUS = "synchronous"
    ASYNCHRONOUS = "asynchronous"


class ErrorHandling(str, Enum):
    RETRY = "retry"
    FAIL = "fail"
    FALLBACK = "fallback"


class HPCScheduler(str, Enum):
    SLURM = "slurm"
    PBS = "pbs"
    SGE = "sge"


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


class FileReference(BaseModel):
    """A file produced or consumed by a pipeline stage.

    Parameters
    ----------
    path:
        Path of the file, absolute or relative to the working directory.
    role:
        Whether the file is an input, output, or intermediate product.
    format:
        Free-form format tag such as ``"csv"`` or ``"hdf5"``.
    size:
        Declared size in bytes.
    checksum:
        SHA-256 hex digest of the file content, if known.
    metadata:
        Arbitrary additional key-value data.
    """

    path: str
    role: FileRole = FileRole.INPUT
    format: str = ""
    size: int = Field(default=0, ge=0)
    checksum: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_path(
        cls,
        path: str | Path,
        role: FileRole = FileRole.INPUT,
        format: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> "FileReference":
        """Build a reference by reading an existing file.

        The size is taken from ``stat`` and the checksum is the SHA-256 of
        the file content.  The format defaults to the file suffix.

        Raises
        ------
        FileNotFoundError
            If ``path`` does not exist.
        """
        file_path = Path(path)
        digest = hashlib.sha256()
        with file_path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
        return cls(
            path=str(path),
            role=role,
            format=format or file_path.suffix.lstrip("."),
            size=file_path.stat().st_size,
            checksum=digest.hexdigest(),
            metadata=metadata or {},
        )


class MemoryFact(BaseModel):
    key: str
    value: str
    timestamp: Timestamp = Field(default_factory=utc_now)


class MemorySnapshot(BaseModel):
    """Facts learned so far plus opaque cache and persona state blobs."""

    facts: list[MemoryFact] = Field(default_factory=list)
    cache: dict[str, Any] = Field(default_factory=dict)
    persona_state: dict[str, Any] = Field(default_factory=dict)


class ConversationTurn(BaseModel):
    role: str
    content: str
    timestamp: Timestamp = Field(default_factory=utc_now)
    persona: str = ""


class TaskResult(BaseModel):
    """The outcome of one handover.

    Parameters
    ----------
    task_id:
        Unique identifier of this result.
    status:
        ``completed`` for exit code 0, ``failed`` for any other exit code.
    output:
        Captured standard output (empty in interactive mode).
    artifacts:
        File and URL references recovered from ``output``.
    execution_time_ms:
        Wall-clock time between spawn and exit.
    error:
        Captured standard error or a generic exit-code message on failure.
    """

    task_id: str = Field(default_factory=generate_context_id)
    status: TaskStatus = TaskStatus.PENDING
    output: str = ""
    artifacts: list[str] = Field(default_factory=list)
    execution_time_ms: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        """True when the child exited with code 0."""
        return self.status == TaskStatus.COMPLETED


class ArtifactBundle(BaseModel):
    files: list[FileReference] = Field(default_factory=list)
    memory: MemorySnapshot = Field(default_factory=MemorySnapshot)
    chat_history: list[ConversationTurn] = Field(default_factory=list)
    results: list[TaskResult] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Context sections
# ---------------------------------------------------------------------------


class HPCContext(BaseModel):
    scheduler: HPCScheduler
    job_id: str | None = None
    nodes: int = 1
    cores: int = 1
    memory: str = "1GB"
    walltime: str = "01:00:00"
    queue: str = "default"


class ScientificContext(BaseModel):
    """Pipeline-domain tags carried verbatim between stages."""

    data_formats: list[str] = Field(default_factory=list)
    hpc_environment: HPCContext | None = None
    mcp_servers: list[str] = Field(default_factory=list)
    custom_extensions: dict[str, Any] = Field(default_factory=dict)


class CommunicationPolicy(BaseModel):
    mode: ExecutionMode = ExecutionMode.SYNCHRONOUS
    result_callback: str | None = None
    error_handling: ErrorHandling = ErrorHandling.RETRY
    max_retries: int = Field(default=3, ge=0)


class ExecutionEnvironment(BaseModel):
    """Environment propagated to the next stage.

    Parameters
    ----------
    variables:
        Environment variable overrides for the child process.
    extra_args:
        Additional arguments appended to the child command line.
    timeout_ms:
        Wall-clock budget for the child process.  When unset the
        coordinator applies its configured default.
    """

    variables: dict[str, str] = Field(default_factory=dict)
    extra_args: list[str] = Field(default_factory=list)
    timeout_ms: int | None = Field(default=None, gt=0)


class ContextMetadata(BaseModel):
    """Identity and routing information for a context.

    ``context_id`` and ``created_at`` are assigned once at construction and
    cannot be reassigned afterwards.
    """

    context_id: str = Field(default_factory=generate_context_id, frozen=True)
    schema_version: str = SCHEMA_VERSION
    created_at: Timestamp = Field(default_factory=utc_now, frozen=True)
    source_persona: str = ""
    target_persona: str
    task_description: str = ""
    working_directory: str = Field(default_factory=lambda: str(Path.cwd()))
    encoding_format: EncodingFormat = EncodingFormat.BINARY


class PersonaContext(BaseModel):
    """Complete record handed from one persona invocation to the next."""

    metadata: ContextMetadata
    environment: ExecutionEnvironment = Field(default_factory=ExecutionEnvironment)
    artifacts: ArtifactBundle = Field(default_factory=ArtifactBundle)
    scientific: ScientificContext = Field(default_factory=ScientificContext)
    communication: CommunicationPolicy = Field(default_factory=CommunicationPolicy)

    @property
    def context_id(self) -> str:
        return self.metadata.context_id

    @classmethod
    def create(
        cls,
        source_persona: str,
        target_persona: str,
        task_description: str,
        *,
        working_directory: str | Path | None = None,
        **sections: Any,
    ) -> "PersonaContext":
        """Create a new context with a freshly generated id.

        Parameters
        ----------
        source_persona:
            Persona completing its task and handing over.
        target_persona:
            Persona that will receive the context.
        task_description:
            Task for the target persona.
        working_directory:
            Root of the working tree; defaults to the current directory.
        **sections:
            Optional ``environment``, ``artifacts``, ``scientific`` or
            ``communication`` sections.

        Returns
        -------
        PersonaContext
        """
        metadata = ContextMetadata(
            source_persona=source_persona,
            target_persona=target_persona,
            task_description=task_description,
            working_directory=str(working_directory or Path.cwd()),
        )
        return cls(metadata=metadata, **sections)

    def summary_line(self) -> str:
        """Return a one-line human-readable description."""
        meta = self.metadata
        return (
            f"PersonaContext {meta.context_id} | "
            f"{meta.source_persona or '?'} -> {meta.target_persona} | "
            f"{len(self.artifacts.files)} files, "
            f"{len(self.artifacts.chat_history)} turns | format={meta.encoding_format.value}"
        )
