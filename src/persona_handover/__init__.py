"""persona-handover — context handover between persona processes.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import persona_handover
>>> persona_handover.__version__
'0.1.0'
"""
from __future__ import annotations

# Context model and codec
from persona_handover.context.serializer import (
    ContextCodec,
    DomainBlob,
    ExtensionKind,
    SchemaVersionError,
)
from persona_handover.context.state import (
    ConversationTurn,
    EncodingFormat,
    FileReference,
    FileRole,
    MemorySnapshot,
    PersonaContext,
    TaskResult,
    TaskStatus,
)

# Errors
from persona_handover.errors import (
    ChecksumMismatchError,
    ContextDecodeError,
    ContextEncodingError,
    HandoverError,
    HandoverTimeoutError,
    ProcessSpawnError,
    SecurityViolation,
)

# Components
from persona_handover.artifacts.extractor import ArtifactExtractor
from persona_handover.config import HandoverConfig
from persona_handover.handover.coordinator import HandoverCoordinator, HandoverOptions
from persona_handover.process.orchestrator import PersonaProcessOrchestrator, SpawnOptions
from persona_handover.security.validator import SecurityValidator
from persona_handover.storage.base import ContextStore
from persona_handover.storage.filesystem import FilesystemContextStore
from persona_handover.storage.memory import InMemoryContextStore

__version__: str = "0.1.0"

__all__ = [
    "__version__",
    # Context
    "ContextCodec",
    "ConversationTurn",
    "DomainBlob",
    "EncodingFormat",
    "ExtensionKind",
    "FileReference",
    "FileRole",
    "MemorySnapshot",
    "PersonaContext",
    "SchemaVersionError",
    "TaskResult",
    "TaskStatus",
    # Errors
    "ChecksumMismatchError",
    "ContextDecodeError",
    "ContextEncodingError",
    "HandoverError",
    "HandoverTimeoutError",
    "ProcessSpawnError",
    "SecurityViolation",
    # Components
    "ArtifactExtractor",
    "ContextStore",
    "FilesystemContextStore",
    "HandoverConfig",
    "HandoverCoordinator",
    "HandoverOptions",
    "InMemoryContextStore",
    "PersonaProcessOrchestrator",
    "SecurityValidator",
    "SpawnOptions",
]
