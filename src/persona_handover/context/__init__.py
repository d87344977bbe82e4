"""Persona context model and codec.

Public surface
--------------
- PersonaContext and its sections  — see :mod:`persona_handover.context.state`
- ContextCodec, DomainBlob, ExtensionKind  — see :mod:`persona_handover.context.serializer`
"""
from __future__ import annotations

from persona_handover.context.serializer import (
    ContextCodec,
    DomainBlob,
    ExtensionKind,
    SchemaVersionError,
    compute_checksum,
)
from persona_handover.context.state import (
    ArtifactBundle,
    CommunicationPolicy,
    ContextMetadata,
    ConversationTurn,
    EncodingFormat,
    ErrorHandling,
    ExecutionEnvironment,
    ExecutionMode,
    FileReference,
    FileRole,
    HPCContext,
    HPCScheduler,
    MemoryFact,
    MemorySnapshot,
    PersonaContext,
    ScientificContext,
    TaskResult,
    TaskStatus,
    generate_context_id,
    utc_now,
)

__all__ = [
    "ArtifactBundle",
    "CommunicationPolicy",
    "ContextCodec",
    "ContextMetadata",
    "ConversationTurn",
    "DomainBlob",
    "EncodingFormat",
    "ErrorHandling",
    "ExecutionEnvironment",
    "ExecutionMode",
    "ExtensionKind",
    "FileReference",
    "FileRole",
    "HPCContext",
    "HPCScheduler",
    "MemoryFact",
    "MemorySnapshot",
    "PersonaContext",
    "SchemaVersionError",
    "ScientificContext",
    "TaskResult",
    "TaskStatus",
    "compute_checksum",
    "generate_context_id",
    "utc_now",
]
