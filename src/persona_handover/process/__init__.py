"""Child process execution for persona handover."""
from __future__ import annotations

from persona_handover.process.orchestrator import (
    HANDOVER_ENV_FLAG,
    PersonaProcessOrchestrator,
    SpawnOptions,
)
from persona_handover.process.runner import CommandResult, run_command

__all__ = [
    "HANDOVER_ENV_FLAG",
    "CommandResult",
    "PersonaProcessOrchestrator",
    "SpawnOptions",
    "run_command",
]
