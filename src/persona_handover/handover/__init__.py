"""Cross-process context handover.

Classes
-------
HandoverCoordinator
    Validates, persists, spawns, awaits, extracts, and cleans up.
HandoverOptions
    Per-call overrides for a handover.
"""
from __future__ import annotations

from persona_handover.handover.coordinator import HandoverCoordinator, HandoverOptions

__all__ = [
    "HandoverCoordinator",
    "HandoverOptions",
]
