"""Pre-persistence security checks for handover contexts."""
from __future__ import annotations

from persona_handover.security.validator import SecurityValidator

__all__ = ["SecurityValidator"]
