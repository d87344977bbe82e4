"""Artifact reference extraction from child process output."""
from __future__ import annotations

from persona_handover.artifacts.extractor import ArtifactExtractor

__all__ = ["ArtifactExtractor"]
