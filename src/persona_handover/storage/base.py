"""Abstract base class for context stores.

A store persists encoded context payloads under a base name derived from the
context id.  Binary payloads are always written together with a companion
checksum; reading a binary payload verifies it.

Classes
-------
- ContextStore  — abstract base for all stores
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from persona_handover.context.state import EncodingFormat

DEFAULT_RETENTION_MS = 60 * 60 * 1000

BINARY_SUFFIX = ".ctx"
JSON_SUFFIX = ".json"
CHECKSUM_SUFFIX = ".checksum"


def format_for_path(path: str | Path) -> EncodingFormat:
    """Return the encoding format implied by a payload file name."""
    if str(path).endswith(JSON_SUFFIX):
        return EncodingFormat.JSON_FALLBACK
    return EncodingFormat.BINARY


def checksum_path_for(path: str | Path) -> Path:
    """Return the companion checksum path for a payload path."""
    return Path(f"{path}{CHECKSUM_SUFFIX}")


class ContextStore(ABC):
    """Protocol for persisting encoded context payloads.

    Stores never delete on write.  Whether a persisted payload is removed
    after a handover is decided by the caller.
    """

    @abstractmethod
    def put(
        self,
        context_id: str,
        data: bytes,
        encoding_format: EncodingFormat = EncodingFormat.BINARY,
    ) -> Path:
        """Persist ``data`` and return the payload path.

        Binary payloads are written as ``<context_id>.ctx`` together with
        ``<context_id>.ctx.checksum``.  JSON fallback payloads are written as
        ``<context_id>.json`` without a checksum.

        Parameters
        ----------
        context_id:
            Unique context identifier used as the base name.
        data:
            Encoded payload bytes.
        encoding_format:
            Format of ``data``; selects the file suffix.
        """

    @abstractmethod
    def get(self, path: str | Path) -> bytes:
        """Return the payload stored at ``path``.

        Raises
        ------
        FileNotFoundError
            If nothing is stored at ``path``.
        ChecksumMismatchError
            If a binary payload has no checksum or its checksum differs.
        """

    @abstractmethod
    def remove(self, path: str | Path) -> None:
        """Remove the payload at ``path`` and its checksum, if present."""

    @abstractmethod
    def sweep(self, max_age_ms: int = DEFAULT_RETENTION_MS) -> list[Path]:
        """Remove payloads older than ``max_age_ms`` and return their paths.

        Only modification times are consulted; entries younger than the
        threshold are never removed.
        """

    @abstractmethod
    def list_contexts(self) -> list[Path]:
        """Return the paths of all stored payloads."""
