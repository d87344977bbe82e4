"""In-memory context store.

Stores payloads in a plain Python dict keyed by a virtual path.  All data is
lost when the process exits.  This store is primarily useful for tests and
for substituting the filesystem in a coordinator.

Classes
-------
- InMemoryContextStore  — dict-backed ephemeral storage
"""
from __future__ import annotations

import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from persona_handover.context.serializer import compute_checksum
from persona_handover.context.state import EncodingFormat
from persona_handover.errors import ChecksumMismatchError
from persona_handover.storage.base import (
    BINARY_SUFFIX,
    DEFAULT_RETENTION_MS,
    JSON_SUFFIX,
    ContextStore,
)

_VIRTUAL_ROOT = Path("/memory")


@dataclass
class _Entry:
    data: bytes
    checksum: str | None
    mtime: float


class InMemoryContextStore(ContextStore):
    """Ephemeral, in-process store backed by a Python dict.

    Parameters
    ----------
    clock:
        Returns the current time in seconds; used for modification times.
        Defaults to :func:`time.time`.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._entries: dict[Path, _Entry] = {}

    # ------------------------------------------------------------------
    # ContextStore interface
    # ------------------------------------------------------------------

    def put(
        self,
        context_id: str,
        data: bytes,
        encoding_format: EncodingFormat = EncodingFormat.BINARY,
    ) -> Path:
        """Store ``data`` under a virtual path derived from ``context_id``."""
        suffix = JSON_SUFFIX if encoding_format is EncodingFormat.JSON_FALLBACK else BINARY_SUFFIX
        path = _VIRTUAL_ROOT / f"{os.path.basename(context_id)}{suffix}"
        checksum = compute_checksum(data) if suffix == BINARY_SUFFIX else None
        self._entries[path] = _Entry(data=bytes(data), checksum=checksum, mtime=self._clock())
        return path

    def get(self, path: str | Path) -> bytes:
        """Return the payload at ``path``, verifying binary payloads."""
        try:
            entry = self._entries[Path(path)]
        except KeyError:
            raise FileNotFoundError(f"No context stored at {path}") from None
        if Path(path).suffix == BINARY_SUFFIX:
            actual = compute_checksum(entry.data)
            if entry.checksum != actual:
                raise ChecksumMismatchError(
                    Path(path), expected=entry.checksum or "", actual=actual
                )
        return entry.data

    def remove(self, path: str | Path) -> None:
        """Discard the entry at ``path`` if present."""
        self._entries.pop(Path(path), None)

    def sweep(self, max_age_ms: int = DEFAULT_RETENTION_MS) -> list[Path]:
        """Discard entries whose modification time exceeds ``max_age_ms``."""
        cutoff = self._clock() - max_age_ms / 1000.0
        stale = [path for path, entry in self._entries.items() if entry.mtime < cutoff]
        for path in stale:
            del self._entries[path]
        return stale

    def list_contexts(self) -> list[Path]:
        """Return all stored paths in insertion order."""
        return list(self._entries)

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    def corrupt(self, path: str | Path, data: bytes) -> None:
        """Replace the stored bytes without updating the checksum."""
        self._entries[Path(path)].data = data

    def __contains__(self, path: object) -> bool:
        return isinstance(path, (str, Path)) and Path(path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"InMemoryContextStore(contexts={len(self._entries)})"
