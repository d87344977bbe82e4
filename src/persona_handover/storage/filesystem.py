"""Filesystem context store.

Persists each context as a file under a dedicated directory.  Defaults to
``<system tmp>/persona-handover/``.

Classes
-------
- FilesystemContextStore  — file-per-context storage with checksums
"""
from __future__ import annotations

import logging
import os
import tempfile
import time
from pathlib import Path

from persona_handover.context.serializer import compute_checksum
from persona_handover.context.state import EncodingFormat
from persona_handover.errors import ChecksumMismatchError
from persona_handover.storage.base import (
    BINARY_SUFFIX,
    CHECKSUM_SUFFIX,
    DEFAULT_RETENTION_MS,
    JSON_SUFFIX,
    ContextStore,
    checksum_path_for,
    format_for_path,
)

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR: Path = Path(tempfile.gettempdir()) / "persona-handover"


class FilesystemContextStore(ContextStore):
    """Stores context payloads as individual files.

    Parameters
    ----------
    store_dir:
        Directory for payload files.  Defaults to
        ``<system tmp>/persona-handover/``.  Created on first use if absent.
    """

    def __init__(self, store_dir: str | Path | None = None) -> None:
        self._store_dir: Path = Path(store_dir) if store_dir is not None else DEFAULT_STORE_DIR

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_dir(self) -> None:
        """Create the store directory tree if it does not already exist."""
        self._store_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, context_id: str, encoding_format: EncodingFormat) -> Path:
        # Guard against path traversal attacks.
        safe_name = os.path.basename(context_id)
        if not safe_name:
            raise ValueError(f"Invalid context id {context_id!r}")
        suffix = JSON_SUFFIX if encoding_format is EncodingFormat.JSON_FALLBACK else BINARY_SUFFIX
        return self._store_dir / f"{safe_name}{suffix}"

    # ------------------------------------------------------------------
    # ContextStore interface
    # ------------------------------------------------------------------

    def put(
        self,
        context_id: str,
        data: bytes,
        encoding_format: EncodingFormat = EncodingFormat.BINARY,
    ) -> Path:
        """Write ``data`` (and its checksum for binary payloads).

        The directory is created if it does not yet exist.
        """
        self._ensure_dir()
        path = self._path_for(context_id, encoding_format)
        path.write_bytes(data)
        if encoding_format is EncodingFormat.BINARY:
            checksum_path_for(path).write_text(compute_checksum(data), encoding="utf-8")
        logger.debug("Stored context %s at %s (%d bytes)", context_id, path, len(data))
        return path

    def get(self, path: str | Path) -> bytes:
        """Read the payload at ``path``, verifying binary payloads."""
        payload_path = Path(path)
        data = payload_path.read_bytes()
        if format_for_path(payload_path) is EncodingFormat.JSON_FALLBACK:
            return data

        actual = compute_checksum(data)
        try:
            expected = checksum_path_for(payload_path).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            raise ChecksumMismatchError(payload_path, expected="", actual=actual) from None
        if expected != actual:
            raise ChecksumMismatchError(payload_path, expected=expected, actual=actual)
        return data

    def remove(self, path: str | Path) -> None:
        """Delete the payload at ``path`` and its checksum file."""
        payload_path = Path(path)
        for target in (payload_path, checksum_path_for(payload_path)):
            try:
                target.unlink()
            except FileNotFoundError:
                continue
        logger.debug("Removed context %s", payload_path)

    def sweep(self, max_age_ms: int = DEFAULT_RETENTION_MS) -> list[Path]:
        """Remove payloads and orphaned checksums older than ``max_age_ms``.

        Returns
        -------
        list[Path]
            Payload (or orphaned checksum) paths that were removed.  Empty
            if the directory does not yet exist.
        """
        if not self._store_dir.exists():
            return []

        cutoff = time.time() - max_age_ms / 1000.0
        removed: list[Path] = []
        for entry in sorted(self._store_dir.iterdir()):
            name = entry.name
            if name.endswith(CHECKSUM_SUFFIX):
                payload = entry.with_name(name[: -len(CHECKSUM_SUFFIX)])
                if payload.exists():
                    continue
            elif not (name.endswith(BINARY_SUFFIX) or name.endswith(JSON_SUFFIX)):
                continue

            try:
                mtime = entry.stat().st_mtime
            except FileNotFoundError:
                continue
            if mtime >= cutoff:
                continue

            if name.endswith(CHECKSUM_SUFFIX):
                entry.unlink(missing_ok=True)
            else:
                self.remove(entry)
            removed.append(entry)

        if removed:
            logger.info("Swept %d stale context file(s) from %s", len(removed), self._store_dir)
        return removed

    def list_contexts(self) -> list[Path]:
        """Return all payload paths in the store directory, oldest first."""
        if not self._store_dir.exists():
            return []
        payloads = [
            path
            for path in self._store_dir.iterdir()
            if path.is_file() and path.suffix in (BINARY_SUFFIX, JSON_SUFFIX)
        ]
        return sorted(payloads, key=lambda p: p.stat().st_mtime)

    def __repr__(self) -> str:
        return f"FilesystemContextStore(store_dir={str(self._store_dir)!r})"
