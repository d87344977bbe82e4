"""Context store subpackage.

All stores implement the ``ContextStore`` ABC.

Public surface
--------------
- ContextStore            — abstract base class
- FilesystemContextStore  — payload + checksum files in a temp directory
- InMemoryContextStore    — in-process dict (useful for testing)
"""
from __future__ import annotations

from persona_handover.storage.base import (
    DEFAULT_RETENTION_MS,
    ContextStore,
    checksum_path_for,
    format_for_path,
)
from persona_handover.storage.filesystem import DEFAULT_STORE_DIR, FilesystemContextStore
from persona_handover.storage.memory import InMemoryContextStore

__all__ = [
    "DEFAULT_RETENTION_MS",
    "DEFAULT_STORE_DIR",
    "ContextStore",
    "FilesystemContextStore",
    "InMemoryContextStore",
    "checksum_path_for",
    "format_for_path",
]
