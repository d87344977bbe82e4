"""Operator-facing configuration for context handover.

Configuration can be built directly, read from ``PERSONA_HANDOVER_*``
environment variables, or loaded from a YAML mapping with the same keys
(lower-cased, without the prefix)::

    store_dir: /var/tmp/persona-handover
    timeout_ms: 600000
    max_file_size: 104857600
    retention_ms: 3600000
    command: persona-agent --profile batch

Classes
-------
HandoverConfig
    Frozen, validated set of limits and defaults.
"""
from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

import yaml

from persona_handover.storage.base import DEFAULT_RETENTION_MS
from persona_handover.storage.filesystem import DEFAULT_STORE_DIR

DEFAULT_TIMEOUT_MS = 300_000
DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024
DEFAULT_PERSONA_COMMAND: tuple[str, ...] = ("persona-agent",)
DEFAULT_DENIED_ENV_VARS: frozenset[str] = frozenset(
    {
        "PATH",
        "LD_LIBRARY_PATH",
        "LD_PRELOAD",
        "DYLD_LIBRARY_PATH",
        "DYLD_INSERT_LIBRARIES",
        "NODE_PATH",
        "PYTHONPATH",
        "PYTHONHOME",
    }
)

_ENV_PREFIX = "PERSONA_HANDOVER_"


@dataclass(frozen=True)
class HandoverConfig:
    """Limits and defaults shared by all handover components.

    Parameters
    ----------
    store_dir:
        Directory holding context files.
    default_timeout_ms:
        Child process timeout used when neither the call nor the context
        specifies one.
    max_file_size:
        Largest declared artifact size accepted, in bytes.
    retention_ms:
        Age after which a preserved context file may be swept.
    persona_command:
        Command prefix that launches a persona process.
    denied_env_vars:
        Environment variable names never propagated to a child.
    """

    store_dir: Path = DEFAULT_STORE_DIR
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    retention_ms: int = DEFAULT_RETENTION_MS
    persona_command: tuple[str, ...] = DEFAULT_PERSONA_COMMAND
    denied_env_vars: frozenset[str] = field(default=DEFAULT_DENIED_ENV_VARS)

    def __post_init__(self) -> None:
        object.__setattr__(self, "store_dir", Path(self.store_dir))
        object.__setattr__(self, "persona_command", tuple(self.persona_command))
        object.__setattr__(self, "denied_env_vars", frozenset(self.denied_env_vars))
        for name in ("default_timeout_ms", "max_file_size", "retention_ms"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value!r}.")
        if not self.persona_command:
            raise ValueError("persona_command must not be empty.")

    # ------------------------------------------------------------------
    # Alternative constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "HandoverConfig":
        """Build a config from a mapping of option names to raw values.

        Recognised keys are ``store_dir``, ``timeout_ms``,
        ``max_file_size``, ``retention_ms`` and ``command`` (a string split
        with shell rules, or a list).  Unknown keys raise ``ValueError``.
        """
        known = {"store_dir", "timeout_ms", "max_file_size", "retention_ms", "command"}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        config = cls()
        updates: dict[str, object] = {}
        if data.get("store_dir") is not None:
            updates["store_dir"] = Path(str(data["store_dir"])).expanduser()
        if data.get("timeout_ms") is not None:
            updates["default_timeout_ms"] = _as_int("timeout_ms", data["timeout_ms"])
        if data.get("max_file_size") is not None:
            updates["max_file_size"] = _as_int("max_file_size", data["max_file_size"])
        if data.get("retention_ms") is not None:
            updates["retention_ms"] = _as_int("retention_ms", data["retention_ms"])
        command = data.get("command")
        if command is not None:
            if isinstance(command, str):
                updates["persona_command"] = tuple(shlex.split(command))
            else:
                updates["persona_command"] = tuple(str(part) for part in command)  # type: ignore[union-attr]
        return replace(config, **updates)  # type: ignore[arg-type]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "HandoverConfig":
        """Build a config from ``PERSONA_HANDOVER_*`` environment variables."""
        env = os.environ if environ is None else environ
        data = {
            key[len(_ENV_PREFIX):].lower(): value
            for key, value in env.items()
            if key.startswith(_ENV_PREFIX)
            and key[len(_ENV_PREFIX):].lower()
            in {"store_dir", "timeout_ms", "max_file_size", "retention_ms", "command"}
        }
        return cls.from_mapping(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "HandoverConfig":
        """Load a config from a YAML file containing a single mapping.

        Raises
        ------
        ValueError
            If the document is not a mapping or contains unknown keys.
        """
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping.")
        return cls.from_mapping(raw)


def _as_int(name: str, value: object) -> int:
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}.") from None
