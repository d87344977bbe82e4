"""Context serialization with integrity checksums.

The primary wire format is MessagePack.  Values MessagePack cannot express
natively travel as extension types from a closed set, identified by the
numeric tag stored with each value:

- ``0x10`` DOMAIN_BLOB  — opaque caller bytes wrapped in :class:`DomainBlob`
- ``0x11`` BIG_INTEGER  — integers outside the 64-bit range, as ASCII decimal
- ``0x12`` TIMESTAMP    — aware datetimes, as signed 64-bit epoch milliseconds

When binary encoding fails the codec falls back to indented JSON and records
the choice in ``metadata.encoding_format``.  Decoding accepts either format.

Classes
-------
- ExtensionKind       — the closed set of extension tags
- DomainBlob          — wrapper for caller-defined binary payloads
- SchemaVersionError  — raised for unsupported schema versions
- ContextCodec        — encode/decode ``PersonaContext`` objects
"""
from __future__ import annotations

import base64
import hashlib
import json
import logging
import struct
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any

import msgpack
from pydantic import ValidationError

from persona_handover.context.state import SCHEMA_VERSION, EncodingFormat, PersonaContext
from persona_handover.errors import ContextDecodeError, ContextEncodingError

logger = logging.getLogger(__name__)

_SUPPORTED_SCHEMA_VERSIONS: frozenset[str] = frozenset({SCHEMA_VERSION})

_INT64_MIN = -(2**63)
_UINT64_MAX = 2**64 - 1
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)
_TIMESTAMP_STRUCT = struct.Struct(">q")
_JSON_BLOB_KEY = "__domain_blob__"


class ExtensionKind(IntEnum):
    """Extension tags understood by the codec.  No others are accepted."""

    DOMAIN_BLOB = 0x10
    BIG_INTEGER = 0x11
    TIMESTAMP = 0x12


class DomainBlob:
    """Opaque binary payload carried through the codec untouched.

    Parameters
    ----------
    payload:
        Caller-defined bytes.  The codec never inspects them.
    """

    __slots__ = ("payload",)

    def __init__(self, payload: bytes) -> None:
        self.payload = bytes(payload)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DomainBlob):
            return NotImplemented
        return self.payload == other.payload

    def __hash__(self) -> int:
        return hash((DomainBlob, self.payload))

    def __repr__(self) -> str:
        return f"DomainBlob({len(self.payload)} bytes)"


class SchemaVersionError(ContextDecodeError):
    """Raised when a payload declares an unsupported schema version."""

    def __init__(self, version: str) -> None:
        self.version = version
        supported = ", ".join(sorted(_SUPPORTED_SCHEMA_VERSIONS))
        super().__init__(
            f"Unsupported schema version {version!r}. "
            f"Supported versions: {supported}"
        )


def compute_checksum(data: bytes) -> str:
    """Return the SHA-256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


# ---------------------------------------------------------------------------
# Binary conversion
# ---------------------------------------------------------------------------


def _to_wire(value: Any) -> Any:
    """Convert ``value`` to MessagePack-native types and extension values.

    String-keyed mappings are emitted in sorted key order so that equal
    values always produce identical bytes.  Unsupported objects are returned
    unchanged and rejected by the packer.  Naive datetimes are rejected too,
    since the timestamp extension cannot record the absence of a zone.
    """
    if value is None or isinstance(value, (bool, float, bytes)):
        return value
    if isinstance(value, Enum):
        return _to_wire(value.value)
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        if _INT64_MIN <= value <= _UINT64_MAX:
            return value
        return msgpack.ExtType(int(ExtensionKind.BIG_INTEGER), str(value).encode("ascii"))
    if isinstance(value, datetime):
        if value.tzinfo is None:
            raise TypeError(f"Cannot encode naive datetime {value.isoformat()} as a timestamp")
        millis = (value - _EPOCH) // _MILLISECOND
        return msgpack.ExtType(int(ExtensionKind.TIMESTAMP), _TIMESTAMP_STRUCT.pack(millis))
    if isinstance(value, DomainBlob):
        return msgpack.ExtType(int(ExtensionKind.DOMAIN_BLOB), value.payload)
    if isinstance(value, Mapping):
        items = list(value.items())
        if all(isinstance(key, str) for key, _ in items):
            items.sort(key=lambda item: item[0])
        return {_to_wire(key): _to_wire(item) for key, item in items}
    if isinstance(value, (list, tuple)):
        return [_to_wire(item) for item in value]
    return value


def _ext_hook(code: int, data: bytes) -> Any:
    try:
        kind = ExtensionKind(code)
    except ValueError:
        raise ContextDecodeError(f"Unknown extension tag 0x{code:02x}") from None

    try:
        if kind is ExtensionKind.DOMAIN_BLOB:
            return DomainBlob(data)
        if kind is ExtensionKind.BIG_INTEGER:
            return int(data.decode("ascii"))
        (millis,) = _TIMESTAMP_STRUCT.unpack(data)
        return _EPOCH + timedelta(milliseconds=millis)
    except (ValueError, OverflowError, struct.error) as exc:
        raise ContextDecodeError(
            f"Malformed {kind.name} extension value: {exc}"
        ) from exc


# ---------------------------------------------------------------------------
# Textual conversion
# ---------------------------------------------------------------------------


def _to_text(value: Any) -> Any:
    """Convert ``value`` to loosely-typed JSON-compatible data."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, DomainBlob):
        return {_JSON_BLOB_KEY: base64.b64encode(value.payload).decode("ascii")}
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(key): _to_text(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_text(item) for item in value]
    return value


def _json_object_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and _JSON_BLOB_KEY in obj:
        return DomainBlob(base64.b64decode(obj[_JSON_BLOB_KEY]))
    return obj


# ---------------------------------------------------------------------------
# ContextCodec
# ---------------------------------------------------------------------------


class ContextCodec:
    """Encode and decode ``PersonaContext`` objects.

    Encoding is deterministic: the same context value always yields the
    same bytes, which makes the stored checksum meaningful.
    """

    def encode(self, context: PersonaContext) -> bytes:
        """Serialise ``context`` to bytes, falling back to JSON if needed.

        ``context.metadata.encoding_format`` is updated to record which
        format was used.

        Raises
        ------
        ContextEncodingError
            If both binary and JSON encoding fail.
        """
        data, _ = self.encode_with_format(context)
        return data

    def encode_with_format(self, context: PersonaContext) -> tuple[bytes, EncodingFormat]:
        """Serialise ``context`` and report the format that was used.

        Returns
        -------
        tuple[bytes, EncodingFormat]
            The payload and ``BINARY`` or ``JSON_FALLBACK``.
        """
        context.metadata.encoding_format = EncodingFormat.BINARY
        try:
            return self._encode_binary(context), EncodingFormat.BINARY
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning(
                "Binary encoding failed for context %s, falling back to JSON: %s",
                context.context_id,
                exc,
            )

        context.metadata.encoding_format = EncodingFormat.JSON_FALLBACK
        try:
            return self._encode_json(context), EncodingFormat.JSON_FALLBACK
        except (TypeError, ValueError, OverflowError) as exc:
            raise ContextEncodingError(
                f"Could not encode context {context.context_id}: {exc}"
            ) from exc

    def decode(
        self,
        data: bytes,
        encoding_format: EncodingFormat | None = None,
    ) -> PersonaContext:
        """Deserialise a payload produced by :meth:`encode`.

        Parameters
        ----------
        data:
            Raw payload bytes.
        encoding_format:
            Format of ``data``.  Detected from the payload when omitted.

        Raises
        ------
        ContextDecodeError
            If the payload is malformed, carries an unknown extension tag,
            or does not describe a valid context.
        SchemaVersionError
            If the payload declares an unsupported schema version.
        """
        fmt = encoding_format or self.detect_format(data)
        if fmt is EncodingFormat.JSON_FALLBACK:
            document = self._decode_json(data)
        else:
            document = self._decode_binary(data)

        if not isinstance(document, dict):
            raise ContextDecodeError(
                f"Context payload must be a map, got {type(document).__name__}"
            )

        metadata = document.get("metadata")
        version = str(metadata.get("schema_version", "")) if isinstance(metadata, dict) else ""
        if version not in _SUPPORTED_SCHEMA_VERSIONS:
            raise SchemaVersionError(version)

        try:
            return PersonaContext.model_validate(document)
        except ValidationError as exc:
            raise ContextDecodeError(f"Invalid context payload: {exc}") from exc

    def to_json(self, context: PersonaContext, *, indent: int = 2) -> str:
        """Render ``context`` as loosely-typed JSON without changing it."""
        document = _to_text(context.model_dump(mode="python"))
        return json.dumps(document, indent=indent, sort_keys=True, default=str)

    @staticmethod
    def detect_format(data: bytes) -> EncodingFormat:
        """Guess the payload format; JSON documents always start with ``{``."""
        if data.lstrip()[:1] == b"{":
            return EncodingFormat.JSON_FALLBACK
        return EncodingFormat.BINARY

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _encode_binary(self, context: PersonaContext) -> bytes:
        return msgpack.packb(_to_wire(context.model_dump(mode="python")), use_bin_type=True)

    def _encode_json(self, context: PersonaContext) -> bytes:
        return self.to_json(context).encode("utf-8")

    def _decode_binary(self, data: bytes) -> Any:
        try:
            return msgpack.unpackb(
                data,
                ext_hook=_ext_hook,
                raw=False,
                strict_map_key=False,
            )
        except ContextDecodeError:
            raise
        except (ValueError, TypeError, msgpack.exceptions.ExtraData) as exc:
            raise ContextDecodeError(f"Malformed binary context payload: {exc}") from exc

    def _decode_json(self, data: bytes) -> Any:
        try:
            return json.loads(data.decode("utf-8"), object_hook=_json_object_hook)
        except (UnicodeDecodeError, ValueError) as exc:
            raise ContextDecodeError(f"Malformed JSON context payload: {exc}") from exc
