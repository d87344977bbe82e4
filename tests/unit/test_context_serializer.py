"""Unit tests for persona_handover.context.serializer.

Covers binary round-trips through the extension tags, the JSON fallback,
deterministic output, schema version enforcement and malformed payloads.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone

import msgpack
import pytest

from persona_handover.context.serializer import (
    ContextCodec,
    DomainBlob,
    ExtensionKind,
    SchemaVersionError,
    compute_checksum,
)
from persona_handover.context.state import (
    ConversationTurn,
    EncodingFormat,
    FileReference,
    MemoryFact,
    PersonaContext,
)
from persona_handover.errors import ContextDecodeError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_context() -> PersonaContext:
    """Return a context populated with every extension-typed value."""
    ctx = PersonaContext.create("data-expert", "analysis-expert", "analyze file")
    ctx.artifacts.files.append(FileReference(path="data/input.csv", size=120, format="csv"))
    ctx.artifacts.chat_history.append(ConversationTurn(role="user", content="load the data"))
    ctx.artifacts.memory.facts.append(MemoryFact(key="rows", value="120"))
    ctx.artifacts.memory.cache.update(
        {
            "huge": 2**70,
            "negative_huge": -(2**70),
            "seen_at": datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc),
            "model": DomainBlob(b"\x00\x01\x02weights"),
            "raw": b"\xff\xfe",
        }
    )
    ctx.scientific.data_formats.append("csv")
    return ctx


@pytest.fixture()
def codec() -> ContextCodec:
    return ContextCodec()


# ---------------------------------------------------------------------------
# DomainBlob / checksum helpers
# ---------------------------------------------------------------------------


class TestDomainBlob:
    def test_equality_by_payload(self) -> None:
        assert DomainBlob(b"abc") == DomainBlob(b"abc")
        assert DomainBlob(b"abc") != DomainBlob(b"abd")

    def test_hashable(self) -> None:
        assert len({DomainBlob(b"x"), DomainBlob(b"x")}) == 1

    def test_repr_shows_size(self) -> None:
        assert "3 bytes" in repr(DomainBlob(b"abc"))


class TestComputeChecksum:
    def test_empty_digest(self) -> None:
        assert compute_checksum(b"") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )


class TestSchemaVersionError:
    def test_version_attribute(self) -> None:
        assert SchemaVersionError("2.0.0").version == "2.0.0"

    def test_message_lists_supported(self) -> None:
        assert "1.0.0" in str(SchemaVersionError("2.0.0"))

    def test_is_decode_error(self) -> None:
        assert isinstance(SchemaVersionError("x"), ContextDecodeError)


# ---------------------------------------------------------------------------
# Binary encoding
# ---------------------------------------------------------------------------


class TestBinaryRoundTrip:
    def test_round_trip_preserves_context(self, codec: ContextCodec) -> None:
        ctx = _make_context()
        data, fmt = codec.encode_with_format(ctx)
        assert fmt is EncodingFormat.BINARY
        assert codec.decode(data).model_dump() == ctx.model_dump()

    def test_extension_values_survive(self, codec: ContextCodec) -> None:
        decoded = codec.decode(codec.encode(_make_context()))
        cache = decoded.artifacts.memory.cache
        assert cache["huge"] == 2**70
        assert cache["negative_huge"] == -(2**70)
        assert cache["seen_at"] == datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc)
        assert cache["model"] == DomainBlob(b"\x00\x01\x02weights")
        assert cache["raw"] == b"\xff\xfe"

    def test_nested_opaque_values_round_trip(self, codec: ContextCodec) -> None:
        seen = datetime(2024, 5, 6, 7, 8, 9, 123000, tzinfo=timezone.utc)
        ctx = _make_context()
        ctx.artifacts.memory.persona_state["session"] = {
            "checkpoints": [seen, {"weights": DomainBlob(b"\x07" * 8), "step": 2**65}],
        }
        ctx.scientific.custom_extensions["run"] = {"started": seen, "ids": [1, 2**64 + 1]}
        ctx.artifacts.files.append(
            FileReference(path="data/out.csv", metadata={"written": {"at": seen}})
        )
        data, fmt = codec.encode_with_format(ctx)
        decoded = codec.decode(data)
        assert fmt is EncodingFormat.BINARY
        assert decoded.model_dump() == ctx.model_dump()
        assert decoded.artifacts.files[-1].metadata["written"]["at"] == seen

    def test_created_at_is_preserved_to_the_millisecond(self, codec: ContextCodec) -> None:
        ctx = _make_context()
        decoded = codec.decode(codec.encode(ctx))
        assert decoded.metadata.created_at == ctx.metadata.created_at
        assert decoded.metadata.context_id == ctx.metadata.context_id

    def test_encode_records_binary_format(self, codec: ContextCodec) -> None:
        ctx = _make_context()
        codec.encode(ctx)
        assert ctx.metadata.encoding_format is EncodingFormat.BINARY

    def test_encoding_is_deterministic(self, codec: ContextCodec) -> None:
        ctx = _make_context()
        assert codec.encode(ctx) == codec.encode(ctx)

    def test_map_insertion_order_does_not_matter(self, codec: ContextCodec) -> None:
        ctx = _make_context()
        clone = ctx.model_copy(deep=True)
        clone.artifacts.memory.cache = dict(reversed(list(ctx.artifacts.memory.cache.items())))
        assert codec.encode(ctx) == codec.encode(clone)

    def test_payload_is_not_json(self, codec: ContextCodec) -> None:
        data = codec.encode(_make_context())
        assert codec.detect_format(data) is EncodingFormat.BINARY


# ---------------------------------------------------------------------------
# JSON fallback
# ---------------------------------------------------------------------------


class TestJsonFallback:
    def _unencodable(self) -> PersonaContext:
        ctx = _make_context()
        ctx.scientific.custom_extensions["tags"] = {"spectra"}
        return ctx

    def test_falls_back_when_binary_fails(self, codec: ContextCodec) -> None:
        ctx = self._unencodable()
        data, fmt = codec.encode_with_format(ctx)
        assert fmt is EncodingFormat.JSON_FALLBACK
        assert ctx.metadata.encoding_format is EncodingFormat.JSON_FALLBACK
        assert data.startswith(b"{")

    def test_fallback_logs_warning(
        self, codec: ContextCodec, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level("WARNING", logger="persona_handover.context.serializer"):
            codec.encode(self._unencodable())
        assert "falling back to JSON" in caplog.text

    def test_fallback_payload_decodes(self, codec: ContextCodec) -> None:
        ctx = self._unencodable()
        decoded = codec.decode(codec.encode(ctx))
        assert decoded.context_id == ctx.context_id
        assert decoded.metadata.encoding_format is EncodingFormat.JSON_FALLBACK
        assert decoded.scientific.custom_extensions["tags"] == ["spectra"]
        assert decoded.artifacts.memory.cache["model"] == DomainBlob(b"\x00\x01\x02weights")
        assert decoded.metadata.created_at == ctx.metadata.created_at

    def test_naive_datetime_falls_back_without_gaining_a_zone(self, codec: ContextCodec) -> None:
        ctx = _make_context()
        ctx.artifacts.memory.cache["local_time"] = datetime(2024, 5, 6, 7, 8, 9)
        data, fmt = codec.encode_with_format(ctx)
        assert fmt is EncodingFormat.JSON_FALLBACK
        decoded = codec.decode(data)
        assert decoded.artifacts.memory.cache["local_time"] == "2024-05-06T07:08:09"

    def test_explicit_format_argument(self, codec: ContextCodec) -> None:
        data = codec.encode(self._unencodable())
        decoded = codec.decode(data, EncodingFormat.JSON_FALLBACK)
        assert decoded.metadata.target_persona == "analysis-expert"

    def test_to_json_does_not_touch_format(self, codec: ContextCodec) -> None:
        ctx = _make_context()
        text = codec.to_json(ctx)
        assert ctx.metadata.encoding_format is EncodingFormat.BINARY
        assert json.loads(text)["metadata"]["target_persona"] == "analysis-expert"


# ---------------------------------------------------------------------------
# Decode failures
# ---------------------------------------------------------------------------


class TestDecodeErrors:
    def test_unknown_extension_tag(self, codec: ContextCodec) -> None:
        data = msgpack.packb({"metadata": msgpack.ExtType(0x7F, b"?")}, use_bin_type=True)
        with pytest.raises(ContextDecodeError, match="0x7f"):
            codec.decode(data)

    def test_malformed_timestamp_extension(self, codec: ContextCodec) -> None:
        data = msgpack.packb(
            {"when": msgpack.ExtType(int(ExtensionKind.TIMESTAMP), b"abc")},
            use_bin_type=True,
        )
        with pytest.raises(ContextDecodeError, match="TIMESTAMP"):
            codec.decode(data)

    def test_non_map_payload(self, codec: ContextCodec) -> None:
        with pytest.raises(ContextDecodeError, match="map"):
            codec.decode(msgpack.packb([1, 2, 3]))

    def test_garbage_bytes(self, codec: ContextCodec) -> None:
        with pytest.raises(ContextDecodeError):
            codec.decode(b"\xc1")

    def test_malformed_json(self, codec: ContextCodec) -> None:
        with pytest.raises(ContextDecodeError):
            codec.decode(b"{not json")

    def test_unsupported_schema_version(self, codec: ContextCodec) -> None:
        document = json.loads(codec.to_json(_make_context()))
        document["metadata"]["schema_version"] = "9.0.0"
        with pytest.raises(SchemaVersionError):
            codec.decode(json.dumps(document).encode("utf-8"))

    def test_missing_required_field(self, codec: ContextCodec) -> None:
        document = json.loads(codec.to_json(_make_context()))
        del document["metadata"]["target_persona"]
        with pytest.raises(ContextDecodeError, match="Invalid context payload"):
            codec.decode(json.dumps(document).encode("utf-8"))
