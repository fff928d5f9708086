# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""
Minimal protobuf wire-format reader.

Just enough to walk a SentencePiece ``ModelProto`` without generated classes.
Wire types: 0=varint, 1=64-bit, 2=length-delimited, 5=32-bit.
"""

import struct

WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH_DELIMITED = 2
WIRE_FIXED32 = 5

_FLOAT32 = struct.Struct("<f")


class ProtoError(ValueError):
    """Base class for wire-format decoding failures."""


class TruncatedInput(ProtoError):
    """The buffer ended in the middle of a value."""


class UnknownWireType(ProtoError):
    """A tag carried a wire type this reader cannot skip."""


class ProtoReader:
    """Cursor over an immutable byte buffer.

    Every read advances the cursor; nothing else is mutated, so two readers
    over the same bytes always produce the same values.
    """

    def __init__(self, data):
        self._data = memoryview(data).cast("B")
        self._pos = 0

    @property
    def position(self) -> int:
        return self._pos

    @property
    def at_end(self) -> bool:
        """Whether the reader has consumed all bytes."""
        return self._pos >= len(self._data)

    def _require(self, n: int, what: str) -> None:
        if self._pos + n > len(self._data):
            raise TruncatedInput(
                f"Truncated {what} at position {self._pos}: need {n} bytes, "
                f"{len(self._data) - self._pos} left"
            )

    def read_varint(self) -> int:
        """Read a base-128 varint (7 data bits per byte, low groups first)."""
        data = self._data
        result = 0
        shift = 0
        while self._pos < len(data):
            byte = data[self._pos]
            self._pos += 1
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
            shift += 7
        raise TruncatedInput(f"Truncated varint at position {self._pos}")

    def read_tag(self) -> tuple[int, int]:
        """Read a field key and split it into (field_number, wire_type)."""
        key = self.read_varint()
        return key >> 3, key & 0x7

    def read_length_delimited(self) -> memoryview:
        """Read a varint length ``n`` and return a view over the next ``n`` bytes."""
        length = self.read_varint()
        self._require(length, "length-delimited field")
        view = self._data[self._pos : self._pos + length]
        self._pos += length
        return view

    def read_string(self) -> str:
        """Read a length-delimited field as strict UTF-8."""
        return str(self.read_length_delimited(), "utf-8")

    def read_fixed32_float(self) -> float:
        """Read a little-endian IEEE-754 single-precision float."""
        self._require(4, "fixed32")
        (value,) = _FLOAT32.unpack_from(self._data, self._pos)
        self._pos += 4
        return value

    def read_fixed64(self) -> bytes:
        """Read 8 raw bytes (wire type 1)."""
        self._require(8, "fixed64")
        raw = bytes(self._data[self._pos : self._pos + 8])
        self._pos += 8
        return raw

    def skip_field(self, wire_type: int) -> None:
        """Advance past one field payload of the given wire type."""
        if wire_type == WIRE_VARINT:
            self.read_varint()
        elif wire_type == WIRE_FIXED64:
            self.read_fixed64()
        elif wire_type == WIRE_LENGTH_DELIMITED:
            self.read_length_delimited()
        elif wire_type == WIRE_FIXED32:
            self._require(4, "fixed32")
            self._pos += 4
        else:
            raise UnknownWireType(
                f"Unknown wire type {wire_type} at position {self._pos}"
            )
