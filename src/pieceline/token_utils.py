# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""
Incremental text decoding for streamed engine output.

Engines sometimes split a multi-byte UTF-8 character across two consecutive
fragments (byte 1 of a 3-byte sequence in one, bytes 2-3 in the next).
Decoding either fragment alone yields garbage, so fragments are buffered and
only the longest complete prefix is decoded; trailing partial bytes are
carried forward to the next fragment.
"""

import re

# Native engine diagnostics that occasionally leak into the token stream
# instead of the engine's own log.
_NOISE_MARKERS = ("Buffer requirements not found",)
_BARE_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{6,}")


def utf8_sequence_length(lead: int) -> int:
    """Expected byte length of a character starting with *lead*, or 0 if
    *lead* is not a valid leading byte."""
    if lead & 0x80 == 0:
        return 1
    if lead & 0xE0 == 0xC0:
        return 2
    if lead & 0xF0 == 0xE0:
        return 3
    if lead & 0xF8 == 0xF0:
        return 4
    return 0


def find_valid_utf8_end(data: bytes | bytearray) -> int:
    """Return the number of leading bytes of *data* that can be decoded now.

    UTF-8 encoding reference::

        1-byte:  0xxxxxxx
        2-byte:  110xxxxx 10xxxxxx
        3-byte:  1110xxxx 10xxxxxx 10xxxxxx
        4-byte:  11110xxx 10xxxxxx 10xxxxxx 10xxxxxx

    Only a trailing, still-completable multi-byte prefix is held back.  Bytes
    that can never become valid (orphaned continuation bytes, ``0xF8``-style
    leads) are released at once so the lossy decoder can replace them, rather
    than waiting for the next fragment.  The decoded text is the same either
    way, but a fragment can then end in U+FFFD, and noise filtering sees that
    fragment boundary.
    """
    end = len(data)
    if end == 0:
        return 0

    i = end - 1
    while i >= 0 and data[i] & 0xC0 == 0x80:
        i -= 1
    if i < 0:
        return end

    expected = utf8_sequence_length(data[i])
    if expected == 0:
        return end
    if end - i >= expected:
        return end
    return i


class Utf8BoundaryAssembler:
    """Turns a sequence of raw byte fragments into text, one character boundary
    at a time.  Owned by exactly one stream; not safe to share."""

    def __init__(self):
        self._pending = bytearray()

    @property
    def pending(self) -> int:
        """Number of bytes held back waiting for the rest of a character."""
        return len(self._pending)

    def push(self, raw: bytes) -> str:
        """Append *raw* and return whatever text is now complete (may be "")."""
        if not raw:
            return ""
        self._pending += raw
        boundary = find_valid_utf8_end(self._pending)
        if boundary == 0:
            return ""
        text = self._pending[:boundary].decode("utf-8", "replace")
        del self._pending[:boundary]
        return text

    def flush(self) -> str:
        """Decode everything still buffered, complete or not, and reset."""
        if not self._pending:
            return ""
        text = self._pending.decode("utf-8", "replace")
        self._pending.clear()
        return text


def is_engine_noise(text: str) -> bool:
    """True for engine diagnostics that should never reach the caller.

    Matches the tensor-buffer warning the engine prints (``Buffer requirements
    not found for tensor 0x...``) and bare hex memory addresses emitted as
    their own fragment.  Must only be applied to fully decoded text.
    """
    if any(marker in text for marker in _NOISE_MARKERS):
        return True
    return _BARE_ADDRESS_RE.fullmatch(text.strip()) is not None
