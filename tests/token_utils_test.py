# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
import pytest

from pieceline.token_utils import (
    Utf8BoundaryAssembler,
    find_valid_utf8_end,
    is_engine_noise,
    utf8_sequence_length,
)

TEXT = "café 🎉"


class TestBoundary:
    @pytest.mark.parametrize(
        "lead, expected",
        [(0x41, 1), (0xC3, 2), (0xE2, 3), (0xF0, 4), (0x80, 0), (0xF8, 0)],
    )
    def test_sequence_length(self, lead, expected):
        assert utf8_sequence_length(lead) == expected

    def test_complete_input(self):
        data = TEXT.encode("utf-8")
        assert find_valid_utf8_end(data) == len(data)

    def test_holds_back_incomplete_tail(self):
        assert find_valid_utf8_end(b"ab\xf0\x9f") == 2
        assert find_valid_utf8_end(b"\xe2") == 0

    def test_releases_orphan_continuation_bytes(self):
        assert find_valid_utf8_end(b"\x80\x80") == 2

    def test_empty(self):
        assert find_valid_utf8_end(b"") == 0


class TestAssembler:
    def test_every_split_reassembles(self):
        data = TEXT.encode("utf-8")
        for k in range(len(data) + 1):
            asm = Utf8BoundaryAssembler()
            out = asm.push(data[:k]) + asm.push(data[k:]) + asm.flush()
            assert out == TEXT, f"split at {k}"
            assert asm.pending == 0

    def test_byte_at_a_time(self):
        asm = Utf8BoundaryAssembler()
        pieces = [asm.push(bytes([b])) for b in TEXT.encode("utf-8")]
        assert "".join(pieces) == TEXT
        # Nothing is emitted mid-character
        assert "�" not in "".join(pieces)

    def test_pending_count(self):
        asm = Utf8BoundaryAssembler()
        assert asm.push(b"\xe2") == ""
        assert asm.pending == 1
        assert asm.push(b"\x82") == ""
        assert asm.pending == 2
        assert asm.push(b"\xac") == "€"
        assert asm.pending == 0

    def test_flush_replaces_malformed_tail(self):
        asm = Utf8BoundaryAssembler()
        assert asm.push(b"ok\xf0\x9f") == "ok"
        assert asm.flush() == "�"
        assert asm.pending == 0

    def test_orphan_continuation_is_replaced(self):
        asm = Utf8BoundaryAssembler()
        assert asm.push(b"\x80") == "�"


class TestEngineNoise:
    @pytest.mark.parametrize(
        "text",
        [
            "Buffer requirements not found for tensor 0x600003a1c0",
            "W0101 Buffer requirements not found",
            "0x7ffd12345678",
            "  0xABCDEF\n",
        ],
    )
    def test_noise(self, text):
        assert is_engine_noise(text)

    @pytest.mark.parametrize(
        "text",
        [
            "Hello",
            "0x12345",
            "The address 0x7ffd12345678 is valid",
            "0xGHIJKL",
            "",
        ],
    )
    def test_not_noise(self, text):
        assert not is_engine_noise(text)
