# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Shared fixtures: a tiny protobuf writer and a synthetic SentencePiece model."""

import struct

import pytest

from pieceline.tokenizer import SentencePieceTokenizer
from pieceline.vocab import PieceType


# ---------------------------------------------------------------------------
# Protobuf writer
# ---------------------------------------------------------------------------


def varint(n: int) -> bytes:
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def key(field: int, wire: int) -> bytes:
    return varint(field << 3 | wire)


def length_delimited(field: int, payload: bytes) -> bytes:
    return key(field, 2) + varint(len(payload)) + payload


def encode_piece(text: str, score: float = 0.0, kind: int = PieceType.NORMAL) -> bytes:
    body = (
        length_delimited(1, text.encode("utf-8"))
        + key(2, 5)
        + struct.pack("<f", score)
        + key(3, 0)
        + varint(int(kind))
    )
    return length_delimited(1, body)


def encode_model(pieces, trailer: bytes = b"") -> bytes:
    """Serialize ``(text, score, kind)`` tuples as a ModelProto."""
    return b"".join(encode_piece(*p) for p in pieces) + trailer


# ---------------------------------------------------------------------------
# Synthetic vocabulary
# ---------------------------------------------------------------------------

# (text, score, kind); index == token id
PIECES = [
    ("<unk>", 0.0, PieceType.UNKNOWN),  # 0
    ("<s>", 0.0, PieceType.CONTROL),  # 1
    ("</s>", 0.0, PieceType.CONTROL),  # 2
    ("<pad>", 0.0, PieceType.CONTROL),  # 3
    ("▁", -1.0, PieceType.NORMAL),  # 4
    ("a", -2.0, PieceType.NORMAL),  # 5
    ("b", -2.0, PieceType.NORMAL),  # 6
    ("▁ab", -1.5, PieceType.NORMAL),  # 7
    ("▁a", -1.8, PieceType.NORMAL),  # 8
    ("c", -2.0, PieceType.NORMAL),  # 9
    ("<0xC3>", -5.0, PieceType.BYTE),  # 10
    ("<0xA9>", -5.0, PieceType.BYTE),  # 11
    ("<0xE2>", -5.0, PieceType.BYTE),  # 12
    ("x", -1.0, PieceType.NORMAL),  # 13
    ("▁x", -2.0, PieceType.NORMAL),  # 14
    ("zz", 10.0, PieceType.UNUSED),  # 15
]

BOS, EOS, PAD, UNK = 1, 2, 3, 0


@pytest.fixture
def model_bytes() -> bytes:
    # trainer_spec (field 2) and a stray varint field surround the pieces
    return length_delimited(2, b"\x08\x01") + encode_model(PIECES, trailer=key(9, 0) + varint(7))


@pytest.fixture
def tokenizer(model_bytes) -> SentencePieceTokenizer:
    return SentencePieceTokenizer.from_bytes(model_bytes)


@pytest.fixture
def model_file(tmp_path, model_bytes):
    path = tmp_path / "tokenizer.model"
    path.write_bytes(model_bytes)
    return path
