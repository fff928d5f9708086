# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""
SentencePiece vocabulary loading.

Structure of the ``ModelProto`` fields we care about::

    field 1 (repeated, length-delimited) = SentencePiece sub-message
        field 1 (string)  = piece text
        field 2 (float32) = score
        field 3 (varint)  = type enum

Everything else (trainer_spec, normalizer_spec, ...) is skipped.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import IntEnum
from types import MappingProxyType
from typing import Mapping

from pieceline.proto_reader import (
    WIRE_FIXED32,
    WIRE_LENGTH_DELIMITED,
    WIRE_VARINT,
    ProtoError,
    ProtoReader,
)

logger = logging.getLogger(__name__)

UNK_PIECE = "<unk>"
BOS_PIECE = "<s>"
EOS_PIECE = "</s>"
PAD_PIECE = "<pad>"

_PIECES_FIELD = 1
_PIECE_TEXT_FIELD = 1
_PIECE_SCORE_FIELD = 2
_PIECE_TYPE_FIELD = 3


class PieceType(IntEnum):
    """SentencePiece piece type - matches the trainer's enum values."""

    NORMAL = 1
    UNKNOWN = 2
    CONTROL = 3
    USER_DEFINED = 4
    UNUSED = 5
    BYTE = 6


SEGMENTABLE_TYPES = frozenset({PieceType.NORMAL, PieceType.BYTE})


class MalformedVocabulary(ValueError):
    """Raised when a tokenizer model file cannot be parsed."""


@dataclass(frozen=True)
class VocabPiece:
    text: str
    score: float
    # Raw int for type values newer than PieceType; never segmentable
    kind: PieceType | int = PieceType.NORMAL


@dataclass(frozen=True)
class Vocabulary:
    """Immutable, ordered vocabulary. A piece's index is its token id."""

    pieces: tuple[VocabPiece, ...]
    piece_ids: Mapping[str, int] = field(repr=False)
    max_piece_length: int
    unk_id: int = 0
    bos_id: int = 1
    eos_id: int = 2
    pad_id: int = 0

    def __len__(self) -> int:
        return len(self.pieces)

    def __getitem__(self, token_id: int) -> VocabPiece:
        return self.pieces[token_id]

    def get(self, piece: str) -> int | None:
        """Exact-match lookup of a piece string."""
        return self.piece_ids.get(piece)

    @classmethod
    def from_file(cls, path: str | os.PathLike) -> "Vocabulary":
        with open(path, "rb") as f:
            data = f.read()
        vocab = load_vocabulary(data)
        logger.info("Loaded %d pieces from %s", len(vocab), path)
        return vocab


def _parse_piece(payload) -> VocabPiece:
    reader = ProtoReader(payload)
    text = ""
    score = 0.0
    kind = int(PieceType.NORMAL)

    while not reader.at_end:
        field_number, wire_type = reader.read_tag()
        if field_number == _PIECE_TEXT_FIELD and wire_type == WIRE_LENGTH_DELIMITED:
            text = reader.read_string()
        elif field_number == _PIECE_SCORE_FIELD and wire_type == WIRE_FIXED32:
            score = reader.read_fixed32_float()
        elif field_number == _PIECE_TYPE_FIELD and wire_type == WIRE_VARINT:
            kind = reader.read_varint()
        else:
            reader.skip_field(wire_type)

    return VocabPiece(text, score, _piece_kind(kind))


def _piece_kind(value: int) -> PieceType | int:
    """Known type values map to :class:`PieceType`; newer ones stay raw ints."""
    try:
        return PieceType(value)
    except ValueError:
        logger.debug("Keeping unrecognised piece type %d", value)
        return value


def load_vocabulary(data: bytes) -> Vocabulary:
    """Parse a serialized SentencePiece model into a :class:`Vocabulary`.

    Special ids and the longest segmentable piece are resolved during the
    same pass that collects the pieces.
    """
    reader = ProtoReader(data)
    pieces: list[VocabPiece] = []
    piece_ids: dict[str, int] = {}
    max_len = 0

    # Defaults when the model does not name its special pieces
    unk_id, bos_id, eos_id, pad_id = 0, 1, 2, 0

    try:
        while not reader.at_end:
            field_number, wire_type = reader.read_tag()
            if field_number != _PIECES_FIELD or wire_type != WIRE_LENGTH_DELIMITED:
                reader.skip_field(wire_type)
                continue

            piece = _parse_piece(reader.read_length_delimited())
            token_id = len(pieces)
            pieces.append(piece)
            piece_ids[piece.text] = token_id

            if piece.kind in SEGMENTABLE_TYPES and len(piece.text) > max_len:
                max_len = len(piece.text)

            if piece.text == UNK_PIECE:
                unk_id = token_id
            elif piece.text == BOS_PIECE:
                bos_id = token_id
            elif piece.text == EOS_PIECE:
                eos_id = token_id
            elif piece.text == PAD_PIECE:
                pad_id = token_id
    except ProtoError as exc:
        raise MalformedVocabulary(f"Malformed tokenizer model: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise MalformedVocabulary(
            f"Piece text is not valid UTF-8 (entry {len(pieces)}): {exc}"
        ) from exc

    logger.debug(
        "Vocabulary: %d pieces, max_piece_length=%d, unk=%d bos=%d eos=%d pad=%d",
        len(pieces), max_len, unk_id, bos_id, eos_id, pad_id,
    )
    return Vocabulary(
        pieces=tuple(pieces),
        piece_ids=MappingProxyType(piece_ids),
        max_piece_length=max_len,
        unk_id=unk_id,
        bos_id=bos_id,
        eos_id=eos_id,
        pad_id=pad_id,
    )
