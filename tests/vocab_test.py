# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
import struct

import pytest

from conftest import PIECES, encode_model, encode_piece, key, length_delimited, varint
from pieceline.vocab import (
    MalformedVocabulary,
    PieceType,
    Vocabulary,
    load_vocabulary,
)


class TestLoadVocabulary:
    def test_dense_ids_in_encounter_order(self, model_bytes):
        vocab = load_vocabulary(model_bytes)
        assert len(vocab) == len(PIECES)
        for token_id, (text, score, kind) in enumerate(PIECES):
            assert vocab[token_id].text == text
            assert vocab[token_id].score == pytest.approx(score)
            assert vocab[token_id].kind is kind
            assert vocab.get(text) == token_id

    def test_special_ids(self, model_bytes):
        vocab = load_vocabulary(model_bytes)
        assert (vocab.unk_id, vocab.bos_id, vocab.eos_id, vocab.pad_id) == (0, 1, 2, 3)

    def test_special_id_defaults(self):
        vocab = load_vocabulary(encode_model([("a", -1.0, PieceType.NORMAL)]))
        assert (vocab.unk_id, vocab.bos_id, vocab.eos_id, vocab.pad_id) == (0, 1, 2, 0)

    def test_max_piece_length_counts_segmentable_pieces_only(self):
        vocab = load_vocabulary(
            encode_model(
                [
                    ("<unk>", 0.0, PieceType.UNKNOWN),
                    ("abc", -1.0, PieceType.NORMAL),
                    ("<0x41>", -1.0, PieceType.BYTE),
                    ("very-long-control", 0.0, PieceType.CONTROL),
                ]
            )
        )
        assert vocab.max_piece_length == 6

    def test_missing_fields_use_defaults(self):
        # A piece record with only the text field
        data = length_delimited(1, length_delimited(1, b"hi"))
        vocab = load_vocabulary(data)
        assert vocab[0].score == 0.0
        assert vocab[0].kind is PieceType.NORMAL

    def test_unknown_nested_fields_skipped(self):
        body = (
            length_delimited(1, b"hi")
            + key(7, 1) + b"\x00" * 8
            + key(2, 5) + struct.pack("<f", -3.0)
        )
        vocab = load_vocabulary(length_delimited(1, body))
        assert vocab[0].text == "hi"
        assert vocab[0].score == -3.0

    def test_later_duplicate_wins_lookup(self):
        vocab = load_vocabulary(
            encode_model([("a", -1.0, PieceType.NORMAL), ("a", -2.0, PieceType.NORMAL)])
        )
        assert len(vocab) == 2
        assert vocab.get("a") == 1

    def test_empty_input(self):
        vocab = load_vocabulary(b"")
        assert len(vocab) == 0
        assert vocab.max_piece_length == 0

    def test_idempotent(self, model_bytes):
        assert load_vocabulary(model_bytes) == load_vocabulary(model_bytes)


class TestMalformed:
    def test_truncated_piece(self):
        with pytest.raises(MalformedVocabulary):
            load_vocabulary(encode_piece("abc")[:-2])

    def test_unknown_wire_type(self):
        with pytest.raises(MalformedVocabulary):
            load_vocabulary(key(4, 3) + b"\x00")

    def test_invalid_utf8(self):
        with pytest.raises(MalformedVocabulary):
            load_vocabulary(length_delimited(1, length_delimited(1, b"\xff\xfe")))

    def test_newer_piece_type_is_kept_raw(self):
        vocab = load_vocabulary(
            encode_model([("<unk>", 0.0, 2), ("a", -1.0, 1), ("metadata", 0.0, 7)])
        )
        assert len(vocab) == 3
        assert vocab[2].kind == 7
        assert not isinstance(vocab[2].kind, PieceType)
        assert vocab.get("metadata") == 2
        assert vocab.max_piece_length == 1

    def test_zero_piece_type_is_kept_raw(self):
        body = length_delimited(1, b"a") + key(3, 0) + varint(0)
        vocab = load_vocabulary(length_delimited(1, body))
        assert vocab[0].kind == 0
        assert vocab.max_piece_length == 0

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            load_vocabulary(b"\x0a\x05ab")


def test_from_file(model_file):
    vocab = Vocabulary.from_file(model_file)
    assert vocab.get("▁ab") == 7
