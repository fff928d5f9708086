# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""
SentencePiece Unigram tokenizer.

Loads a trainer-produced ``.model`` file with :mod:`pieceline.vocab` and
segments text with the Unigram Viterbi algorithm, falling back to byte
pieces (``<0xHH>``) for characters no piece covers.

Full Unicode normalization (NFKC) is not performed; scripts that depend on it
will tokenize differently from the reference implementation.
"""

import os
import re
from collections.abc import Iterable

from pieceline.vocab import (
    SEGMENTABLE_TYPES,
    PieceType,
    Vocabulary,
    load_vocabulary,
)

WORD_BOUNDARY = "▁"
DEFAULT_MAX_LENGTH = 256

# Score charged for a character with neither a piece nor byte pieces.
# A heuristic: it only has to be worse than any real path.
UNMATCHED_PENALTY = -100.0

_NEG_INF = float("-inf")
_BYTE_PIECE_RE = re.compile(r"^<0x([0-9A-Fa-f]{2})>$")
_SKIPPED_ON_DECODE = frozenset(
    {PieceType.CONTROL, PieceType.UNKNOWN, PieceType.UNUSED}
)


class InvalidArgument(ValueError):
    """Raised for out-of-range encode arguments."""


def normalize(text: str) -> str:
    """Prepend the word-boundary marker and replace spaces with it."""
    return WORD_BOUNDARY + text.replace(" ", WORD_BOUNDARY)


def byte_piece(value: int) -> str:
    """Canonical piece name for a raw byte, e.g. ``<0xE2>``."""
    return f"<0x{value:02X}>"


class SentencePieceTokenizer:
    """Unigram tokenizer over an immutable :class:`Vocabulary`.

    Holds no mutable state after construction, so one instance can serve
    concurrent callers.
    """

    def __init__(self, vocab: Vocabulary):
        self._vocab = vocab

    @classmethod
    def load(cls, path: str | os.PathLike) -> "SentencePieceTokenizer":
        return cls(Vocabulary.from_file(path))

    @classmethod
    def from_bytes(cls, data: bytes) -> "SentencePieceTokenizer":
        return cls(load_vocabulary(data))

    # -- vocabulary accessors ------------------------------------------------

    @property
    def vocab(self) -> Vocabulary:
        return self._vocab

    @property
    def vocab_size(self) -> int:
        return len(self._vocab)

    @property
    def unk_id(self) -> int:
        return self._vocab.unk_id

    @property
    def bos_id(self) -> int:
        return self._vocab.bos_id

    @property
    def eos_id(self) -> int:
        return self._vocab.eos_id

    @property
    def pad_id(self) -> int:
        return self._vocab.pad_id

    def piece_to_id(self, piece: str) -> int:
        token_id = self._vocab.get(piece)
        return self._vocab.unk_id if token_id is None else token_id

    def id_to_piece(self, token_id: int) -> str:
        if not 0 <= token_id < len(self._vocab):
            raise IndexError(f"Token id {token_id} out of range [0, {len(self._vocab)})")
        return self._vocab[token_id].text

    # -- encoding ------------------------------------------------------------

    def tokenize(self, text: str) -> list[int]:
        """Segment *text* into content ids (no BOS, no padding).

        Viterbi over unicode scalar positions: ``best[i]`` is the highest total
        score of any segmentation of the first ``i`` characters.  Relaxation
        uses strict ``>``, so among equal-scoring candidates the first one
        tried keeps the slot.
        """
        vocab = self._vocab
        s = normalize(text)
        n = len(s)
        max_len = vocab.max_piece_length

        best = [_NEG_INF] * (n + 1)
        # back[j] = (start position, ids emitted for s[start:j])
        back: list[tuple[int, tuple[int, ...]] | None] = [None] * (n + 1)
        best[0] = 0.0

        for i in range(n):
            base = best[i]
            if base == _NEG_INF:
                continue

            for length in range(1, min(max_len, n - i) + 1):
                token_id = vocab.get(s[i : i + length])
                if token_id is None:
                    continue
                piece = vocab[token_id]
                if piece.kind not in SEGMENTABLE_TYPES:
                    continue
                score = base + piece.score
                if score > best[i + length]:
                    best[i + length] = score
                    back[i + length] = (i, (token_id,))

            if best[i + 1] == _NEG_INF:
                self._byte_fallback(s[i], i, best, back)

        ids: list[int] = []
        pos = n
        while pos > 0:
            prev, emitted = back[pos]
            ids.extend(reversed(emitted))
            pos = prev
        ids.reverse()
        return ids

    def _byte_fallback(self, char: str, i: int, best: list[float], back: list) -> None:
        vocab = self._vocab
        base = best[i]
        byte_ids = [
            vocab.get(byte_piece(b)) for b in char.encode("utf-8", "surrogatepass")
        ]
        matched = [token_id for token_id in byte_ids if token_id is not None]

        for token_id in matched:
            score = base + vocab[token_id].score
            if score > best[i + 1]:
                best[i + 1] = score

        if matched:
            # A partial byte sequence would decode to garbage; use <unk> instead
            emitted = tuple(byte_ids) if len(matched) == len(byte_ids) else (vocab.unk_id,)
            back[i + 1] = (i, emitted)
        else:
            best[i + 1] = base + UNMATCHED_PENALTY
            back[i + 1] = (i, (vocab.unk_id,))

    def encode(self, text: str, max_length: int = DEFAULT_MAX_LENGTH) -> list[int]:
        """Tokenize *text* into exactly *max_length* ids.

        A BOS id is prepended, content beyond ``max_length - 1`` ids is
        dropped, and remaining slots are filled with the pad id.
        """
        if max_length < 1:
            raise InvalidArgument(f"max_length must be >= 1, got {max_length}")
        content = self.tokenize(text)
        ids = [self._vocab.bos_id]
        ids.extend(content[: max_length - 1])
        ids.extend([self._vocab.pad_id] * (max_length - len(ids)))
        return ids

    def attention_mask(self, ids: Iterable[int]) -> list[int]:
        """1 for real tokens, 0 for padding."""
        pad_id = self._vocab.pad_id
        return [0 if token_id == pad_id else 1 for token_id in ids]

    # -- decoding ------------------------------------------------------------

    def decode(self, ids: Iterable[int]) -> str:
        """Turn ids back into text.

        Control, unknown, unused and pad pieces are skipped, as are pieces whose
        type value is newer than :class:`PieceType`.  Runs of byte pieces are
        reassembled into bytes and decoded with replacement characters.
        """
        vocab = self._vocab
        parts: list[str] = []
        pending = bytearray()

        for token_id in ids:
            piece = vocab[token_id]
            if piece.kind is PieceType.BYTE:
                m = _BYTE_PIECE_RE.match(piece.text)
                if m:
                    pending.append(int(m.group(1), 16))
                    continue
            if pending:
                parts.append(pending.decode("utf-8", "replace"))
                pending.clear()
            if (
                piece.kind in _SKIPPED_ON_DECODE
                or not isinstance(piece.kind, PieceType)
                or token_id == vocab.pad_id
            ):
                continue
            parts.append(piece.text)

        if pending:
            parts.append(pending.decode("utf-8", "replace"))

        text = "".join(parts).replace(WORD_BOUNDARY, " ")
        if text.startswith(" "):
            text = text[1:]
        return text
