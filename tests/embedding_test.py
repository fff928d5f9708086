# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
from types import SimpleNamespace

import numpy as np
import pytest

from conftest import BOS, PAD
from pieceline.embedding import Embedder, InputSignature


class FakeSession:
    """Stands in for onnxruntime.InferenceSession.

    The "embedding" is ``[real tokens, first id, second id, 0.5]``.
    """

    def __init__(self, inputs=("input_ids", "attention_mask"), outputs=("sentence_embedding",), hidden=False):
        self._inputs = [SimpleNamespace(name=n) for n in inputs]
        self._outputs = [SimpleNamespace(name=n) for n in outputs]
        self._hidden = hidden
        self.calls = []

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def run(self, output_names, feeds):
        self.calls.append((output_names, feeds))
        ids = feeds["input_ids"]
        real = int((ids != PAD).sum())
        vec = np.array([[real, ids[0, 0], ids[0, 1], 0.5]], dtype=np.float32)
        if self._hidden:
            vec = np.stack([vec, vec * 0])  # [1, 2, dim]: token 0 first
            vec = vec.transpose(1, 0, 2)
        return [vec]


class TestInputSignature:
    @pytest.mark.parametrize(
        "names, expected",
        [
            (["ids"], InputSignature.IDS),
            (["ids", "mask"], InputSignature.IDS_MASK),
            (["ids", "mask", "types"], InputSignature.IDS_MASK_TYPES),
        ],
    )
    def test_from_input_names(self, names, expected):
        assert InputSignature.from_input_names(names) is expected

    @pytest.mark.parametrize("names", [[], ["a", "b", "c", "d"]])
    def test_unsupported(self, names):
        with pytest.raises(ValueError):
            InputSignature.from_input_names(names)


class TestEmbedder:
    def test_probe_discovers_dimension(self, tokenizer):
        session = FakeSession()
        embedder = Embedder(session, tokenizer, max_length=8)
        assert embedder.dimension == 4
        _, feeds = session.calls[0]
        assert feeds["input_ids"].tolist() == [[BOS] + [PAD] * 7]

    def test_embed(self, tokenizer):
        embedder = Embedder(FakeSession(), tokenizer, max_length=8)
        # encode("ab", 8) == [BOS, 7, PAD, ...]
        assert embedder.embed("ab") == [2.0, float(BOS), 7.0, 0.5]

    def test_feeds_follow_signature(self, tokenizer):
        session = FakeSession(inputs=("input_ids", "attention_mask", "token_type_ids"))
        embedder = Embedder(session, tokenizer, max_length=4)
        embedder.embed("ab")
        _, feeds = session.calls[-1]
        assert feeds["input_ids"].dtype == np.int64
        assert feeds["input_ids"].shape == (1, 4)
        assert feeds["attention_mask"].tolist() == [[1, 1, 0, 0]]
        assert feeds["token_type_ids"].tolist() == [[0, 0, 0, 0]]

    def test_ids_only_model(self, tokenizer):
        session = FakeSession(inputs=("input_ids",))
        embedder = Embedder(session, tokenizer, max_length=4)
        assert embedder.signature is InputSignature.IDS
        embedder.embed("ab")
        assert list(session.calls[-1][1]) == ["input_ids"]

    def test_prefers_sentence_embedding_output(self, tokenizer):
        session = FakeSession(outputs=("last_hidden_state", "sentence_embedding"))
        embedder = Embedder(session, tokenizer, max_length=4)
        assert embedder.output_name == "sentence_embedding"
        assert session.calls[0][0] == ["sentence_embedding"]

    def test_falls_back_to_first_output(self, tokenizer):
        session = FakeSession(outputs=("embeddings", "other"), hidden=True)
        embedder = Embedder(session, tokenizer, max_length=4)
        assert embedder.output_name == "embeddings"
        assert embedder.dimension == 4
        assert embedder.embed("ab")[:3] == [2.0, float(BOS), 7.0]

    def test_embed_batch(self, tokenizer):
        embedder = Embedder(FakeSession(), tokenizer, max_length=4)
        vectors = embedder.embed_batch(["ab", "a b"])
        assert [v[2] for v in vectors] == [7.0, 8.0]

    def test_close(self, tokenizer):
        embedder = Embedder(FakeSession(), tokenizer, max_length=4)
        embedder.close()
        embedder.close()
        assert embedder.closed
        with pytest.raises(RuntimeError):
            embedder.embed("ab")

    def test_rejects_bad_max_length(self, tokenizer):
        with pytest.raises(ValueError):
            Embedder(FakeSession(), tokenizer, max_length=0)

    def test_from_files_missing_model(self, tmp_path, model_file):
        with pytest.raises(FileNotFoundError):
            Embedder.from_files(tmp_path / "missing.onnx", model_file)
