# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""
Sentence embeddings from an ONNX encoder.

Inputs are fixed-length ``int64`` tensors of shape ``[1, max_length]``
produced by :class:`SentencePieceTokenizer`.  Which tensors the model takes
is decided from its declared inputs, in declaration order:

    1 input   -> input_ids
    2 inputs  -> input_ids, attention_mask
    3 inputs  -> input_ids, attention_mask, token_type_ids
"""

import enum
import logging
import os
import threading

import numpy as np

from pieceline.tokenizer import DEFAULT_MAX_LENGTH, SentencePieceTokenizer

logger = logging.getLogger(__name__)

# Pooled output exported by sentence-transformers style models
PREFERRED_OUTPUT = "sentence_embedding"


class InputSignature(enum.Enum):
    IDS = 1
    IDS_MASK = 2
    IDS_MASK_TYPES = 3

    @classmethod
    def from_input_names(cls, names: list[str]) -> "InputSignature":
        try:
            return cls(len(names))
        except ValueError:
            raise ValueError(
                f"Unsupported embedding model: expected 1-3 inputs, got {len(names)} ({names})"
            ) from None


class Embedder:
    """Runs an onnxruntime-style session (``get_inputs``, ``get_outputs``,
    ``run``) over tokenized text.

    The embedding dimension is discovered at construction by a probe run on a
    BOS-only input, since models with dynamic axes do not declare it.
    """

    def __init__(self, session, tokenizer: SentencePieceTokenizer, max_length: int = DEFAULT_MAX_LENGTH):
        if max_length < 1:
            raise ValueError("max_length must be >= 1")
        self._session = session
        self._tokenizer = tokenizer
        self._max_length = max_length
        self._lock = threading.Lock()
        self._closed = False

        self._input_names = [i.name for i in session.get_inputs()]
        self._signature = InputSignature.from_input_names(self._input_names)
        output_names = [o.name for o in session.get_outputs()]
        if not output_names:
            raise ValueError("Embedding model declares no outputs")
        self._output_name = PREFERRED_OUTPUT if PREFERRED_OUTPUT in output_names else output_names[0]

        probe = [tokenizer.bos_id] + [tokenizer.pad_id] * (max_length - 1)
        self._dimension = len(self._run(session, probe))
        logger.info(
            "Embedding model ready: inputs=%s output=%r dim=%d",
            self._input_names, self._output_name, self._dimension,
        )

    @classmethod
    def from_files(
        cls,
        model_path: str | os.PathLike,
        tokenizer_path: str | os.PathLike,
        max_length: int = DEFAULT_MAX_LENGTH,
    ) -> "Embedder":
        """Load an ``.onnx`` model and a SentencePiece ``.model`` file."""
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"Model file not found: {model_path}")
        if not os.path.exists(tokenizer_path):
            raise FileNotFoundError(f"Tokenizer file not found: {tokenizer_path}")

        import onnxruntime as ort

        options = ort.SessionOptions()
        # 0 = let onnxruntime pick thread counts
        options.intra_op_num_threads = 0
        options.inter_op_num_threads = 0
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        options.execution_mode = ort.ExecutionMode.ORT_PARALLEL

        session = ort.InferenceSession(
            str(model_path), sess_options=options, providers=["CPUExecutionProvider"]
        )
        tokenizer = SentencePieceTokenizer.load(tokenizer_path)
        return cls(session, tokenizer, max_length=max_length)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def signature(self) -> InputSignature:
        return self._signature

    @property
    def output_name(self) -> str:
        return self._output_name

    @property
    def max_length(self) -> int:
        return self._max_length

    @property
    def tokenizer(self) -> SentencePieceTokenizer:
        return self._tokenizer

    @property
    def closed(self) -> bool:
        return self._closed

    def _feeds(self, ids: list[int]) -> dict[str, np.ndarray]:
        input_ids = np.asarray([ids], dtype=np.int64)
        feeds = {self._input_names[0]: input_ids}
        if self._signature is not InputSignature.IDS:
            mask = np.asarray([self._tokenizer.attention_mask(ids)], dtype=np.int64)
            feeds[self._input_names[1]] = mask
        if self._signature is InputSignature.IDS_MASK_TYPES:
            feeds[self._input_names[2]] = np.zeros_like(input_ids)
        return feeds

    def _run(self, session, ids: list[int]) -> list[float]:
        outputs = session.run([self._output_name], self._feeds(ids))
        value = np.asarray(outputs[0], dtype=np.float32)
        # [1, dim] for pooled outputs, [1, seq, dim] for hidden states: take
        # the first row at every leading axis
        while value.ndim > 1:
            value = value[0]
        if value.ndim != 1:
            raise ValueError(f"Unexpected embedding output shape: {np.shape(outputs[0])}")
        return value.tolist()

    def embed(self, text: str) -> list[float]:
        with self._lock:
            if self._closed:
                raise RuntimeError("Embedder is closed. Create a new instance to use it again.")
            session = self._session
        ids = self._tokenizer.encode(text, max_length=self._max_length)
        return self._run(session, ids)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(text) for text in texts]

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._session = None
        logger.debug("Embedder closed")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
