# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Embeddings component: sentence embeddings and tokenization over HTTP."""

import asyncio
import functools
import logging
import os

from fastapi import APIRouter, HTTPException

from pieceline.embedding import Embedder
from pieceline.tokenizer import DEFAULT_MAX_LENGTH

from ._component import Component
from ._models import (
    EmbeddingData,
    EmbeddingRequest,
    EmbeddingResponse,
    EmbeddingUsage,
    TokenizeRequest,
    TokenizeResponse,
)

logger = logging.getLogger(__name__)


class Embeddings(Component):
    """Serves /v1/embeddings and /v1/tokenize from an ONNX encoder."""

    name = "embeddings"

    def __init__(
        self,
        model_path: str,
        tokenizer_path: str,
        max_length: int = DEFAULT_MAX_LENGTH,
    ):
        self._model_path = model_path
        self._tokenizer_path = tokenizer_path
        self._max_length = max_length
        self.model_name = os.path.splitext(os.path.basename(model_path))[0]
        self._embedder: Embedder | None = None
        self._lock = asyncio.Lock()

    @property
    def embedder(self) -> Embedder | None:
        return self._embedder

    async def start(self) -> None:
        """Load the model (blocking I/O run in executor)."""
        loop = asyncio.get_running_loop()
        self._embedder = await loop.run_in_executor(
            None,
            functools.partial(
                Embedder.from_files,
                self._model_path,
                self._tokenizer_path,
                max_length=self._max_length,
            ),
        )

    async def stop(self) -> None:
        if self._embedder is not None:
            self._embedder.close()
            self._embedder = None

    def _require_embedder(self) -> Embedder:
        if self._embedder is None:
            raise HTTPException(status_code=503, detail="Embedding model not loaded")
        return self._embedder

    def router(self) -> APIRouter:
        r = APIRouter()
        component = self

        @r.post("/v1/embeddings")
        async def embeddings(req: EmbeddingRequest):
            embedder = component._require_embedder()
            texts = [req.input] if isinstance(req.input, str) else req.input

            async with component._lock:
                loop = asyncio.get_running_loop()
                vectors = await loop.run_in_executor(None, embedder.embed_batch, texts)

            tokenizer = embedder.tokenizer
            limit = embedder.max_length - 1
            prompt_tokens = sum(min(len(tokenizer.tokenize(t)), limit) + 1 for t in texts)
            return EmbeddingResponse(
                data=[EmbeddingData(index=i, embedding=v) for i, v in enumerate(vectors)],
                model=req.model or component.model_name,
                usage=EmbeddingUsage(prompt_tokens=prompt_tokens, total_tokens=prompt_tokens),
            )

        @r.post("/v1/tokenize")
        async def tokenize(req: TokenizeRequest):
            tokenizer = component._require_embedder().tokenizer
            if req.max_length is None:
                ids = tokenizer.tokenize(req.text)
                mask = None
            else:
                ids = tokenizer.encode(req.text, max_length=req.max_length)
                mask = tokenizer.attention_mask(ids)
            return TokenizeResponse(
                ids=ids,
                pieces=[tokenizer.id_to_piece(i) for i in ids],
                attention_mask=mask,
            )

        return r
