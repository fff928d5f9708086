# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
from ._embedding import Embeddings
from ._llm import LLM
from ._server import Server

__all__ = ["Server", "LLM", "Embeddings"]
