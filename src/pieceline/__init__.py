# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Pieceline: SentencePiece tokenizer, streaming inference client and server components"""

__all__ = [
    "SentencePieceTokenizer",
    "ChatClient",
    "Embedder",
    "Server",
    "LLM",
    "Embeddings",
]


def __getattr__(name: str):
    if name == "SentencePieceTokenizer":
        from .tokenizer import SentencePieceTokenizer

        return SentencePieceTokenizer
    if name == "ChatClient":
        from .client import ChatClient

        return ChatClient
    if name == "Embedder":
        from .embedding import Embedder

        return Embedder
    if name == "LLM":
        from .server._llm import LLM

        return LLM
    if name == "Server":
        from .server._server import Server

        return Server
    if name == "Embeddings":
        from .server._embedding import Embeddings

        return Embeddings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
