# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""High-level chat client: one active conversation, one generation at a time."""

import asyncio
import logging
from collections.abc import AsyncIterator

from pieceline.backend import Conversation, InferenceBackend
from pieceline.config import RuntimeConfig
from pieceline.messages import (
    ConversationConfig,
    Message,
    audio_message,
    encode_message,
    image_message,
    text_message,
)
from pieceline.session import StreamSession

logger = logging.getLogger(__name__)


class ChatClient:
    """Streams replies from an :class:`InferenceBackend`.

    Usage::

        with ChatClient(backend) as client:
            client.create_conversation()
            async for text in client.chat("Hello"):
                print(text, end="")
    """

    def __init__(self, backend: InferenceBackend, config: RuntimeConfig | None = None):
        self._backend = backend
        self._config = config or RuntimeConfig()
        self._conversation: Conversation | None = None
        self._session: StreamSession | None = None

    @property
    def conversation(self) -> Conversation | None:
        return self._conversation

    @property
    def generating(self) -> bool:
        return self._session is not None and not self._session.done

    def create_conversation(self, config: ConversationConfig | None = None) -> Conversation:
        """Open a new conversation, closing the current one first."""
        self.close_conversation()
        self._conversation = Conversation(self._backend, config)
        logger.debug("Conversation created")
        return self._conversation

    def _require_conversation(self) -> Conversation:
        if self._conversation is None or self._conversation.closed:
            raise RuntimeError("No active conversation. Call create_conversation() first.")
        return self._conversation

    # -- streaming -----------------------------------------------------------

    def chat(self, text: str) -> AsyncIterator[str]:
        return self._stream(text_message(text))

    def chat_with_image(self, text: str, image: bytes) -> AsyncIterator[str]:
        return self._stream(image_message(text, image))

    def chat_with_audio(self, text: str, audio: bytes) -> AsyncIterator[str]:
        return self._stream(audio_message(text, audio))

    async def _stream(self, message: Message) -> AsyncIterator[str]:
        conversation = self._require_conversation()
        if self.generating:
            raise RuntimeError("A generation is already in progress")

        session = StreamSession(conversation, timeout=self._config.stream_timeout)
        self._session = session
        try:
            await session.start(encode_message(message))
            async for text in session:
                yield text
        finally:
            # No-op when the stream ran to completion
            session.cancel()
            if self._session is session:
                self._session = None

    # -- blocking ------------------------------------------------------------

    async def generate(self, text: str) -> str:
        """Run one generation to completion and return the whole reply."""
        conversation = self._require_conversation()
        payload = encode_message(text_message(text))
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, conversation.send_message, payload)

    # -- teardown ------------------------------------------------------------

    def cancel_generation(self) -> None:
        if self._session is not None:
            self._session.cancel()

    def close_conversation(self) -> None:
        self.cancel_generation()
        if self._conversation is not None:
            self._conversation.close()
            self._conversation = None

    def shutdown(self) -> None:
        self.close_conversation()
        self._backend.shutdown()
        logger.debug("Client shut down")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()
