# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Pydantic models for the generation request payload sent to the engine.

A message is a role marker plus an ordered content list::

    {"role": "user",
     "content": [{"type": "image", "image": "<base64>"},
                 {"type": "text", "text": "What is in this picture?"}]}

Media items carry their bytes base64-encoded inline and are followed by a
companion text item.
"""

import base64
import binascii
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator


def _check_base64(v: str) -> str:
    try:
        base64.b64decode(v, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64 payload: {exc}")
    return v


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    type: Literal["image"] = "image"
    image: str

    @field_validator("image")
    @classmethod
    def _check_image(cls, v: str) -> str:
        return _check_base64(v)

    @classmethod
    def from_bytes(cls, data: bytes) -> "ImageContent":
        return cls(image=base64.b64encode(data).decode("ascii"))

    def media_bytes(self) -> bytes:
        return base64.b64decode(self.image)


class AudioContent(BaseModel):
    type: Literal["audio"] = "audio"
    audio: str

    @field_validator("audio")
    @classmethod
    def _check_audio(cls, v: str) -> str:
        return _check_base64(v)

    @classmethod
    def from_bytes(cls, data: bytes) -> "AudioContent":
        return cls(audio=base64.b64encode(data).decode("ascii"))

    def media_bytes(self) -> bytes:
        return base64.b64decode(self.audio)


ContentItem = Annotated[
    Union[TextContent, ImageContent, AudioContent],
    Field(discriminator="type"),
]


class Message(BaseModel):
    role: str = "user"
    content: list[ContentItem]

    @property
    def text(self) -> str:
        """All text items joined with newlines."""
        return "\n".join(c.text for c in self.content if isinstance(c, TextContent))

    def media(self) -> list[ImageContent | AudioContent]:
        return [c for c in self.content if not isinstance(c, TextContent)]


def text_message(text: str, role: str = "user") -> Message:
    """Build a text-only message."""
    return Message(role=role, content=[TextContent(text=text)])


def image_message(text: str, image: bytes, role: str = "user") -> Message:
    """Build a text + image message (image first, companion text second)."""
    return Message(
        role=role,
        content=[ImageContent.from_bytes(image), TextContent(text=text)],
    )


def audio_message(text: str, audio: bytes, role: str = "user") -> Message:
    """Build a text + audio message.  Audio is expected as 16 kHz mono WAV."""
    return Message(
        role=role,
        content=[AudioContent.from_bytes(audio), TextContent(text=text)],
    )


def encode_message(message: Message) -> str:
    return message.model_dump_json()


def decode_message(payload: str | bytes) -> Message:
    return Message.model_validate_json(payload)


# ---------------------------------------------------------------------------
# Conversation configuration
# ---------------------------------------------------------------------------


class SamplingValidators:
    """Range checks shared by every model that carries sampler fields.

    ``None`` passes through so request models can leave a field unset.
    """

    @field_validator("temperature", check_fields=False)
    @classmethod
    def _check_temperature(cls, v):
        if v is not None and v < 0:
            raise ValueError("temperature must be >= 0")
        return v

    @field_validator("top_p", check_fields=False)
    @classmethod
    def _check_top_p(cls, v):
        if v is not None and not 0 < v <= 1.0:
            raise ValueError("top_p must be in (0, 1]")
        return v

    @field_validator("top_k", check_fields=False)
    @classmethod
    def _check_top_k(cls, v):
        if v is not None and v < 1:
            raise ValueError("top_k must be >= 1")
        return v


class SamplerParams(SamplingValidators, BaseModel):
    """Sampler settings handed to the engine when a conversation opens."""

    temperature: float = 0.8
    top_k: int = 40
    top_p: float = 0.95
    seed: int = 1


class ConversationConfig(BaseModel):
    sampler: SamplerParams = Field(default_factory=SamplerParams)
    system_message: str | None = None
