# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Pydantic request/response models for the Pieceline API."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator

from pieceline.messages import SamplingValidators


# ---------------------------------------------------------------------------
# Chat models
# ---------------------------------------------------------------------------


class ImageURL(BaseModel):
    url: str  # data:image/...;base64,<payload>


class InputAudio(BaseModel):
    data: str  # base64
    format: str = "wav"


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


class AudioPart(BaseModel):
    type: Literal["input_audio"] = "input_audio"
    input_audio: InputAudio


ContentPart = Annotated[Union[TextPart, ImagePart, AudioPart], Field(discriminator="type")]


class ChatMessage(BaseModel):
    role: str
    content: str | list[ContentPart]

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))


class ChatCompletionRequest(SamplingValidators, BaseModel):
    model: str = ""
    messages: list[ChatMessage]
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    seed: int | None = None
    stream: bool = False

    @field_validator("messages")
    @classmethod
    def _check_messages(cls, v: list[ChatMessage]) -> list[ChatMessage]:
        if not v:
            raise ValueError("messages must not be empty")
        if v[-1].role != "user":
            raise ValueError("the last message must have role 'user'")
        return v


class ChatChoiceDelta(BaseModel):
    role: str | None = None
    content: str | None = None


class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: str


class ChatChoice(BaseModel):
    index: int = 0
    message: AssistantMessage | None = None
    delta: ChatChoiceDelta | None = None
    finish_reason: str | None = None


class UsageInfo(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: list[ChatChoice]
    usage: UsageInfo | None = None


# ---------------------------------------------------------------------------
# Model listing
# ---------------------------------------------------------------------------


class ModelInfo(BaseModel):
    id: str
    object: str = "model"
    created: int = 0
    owned_by: str = "local"


class ModelListResponse(BaseModel):
    object: str = "list"
    data: list[ModelInfo]


# ---------------------------------------------------------------------------
# Embeddings / tokenization
# ---------------------------------------------------------------------------


class EmbeddingRequest(BaseModel):
    model: str = ""
    input: str | list[str]

    @field_validator("input")
    @classmethod
    def _check_input(cls, v: str | list[str]) -> str | list[str]:
        if isinstance(v, list) and not v:
            raise ValueError("input must not be empty")
        return v


class EmbeddingData(BaseModel):
    object: str = "embedding"
    index: int
    embedding: list[float]


class EmbeddingUsage(BaseModel):
    prompt_tokens: int = 0
    total_tokens: int = 0


class EmbeddingResponse(BaseModel):
    object: str = "list"
    data: list[EmbeddingData]
    model: str
    usage: EmbeddingUsage


class TokenizeRequest(BaseModel):
    text: str
    max_length: int | None = None  # None = unpadded content ids

    @field_validator("max_length")
    @classmethod
    def _check_max_length(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("max_length must be >= 1")
        return v


class TokenizeResponse(BaseModel):
    ids: list[int]
    pieces: list[str]
    attention_mask: list[int] | None = None
