# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""LLM component: exposes an InferenceBackend through OpenAI-style chat routes."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from pieceline.backend import Conversation, InferenceBackend
from pieceline.messages import (
    AudioContent,
    ConversationConfig,
    ImageContent,
    Message,
    SamplerParams,
    TextContent,
    encode_message,
)
from pieceline.session import (
    DEFAULT_STREAM_TIMEOUT,
    StreamSession,
    StreamTimeoutError,
    UpstreamError,
)
from pieceline.tokenizer import SentencePieceTokenizer

from ._component import Component
from ._helpers import SSE_DONE, make_id, now, sse
from ._models import (
    AssistantMessage,
    AudioPart,
    ChatChoice,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ImagePart,
    ModelInfo,
    ModelListResponse,
    UsageInfo,
)

logger = logging.getLogger(__name__)


def _data_url_payload(url: str) -> str:
    """Base64 payload of a ``data:<mime>;base64,<payload>`` URL."""
    header, sep, payload = url.partition(",")
    if not url.startswith("data:") or not sep or not header.endswith(";base64"):
        raise HTTPException(
            status_code=400,
            detail="Only base64 data URLs are supported for images",
        )
    return payload


def build_message(req: ChatCompletionRequest) -> Message:
    """Flatten a chat request into one engine message.

    Media from the last user turn come first.  Earlier turns are rendered as
    a ``role: text`` transcript ahead of the user's text.
    """
    turns = [m for m in req.messages if m.role != "system"]
    *history, last = turns

    items = []
    if not isinstance(last.content, str):
        try:
            for part in last.content:
                if isinstance(part, ImagePart):
                    items.append(ImageContent(image=_data_url_payload(part.image_url.url)))
                elif isinstance(part, AudioPart):
                    items.append(AudioContent(audio=part.input_audio.data))
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid media payload: {exc}") from exc

    text = last.text
    if history:
        transcript = "\n".join(f"{m.role}: {m.text}" for m in history)
        text = f"{transcript}\nuser: {text}"
    items.append(TextContent(text=text))
    return Message(role="user", content=items)


class LLM(Component):
    """Chat component over an :class:`InferenceBackend`.

    Exposes /v1/models and /v1/chat/completions.  Each request runs in its
    own conversation, closed when the response ends.  A tokenizer, when
    given, is only used to fill in usage counts.
    """

    name = "llm"

    def __init__(
        self,
        backend: InferenceBackend,
        model_name: str = "pieceline",
        sampler: SamplerParams | None = None,
        stream_timeout: float = DEFAULT_STREAM_TIMEOUT,
        tokenizer: SentencePieceTokenizer | None = None,
    ):
        self._backend = backend
        self.model_name = model_name
        self._sampler = sampler or SamplerParams()
        self._stream_timeout = stream_timeout
        self._tokenizer = tokenizer
        self._running = False

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        self._running = True
        logger.info("LLM component started (model=%s)", self.model_name)

    async def stop(self) -> None:
        self._running = False
        self._backend.shutdown()

    # -- helpers -------------------------------------------------------------

    def _conversation_config(self, req: ChatCompletionRequest) -> ConversationConfig:
        overrides = {
            k: v
            for k, v in (
                ("temperature", req.temperature),
                ("top_k", req.top_k),
                ("top_p", req.top_p),
                ("seed", req.seed),
            )
            if v is not None
        }
        system = [m.text for m in req.messages if m.role == "system"]
        return ConversationConfig(
            sampler=self._sampler.model_copy(update=overrides),
            system_message="\n".join(system) if system else None,
        )

    def _count(self, text: str) -> int:
        return len(self._tokenizer.tokenize(text)) if self._tokenizer is not None else 0

    def _usage(self, prompt: str, completion: str) -> UsageInfo | None:
        if self._tokenizer is None:
            return None
        prompt_tokens = self._count(prompt)
        completion_tokens = self._count(completion)
        return UsageInfo(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    async def _open_session(self, req: ChatCompletionRequest) -> tuple[Conversation, StreamSession]:
        message = build_message(req)
        try:
            conversation = Conversation(self._backend, self._conversation_config(req))
        except RuntimeError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        session = StreamSession(conversation, timeout=self._stream_timeout)
        try:
            await session.start(encode_message(message))
        except UpstreamError as exc:
            conversation.close()
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return conversation, session

    # -- router --------------------------------------------------------------

    def router(self) -> APIRouter:
        r = APIRouter()
        llm = self  # closure reference

        @r.get("/v1/models")
        async def list_models():
            if not llm._running:
                return ModelListResponse(data=[])
            return ModelListResponse(data=[ModelInfo(id=llm.model_name)])

        @r.post("/v1/chat/completions")
        async def chat_completions(req: ChatCompletionRequest):
            if not llm._running:
                raise HTTPException(status_code=503, detail="No model loaded")

            model = req.model or llm.model_name
            conversation, session = await llm._open_session(req)

            if req.stream:
                return StreamingResponse(
                    _stream_chat(conversation, session, model),
                    media_type="text/event-stream",
                )

            try:
                full_text = await session.collect()
            except UpstreamError as exc:
                raise HTTPException(status_code=502, detail=str(exc)) from exc
            except StreamTimeoutError as exc:
                raise HTTPException(status_code=504, detail=str(exc)) from exc
            finally:
                session.cancel()
                conversation.close()

            return ChatCompletionResponse(
                id=make_id(),
                created=now(),
                model=model,
                choices=[
                    ChatChoice(
                        message=AssistantMessage(content=full_text),
                        finish_reason="stop",
                    )
                ],
                usage=llm._usage(req.messages[-1].text, full_text),
            )

        return r


# ---------------------------------------------------------------------------
# Streaming helper (module-level async generator)
# ---------------------------------------------------------------------------


async def _stream_chat(conversation: Conversation, session: StreamSession, model: str):
    req_id = make_id()
    created = now()

    def chunk(delta: dict, finish_reason: str | None = None) -> str:
        return sse(
            {
                "id": req_id,
                "object": "chat.completion.chunk",
                "created": created,
                "model": model,
                "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            }
        )

    try:
        yield chunk({"role": "assistant"})
        try:
            async for text in session:
                yield chunk({"content": text})
        except (UpstreamError, StreamTimeoutError) as exc:
            # Headers are already sent; report in-band
            logger.warning("Stream %s failed: %s", req_id, exc)
            code = 504 if isinstance(exc, StreamTimeoutError) else 502
            yield sse({"error": {"message": str(exc), "code": code}})
            yield SSE_DONE
            return
        yield chunk({}, finish_reason="stop")
        yield SSE_DONE
    finally:
        # Also reached when the client disconnects mid-stream
        session.cancel()
        conversation.close()
