# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""
Streaming response session.

A :class:`StreamSession` drives exactly one in-flight generation.  The engine
delivers raw byte fragments from its own thread through :meth:`deliver`;
each fragment is run through a :class:`Utf8BoundaryAssembler` and the noise
filter under a lock, and the resulting text events are marshalled onto an
``asyncio.Queue`` owned by the caller's event loop.  The caller consumes them
with ``async for``.
"""

import asyncio
import enum
import logging
import threading
from collections.abc import Callable

from pieceline.token_utils import Utf8BoundaryAssembler, is_engine_noise

logger = logging.getLogger(__name__)

DEFAULT_STREAM_TIMEOUT = 300.0  # seconds; long enough for worst-case generation


class SessionState(enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class UpstreamError(RuntimeError):
    """The engine reported an error alongside a fragment."""


class StreamTimeoutError(TimeoutError):
    """No final marker arrived before the session deadline."""


# Queued after the last text event of a session.
_END = object()


class StreamSession:
    """Reassembles one streamed response.

    *conversation* is the engine-side collaborator: anything with
    ``send_message_stream(payload, callback)`` and ``cancel()``.

    Lifecycle::

        session = StreamSession(conversation, timeout=60)
        await session.start(payload)
        async for text in session:
            print(text, end="")

    Fragments must come from one producer at a time; the lock only
    serializes them, it cannot restore an order the producer did not keep.
    """

    def __init__(
        self,
        conversation,
        timeout: float = DEFAULT_STREAM_TIMEOUT,
        noise_filter: Callable[[str], bool] = is_engine_noise,
    ):
        self._conversation = conversation
        self._timeout = timeout
        self._noise_filter = noise_filter
        self._assembler = Utf8BoundaryAssembler()
        self._lock = threading.RLock()
        self._state = SessionState.ACTIVE
        self._failure: BaseException | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._deadline: float | None = None
        self._finished = False  # end marker observed by the consumer

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    @property
    def done(self) -> bool:
        return self._state is not SessionState.ACTIVE

    # -- producer side -------------------------------------------------------

    async def start(self, payload: str) -> None:
        """Submit *payload* and start the deadline clock."""
        if self._loop is not None:
            raise RuntimeError("StreamSession already started")
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._deadline = self._loop.time() + self._timeout

        try:
            self._conversation.send_message_stream(payload, self.deliver)
        except Exception as exc:
            error = UpstreamError(f"Failed to start streaming: {exc}")
            with self._lock:
                if self._state is SessionState.ACTIVE:
                    self._finish(SessionState.FAILED, error)
            raise error from exc

    def deliver(
        self,
        chunk: bytes | None,
        is_final: bool = False,
        error: str | None = None,
    ) -> None:
        """Fragment callback.  Safe to call from any thread."""
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                logger.debug("Dropping fragment for %s session", self._state.value)
                return
            expired = self._loop is not None and self._loop.time() > self._deadline
            if expired:
                self._expire_locked()
            else:
                self._process(chunk, is_final, error)
        if expired:
            # Best effort: the engine may keep running briefly
            self._conversation.cancel()

    def _process(self, chunk: bytes | None, is_final: bool, error: str | None) -> None:
        if chunk:
            self._emit(self._assembler.push(chunk))

        if error:
            logger.warning("Engine error: %s", error)
            self._finish(SessionState.FAILED, UpstreamError(f"Engine error: {error}"))
            return

        if is_final:
            tail = self._assembler.flush()
            if tail:
                self._post(tail)
            self._finish(SessionState.COMPLETED)

    def _emit(self, text: str) -> None:
        if not text:
            return
        if self._noise_filter(text):
            logger.debug("Dropped engine noise: %r", text)
            return
        self._post(text)

    def _post(self, item) -> None:
        # Same FIFO path from every thread, the loop thread included
        if self._queue is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Event loop already closed; the consumer is gone.
            logger.debug("Event loop closed, discarding stream event")

    def _finish(self, state: SessionState, failure: BaseException | None = None) -> None:
        self._state = state
        self._failure = failure
        self._post(_END)
        logger.debug("Stream session -> %s", state.value)

    def _expire_locked(self) -> None:
        self._finish(
            SessionState.TIMED_OUT,
            StreamTimeoutError(f"Response timed out after {self._timeout:g}s"),
        )

    def _expire(self) -> None:
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._expire_locked()
        logger.warning("Stream session timed out after %gs", self._timeout)
        self._conversation.cancel()

    def cancel(self) -> None:
        """Stop the session now and ask the engine to abort.

        Idempotent and a no-op once the session is terminal.  When this
        returns no further text is handed to the consumer, including text
        already queued.
        """
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._finish(SessionState.CANCELLED)
        self._conversation.cancel()

    # -- consumer side -------------------------------------------------------

    async def next_event(self) -> str | None:
        """Wait for the next piece of text.

        Returns ``None`` once the stream completed or was cancelled.  Raises
        :class:`UpstreamError` or :class:`StreamTimeoutError` on failure.
        """
        if self._queue is None:
            raise RuntimeError("StreamSession not started")

        while True:
            if self._state is SessionState.CANCELLED:
                return None
            if self._finished:
                return self._raise_or_end()

            if not self._queue.empty():
                item = self._queue.get_nowait()
            elif self._state is SessionState.ACTIVE:
                remaining = self._deadline - self._loop.time()
                try:
                    item = await asyncio.wait_for(
                        self._queue.get(), timeout=max(remaining, 0)
                    )
                except asyncio.TimeoutError:
                    self._expire()
                    continue
            else:
                # Terminal: the end marker is queued or about to be
                item = await self._queue.get()

            if self._state is SessionState.CANCELLED:
                return None
            if item is _END:
                self._finished = True
                return self._raise_or_end()
            return item

    def _raise_or_end(self) -> None:
        if self._failure is not None:
            raise self._failure
        return None

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        text = await self.next_event()
        if text is None:
            raise StopAsyncIteration
        return text

    async def collect(self) -> str:
        """Consume the whole stream and return the concatenated text."""
        parts = []
        async for text in self:
            parts.append(text)
        return "".join(parts)
