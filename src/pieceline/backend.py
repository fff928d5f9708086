# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""
Inference backends and the conversation handles they hand out.

A backend owns engine-side resources; a :class:`Conversation` owns exactly one
backend handle and is the collaborator a :class:`~pieceline.session.StreamSession`
talks to.  Fragments reach the callback as ``(chunk, is_final, error)`` from a
worker thread, never from the caller's thread.
"""

import abc
import logging
import subprocess
import threading
from collections.abc import Callable, Iterable

from pieceline.messages import ConversationConfig
from pieceline.session import UpstreamError
from pieceline.utils import engine_args

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[bytes | None, bool, str | None], None]

_READ_SIZE = 4096
_KILL_GRACE = 10  # seconds between terminate() and kill()


class InferenceBackend(abc.ABC):
    """Engine-side operations, addressed by an opaque per-conversation handle."""

    @abc.abstractmethod
    def create_conversation(self, config: ConversationConfig): ...

    @abc.abstractmethod
    def delete_conversation(self, handle) -> None: ...

    @abc.abstractmethod
    def send_message(self, handle, payload: str) -> str:
        """Run one generation to completion and return its text."""

    @abc.abstractmethod
    def send_message_stream(self, handle, payload: str, callback: FragmentCallback) -> None:
        """Start a generation; return immediately and deliver fragments to *callback*."""

    @abc.abstractmethod
    def cancel(self, handle) -> None: ...

    @abc.abstractmethod
    def shutdown(self) -> None: ...


class Conversation:
    """Owns one backend conversation handle.

    ``close()`` is idempotent and releases the handle exactly once.  Any use
    other than ``cancel()`` after close raises ``RuntimeError``.
    """

    def __init__(self, backend: InferenceBackend, config: ConversationConfig | None = None):
        self._backend = backend
        self._config = config or ConversationConfig()
        self._lock = threading.Lock()
        self._handle = backend.create_conversation(self._config)
        self._closed = False

    @property
    def config(self) -> ConversationConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closed

    def _live_handle(self):
        with self._lock:
            if self._closed:
                raise RuntimeError("Conversation is closed")
            return self._handle

    def send_message(self, payload: str) -> str:
        return self._backend.send_message(self._live_handle(), payload)

    def send_message_stream(self, payload: str, callback: FragmentCallback) -> None:
        self._backend.send_message_stream(self._live_handle(), payload, callback)

    def cancel(self) -> None:
        with self._lock:
            if self._closed:
                return
            handle = self._handle
        self._backend.cancel(handle)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            handle, self._handle = self._handle, None
        self._backend.cancel(handle)
        self._backend.delete_conversation(handle)
        logger.debug("Conversation closed")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


# ---------------------------------------------------------------------------
# ThreadedBackend
# ---------------------------------------------------------------------------


class _ThreadedHandle:
    def __init__(self, config: ConversationConfig):
        self.config = config
        self.cancel_event = threading.Event()
        self.worker: threading.Thread | None = None


class ThreadedBackend(InferenceBackend):
    """Runs a blocking generator on a worker thread per request.

    *generate_fn(payload, config)* yields ``bytes`` (or ``str``) chunks.  It is
    abandoned at the next chunk boundary once cancellation is requested.
    """

    def __init__(self, generate_fn: Callable[[str, ConversationConfig], Iterable[bytes | str]]):
        self._generate_fn = generate_fn
        self._lock = threading.Lock()
        self._handles: set[_ThreadedHandle] = set()
        self._shut_down = False

    def create_conversation(self, config: ConversationConfig) -> _ThreadedHandle:
        with self._lock:
            if self._shut_down:
                raise RuntimeError("Backend has been shut down")
            handle = _ThreadedHandle(config)
            self._handles.add(handle)
        return handle

    def delete_conversation(self, handle: _ThreadedHandle) -> None:
        handle.cancel_event.set()
        with self._lock:
            self._handles.discard(handle)

    def _chunks(self, handle: _ThreadedHandle, payload: str, cancel_event: threading.Event):
        for chunk in self._generate_fn(payload, handle.config):
            if cancel_event.is_set():
                return
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            yield chunk

    def send_message(self, handle: _ThreadedHandle, payload: str) -> str:
        cancel_event = threading.Event()
        handle.cancel_event = cancel_event
        try:
            data = b"".join(self._chunks(handle, payload, cancel_event))
        except Exception as exc:
            raise UpstreamError(f"Engine error: {exc}") from exc
        return data.decode("utf-8", "replace")

    def send_message_stream(self, handle: _ThreadedHandle, payload: str, callback: FragmentCallback) -> None:
        if handle.worker is not None and handle.worker.is_alive():
            raise RuntimeError("A generation is already running on this conversation")
        cancel_event = threading.Event()
        handle.cancel_event = cancel_event
        handle.worker = threading.Thread(
            target=self._run,
            args=(handle, payload, callback, cancel_event),
            daemon=True,
        )
        handle.worker.start()

    def _run(self, handle, payload, callback, cancel_event) -> None:
        try:
            for chunk in self._chunks(handle, payload, cancel_event):
                callback(chunk, False, None)
        except Exception as exc:
            logger.warning("Generator raised: %s", exc)
            callback(None, False, str(exc))
            return
        if not cancel_event.is_set():
            callback(None, True, None)

    def cancel(self, handle: _ThreadedHandle) -> None:
        handle.cancel_event.set()

    def shutdown(self) -> None:
        with self._lock:
            self._shut_down = True
            handles = list(self._handles)
            self._handles.clear()
        for handle in handles:
            handle.cancel_event.set()
        for handle in handles:
            if handle.worker is not None:
                handle.worker.join(timeout=_KILL_GRACE)


# ---------------------------------------------------------------------------
# SubprocessBackend
# ---------------------------------------------------------------------------


def _stop_process(proc: subprocess.Popen, grace: float = _KILL_GRACE) -> None:
    """terminate(), then kill() if the process outlives *grace* seconds."""
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


class _ProcessHandle:
    def __init__(self, argv: list[str]):
        self.argv = argv
        self.lock = threading.Lock()
        self.process: subprocess.Popen | None = None
        self.cancelled = False


class SubprocessBackend(InferenceBackend):
    """One engine process per request.

    The payload is written to the engine's stdin, which is then closed.
    Every raw read from stdout is one fragment, so multi-byte characters may
    arrive split.  EOF with exit status 0 is the final marker; any other
    status produces an error fragment carrying the engine's stderr.

    Usage::

        backend = SubprocessBackend(["my-engine", "--model", "model.bin"])
    """

    def __init__(self, command: list[str], grace_period: float = _KILL_GRACE):
        if not command:
            raise ValueError("SubprocessBackend requires a command")
        self._command = list(command)
        self._grace_period = grace_period
        self._lock = threading.Lock()
        self._handles: set[_ProcessHandle] = set()

    def create_conversation(self, config: ConversationConfig) -> _ProcessHandle:
        handle = _ProcessHandle(self._command + engine_args(config))
        with self._lock:
            self._handles.add(handle)
        return handle

    def delete_conversation(self, handle: _ProcessHandle) -> None:
        self.cancel(handle)
        with self._lock:
            self._handles.discard(handle)

    def _spawn(self, handle: _ProcessHandle) -> subprocess.Popen:
        with handle.lock:
            if handle.process is not None and handle.process.poll() is None:
                raise RuntimeError("A generation is already running on this conversation")
            handle.cancelled = False
            try:
                handle.process = subprocess.Popen(
                    handle.argv,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    bufsize=0,
                )
            except OSError as exc:
                raise UpstreamError(f"Failed to start engine {handle.argv[0]!r}: {exc}") from exc
            logger.debug("Started engine pid=%d", handle.process.pid)
            return handle.process

    def send_message(self, handle: _ProcessHandle, payload: str) -> str:
        proc = self._spawn(handle)
        stdout, stderr = proc.communicate(payload.encode("utf-8"))
        if handle.cancelled:
            return stdout.decode("utf-8", "replace")
        if proc.returncode != 0:
            raise UpstreamError(_exit_message(proc.returncode, stderr))
        return stdout.decode("utf-8", "replace")

    def send_message_stream(self, handle: _ProcessHandle, payload: str, callback: FragmentCallback) -> None:
        proc = self._spawn(handle)
        threading.Thread(
            target=self._pump,
            args=(handle, proc, payload.encode("utf-8"), callback),
            daemon=True,
        ).start()

    def _pump(self, handle, proc, payload: bytes, callback) -> None:
        stderr_parts: list[bytes] = []
        drain = threading.Thread(
            target=lambda: stderr_parts.append(proc.stderr.read()), daemon=True
        )
        drain.start()

        try:
            proc.stdin.write(payload)
            proc.stdin.close()
        except (BrokenPipeError, OSError) as exc:
            logger.debug("Engine closed stdin early: %s", exc)

        while True:
            chunk = proc.stdout.read(_READ_SIZE)
            if not chunk:
                break
            if handle.cancelled:
                continue
            callback(chunk, False, None)

        returncode = proc.wait()
        drain.join()
        if handle.cancelled:
            return
        if returncode != 0:
            callback(None, False, _exit_message(returncode, b"".join(stderr_parts)))
        else:
            callback(None, True, None)

    def cancel(self, handle: _ProcessHandle) -> None:
        with handle.lock:
            proc = handle.process
            if proc is None or proc.poll() is not None:
                return
            handle.cancelled = True
        # Reaping can take the whole grace period; never block the caller on it
        threading.Thread(
            target=_stop_process, args=(proc, self._grace_period), daemon=True
        ).start()

    def shutdown(self) -> None:
        with self._lock:
            handles = list(self._handles)
            self._handles.clear()
        for handle in handles:
            with handle.lock:
                handle.cancelled = True
                proc = handle.process
            if proc is not None:
                _stop_process(proc, self._grace_period)


def _exit_message(returncode: int, stderr: bytes) -> str:
    msg = f"Inference engine exited with status {returncode}"
    detail = stderr.decode("utf-8", "replace").strip()
    if detail:
        msg += f": {detail}"
    return msg
