# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Interactive terminal chat on top of :class:`ChatClient`."""

import asyncio
import os
import subprocess
import sys
import tempfile

from prompt_toolkit import prompt as better_input
from prompt_toolkit.key_binding import KeyBindings

from pieceline.client import ChatClient
from pieceline.messages import ConversationConfig
from pieceline.session import StreamTimeoutError, UpstreamError


def edit_externally(text: str) -> str:
    """Round-trip *text* through $VISUAL / $EDITOR and return the saved result."""
    editor = os.environ.get("VISUAL") or os.environ.get("EDITOR", "vi")
    fd, path = tempfile.mkstemp(prefix="pieceline-", suffix=".txt")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        subprocess.call([editor, path])
        with open(path, encoding="utf-8") as f:
            return f.read()
    finally:
        os.unlink(path)


def _make_key_bindings() -> KeyBindings:
    """Ctrl+G hands the current prompt to an external editor."""
    kb = KeyBindings()

    @kb.add("c-g")
    def _(event):
        buf = event.app.current_buffer
        edited = edit_externally(buf.text)
        buf.text = edited
        buf.cursor_position = len(edited)

    return kb


def parse_command(query: str):
    """Split a prompt line into ``(kind, path, text)``.

    ``/image <path> <text>`` and ``/audio <path> <text>`` attach a file;
    anything else is plain text with ``kind == "text"`` and ``path is None``.
    """
    for kind in ("image", "audio"):
        prefix = f"/{kind} "
        if query.startswith(prefix):
            path, _, text = query[len(prefix):].strip().partition(" ")
            return kind, path, text.strip()
    return "text", None, query


def _stream_for(client: ChatClient, query: str):
    kind, path, text = parse_command(query)
    if path is None:
        return client.chat(text)
    with open(os.path.expanduser(path), "rb") as f:
        data = f.read()
    if kind == "image":
        return client.chat_with_image(text, data)
    return client.chat_with_audio(text, data)


async def _print_reply(stream) -> None:
    async for text in stream:
        print(text, end="", flush=True)


def run_chat_loop(client: ChatClient, model_name: str, config: ConversationConfig | None = None):
    """Read prompts until 'q' or EOF, streaming each reply to stdout."""
    client.create_conversation(config)
    kb = _make_key_bindings()
    print(
        f"Talk to {model_name} (Ctrl+D or 'q' to quit, '/new' for new conversation, "
        "'/image <path> <text>', '/audio <path> <text>', Ctrl+G for editor)"
    )
    while True:
        try:
            query = better_input("> ", key_bindings=kb)
        except (EOFError, KeyboardInterrupt):
            query = "q"

        command = query.strip()
        if command == "q":
            break

        if command == "/new":
            client.create_conversation(config)
            print("Starting new conversation.")
            continue

        if not command:
            continue

        try:
            stream = _stream_for(client, query)
        except OSError as e:
            print(f"Error: {e}", file=sys.stderr)
            continue

        print("Model Response: ", end="", flush=True)
        try:
            asyncio.run(_print_reply(stream))
        except KeyboardInterrupt:
            client.cancel_generation()
            print("\n[generation cancelled]", end="")
        except (UpstreamError, StreamTimeoutError) as e:
            print(f"\nError: {e}", file=sys.stderr)
        print()
