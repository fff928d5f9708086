# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Unified CLI entry point for Pieceline."""

import argparse
import json
import os
import shlex
import sys

from pieceline.config import DEFAULT_BASE_DIR, RuntimeConfig
from pieceline.session import DEFAULT_STREAM_TIMEOUT
from pieceline.tokenizer import DEFAULT_MAX_LENGTH
from pieceline.utils import configure_logging


def _runtime_config(args) -> RuntimeConfig:
    return RuntimeConfig(
        base_dir=args.base_dir,
        stream_timeout=getattr(args, "timeout", DEFAULT_STREAM_TIMEOUT),
        max_length=getattr(args, "max_length", None) or DEFAULT_MAX_LENGTH,
    )


def _resolve(store, path: str | None) -> str | None:
    """Resolve a path argument against the model store."""
    if path is None:
        return None
    return store.resolve(path)


def _engine_command(engine: str) -> list[str]:
    cmd = shlex.split(engine)
    if not cmd:
        raise ValueError("--engine must name an executable")
    return cmd


def _cmd_tokenize(args):
    """Tokenize text and print the ids."""
    try:
        from pieceline.model_store import ModelStore
        from pieceline.tokenizer import SentencePieceTokenizer

        store = ModelStore(args.base_dir)
        tokenizer = SentencePieceTokenizer.load(_resolve(store, args.tokenizer))
        if args.max_length:
            ids = tokenizer.encode(args.text, max_length=args.max_length)
        else:
            ids = tokenizer.tokenize(args.text)

        if args.json:
            out = {"ids": ids, "pieces": [tokenizer.id_to_piece(i) for i in ids]}
            if args.max_length:
                out["attention_mask"] = tokenizer.attention_mask(ids)
            print(json.dumps(out, ensure_ascii=False))
        elif args.pieces:
            print(" ".join(tokenizer.id_to_piece(i) for i in ids))
        else:
            print(" ".join(str(i) for i in ids))
    except (OSError, RuntimeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _cmd_chat(args):
    """Run interactive chat."""
    try:
        from pieceline.backend import SubprocessBackend
        from pieceline.chat import run_chat_loop
        from pieceline.client import ChatClient
        from pieceline.messages import ConversationConfig, SamplerParams
        from pieceline.model_store import ModelStore
        from pieceline.utils import load_sampler_params

        config = _runtime_config(args)
        store = ModelStore(config.base_dir)
        model_dir = _resolve(store, args.model_dir)
        sampler = load_sampler_params(model_dir) if model_dir else SamplerParams()
        conversation_config = ConversationConfig(sampler=sampler, system_message=args.system)

        command = _engine_command(args.engine)
        model_name = os.path.basename(os.path.normpath(model_dir)) if model_dir else command[0]
        with ChatClient(SubprocessBackend(command), config) as client:
            run_chat_loop(client, model_name, conversation_config)
    except (RuntimeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _cmd_serve(args):
    """Start the API server."""
    try:
        from pieceline.backend import SubprocessBackend
        from pieceline.messages import SamplerParams
        from pieceline.model_store import ModelStore
        from pieceline.tokenizer import SentencePieceTokenizer
        from pieceline.utils import load_sampler_params

        from pieceline import LLM, Embeddings, Server

        config = _runtime_config(args)
        store = ModelStore(config.base_dir)
        model_dir = _resolve(store, args.model_dir)
        tokenizer_path = _resolve(store, args.tokenizer)

        components = []
        if args.engine:
            command = _engine_command(args.engine)
            tokenizer = SentencePieceTokenizer.load(tokenizer_path) if tokenizer_path else None
            components.append(
                LLM(
                    SubprocessBackend(command),
                    model_name=args.model_name or os.path.basename(command[0]),
                    sampler=load_sampler_params(model_dir) if model_dir else SamplerParams(),
                    stream_timeout=config.stream_timeout,
                    tokenizer=tokenizer,
                )
            )
        if args.embedding_model:
            if not tokenizer_path:
                raise ValueError("--embedding-model requires --tokenizer")
            components.append(
                Embeddings(
                    _resolve(store, args.embedding_model),
                    tokenizer_path,
                    max_length=config.max_length,
                )
            )
        if not components:
            raise ValueError("Nothing to serve: pass --engine and/or --embedding-model")

        Server(*components).run(host=args.host, port=args.port)
    except (OSError, RuntimeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _cmd_models(args):
    """List files in the local model store."""
    from pieceline.model_store import ModelStore

    store = ModelStore(args.base_dir)
    files = store.list_files()

    if args.json:
        print(json.dumps({"base_dir": str(store.base_dir), "files": files}, indent=2))
        return

    if not files:
        print(f"No files in {store.base_dir}")
        return

    name_w = max(len(f["name"]) for f in files)
    name_w = max(name_w, len("NAME"))
    size_w = 10
    print(f"{'NAME':<{name_w}}  {'SIZE':>{size_w}}")
    print(f"{'-' * name_w}  {'-' * size_w}")
    for f in files:
        print(f"{f['name']:<{name_w}}  {f['size_human']:>{size_w}}")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="pieceline",
        description="Pieceline: SentencePiece tokenization and streaming on-device inference",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: $PIECELINE_LOG_LEVEL or WARNING)",
    )
    parser.add_argument(
        "--base-dir",
        default=str(DEFAULT_BASE_DIR),
        help="Model store directory (default: ~/.pieceline/models)",
    )
    sub = parser.add_subparsers(dest="command")

    # --- tokenize ---
    p_tok = sub.add_parser("tokenize", help="Tokenize text with a SentencePiece model")
    p_tok.add_argument("tokenizer", help="Path to a .model file (or a name in the model store)")
    p_tok.add_argument("text", help="Text to tokenize")
    p_tok.add_argument("--max-length", type=int, default=0, help="Pad/truncate to N ids with BOS (0 = raw ids)")
    p_tok.add_argument("--pieces", action="store_true", help="Print pieces instead of ids")
    p_tok.add_argument("--json", action="store_true", help="Output as JSON")
    p_tok.set_defaults(func=_cmd_tokenize)

    # --- chat ---
    p_chat = sub.add_parser("chat", help="Interactive chat with an engine")
    p_chat.add_argument("--engine", required=True, help="Engine command line, e.g. \"my-engine --model m.bin\"")
    p_chat.add_argument("--model-dir", help="Directory with generation_config.json for sampler defaults")
    p_chat.add_argument("--system", default=None, help="System message for the conversation")
    p_chat.add_argument("--timeout", type=float, default=DEFAULT_STREAM_TIMEOUT, help="Response timeout in seconds")
    p_chat.set_defaults(func=_cmd_chat)

    # --- serve ---
    p_serve = sub.add_parser("serve", help="Start OpenAI-compatible API server")
    p_serve.add_argument("--engine", help="Engine command line for /v1/chat/completions")
    p_serve.add_argument("--model-dir", help="Directory with generation_config.json for sampler defaults")
    p_serve.add_argument("--model-name", default=None, help="Model id reported by /v1/models")
    p_serve.add_argument("--embedding-model", help="ONNX encoder for /v1/embeddings")
    p_serve.add_argument("--tokenizer", help="SentencePiece .model file")
    p_serve.add_argument("--max-length", type=int, default=DEFAULT_MAX_LENGTH, help="Embedding input length")
    p_serve.add_argument("--timeout", type=float, default=DEFAULT_STREAM_TIMEOUT, help="Response timeout in seconds")
    p_serve.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    p_serve.add_argument("--port", type=int, default=8000, help="Port to bind to")
    p_serve.set_defaults(func=_cmd_serve)

    # --- models ---
    p_models = sub.add_parser("models", help="List files in the model store")
    p_models.add_argument("--json", action="store_true", help="Output as JSON")
    p_models.set_defaults(func=_cmd_models)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level)
    args.func(args)


if __name__ == "__main__":
    main()
