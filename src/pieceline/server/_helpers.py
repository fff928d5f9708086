# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Shared helpers for the HTTP components."""

import json
import time
import uuid


def make_id(prefix: str = "chatcmpl") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def now() -> int:
    return int(time.time())


def sse(payload: dict) -> str:
    """Format one server-sent event."""
    return f"data: {json.dumps(payload)}\n\n"


SSE_DONE = "data: [DONE]\n\n"
