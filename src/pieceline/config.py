# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Runtime configuration, passed explicitly to whatever needs it."""

from dataclasses import dataclass, field
from pathlib import Path

from pieceline.session import DEFAULT_STREAM_TIMEOUT
from pieceline.tokenizer import DEFAULT_MAX_LENGTH

DEFAULT_BASE_DIR = Path.home() / ".pieceline" / "models"


@dataclass(frozen=True)
class RuntimeConfig:
    base_dir: Path = field(default_factory=lambda: DEFAULT_BASE_DIR)
    stream_timeout: float = DEFAULT_STREAM_TIMEOUT
    max_length: int = DEFAULT_MAX_LENGTH

    def __post_init__(self):
        object.__setattr__(self, "base_dir", Path(self.base_dir).expanduser())
        if self.stream_timeout <= 0:
            raise ValueError("stream_timeout must be > 0")
        if self.max_length < 1:
            raise ValueError("max_length must be >= 1")
