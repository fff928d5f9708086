# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Model store: manage model and tokenizer files under an explicit base directory."""

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_STORE_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+(/[A-Za-z0-9_.-]+)*$")


def _looks_like_store_id(arg: str) -> bool:
    """Return True if arg looks like a store-relative name (org/name)."""
    if arg.startswith(("/", ".", "~")):
        return False
    return bool(_STORE_ID_RE.match(arg))


class ModelStore:
    """Files under *base_dir*.

    Every name is relative to the base directory; names that would escape it
    are rejected.
    """

    def __init__(self, base_dir: str | os.PathLike):
        self._base_dir = Path(base_dir).expanduser()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def target_path(self, name: str) -> Path:
        """Absolute path for *name* inside the store (need not exist yet)."""
        path = (self._base_dir / name).resolve()
        root = self._base_dir.resolve()
        if path != root and root not in path.parents:
            raise ValueError(f"'{name}' is outside the model store ({self._base_dir})")
        return path

    def resolve(self, arg: str) -> str:
        """Resolve a model argument to a local path.

        An existing path is returned unchanged.  A store-relative name is
        looked up under the base directory.
        """
        if os.path.exists(arg):
            return arg

        expanded = os.path.expanduser(arg)
        if os.path.exists(expanded):
            return expanded

        if _looks_like_store_id(arg):
            local = self.target_path(arg)
            if local.exists():
                return str(local)
            raise RuntimeError(f"'{arg}' not found in {self._base_dir}")

        # Not a store name; let the caller report the missing path
        return arg

    def exists(self, name: str) -> bool:
        return self.target_path(name).exists()

    def size(self, name: str) -> int:
        """Size in bytes, or 0 when the file is missing."""
        path = self.target_path(name)
        return path.stat().st_size if path.is_file() else 0

    def read_bytes(self, name: str) -> bytes:
        return self.target_path(name).read_bytes()

    def write_bytes(self, name: str, data: bytes) -> Path:
        path = self.target_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Wrote %d bytes to %s", len(data), path)
        return path

    def delete(self, name: str) -> bool:
        """Remove a file.  Returns False if it did not exist."""
        path = self.target_path(name)
        if not path.is_file():
            return False
        path.unlink()
        logger.info("Deleted %s", path)
        return True

    def list_files(self) -> list[dict]:
        """All files in the store, sorted by name."""
        if not self._base_dir.is_dir():
            return []
        entries = []
        for path in sorted(self._base_dir.rglob("*")):
            if not path.is_file():
                continue
            size_bytes = path.stat().st_size
            entries.append(
                {
                    "name": path.relative_to(self._base_dir).as_posix(),
                    "path": str(path),
                    "size_bytes": size_bytes,
                    "size_human": human_size(size_bytes),
                }
            )
        return entries


def human_size(n: float) -> str:
    """Format bytes as a human-readable string."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if n < 1024:
            return f"{n:.0f} {unit}" if unit == "B" else f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} PB"
