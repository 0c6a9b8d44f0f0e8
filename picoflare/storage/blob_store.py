# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Keyed blob storage for agent memory.

Keys are slash-separated paths such as ``agents/chat-1/memory/knowledge/facts.json``
and map onto files under a single data directory.
"""

import os
import json
import logging
import tempfile
import threading

from pathlib import Path
from typing import Any, Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class BlobStore:
    """
    Local-disk store for JSON documents and append-only text logs.

    All methods are synchronous and guarded by a process-wide lock; callers on
    the event loop should go through ``asyncio.to_thread`` for anything
    non-trivial.
    """

    def __init__(self, root: Path | str):
        """
        Initialize the store.

        Args:
            root: Directory holding the blobs (created if it doesn't exist)
        """
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, key: str) -> Path:
        parts = [p for p in key.replace("\\", "/").split("/") if p]
        if not parts or any(p in (".", "..") for p in parts) or key.startswith("/"):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root.joinpath(*parts)

    @contextmanager
    def _atomic_write(self, path: Path) -> Iterator[Any]:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                yield f
            os.replace(tmp, path)
        except BaseException:
            os.unlink(tmp)
            raise

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def get_text(self, key: str) -> str | None:
        path = self._path(key)
        with self._lock:
            if not path.is_file():
                return None
            return path.read_text()

    def put_text(self, key: str, text: str) -> None:
        path = self._path(key)
        with self._lock, self._atomic_write(path) as f:
            f.write(text)

    def append_text(self, key: str, text: str) -> None:
        path = self._path(key)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a") as f:
                f.write(text)

    def get_json(self, key: str, default: Any = None) -> Any:
        """Load a JSON blob, returning ``default`` if it is missing or corrupt."""
        text = self.get_text(key)
        if text is None:
            return default
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt blob {key}: {e}")
            return default

    def put_json(self, key: str, value: Any) -> None:
        self.put_text(key, json.dumps(value, indent=2, default=str))

    def append_jsonl(self, key: str, record: dict[str, Any]) -> None:
        self.append_text(key, json.dumps(record, default=str) + "\n")

    def read_jsonl(self, key: str) -> list[dict[str, Any]]:
        text = self.get_text(key)
        if not text:
            return []
        records = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed line in {key}")
        return records

    def list_keys(self, prefix: str = "") -> list[str]:
        """List keys under ``prefix``, sorted."""
        base = self._path(prefix) if prefix.strip("/") else self.root
        with self._lock:
            if not base.exists():
                return []
            if base.is_file():
                return [base.relative_to(self.root).as_posix()]
            return sorted(
                p.relative_to(self.root).as_posix()
                for p in base.rglob("*")
                if p.is_file() and not p.name.startswith(".")
            )

    def delete(self, key: str) -> bool:
        path = self._path(key)
        with self._lock:
            if not path.is_file():
                return False
            path.unlink()
            return True
