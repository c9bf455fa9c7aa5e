"""Key-value storage backends for flow artifacts and session tokens.

Two scopes are used by the login flow:

- per-flow storage holds the code verifier and state for the single live
  authorization attempt and is cleared once the callback is processed
- session storage holds the issued access token until explicit logout

``MemoryStorage`` lives as long as the process and suits the per-flow scope.
``JSONFileStorage`` persists to a single JSON file, written atomically with
``0o600`` permissions, and suits the session scope.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_SESSION_PATH = Path.home() / ".oauthflow" / "session.json"


class KeyValueStorage(Protocol):
    """Async string key-value store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, *keys: str) -> None: ...


class MemoryStorage:
    """In-process storage. Contents vanish when the process exits."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class JSONFileStorage:
    """Storage persisted to one JSON object on disk.

    All writes are atomic: content is written to a temporary file in the
    same directory, fsynced, then renamed into place.

    Args:
        path: File to persist to. Parent directories are created on write.
    """

    def __init__(self, path: str | os.PathLike[str] = DEFAULT_SESSION_PATH) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> str | None:
        return self._read().get(key)

    async def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    async def delete(self, *keys: str) -> None:
        data = self._read()
        removed = [key for key in keys if data.pop(key, None) is not None]
        if removed:
            self._write(data)

    def _read(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable storage file {self._path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        text = json.dumps(data, indent=2) + "\n"
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd = None
        tmp_path: str | None = None
        try:
            fd = tempfile.NamedTemporaryFile(
                mode="w",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            )
            tmp_path = fd.name
            # Restrict permissions before any secret is written
            os.chmod(tmp_path, 0o600)
            fd.write(text)
            fd.flush()
            os.fsync(fd.fileno())
            fd.close()
            fd = None
            os.replace(tmp_path, self._path)
        except BaseException:
            if fd is not None:
                fd.close()
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
