"""Key/value persistence primitives.

Two storage scopes back the token store: a durable one that survives
restarts (JSON file) and a session-scoped one that lives as long as the
process (in memory). Both implement the same small ``KeyValueStorage``
protocol.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    """String key/value storage with browser-storage semantics."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class InMemoryStorage:
    """Process-lifetime storage. Used as the session-scoped location."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)


class JsonFileStorage:
    """Durable storage backed by a single JSON object on disk.

    Every write rewrites the whole file through a temporary file and an
    atomic rename, so a reader never sees a half-written document. There is
    no cross-process locking: concurrent writers race and the last one wins.
    """

    def __init__(self, file_path: Path | str):
        self.file_path = Path(file_path)

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def keys(self) -> list[str]:
        return list(self._load())

    def _load(self) -> dict[str, str]:
        if not self.file_path.exists():
            return {}
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable storage file {self.file_path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object storage file {self.file_path}")
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _save(self, data: dict[str, str]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.file_path.parent, prefix=f".{self.file_path.name}."
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.file_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved {len(data)} keys to {self.file_path}")
