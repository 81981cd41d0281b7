"""Key-scoped string storage used to persist application state."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from modules.services.errors import PersistenceError

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class KeyValueStorage(Protocol):
    """Minimal blob store: one string value per key."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryStorage:
    """Dict-backed storage for tests and memory-only mode."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStorage:
    """Store each key as its own file under ``root``.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so readers only ever see a complete payload.
    """

    def __init__(self, root: Path, suffix: str = ".json") -> None:
        self.root = Path(root)
        self.suffix = suffix

    def path_for(self, key: str) -> Path:
        """Return the file backing ``key``."""
        if not key:
            raise ValueError("Storage key must not be empty")
        return self.root / f"{_UNSAFE_KEY_CHARS.sub('_', key)}{self.suffix}"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"无法读取 {path}：{exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        tmp_name: Optional[str] = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.root,
                prefix=f".{path.stem}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(value)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"无法写入 {path}：{exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("Temporary file %s already gone", tmp_name)
