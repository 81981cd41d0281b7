"""Generation history tracking."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from config.settings import HISTORY_KEY
from modules.services.errors import CorruptHistoryError, DuplicateRecordError, PersistenceError
from modules.services.storage_service import KeyValueStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GenerationParams:
    """Image settings sent along with a prompt."""

    width: int = 1024
    height: int = 1024
    style: str = "default"
    quality: str = "high"
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "width": self.width,
            "height": self.height,
            "style": self.style,
            "quality": self.quality,
        }
        if self.seed is not None:
            payload["seed"] = self.seed
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationParams":
        if not isinstance(data, dict):
            raise TypeError("params must be an object")
        seed = data.get("seed")
        return cls(
            width=_require_int(data, "width"),
            height=_require_int(data, "height"),
            style=_require_str(data, "style"),
            quality=_require_str(data, "quality"),
            seed=None if seed is None else _as_int(seed, "seed"),
        )


@dataclass(frozen=True, slots=True)
class GeneratedImage:
    """A finished generation; never modified after creation."""

    id: str
    url: str
    prompt: str
    timestamp: int  # epoch millis
    params: GenerationParams = field(default_factory=GenerationParams)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "prompt": self.prompt,
            "timestamp": self.timestamp,
            "params": self.params.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneratedImage":
        if not isinstance(data, dict):
            raise TypeError("history entry must be an object")
        record_id = _require_str(data, "id")
        if not record_id:
            raise ValueError("history entry id must not be empty")
        return cls(
            id=record_id,
            url=_require_str(data, "url"),
            prompt=_require_str(data, "prompt"),
            timestamp=_require_int(data, "timestamp"),
            params=GenerationParams.from_dict(data.get("params")),
        )


def _as_int(value: Any, name: str) -> int:
    # bool is an int subclass but never a valid dimension or timestamp
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a number")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{name} must be integral")
    return int(value)


def _require_int(data: Dict[str, Any], name: str) -> int:
    return _as_int(data[name], name)


def _require_str(data: Dict[str, Any], name: str) -> str:
    value = data[name]
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    return value


def encode_history(records: Tuple[GeneratedImage, ...] | List[GeneratedImage]) -> str:
    """Serialize records newest-first as a JSON array."""
    return json.dumps([record.to_dict() for record in records], ensure_ascii=False)


def decode_history(payload: str) -> List[GeneratedImage]:
    """Parse a stored JSON array, skipping unusable entries.

    Raises CorruptHistoryError when the payload as a whole cannot be used.
    """
    try:
        data = json.loads(payload)
    except (ValueError, TypeError, RecursionError) as exc:
        raise CorruptHistoryError(f"历史记录无法解析：{exc}") from exc
    if not isinstance(data, list):
        raise CorruptHistoryError("历史记录格式错误：顶层应为数组")

    records: List[GeneratedImage] = []
    seen: set[str] = set()
    for index, entry in enumerate(data):
        try:
            record = GeneratedImage.from_dict(entry)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed history entry #%s: %s", index, exc)
            continue
        if record.id in seen:
            logger.warning("Skipping duplicate history id %s", record.id)
            continue
        seen.add(record.id)
        records.append(record)
    return records


class HistoryStore:
    """Newest-first generation history with a single current selection.

    The record list and the current id change together under one lock so a
    persisted snapshot is always consistent, even when the UI host calls in
    from worker threads.
    """

    def __init__(self, storage: KeyValueStorage, key: str = HISTORY_KEY) -> None:
        self.storage = storage
        self.key = key
        self._records: List[GeneratedImage] = []
        self._current_id: Optional[str] = None
        self._lock = threading.RLock()
        self.last_error: Optional[PersistenceError] = None

    # Read access ---------------------------------------------------------------
    @property
    def records(self) -> Tuple[GeneratedImage, ...]:
        with self._lock:
            return tuple(self._records)

    @property
    def current_id(self) -> Optional[str]:
        with self._lock:
            return self._current_id

    @property
    def current(self) -> Optional[GeneratedImage]:
        with self._lock:
            if self._current_id is None:
                return None
            return self._find(self._current_id)

    def get(self, record_id: str) -> Optional[GeneratedImage]:
        with self._lock:
            return self._find(record_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[GeneratedImage]:
        return iter(self.records)

    # Mutations -----------------------------------------------------------------
    def insert(self, image: GeneratedImage) -> Optional[PersistenceError]:
        """Put ``image`` at the front, select it, then persist."""
        with self._lock:
            if self._find(image.id) is not None:
                raise DuplicateRecordError(f"History already contains id {image.id}")
            self._records.insert(0, image)
            self._current_id = image.id
            return self._persist_locked()

    def select(self, record_id: str) -> bool:
        """Make ``record_id`` current; unknown ids are ignored."""
        with self._lock:
            if self._find(record_id) is None:
                logger.debug("Ignoring selection of unknown history id %s", record_id)
                return False
            self._current_id = record_id
            return True

    def clear(self) -> Optional[PersistenceError]:
        """Drop every record. Callers must confirm with the user first."""
        with self._lock:
            self._records.clear()
            self._current_id = None
            return self._persist_locked()

    # Persistence ---------------------------------------------------------------
    def load(self) -> None:
        """Replace the in-memory history with the stored one.

        Nothing is selected after a load. Unreadable or corrupt payloads
        leave the history empty.
        """
        records: List[GeneratedImage] = []
        try:
            payload = self.storage.get(self.key)
        except PersistenceError as exc:
            logger.error("History storage unavailable, starting empty: %s", exc)
            payload = None
        if payload is not None:
            try:
                records = decode_history(payload)
            except CorruptHistoryError as exc:
                logger.warning("Discarding stored history: %s", exc)
        with self._lock:
            self._records = records
            self._current_id = None
        logger.info("Loaded %s history record(s)", len(records))

    def persist(self) -> Optional[PersistenceError]:
        """Write the full history, replacing whatever was stored."""
        with self._lock:
            return self._persist_locked()

    def _persist_locked(self) -> Optional[PersistenceError]:
        payload = encode_history(self._records)
        try:
            self.storage.set(self.key, payload)
        except PersistenceError as exc:
            logger.error("History kept in memory only: %s", exc)
            self.last_error = exc
            return exc
        self.last_error = None
        return None

    def _find(self, record_id: str) -> Optional[GeneratedImage]:
        for record in self._records:
            if record.id == record_id:
                return record
        return None
