"""HistoryStore behaviour and persistence tests."""

from __future__ import annotations

import json

import pytest

from modules.services.errors import DuplicateRecordError, PersistenceError
from modules.services.history_service import (
    GeneratedImage,
    GenerationParams,
    HistoryStore,
    decode_history,
    encode_history,
)
from modules.services.storage_service import JsonFileStorage, MemoryStorage

KEY = "ai-image-history"


class BrokenStorage(MemoryStorage):
    """Storage whose reads and writes both fail."""

    def get(self, key: str):
        raise PersistenceError("storage offline")

    def set(self, key: str, value: str) -> None:
        raise PersistenceError("storage offline")


def make_image(record_id: str, prompt: str = "prompt", seed=None) -> GeneratedImage:
    return GeneratedImage(
        id=record_id,
        url=f"https://svc/img/{record_id}",
        prompt=prompt,
        timestamp=1_700_000_000_000 + int(record_id),
        params=GenerationParams(width=1024, height=768, style="anime", quality="ultra", seed=seed),
    )


def test_insert_prepends_and_selects():
    store = HistoryStore(MemoryStorage())

    store.insert(make_image("1", "A"))
    store.insert(make_image("2", "B"))

    assert [record.id for record in store.records] == ["2", "1"]
    assert store.current_id == "2"
    assert store.current.prompt == "B"


def test_insert_persists_full_sequence():
    storage = MemoryStorage()
    store = HistoryStore(storage)

    store.insert(make_image("1"))
    store.insert(make_image("2"))

    stored = json.loads(storage.get(KEY))
    assert [entry["id"] for entry in stored] == ["2", "1"]


def test_duplicate_id_is_refused_without_mutation():
    storage = MemoryStorage()
    store = HistoryStore(storage)
    store.insert(make_image("1", "first"))
    store.insert(make_image("2", "second"))
    store.select("1")
    before = storage.get(KEY)

    with pytest.raises(DuplicateRecordError):
        store.insert(make_image("1", "impostor"))

    assert [record.prompt for record in store.records] == ["second", "first"]
    assert store.current_id == "1"
    assert storage.get(KEY) == before


def test_select_existing_and_unknown_ids():
    store = HistoryStore(MemoryStorage())
    store.insert(make_image("1"))
    store.insert(make_image("2"))

    assert store.select("1") is True
    assert store.current_id == "1"

    assert store.select("404") is False
    assert store.current_id == "1"


def test_clear_is_idempotent():
    storage = MemoryStorage()
    store = HistoryStore(storage)
    store.insert(make_image("1"))

    store.clear()
    assert len(store) == 0
    assert store.current is None
    assert storage.get(KEY) == "[]"

    store.clear()
    assert len(store) == 0
    assert store.current_id is None
    assert storage.get(KEY) == "[]"


def test_persist_then_load_reproduces_history():
    storage = MemoryStorage()
    original = HistoryStore(storage)
    original.insert(make_image("1", "A", seed=11))
    original.insert(make_image("2", "B"))

    restored = HistoryStore(storage)
    restored.load()

    assert restored.records == original.records
    assert restored.current_id is None
    assert restored.current is None


def test_round_trip_through_json_files(tmp_path):
    original = HistoryStore(JsonFileStorage(tmp_path))
    original.insert(make_image("1", "雪中的红狐"))
    original.insert(make_image("2", "B", seed=3))

    restored = HistoryStore(JsonFileStorage(tmp_path))
    restored.load()

    assert restored.records == original.records
    assert restored.current_id is None


def test_load_with_corrupted_payload_starts_empty():
    store = HistoryStore(MemoryStorage({KEY: "{not json"}))

    store.load()

    assert len(store) == 0
    assert store.current is None


@pytest.mark.parametrize(
    "payload",
    ['{"id": "1"}', "42", "null", "", pytest.param("[" * 100_000, id="deeply-nested")],
)
def test_load_with_non_array_payload_starts_empty(payload):
    store = HistoryStore(MemoryStorage({KEY: payload}))

    store.load()

    assert store.records == ()


def test_load_without_stored_history():
    store = HistoryStore(MemoryStorage())
    store.load()
    assert store.records == ()


def test_load_skips_malformed_and_duplicate_entries():
    good = make_image("1").to_dict()
    payload = json.dumps(
        [
            good,
            {"id": "2", "url": "u"},
            {**make_image("3").to_dict(), "timestamp": "yesterday"},
            {**make_image("4").to_dict(), "params": None},
            "not an object",
            {**good, "prompt": "duplicate"},
            make_image("5").to_dict(),
        ]
    )
    store = HistoryStore(MemoryStorage({KEY: payload}))

    store.load()

    assert [record.id for record in store.records] == ["1", "5"]
    assert store.records[0].prompt == "prompt"


def test_load_replaces_previous_state():
    storage = MemoryStorage()
    store = HistoryStore(storage)
    store.insert(make_image("1"))
    storage.set(KEY, encode_history([make_image("9")]))

    store.load()

    assert [record.id for record in store.records] == ["9"]
    assert store.current_id is None


def test_storage_failure_keeps_memory_state():
    store = HistoryStore(BrokenStorage())

    error = store.insert(make_image("1"))

    assert isinstance(error, PersistenceError)
    assert store.last_error is error
    assert [record.id for record in store.records] == ["1"]
    assert store.current_id == "1"

    assert isinstance(store.clear(), PersistenceError)
    assert len(store) == 0


def test_successful_write_resets_last_error():
    storage = MemoryStorage()
    store = HistoryStore(storage)
    store.last_error = PersistenceError("old")

    assert store.persist() is None
    assert store.last_error is None


def test_unreadable_storage_loads_empty():
    store = HistoryStore(BrokenStorage())
    store.load()
    assert len(store) == 0


def test_serialized_format():
    payload = json.loads(encode_history([make_image("1"), make_image("2", seed=5)]))

    assert payload[0] == {
        "id": "1",
        "url": "https://svc/img/1",
        "prompt": "prompt",
        "timestamp": 1_700_000_000_001,
        "params": {"width": 1024, "height": 768, "style": "anime", "quality": "ultra"},
    }
    assert payload[1]["params"]["seed"] == 5


def test_decode_accepts_integral_float_timestamps():
    entry = {**make_image("1").to_dict(), "timestamp": 1_700_000_000_001.0}
    records = decode_history(json.dumps([entry]))
    assert records[0].timestamp == 1_700_000_000_001
    assert isinstance(records[0].timestamp, int)


def test_records_are_immutable():
    image = make_image("1")
    with pytest.raises(AttributeError):
        image.prompt = "changed"  # type: ignore[misc]
    with pytest.raises(AttributeError):
        image.params.width = 1  # type: ignore[misc]
