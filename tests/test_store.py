import json
import logging
import threading
from dataclasses import dataclass
from typing import ClassVar

import pytest

from zopkit_watermark.config import (
    NO_WATERMARK,
    ImageWatermark,
    JsonFileBackend,
    MemoryBackend,
    TextWatermark,
    WatermarkConfigStore,
)
from zopkit_watermark.errors import ConfigNotFound, PersistenceFailure


class BrokenBackend:
    """Backend whose medium is unavailable."""

    def __init__(self, fail_load: bool = False):
        self.fail_load = fail_load
        self.save_attempts = 0

    def load(self):
        if self.fail_load:
            raise PersistenceFailure("medium unavailable")
        return []

    def save(self, configs):
        self.save_attempts += 1
        raise PersistenceFailure("disk full")


@dataclass(frozen=True, kw_only=True)
class StickerWatermark(TextWatermark):
    """A kind the store has no record format for."""

    kind: ClassVar[str] = "sticker"


@pytest.fixture
def store():
    return WatermarkConfigStore(MemoryBackend())


def test_empty_store_has_no_active_watermark(store):
    assert store.list() == ()
    assert store.active_id == NO_WATERMARK
    assert store.get_active() is None


def test_save_then_list_contains_exactly_one_matching_entry(store):
    config = TextWatermark(id="brand", content="Zopkit", opacity=0.8, scale=0.25)

    assert store.save(config) is True

    matches = [c for c in store.list() if c.id == "brand"]
    assert matches == [config]


def test_save_rejects_unknown_kind_without_changing_state(store):
    store.save(TextWatermark(id="brand", content="Zopkit"))

    with pytest.raises(TypeError):
        store.save(StickerWatermark(id="sticker", content="Zopkit"))

    assert [c.id for c in store.list()] == ["brand"]
    assert store.active_id == "brand"
    assert "sticker" not in store


def test_save_makes_config_active(store):
    first = TextWatermark(id="first", content="one")
    second = TextWatermark(id="second", content="two")

    store.save(first)
    store.save(second)

    assert store.get_active() == second


def test_save_replaces_in_place(store):
    store.save(TextWatermark(id="a", content="one"))
    store.save(TextWatermark(id="b", content="two"))
    updated = TextWatermark(id="a", content="uno", opacity=0.5)

    store.save(updated)

    assert [c.id for c in store.list()] == ["a", "b"]
    assert store.get("a") == updated
    assert len(store) == 2


def test_replacing_with_other_kind(store, red_overlay_png):
    store.save(TextWatermark(id="brand", content="Zopkit"))
    store.save(ImageWatermark(id="brand", content=red_overlay_png))

    assert len(store) == 1
    assert store.get("brand").kind == "image"


def test_deleting_active_config_resets_to_none(store):
    store.save(TextWatermark(id="brand", content="Zopkit"))

    store.delete("brand")

    assert store.active_id == NO_WATERMARK
    assert store.get_active() is None
    assert "brand" not in store


def test_deleting_other_config_keeps_active(store):
    store.save(TextWatermark(id="a", content="one"))
    store.save(TextWatermark(id="b", content="two"))

    store.delete("a")

    assert store.active_id == "b"
    assert [c.id for c in store.list()] == ["b"]


def test_delete_unknown_id_is_noop(store):
    store.save(TextWatermark(id="a", content="one"))

    assert store.delete("missing") is True
    assert len(store) == 1


def test_select(store):
    store.save(TextWatermark(id="a", content="one"))
    store.save(TextWatermark(id="b", content="two"))

    store.select("a")
    assert store.get_active().id == "a"

    store.select(NO_WATERMARK)
    assert store.get_active() is None


def test_select_unknown_id_raises(store):
    with pytest.raises(ConfigNotFound) as exc_info:
        store.select("ghost")

    assert exc_info.value.config_id == "ghost"
    assert store.active_id == NO_WATERMARK


def test_get_unknown_id_raises_key_error(store):
    with pytest.raises(KeyError):
        store.get("ghost")


def test_unresolved_active_id_falls_back_to_none(store, caplog):
    store._active_id = "ghost"

    with caplog.at_level(logging.WARNING):
        assert store.get_active() is None

    assert store.active_id == NO_WATERMARK
    assert "ghost" in caplog.text


def test_persistence_failure_keeps_memory_state(caplog):
    backend = BrokenBackend()
    store = WatermarkConfigStore(backend)
    config = TextWatermark(id="brand", content="Zopkit")

    with caplog.at_level(logging.WARNING):
        persisted = store.save(config)

    assert persisted is False
    assert backend.save_attempts == 1
    assert store.list() == (config,)
    assert store.get_active() == config
    assert "disk full" in caplog.text

    assert store.delete("brand") is False
    assert store.list() == ()


def test_load_failure_starts_empty():
    store = WatermarkConfigStore(BrokenBackend(fail_load=True))

    assert store.list() == ()


def test_memory_backend_loads_records():
    record = TextWatermark(id="brand", content="Zopkit").to_record()

    store = WatermarkConfigStore(MemoryBackend([record]))

    assert [c.id for c in store.list()] == ["brand"]
    assert store.get_active() is None


def test_json_backend_round_trip(tmp_path, red_overlay_png):
    path = tmp_path / "nested" / "watermarks.json"
    text = TextWatermark(id="brand", content="Zopkit", color="red", opacity=0.8, scale=0.25)
    image = ImageWatermark(id="logo", content=red_overlay_png, opacity=1.0, scale=0.1)

    store = WatermarkConfigStore(JsonFileBackend(path))
    store.save(text)
    store.save(image)

    reloaded = WatermarkConfigStore(JsonFileBackend(path))
    assert reloaded.list() == (text, image)
    # Active selection is session state
    assert reloaded.get_active() is None


def test_json_backend_layout(tmp_path):
    path = tmp_path / "watermarks.json"
    store = WatermarkConfigStore(JsonFileBackend(path, storage_key="my_marks"))

    store.save(TextWatermark(id="brand", content="Zopkit"))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert list(payload) == ["my_marks"]
    assert [record["id"] for record in payload["my_marks"]] == ["brand"]
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[1, 2, 3]",
        '{"zopkit_watermarks": {"id": "x"}}',
        '{"zopkit_watermarks": [{"id": "x", "kind": "hologram"}]}',
    ],
)
def test_malformed_file_is_discarded(tmp_path, caplog, content):
    path = tmp_path / "watermarks.json"
    path.write_text(content, encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        store = WatermarkConfigStore(JsonFileBackend(path))

    assert store.list() == ()
    assert "malformed" in caplog.text


def test_unwritable_path_reports_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = WatermarkConfigStore(JsonFileBackend(blocker / "watermarks.json"))

    assert store.save(TextWatermark(id="brand", content="Zopkit")) is False
    assert store.get("brand").content == "Zopkit"


def test_concurrent_readers_see_complete_snapshots(store):
    for i in range(20):
        store.save(TextWatermark(id=f"mark-{i}", content=str(i)))

    snapshots = []

    def read():
        for _ in range(50):
            snapshots.append(store.list())

    readers = [threading.Thread(target=read) for _ in range(4)]
    for reader in readers:
        reader.start()
    store.save(TextWatermark(id="mark-20", content="20"))
    for reader in readers:
        reader.join()

    assert {len(snapshot) for snapshot in snapshots} <= {20, 21}
