from __future__ import annotations

import json

from models import Cafe
from services.favorites import FavoritesStore


def _cafe(id_: str) -> Cafe:
    return Cafe(id=id_, name=f"Cafe {id_}", lat=-7.26, lon=112.75, has_wifi=True)


def test_add_is_idempotent(tmp_path) -> None:
    store = FavoritesStore(tmp_path / "fav.json")
    store.add(_cafe("1"))
    store.add(_cafe("1"))
    entries = store.list()
    assert len(entries) == 1
    assert entries[0]["hasWifi"] is True
    assert isinstance(entries[0]["addedAt"], int)


def test_toggle_and_remove(tmp_path) -> None:
    store = FavoritesStore(tmp_path / "fav.json")
    assert store.toggle(_cafe("1")) is True
    assert store.toggle(_cafe("2")) is True
    assert store.toggle(_cafe("1")) is False
    assert [e["id"] for e in store.list()] == ["2"]
    store.remove("2")
    store.remove("missing")
    assert store.list() == []


def test_corrupt_file_reads_empty(tmp_path) -> None:
    path = tmp_path / "fav.json"
    path.write_text("{not json")
    assert FavoritesStore(path).list() == []
    path.write_text(json.dumps({"id": "1"}))
    assert FavoritesStore(path).list() == []
