"""
tests/test_snapshot_store.py
"""
from __future__ import annotations

import datetime as _dt
import json
import logging

from draftly.autosave import LocalSnapshotStore


def _clock():
    return _dt.datetime(2024, 5, 1, 12, 30, tzinfo=_dt.timezone.utc)


def test_save_load_clear(tmp_path):
    path = tmp_path / "nested" / "blog-draft.json"
    store = LocalSnapshotStore(path, clock=_clock)
    assert store.load() is None

    assert store.save({"title": "标题", "content": "正文", "category": "其他"}) is True
    data = store.load()
    assert data["title"] == "标题"
    assert data["isDraft"] is True
    assert data["lastModified"] == "2024-05-01T12:30:00+00:00"
    # stored as readable UTF-8, not \u escapes
    assert "标题" in path.read_text(encoding="utf-8")

    store.clear()
    assert store.load() is None
    store.clear()                       # clearing twice is fine


def test_save_overwrites_and_leaves_no_temp_files(tmp_path):
    store = LocalSnapshotStore(tmp_path / "d.json")
    store.save({"title": "one"})
    store.save({"title": "two"})
    assert store.load()["title"] == "two"
    assert [p.name for p in tmp_path.iterdir()] == ["d.json"]


def test_corrupt_file_reads_as_missing(tmp_path, caplog):
    path = tmp_path / "d.json"
    path.write_text("{not json", encoding="utf-8")
    store = LocalSnapshotStore(path)
    with caplog.at_level(logging.WARNING, logger="draftly.autosave"):
        assert store.load() is None
    assert "corrupt" in caplog.text

    path.write_text(json.dumps(["a", "list"]), encoding="utf-8")
    assert store.load() is None


def test_write_failure_is_logged_not_raised(tmp_path, caplog):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    # parent "directory" is a regular file, so mkdir fails
    store = LocalSnapshotStore(blocker / "d.json")
    with caplog.at_level(logging.WARNING, logger="draftly.autosave"):
        assert store.save({"title": "lost"}) is False
    assert "could not save" in caplog.text
    assert store.load() is None


def test_unserialisable_snapshot(tmp_path):
    store = LocalSnapshotStore(tmp_path / "d.json")
    assert store.save({"title": object()}) is False
    assert store.load() is None
    assert list(tmp_path.iterdir()) == []
