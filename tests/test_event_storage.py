from __future__ import annotations

from datetime import datetime

import pytest
import pytz

from wallcal import event_storage
from wallcal.errors import CacheWriteError
from wallcal.event_storage import EventCacheSnapshot, JsonEventCache, SyncRange
from wallcal.event_wrapper import CalendarEvent


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.UTC)


def _snapshot(summary: str = "Dentist") -> EventCacheSnapshot:
    return EventCacheSnapshot(
        updated_at=_utc(2024, 1, 1, 8),
        range=SyncRange(time_min=_utc(2024, 1, 1), time_max=_utc(2024, 1, 31)),
        events=[
            CalendarEvent(
                id="g1",
                calendar_id="primary",
                calendar_label="Me",
                calendar_color="#123456",
                summary=summary,
                start=_utc(2024, 1, 2, 10),
                end=_utc(2024, 1, 2, 11),
            )
        ],
    )


def test_missing_file_is_empty_snapshot(tmp_path):
    snapshot = JsonEventCache(tmp_path / "events.json").load()
    assert snapshot.is_empty
    assert snapshot.to_dict() == {"updatedAt": None, "range": None, "events": []}


def test_corrupt_file_is_empty_snapshot(tmp_path):
    path = tmp_path / "events.json"
    path.write_text("{not json", encoding="utf-8")
    assert JsonEventCache(path).load().is_empty


def test_save_replaces_snapshot(tmp_path):
    cache = JsonEventCache(tmp_path / "cache" / "events.json")
    cache.save(_snapshot("First"))
    cache.save(_snapshot("Second"))

    loaded = cache.load()
    assert [e.summary for e in loaded.events] == ["Second"]
    assert loaded.range.time_max == _utc(2024, 1, 31)
    assert loaded.to_dict()["events"][0]["start"] == "2024-01-02T10:00:00.000Z"
    assert [p.name for p in (tmp_path / "cache").iterdir()] == ["events.json"]


def test_failed_write_keeps_previous_snapshot(tmp_path, monkeypatch):
    path = tmp_path / "events.json"
    cache = JsonEventCache(path)
    cache.save(_snapshot("Kept"))
    before = path.read_text(encoding="utf-8")

    def _boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(event_storage.os, "replace", _boom)

    with pytest.raises(CacheWriteError):
        cache.save(_snapshot("Lost"))

    assert path.read_text(encoding="utf-8") == before
    assert [p.name for p in tmp_path.iterdir()] == ["events.json"]
