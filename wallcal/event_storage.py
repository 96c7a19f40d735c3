"""
Persistent event cache for wallcal.

The cache holds exactly one snapshot: the merged events of the last
successful sync plus the time range they cover. A snapshot is only ever
replaced as a whole; readers never observe a partially written file.
"""

import json
import os
import sys
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from .errors import CacheWriteError
from .event_wrapper import CalendarEvent
from .timezone_utils import format_utc_iso, parse_iso_datetime


def _debug_print(msg: str) -> None:
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] STORAGE: {msg}", file=sys.stderr)


@dataclass
class SyncRange:
    """The window [time_min, time_max) a snapshot is authoritative for."""
    time_min: datetime
    time_max: datetime

    def to_dict(self) -> dict:
        return {
            "timeMin": format_utc_iso(self.time_min),
            "timeMax": format_utc_iso(self.time_max),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['SyncRange']:
        if not isinstance(data, dict):
            return None
        time_min = parse_iso_datetime(data.get("timeMin"))
        time_max = parse_iso_datetime(data.get("timeMax"))
        if time_min is None or time_max is None:
            return None
        return cls(time_min=time_min, time_max=time_max)


@dataclass
class EventCacheSnapshot:
    """Merged result of one sync."""
    updated_at: Optional[datetime] = None
    range: Optional[SyncRange] = None
    events: list[CalendarEvent] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.updated_at is None and self.range is None and not self.events

    def to_dict(self) -> dict:
        return {
            "updatedAt": format_utc_iso(self.updated_at) if self.updated_at else None,
            "range": self.range.to_dict() if self.range else None,
            "events": [event.to_dict() for event in self.events],
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'EventCacheSnapshot':
        events = []
        for event_data in data.get("events") or []:
            try:
                events.append(CalendarEvent.from_dict(event_data))
            except (KeyError, TypeError, ValueError) as e:
                _debug_print(f"Error loading cached event: {e}")
        return cls(
            updated_at=parse_iso_datetime(data.get("updatedAt")),
            range=SyncRange.from_dict(data.get("range")),
            events=events,
        )


class EventCacheBackend(ABC):
    """
    Abstract base class for snapshot storage.

    Implementations must make save() atomic.
    """

    @abstractmethod
    def load(self) -> EventCacheSnapshot:
        """Load the current snapshot (empty if nothing was saved yet)."""
        pass

    @abstractmethod
    def save(self, snapshot: EventCacheSnapshot) -> None:
        """Replace the current snapshot."""
        pass


class JsonEventCache(EventCacheBackend):
    """
    JSON file snapshot storage.

    save() writes a temporary file next to the cache file and renames it
    over the old one.
    """

    def __init__(self, cache_file: Path):
        self.cache_file = Path(cache_file)

    def load(self) -> EventCacheSnapshot:
        if not self.cache_file.exists():
            return EventCacheSnapshot()

        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            _debug_print(f"Error loading event cache {self.cache_file}: {e}")
            return EventCacheSnapshot()

        if not isinstance(data, dict):
            _debug_print(f"Ignoring malformed event cache {self.cache_file}")
            return EventCacheSnapshot()
        return EventCacheSnapshot.from_dict(data)

    def save(self, snapshot: EventCacheSnapshot) -> None:
        """
        Atomically replace the cache file.

        Raises:
            CacheWriteError: If the snapshot could not be written. The
                previous file is left untouched.
        """
        tmp_path = None
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.cache_file.parent,
                prefix=f".{self.cache_file.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(snapshot.to_dict(), f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.cache_file)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            raise CacheWriteError(f"Could not write event cache {self.cache_file}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)

        _debug_print(f"Saved {len(snapshot.events)} events to {self.cache_file}")


def get_default_cache_file() -> Path:
    """Get the default cache file respecting XDG."""
    xdg_data = os.environ.get('XDG_DATA_HOME', os.path.expanduser('~/.local/share'))
    return Path(xdg_data) / 'wallcal' / 'events.json'


def create_cache_backend(cache_file: Optional[Path] = None) -> EventCacheBackend:
    """Factory function to create a cache backend."""
    if cache_file is None:
        cache_file = get_default_cache_file()
    return JsonEventCache(cache_file)
