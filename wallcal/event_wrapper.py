"""
Unified event schema shared by every calendar source.

Both the Google Calendar normalizer and the ICS feed normalizer produce
CalendarEvent objects; nothing outside those two modules sees a raw
upstream event.
"""

from dataclasses import dataclass
from datetime import datetime, date, timedelta
from typing import Optional, Union

from .timezone_utils import ensure_utc, format_utc_iso, parse_iso_datetime


DEFAULT_COLOR = "#2b6f6b"
UNTITLED_EVENT = "Untitled event"

EVENT_STATUSES = ("confirmed", "tentative", "cancelled")


@dataclass
class SourceTarget:
    """
    One calendar or feed selected for a sync pass.

    Recomputed on every sync from configuration and the live listing.
    """
    id: str
    label: str
    color: str = DEFAULT_COLOR

    def __hash__(self):
        return hash(self.id)


@dataclass
class CalendarEvent:
    """
    A single normalized event instance.

    For timed events start/end are aware UTC datetimes; for all-day
    events they are dates. end is always strictly after start.
    """
    id: str
    calendar_id: str
    calendar_label: str
    calendar_color: str
    summary: str
    start: Union[datetime, date]
    end: Union[datetime, date]
    all_day: bool = False
    description: str = ""
    location: str = ""
    status: str = "confirmed"

    def to_dict(self) -> dict:
        """Serialize to the JSON shape consumed by the display."""
        if self.all_day:
            start_value = _as_date(self.start).isoformat()
            end_value = _as_date(self.end).isoformat()
        else:
            start_value = format_utc_iso(self.start)
            end_value = format_utc_iso(self.end)
        return {
            "id": self.id,
            "calendarId": self.calendar_id,
            "calendarLabel": self.calendar_label,
            "calendarColor": self.calendar_color,
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "status": self.status,
            "start": start_value,
            "end": end_value,
            "allDay": self.all_day,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CalendarEvent':
        all_day = bool(data.get("allDay", False))
        if all_day:
            start = date.fromisoformat(data["start"][:10])
            end = date.fromisoformat(data["end"][:10])
        else:
            start = _parse_instant(data["start"])
            end = _parse_instant(data["end"])
        return cls(
            id=data["id"],
            calendar_id=data.get("calendarId", ""),
            calendar_label=data.get("calendarLabel", ""),
            calendar_color=data.get("calendarColor", DEFAULT_COLOR),
            summary=data.get("summary") or UNTITLED_EVENT,
            description=data.get("description") or "",
            location=data.get("location") or "",
            status=data.get("status") or "confirmed",
            start=start,
            end=end,
            all_day=all_day,
        )

    def __repr__(self):
        return f"CalendarEvent(id={self.id!r}, summary={self.summary!r}, start={self.start})"


def event_overlaps_range(
    start: datetime,
    end: datetime,
    range_start: datetime,
    range_end: datetime
) -> bool:
    """
    Check whether [start, end) overlaps [range_start, range_end).

    An event ending exactly at range_start, or starting exactly at
    range_end, does not overlap.
    """
    return start < range_end and end > range_start


def repair_end(
    start: Union[datetime, date],
    end: Optional[Union[datetime, date]],
    all_day: bool
) -> Union[datetime, date]:
    """
    Return an end strictly after start.

    Missing or mis-ordered ends become start + 1 day for all-day events
    and start + 1 hour for timed events.
    """
    if all_day:
        start_day = _as_date(start)
        if end is None or _as_date(end) <= start_day:
            return start_day + timedelta(days=1)
        return _as_date(end)
    start_utc = ensure_utc(start)
    if end is None or ensure_utc(end) <= start_utc:
        return start_utc + timedelta(hours=1)
    return ensure_utc(end)


def normalize_status(value: Optional[str]) -> str:
    """Lower-case an upstream status; unknown or missing means confirmed."""
    status = str(value or "").strip().lower()
    return status if status in EVENT_STATUSES else "confirmed"


def _as_date(value: Union[datetime, date]) -> date:
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    return value


def _parse_instant(value: str) -> datetime:
    parsed = parse_iso_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid instant: {value!r}")
    return parsed
