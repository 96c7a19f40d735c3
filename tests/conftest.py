from __future__ import annotations

from pathlib import Path

import pytest

from wallcal import ics_subscription
from wallcal.config import Config, IcalFeed
from wallcal.ics_subscription import FeedFetchError


def ics_feed(*events: str, name: str | None = None) -> str:
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//wallcal tests//EN"]
    if name:
        lines.append(f"X-WR-CALNAME:{name}")
    for event in events:
        lines.extend(line.strip() for line in event.strip().splitlines())
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


DAILY_STANDUP = """
BEGIN:VEVENT
UID:standup@example.com
DTSTART:20240101T100000Z
DTEND:20240101T110000Z
RRULE:FREQ=DAILY;COUNT=3
SUMMARY:Standup
END:VEVENT
"""


class FakeGoogle:
    """Stands in for GoogleCalendarClient."""

    def __init__(self, connected=True, calendars=None, events=None, error=None):
        self.connected = connected
        self.calendars = calendars or []
        self.events = events or {}
        self.error = error

    def get_authorized_client(self):
        if self.error is not None:
            raise self.error
        return object() if self.connected else None

    def list_calendars(self, client):
        return list(self.calendars)

    def list_events(self, client, calendar_id, time_min, time_max):
        yield list(self.events.get(calendar_id, []))


class FeedServer:
    """Serves feed text keyed by URL; unknown URLs fail with HTTP 404."""

    def __init__(self):
        self.served: dict[str, str] = {}
        self.requested: list[str] = []

    def fetch(self, url, timeout=30):
        self.requested.append(url)
        if url not in self.served:
            raise FeedFetchError("HTTP 404")
        return self.served[url]


@pytest.fixture
def feeds(monkeypatch) -> FeedServer:
    server = FeedServer()
    monkeypatch.setattr(ics_subscription, "fetch_feed_text", server.fetch)
    return server


def make_config(tmp_path: Path, feed_urls: list[str] | None = None, **kwargs) -> Config:
    return Config(
        state_file=tmp_path / "state.json",
        cache_file=tmp_path / "events.json",
        google_token_file=tmp_path / "token.json",
        ical_feeds=[IcalFeed(url=url) for url in (feed_urls or [])],
        **kwargs,
    )
