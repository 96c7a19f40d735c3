"""
Sync orchestration.

One sync pass fetches the Google calendars and all enabled ICS feeds for
[now, now + sync_days), merges the results and replaces the cached
snapshot. Per-source failures end up in the summary; only a missing
Google connection (when demanded) and a complete lack of sources fail
the pass.
"""

import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from .config import Config
from .errors import NoSourcesError, NotConnectedError
from .event_storage import EventCacheBackend, EventCacheSnapshot, SyncRange
from .google_calendar import GoogleCalendarClient, GoogleSyncResult, sync_google_events
from .ics_subscription import IcalSyncResult, normalize_ical_feeds, sync_ical_events
from .timezone_utils import format_utc_iso, utc_now


def _debug_print(msg: str) -> None:
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] SYNC: {msg}", file=sys.stderr)


@dataclass
class SyncSummary:
    """What one sync pass produced, per source."""
    updated_at: datetime
    events: int
    calendars: int
    google: dict = field(default_factory=dict)
    ical: dict = field(default_factory=dict)

    @property
    def errors(self) -> list[dict]:
        return list(self.ical.get("errors", []))

    def to_dict(self) -> dict:
        return {
            "updatedAt": format_utc_iso(self.updated_at),
            "events": self.events,
            "calendars": self.calendars,
            "sources": {
                "google": dict(self.google),
                "ical": dict(self.ical),
            },
        }


def sync_calendar_events(
    config: Config,
    google: Optional[GoogleCalendarClient],
    cache: EventCacheBackend,
    require_google: bool = False,
    now: Optional[datetime] = None
) -> SyncSummary:
    """
    Run one full sync and replace the cached snapshot.

    Args:
        config: Current configuration
        google: Google client (None when no account can ever be connected)
        cache: Snapshot storage
        require_google: Fail with NotConnectedError instead of skipping
            Google when no account is connected (manual "sync now")
        now: Override the current time

    Returns:
        SyncSummary with totals and per-source details.

    Raises:
        NotConnectedError: Google is required but not connected.
        NoSourcesError: Google is not connected and no feed is enabled.
        CacheWriteError: The snapshot could not be persisted.
    """
    now = now or utc_now()
    time_min = now
    time_max = now + timedelta(days=config.sync_days)
    feeds = normalize_ical_feeds(config.ical_feeds)
    _debug_print(f"Syncing {format_utc_iso(time_min)} to {format_utc_iso(time_max)}")

    google_result = GoogleSyncResult(connected=False)
    google_error: Optional[str] = None
    try:
        google_result = sync_google_events(
            google, config.calendars, time_min, time_max, require_google=require_google
        )
    except NotConnectedError:
        raise
    except Exception as e:
        if require_google:
            raise
        google_error = str(e)
        _debug_print(f"Google sync failed: {type(e).__name__}: {e}")

    # Checked before any feed is fetched; a connected account with no
    # selected calendars still counts as a source.
    if not google_result.connected and not feeds:
        raise NoSourcesError()

    ical_result = sync_ical_events(
        time_min,
        time_max,
        feeds,
        timeout=config.feed_timeout,
        max_workers=config.feed_workers,
    )

    events = google_result.events + ical_result.events
    snapshot = EventCacheSnapshot(
        updated_at=utc_now(),
        range=SyncRange(time_min=time_min, time_max=time_max),
        events=events,
    )
    cache.save(snapshot)

    summary = _build_summary(snapshot, google_result, google_error, ical_result)
    _debug_print(
        f"Sync complete: {summary.events} events from {summary.calendars} calendars "
        f"({len(ical_result.errors)} feed errors)"
    )
    return summary


def _build_summary(
    snapshot: EventCacheSnapshot,
    google_result: GoogleSyncResult,
    google_error: Optional[str],
    ical_result: IcalSyncResult
) -> SyncSummary:
    return SyncSummary(
        updated_at=snapshot.updated_at,
        events=len(snapshot.events),
        calendars=google_result.calendars + ical_result.calendars,
        google={
            "connected": google_result.connected,
            "calendars": google_result.calendars,
            "events": len(google_result.events),
            "error": google_error,
        },
        ical={
            "calendars": ical_result.calendars,
            "events": len(ical_result.events),
            "errors": list(ical_result.errors),
        },
    )
