"""
Event store for wallcal.

Facade over configuration, the Google client, the snapshot cache and the
refresh scheduler. Reads come from the cached snapshot only; syncs and
window extensions run through the scheduler's gate so they never overlap.
"""

import math
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from .calendar_sync import SyncSummary, sync_calendar_events
from .config import Config, MAX_SYNC_DAYS
from .errors import NoSourcesError, NotConnectedError
from .event_storage import EventCacheBackend, EventCacheSnapshot, create_cache_backend
from .google_calendar import GoogleCalendarClient
from .scheduler import RefreshScheduler
from .timezone_utils import ensure_utc, format_utc_iso, parse_iso_datetime, utc_now


def _debug_print(msg: str) -> None:
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] STORE: {msg}", file=sys.stderr)


@dataclass
class ExtendResult:
    """Outcome of an extend request."""
    updated: bool
    sync_days: int
    summary: Optional[SyncSummary] = None
    error: Optional[str] = None

    @property
    def conflict(self) -> bool:
        """True when the window was widened but no source could be synced."""
        return self.error is not None

    def to_dict(self) -> dict:
        result = {"updated": self.updated, "syncDays": self.sync_days}
        if self.summary is not None:
            result["summary"] = self.summary.to_dict()
        if self.error is not None:
            result["error"] = self.error
        return result


class EventStore:
    """
    Central access point for cached events.

    Args:
        config: Loaded configuration
        cache: Snapshot storage; defaults to the configured JSON file
        google: Google client; defaults to one using the configured token
        disabled: Disable the background loop (see RefreshScheduler)
        now_func: Clock used for sync windows
    """

    def __init__(
        self,
        config: Config,
        cache: Optional[EventCacheBackend] = None,
        google: Optional[GoogleCalendarClient] = None,
        disabled: Optional[bool] = None,
        now_func: Callable[[], datetime] = utc_now
    ):
        self.config = config
        self.cache = cache if cache is not None else create_cache_backend(config.cache_file)
        self.google = google if google is not None else GoogleCalendarClient(config.google_token_file)
        self._now = now_func
        self.scheduler = RefreshScheduler(
            self._sync_locked,
            self._refresh_interval,
            disabled=disabled,
        )

    # ==================== Reads ====================

    def load(self) -> EventCacheSnapshot:
        return self.cache.load()

    def get_events(self) -> dict:
        """Return the cached snapshot as {updatedAt, range, events}."""
        return self.load().to_dict()

    # ==================== Sync ====================

    def sync(self, require_google: bool = False) -> SyncSummary:
        """
        Run a sync now, waiting for an in-flight one to finish first.

        Raises:
            NotConnectedError, NoSourcesError, CacheWriteError
        """
        return self.scheduler.run_exclusive(self._sync_locked, require_google=require_google)

    def start(self) -> bool:
        return self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def _sync_locked(self, require_google: bool = False) -> SyncSummary:
        # Reloaded under the gate so a concurrent extend never sees a stale window
        self.config = self.config.reload()
        return sync_calendar_events(
            self.config,
            self.google,
            self.cache,
            require_google=require_google,
            now=self._now(),
        )

    def _refresh_interval(self) -> int:
        return self.config.refresh_minutes

    # ==================== Extend ====================

    def extend(self, time_max: Union[str, datetime]) -> ExtendResult:
        """
        Make sure the cache covers events up to time_max.

        The sync window only grows, is capped at MAX_SYNC_DAYS and is
        persisted before the sync runs. Repeating a request that is
        already covered does nothing.

        Args:
            time_max: ISO-8601 string or datetime

        Returns:
            ExtendResult; conflict is set when the window was widened but
            the sync found no usable source.

        Raises:
            ValueError: If time_max is not a valid timestamp.
            CacheWriteError: If the new snapshot could not be written.
        """
        if isinstance(time_max, datetime):
            target = ensure_utc(time_max)
        else:
            target = parse_iso_datetime(time_max) if isinstance(time_max, str) else None
        if target is None:
            raise ValueError("timeMax must be a valid ISO date")

        return self.scheduler.run_exclusive(self._extend_locked, target)

    def _extend_locked(self, target: datetime) -> ExtendResult:
        current_days = self.config.sync_days
        now = self._now()

        cached_range = self.load().range
        if cached_range is not None and target <= cached_range.time_max:
            return ExtendResult(updated=False, sync_days=current_days)
        if target <= now:
            return ExtendResult(updated=False, sync_days=current_days)

        required_days = math.ceil((target - now) / timedelta(days=1))
        next_days = min(max(current_days, required_days), MAX_SYNC_DAYS)
        if next_days == current_days:
            return ExtendResult(updated=False, sync_days=current_days)

        self.config.save_sync_days(next_days)
        _debug_print(f"Sync window extended to {next_days} days (target {format_utc_iso(target)})")

        try:
            summary = self._sync_locked()
        except (NotConnectedError, NoSourcesError) as e:
            _debug_print(f"Extend sync skipped: {e}")
            return ExtendResult(updated=True, sync_days=next_days, error=str(e))

        return ExtendResult(updated=True, sync_days=next_days, summary=summary)
