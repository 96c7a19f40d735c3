"""
Sync-level errors.

Only NotConnectedError (when a Google connection was demanded) and
NoSourcesError fail a sync; everything else degrades to a partial result
with a diagnostic entry.
"""


class CalendarSyncError(RuntimeError):
    """Base class for errors that fail a whole sync."""

    code = "SYNC_FAILED"


class NotConnectedError(CalendarSyncError):
    """A Google account connection was required but none exists."""

    code = "NOT_CONNECTED"

    def __init__(self, message: str = "Google account not connected"):
        super().__init__(message)


class NoSourcesError(CalendarSyncError):
    """Neither a Google account is connected nor any feed is enabled."""

    code = "NO_SOURCES"

    def __init__(self, message: str = "No calendar sources configured"):
        super().__init__(message)


class CacheWriteError(CalendarSyncError):
    """The event cache could not be written; the previous snapshot stays in place."""

    code = "CACHE_WRITE_FAILED"
