"""
wallcal Sync Module

This module provides the calendar aggregation behind the wall display:
- Configuration parsing (config.py)
- Timezone conversions (timezone_utils.py)
- Recurrence expansion (recurrence.py)
- ICS feed subscriptions (ics_subscription.py)
- Google Calendar client (google_calendar.py)
- Sync orchestration (calendar_sync.py)
- Event cache file (event_storage.py)
- Unified event store with window extension (event_store.py)
- Background refresh loop (scheduler.py)
"""

from .config import Config
from .errors import CacheWriteError, CalendarSyncError, NoSourcesError, NotConnectedError
from .event_wrapper import CalendarEvent, SourceTarget
from .recurrence import RecurringEventDefinition, expand_recurring_event
from .ics_subscription import ICSSubscription, ICSSubscriptionManager
from .google_calendar import GoogleCalendarClient
from .calendar_sync import SyncSummary, sync_calendar_events
from .event_storage import EventCacheSnapshot, JsonEventCache
from .event_store import EventStore, ExtendResult
from .scheduler import RefreshScheduler, SchedulerState

__all__ = [
    'Config',
    'CalendarSyncError',
    'NotConnectedError',
    'NoSourcesError',
    'CacheWriteError',
    'CalendarEvent',
    'SourceTarget',
    'RecurringEventDefinition',
    'expand_recurring_event',
    'ICSSubscription',
    'ICSSubscriptionManager',
    'GoogleCalendarClient',
    'SyncSummary',
    'sync_calendar_events',
    'EventCacheSnapshot',
    'JsonEventCache',
    'EventStore',
    'ExtendResult',
    'RefreshScheduler',
    'SchedulerState',
]
