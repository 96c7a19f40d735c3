"""
ICS feed subscriptions.

Fetches public VCALENDAR feeds, parses them with icalendar into
RecurringEventDefinition objects, expands recurrences and normalizes
every occurrence into a CalendarEvent.

Each feed is isolated: a fetch or parse failure is recorded against the
feed's URL and never affects sibling feeds.
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, date, timedelta
from typing import Optional, Union
from urllib.parse import urlsplit, unquote

import requests
from icalendar import Calendar as ICalCalendar

from .event_wrapper import (
    CalendarEvent, SourceTarget, DEFAULT_COLOR, UNTITLED_EVENT,
    event_overlaps_range, normalize_status,
)
from .recurrence import (
    OverrideEvent, RecurringEventDefinition, RecurrenceError,
    expand_recurring_event, occurrence_keys,
)
from .timezone_utils import ensure_utc, format_utc_iso, get_timezone, to_absolute


def _debug_print(msg: str) -> None:
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] ICS: {msg}", file=sys.stderr)


DEFAULT_TIMEOUT = 30
DEFAULT_WORKERS = 4


class FeedFetchError(RuntimeError):
    """Raised when a feed cannot be downloaded."""


class FeedParseError(ValueError):
    """Raised when feed text is not a usable VCALENDAR."""


@dataclass
class FeedData:
    """Parsed content of one feed."""
    name: Optional[str]
    definitions: list[RecurringEventDefinition] = field(default_factory=list)


@dataclass
class IcalSyncResult:
    """Outcome of syncing all enabled feeds."""
    events: list[CalendarEvent] = field(default_factory=list)
    calendars: int = 0
    errors: list[dict] = field(default_factory=list)


# ==================== Fetching ====================

def fetch_feed_text(url: str, timeout: float = DEFAULT_TIMEOUT) -> str:
    """
    Download a feed.

    Args:
        url: Feed URL (webcal:// is fetched over https)
        timeout: Request timeout in seconds

    Returns:
        The VCALENDAR text.

    Raises:
        FeedFetchError: On network errors or a non-2xx status.
    """
    if url.lower().startswith("webcal://"):
        url = "https://" + url[len("webcal://"):]
    try:
        response = requests.get(
            url,
            timeout=timeout,
            headers={
                'User-Agent': 'wallcal/1.0',
                'Accept': 'text/calendar'
            }
        )
    except requests.RequestException as e:
        raise FeedFetchError(f"Network error: {e}") from e

    if not response.ok:
        raise FeedFetchError(f"HTTP {response.status_code}")

    # Feeds frequently omit the charset
    response.encoding = 'utf-8'
    return response.text


def normalize_ical_feeds(feeds: Optional[list]) -> list[dict]:
    """
    Clean up configured feeds.

    Trims url and label, treats a missing enabled flag as true, and keeps
    only enabled feeds with a URL.
    """
    normalized = []
    for feed in feeds or []:
        if isinstance(feed, dict):
            url, label, enabled = feed.get("url"), feed.get("label"), feed.get("enabled")
        else:
            url = getattr(feed, "url", None)
            label = getattr(feed, "label", None)
            enabled = getattr(feed, "enabled", None)
        url = url.strip() if isinstance(url, str) else ""
        label = label.strip() if isinstance(label, str) else ""
        if enabled is None:
            enabled = True
        if enabled and url:
            normalized.append({"url": url, "label": label, "enabled": True})
    return normalized


def derive_label_from_url(url: str) -> str:
    """Use the last path segment (without .ics), else the host name."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    segments = [s for s in parts.path.split("/") if s]
    if segments:
        name = unquote(segments[-1])
        if name.lower().endswith(".ics"):
            name = name[:-4]
        return name or parts.hostname or url
    return parts.hostname or url


# ==================== Parsing ====================

def parse_feed(text: Union[str, bytes]) -> FeedData:
    """
    Parse VCALENDAR text into recurring event definitions.

    RECURRENCE-ID components are folded into their master's overrides;
    overrides whose master is missing become standalone events.

    Raises:
        FeedParseError: If the text is not a VCALENDAR.
    """
    try:
        calendar = ICalCalendar.from_ical(text)
    except Exception as e:
        raise FeedParseError(f"Invalid calendar data: {e}") from e
    if getattr(calendar, "name", None) != "VCALENDAR":
        raise FeedParseError("Feed does not contain a VCALENDAR")

    name = _text(calendar.get('X-WR-CALNAME')) or None
    default_zone = _text(calendar.get('X-WR-TIMEZONE')) or None

    definitions: list[RecurringEventDefinition] = []
    masters: dict[str, RecurringEventDefinition] = {}
    override_components = []

    for component in calendar.walk('VEVENT'):
        if component.get('RECURRENCE-ID') is not None:
            override_components.append(component)
            continue
        definition = _build_definition(component, default_zone)
        if definition is None:
            continue
        definitions.append(definition)
        masters.setdefault(definition.uid, definition)

    for component in override_components:
        uid = _text(component.get('UID'))
        master = masters.get(uid)
        if master is None:
            orphan = _build_definition(component, default_zone)
            if orphan is not None:
                definitions.append(orphan)
            continue
        recurrence_id = _resolve_value(component.get('RECURRENCE-ID'), master.zone_name or default_zone)
        override = _build_override(component, default_zone)
        if recurrence_id is None or override is None:
            continue
        master.overrides[_occurrence_key(recurrence_id)] = override

    return FeedData(name=name, definitions=definitions)


def _build_definition(component, default_zone: Optional[str]) -> Optional[RecurringEventDefinition]:
    prop = component.get('DTSTART')
    zone_name = _zone_name(prop, default_zone)
    start = _resolve_value(prop, zone_name)
    if start is None:
        return None
    all_day = not isinstance(start, datetime)

    end = _resolve_value(component.get('DTEND'), zone_name)
    if end is None:
        duration = getattr(component.get('DURATION'), 'dt', None)
        if isinstance(duration, timedelta):
            end = start + duration

    uid = _text(component.get('UID')) or format_utc_iso(start)

    rule = None
    rrule = component.get('RRULE')
    if isinstance(rrule, list):
        rrule = rrule[0] if rrule else None
    if rrule is not None:
        rule = rrule.to_ical().decode('utf-8')

    return RecurringEventDefinition(
        uid=uid,
        start=start,
        end=end,
        all_day=all_day,
        summary=_text(component.get('SUMMARY')),
        description=_text(component.get('DESCRIPTION')),
        location=_text(component.get('LOCATION')),
        status=normalize_status(_text(component.get('STATUS'))),
        rule=rule,
        zone_name=zone_name if (rule and not all_day) else None,
        exceptions=_exception_keys(component, zone_name),
    )


def _build_override(component, default_zone: Optional[str]) -> Optional[OverrideEvent]:
    prop = component.get('DTSTART')
    zone_name = _zone_name(prop, default_zone)
    start = _resolve_value(prop, zone_name)
    if start is None:
        return None
    end = _resolve_value(component.get('DTEND'), zone_name)
    if end is None:
        duration = getattr(component.get('DURATION'), 'dt', None)
        if isinstance(duration, timedelta):
            end = start + duration
    return OverrideEvent(
        start=start,
        end=end,
        summary=_optional_text(component.get('SUMMARY')),
        description=_optional_text(component.get('DESCRIPTION')),
        location=_optional_text(component.get('LOCATION')),
        status=normalize_status(_text(component.get('STATUS'))) if component.get('STATUS') else None,
    )


def _exception_keys(component, zone_name: Optional[str]) -> set[str]:
    """Collect EXDATE values as occurrence keys."""
    keys: set[str] = set()
    exdates = component.get('EXDATE')
    if exdates is None:
        return keys
    if not isinstance(exdates, list):
        exdates = [exdates]
    for exdate in exdates:
        tzid = _param(exdate, 'TZID')
        for entry in getattr(exdate, 'dts', []):
            value = _resolve_dt(getattr(entry, 'dt', None), tzid or zone_name)
            if value is not None:
                keys.add(_occurrence_key(value))
    return keys


def _occurrence_key(value: Union[datetime, date]) -> str:
    if isinstance(value, datetime):
        return occurrence_keys(value)[0]
    return value.isoformat()


def _zone_name(prop, default_zone: Optional[str]) -> Optional[str]:
    """Zone a DTSTART is anchored to: its TZID, or the calendar default for floating times."""
    tzid = _param(prop, 'TZID')
    if tzid and get_timezone(tzid) is not None:
        return tzid
    value = getattr(prop, 'dt', None)
    if isinstance(value, datetime) and value.tzinfo is not None:
        zone = getattr(value.tzinfo, 'zone', None) or getattr(value.tzinfo, 'key', None)
        if zone and zone != 'UTC' and get_timezone(zone) is not None:
            return zone
        return None
    if isinstance(value, datetime) and default_zone and get_timezone(default_zone) is not None:
        return default_zone
    return tzid


def _resolve_value(prop, zone_name: Optional[str]) -> Optional[Union[datetime, date]]:
    if prop is None:
        return None
    return _resolve_dt(getattr(prop, 'dt', None), _param(prop, 'TZID') or zone_name)


def _resolve_dt(value, zone_name: Optional[str]) -> Optional[Union[datetime, date]]:
    """Dates stay dates; datetimes become aware UTC (floating ones via zone_name)."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return to_absolute(value, zone_name)
        return ensure_utc(value)
    if isinstance(value, date):
        return value
    return None


def _param(prop, name: str) -> Optional[str]:
    params = getattr(prop, 'params', None)
    if not params:
        return None
    value = params.get(name)
    return str(value) if value else None


def _text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, list):
        value = value[0] if value else ''
    return str(value).strip()


def _optional_text(value) -> Optional[str]:
    return _text(value) if value is not None else None


# ==================== Normalization ====================

def extract_events(
    feed: FeedData,
    target: SourceTarget,
    range_start: datetime,
    range_end: datetime,
    errors: Optional[list[dict]] = None
) -> list[CalendarEvent]:
    """
    Expand and normalize every definition of a feed.

    Occurrences are kept when [start, end) overlaps [range_start, range_end).
    A definition whose recurrence rule fails is skipped and, when an errors
    list is given, recorded there.
    """
    results = []
    for definition in feed.definitions:
        try:
            occurrences = expand_recurring_event(definition, range_start, range_end)
        except RecurrenceError as e:
            _debug_print(f"{target.id}: skipping {definition.uid}: {e}")
            if errors is not None:
                errors.append({"feed": target.id, "message": str(e)})
            continue

        for occurrence in occurrences:
            if occurrence.status == "cancelled":
                continue
            if not event_overlaps_range(
                ensure_utc(occurrence.start), ensure_utc(occurrence.end),
                ensure_utc(range_start), ensure_utc(range_end)
            ):
                continue
            suffix = f":{format_utc_iso(occurrence.recurrence_id)}" if occurrence.recurrence_id else ""
            results.append(CalendarEvent(
                id=f"ical:{target.id}:{definition.uid}{suffix}",
                calendar_id=target.id,
                calendar_label=target.label,
                calendar_color=target.color,
                summary=occurrence.summary or UNTITLED_EVENT,
                description=occurrence.description or "",
                location=occurrence.location or "",
                status=occurrence.status,
                start=occurrence.start,
                end=occurrence.end,
                all_day=occurrence.all_day,
            ))
    return results



# ==================== Subscriptions ====================

class ICSSubscription:
    """
    Handler for one configured ICS feed.

    Fetches the feed, remembers the last error, and turns the feed into
    CalendarEvent objects for a window.
    """

    def __init__(self, url: str, label: str = "", color: str = DEFAULT_COLOR):
        self.url = url
        self.label = label
        self.color = color
        self._raw_data: Optional[str] = None
        self._error: Optional[str] = None

    @property
    def id(self) -> str:
        """Feed URL doubles as the calendar id."""
        return self.url

    @property
    def error(self) -> Optional[str]:
        return self._error

    def fetch(self, timeout: float = DEFAULT_TIMEOUT) -> bool:
        """
        Fetch the feed text.

        Returns:
            True if successful, False otherwise (see error).
        """
        try:
            self._raw_data = fetch_feed_text(self.url, timeout=timeout)
            self._error = None
            return True
        except FeedFetchError as e:
            self._raw_data = None
            self._error = str(e)
            return False

    def get_events(
        self,
        range_start: datetime,
        range_end: datetime,
        timeout: float = DEFAULT_TIMEOUT
    ) -> tuple[list[CalendarEvent], list[dict]]:
        """
        Fetch, parse and normalize this feed.

        Returns:
            (events, errors). A failed fetch or parse yields no events and a
            single error entry.
        """
        if not self.fetch(timeout=timeout):
            return [], [{"feed": self.url, "message": self._error}]
        try:
            feed = parse_feed(self._raw_data)
        except FeedParseError as e:
            self._error = str(e)
            return [], [{"feed": self.url, "message": self._error}]

        target = SourceTarget(
            id=self.url,
            label=self.label or feed.name or derive_label_from_url(self.url),
            color=self.color,
        )
        errors: list[dict] = []
        events = extract_events(feed, target, range_start, range_end, errors)
        return events, errors


class ICSSubscriptionManager:
    """Runs all enabled feeds for one sync pass."""

    def __init__(
        self,
        feeds: Optional[list] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = DEFAULT_WORKERS
    ):
        self._subscriptions = [
            ICSSubscription(url=feed["url"], label=feed["label"])
            for feed in normalize_ical_feeds(feeds)
        ]
        self._timeout = timeout
        self._max_workers = max(1, max_workers)

    def sync_all(self, range_start: datetime, range_end: datetime) -> IcalSyncResult:
        """
        Fetch every feed concurrently and merge their events.

        Results are merged in configuration order. An unexpected exception
        from one feed is recorded against that feed only.
        """
        result = IcalSyncResult(calendars=len(self._subscriptions))
        if not self._subscriptions:
            return result

        workers = min(self._max_workers, len(self._subscriptions))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="feed") as executor:
            futures = [
                (sub, executor.submit(sub.get_events, range_start, range_end, self._timeout))
                for sub in self._subscriptions
            ]
            for sub, future in futures:
                try:
                    events, errors = future.result()
                except Exception as e:
                    _debug_print(f"{sub.url}: failed: {type(e).__name__}: {e}")
                    result.errors.append({"feed": sub.url, "message": str(e)})
                    continue
                for error in errors:
                    _debug_print(f"{sub.url}: {error['message']}")
                result.events.extend(events)
                result.errors.extend(errors)

        _debug_print(
            f"{len(self._subscriptions)} feeds: {len(result.events)} events, "
            f"{len(result.errors)} errors"
        )
        return result


def sync_ical_events(
    time_min: datetime,
    time_max: datetime,
    feeds: Optional[list],
    timeout: float = DEFAULT_TIMEOUT,
    max_workers: int = DEFAULT_WORKERS
) -> IcalSyncResult:
    """Sync all enabled feeds for [time_min, time_max)."""
    manager = ICSSubscriptionManager(feeds, timeout=timeout, max_workers=max_workers)
    return manager.sync_all(time_min, time_max)
