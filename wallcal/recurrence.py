"""
Recurrence expansion for feed events.

Turns one recurring event definition (base start/end, RRULE text,
excluded occurrence keys, per-occurrence overrides and an optional zone
name) into the concrete occurrences that fall inside a window.

Rules are evaluated with dateutil.rrule in wall-clock space: when the
definition carries a zone the window is converted into that zone's
floating frame first, and every candidate is converted back to UTC.

Occurrence keys are either a UTC instant in the form
"2024-01-02T10:00:00.000Z" or a date "2024-01-02". Upstream feeds are
inconsistent about which one they record for EXDATE and RECURRENCE-ID,
so both are looked up for every candidate.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, date, time, timedelta
from typing import Optional, Union

import pytz
from dateutil.rrule import rrulestr

from .event_wrapper import event_overlaps_range, repair_end
from .timezone_utils import ensure_utc, format_utc_iso, to_absolute, to_floating


DateOrDateTime = Union[datetime, date]

_UTC_UNTIL_RE = re.compile(r"UNTIL=(\d{8}T\d{6})Z", re.IGNORECASE)


class RecurrenceError(ValueError):
    """Raised when a recurrence rule cannot be evaluated."""


@dataclass
class OverrideEvent:
    """Replacement values for a single occurrence (a RECURRENCE-ID component)."""
    start: DateOrDateTime
    end: Optional[DateOrDateTime] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    status: Optional[str] = None


@dataclass
class RecurringEventDefinition:
    """
    A feed event before expansion.

    start/end are aware UTC datetimes for timed events and dates for
    all-day events. rule is the RRULE value, e.g. "FREQ=DAILY;COUNT=3".
    """
    uid: str
    start: DateOrDateTime
    end: Optional[DateOrDateTime] = None
    all_day: bool = False
    summary: str = ""
    description: str = ""
    location: str = ""
    status: str = "confirmed"
    rule: Optional[str] = None
    zone_name: Optional[str] = None
    exceptions: set[str] = field(default_factory=set)
    overrides: dict[str, OverrideEvent] = field(default_factory=dict)

    @property
    def is_recurring(self) -> bool:
        return bool(self.rule)


@dataclass
class Occurrence:
    """
    One concrete instance of a definition.

    recurrence_id is the computed occurrence instant (None for
    non-recurring events); it stays set when an override moved the
    occurrence, so ids derived from it remain stable.
    """
    start: DateOrDateTime
    end: DateOrDateTime
    all_day: bool
    summary: str
    description: str
    location: str
    status: str
    recurrence_id: Optional[DateOrDateTime] = None


def occurrence_keys(instant: DateOrDateTime) -> tuple[str, str]:
    """Return the (exact instant, date-truncated) keys for an occurrence."""
    iso_key = format_utc_iso(instant)
    return iso_key, iso_key[:10]


def expand_recurring_event(
    definition: RecurringEventDefinition,
    range_start: datetime,
    range_end: datetime
) -> list[Occurrence]:
    """
    Expand a definition into occurrences within [range_start, range_end).

    Args:
        definition: The event to expand
        range_start: Window start (aware)
        range_end: Window end (aware)

    Returns:
        Occurrences ordered by occurrence instant. A definition without a
        rule yields itself unchanged; callers filter it by range.

    Raises:
        RecurrenceError: If the rule cannot be parsed or evaluated.
    """
    if not definition.is_recurring:
        return [_single_occurrence(definition)]

    start_utc = ensure_utc(range_start)
    end_utc = ensure_utc(range_end)
    duration = _series_duration(definition)
    uses_timezone = bool(definition.zone_name) and not definition.all_day

    rule = _build_rule(definition, uses_timezone)

    # Occurrences that started before the window can still overlap it.
    lookup_start = start_utc - duration
    if uses_timezone:
        window_start = to_floating(lookup_start, definition.zone_name)
        window_end = to_floating(end_utc, definition.zone_name)
    else:
        window_start = lookup_start.replace(tzinfo=None)
        window_end = end_utc.replace(tzinfo=None)

    try:
        candidates = rule.between(window_start, window_end, inc=True)
    except (ValueError, TypeError, OverflowError) as e:
        raise RecurrenceError(f"Recurrence expansion failed for {definition.uid}: {e}") from e

    occurrences = []
    for candidate in candidates:
        if definition.all_day:
            occurrence_start: DateOrDateTime = candidate.date()
        elif uses_timezone:
            occurrence_start = to_absolute(candidate, definition.zone_name)
        else:
            occurrence_start = pytz.UTC.localize(candidate)

        iso_key, date_key = occurrence_keys(occurrence_start)
        if iso_key in definition.exceptions or date_key in definition.exceptions:
            continue

        override = definition.overrides.get(iso_key) or definition.overrides.get(date_key)
        if override is not None:
            occurrence = _apply_override(definition, override, occurrence_start, duration)
        else:
            occurrence = Occurrence(
                start=occurrence_start,
                end=occurrence_start + duration,
                all_day=definition.all_day,
                summary=definition.summary,
                description=definition.description,
                location=definition.location,
                status=definition.status,
                recurrence_id=occurrence_start,
            )

        if not event_overlaps_range(
            ensure_utc(occurrence.start), ensure_utc(occurrence.end), start_utc, end_utc
        ):
            continue
        occurrences.append(occurrence)

    return occurrences


def _build_rule(definition: RecurringEventDefinition, uses_timezone: bool):
    """Parse the RRULE anchored at the definition's (naive) start."""
    if definition.all_day:
        anchor = datetime.combine(_as_date(definition.start), time.min)
    elif uses_timezone:
        anchor = to_floating(definition.start, definition.zone_name)
    else:
        anchor = ensure_utc(definition.start).replace(tzinfo=None)

    rule_text = definition.rule.strip()
    try:
        rule = rrulestr(rule_text, dtstart=anchor, ignoretz=True)
    except (ValueError, TypeError, KeyError, IndexError, AttributeError) as e:
        raise RecurrenceError(f"Invalid recurrence rule for {definition.uid}: {rule_text!r}") from e

    # A UTC UNTIL has to move into the same floating frame as the anchor.
    match = _UTC_UNTIL_RE.search(rule_text)
    if uses_timezone and match and hasattr(rule, "replace"):
        until_utc = pytz.UTC.localize(datetime.strptime(match.group(1), "%Y%m%dT%H%M%S"))
        rule = rule.replace(until=to_floating(until_utc, definition.zone_name))

    return rule


def _series_duration(definition: RecurringEventDefinition) -> timedelta:
    end = repair_end(definition.start, definition.end, definition.all_day)
    if definition.all_day:
        return end - _as_date(definition.start)
    return end - ensure_utc(definition.start)


def _single_occurrence(definition: RecurringEventDefinition) -> Occurrence:
    start = _as_date(definition.start) if definition.all_day else ensure_utc(definition.start)
    return Occurrence(
        start=start,
        end=repair_end(definition.start, definition.end, definition.all_day),
        all_day=definition.all_day,
        summary=definition.summary,
        description=definition.description,
        location=definition.location,
        status=definition.status,
    )


def _apply_override(
    definition: RecurringEventDefinition,
    override: OverrideEvent,
    occurrence_start: DateOrDateTime,
    duration: timedelta
) -> Occurrence:
    all_day = isinstance(override.start, date) and not isinstance(override.start, datetime)
    start = override.start if all_day else ensure_utc(override.start)
    if override.end is not None:
        end = repair_end(start, override.end, all_day)
    elif all_day == definition.all_day:
        end = start + duration
    else:
        end = repair_end(start, None, all_day)
    return Occurrence(
        start=start,
        end=end,
        all_day=all_day,
        summary=override.summary if override.summary is not None else definition.summary,
        description=(
            override.description if override.description is not None else definition.description
        ),
        location=override.location if override.location is not None else definition.location,
        status=override.status if override.status is not None else definition.status,
        recurrence_id=occurrence_start,
    )


def _as_date(value: DateOrDateTime) -> date:
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    return value
