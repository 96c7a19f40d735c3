from __future__ import annotations

from datetime import date, datetime

import pytest
import pytz

from conftest import DAILY_STANDUP, ics_feed
from wallcal.config import IcalFeed
from wallcal.event_wrapper import SourceTarget
from wallcal.ics_subscription import (
    FeedData,
    FeedParseError,
    ICSSubscription,
    derive_label_from_url,
    extract_events,
    normalize_ical_feeds,
    parse_feed,
    sync_ical_events,
)
from wallcal.recurrence import RecurringEventDefinition


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.UTC)


MOVED_STANDUP = """
BEGIN:VEVENT
UID:standup@example.com
DTSTART:20240101T100000Z
DTEND:20240101T110000Z
RRULE:FREQ=DAILY;COUNT=3
EXDATE:20240102T100000Z
SUMMARY:Standup
LOCATION:Kitchen
END:VEVENT
BEGIN:VEVENT
UID:standup@example.com
RECURRENCE-ID:20240103T100000Z
DTSTART:20240103T120000Z
DTEND:20240103T130000Z
SUMMARY:Standup (moved)
END:VEVENT
"""

NEW_YORK_STANDUP = """
BEGIN:VEVENT
UID:ny-standup@example.com
DTSTART;TZID=America/New_York:20260102T110000
DTEND;TZID=America/New_York:20260102T120000
RRULE:FREQ=DAILY;COUNT=2
SUMMARY:NY standup
END:VEVENT
"""

HOLIDAY = """
BEGIN:VEVENT
UID:holiday@example.com
DTSTART;VALUE=DATE:20240101
SUMMARY:New Year
END:VEVENT
"""

CANCELLED = """
BEGIN:VEVENT
UID:cancelled@example.com
DTSTART:20240101T150000Z
DTEND:20240101T160000Z
STATUS:CANCELLED
SUMMARY:Called off
END:VEVENT
"""


def test_parse_feed_folds_overrides_into_master():
    feed = parse_feed(ics_feed(MOVED_STANDUP, name="Team"))

    assert feed.name == "Team"
    assert len(feed.definitions) == 1
    definition = feed.definitions[0]
    assert definition.rule == "FREQ=DAILY;COUNT=3"
    assert definition.exceptions == {"2024-01-02T10:00:00.000Z"}
    assert list(definition.overrides) == ["2024-01-03T10:00:00.000Z"]


def test_parse_feed_rejects_garbage():
    with pytest.raises(FeedParseError):
        parse_feed("this is not a calendar")


def test_exdate_and_override_events():
    feed = parse_feed(ics_feed(MOVED_STANDUP))
    target = SourceTarget(id="https://example.com/team.ics", label="Team")

    events = extract_events(feed, target, _utc(2023, 12, 31), _utc(2024, 1, 5))

    assert [(e.start, e.end) for e in events] == [
        (_utc(2024, 1, 1, 10), _utc(2024, 1, 1, 11)),
        (_utc(2024, 1, 3, 12), _utc(2024, 1, 3, 13)),
    ]
    assert events[1].summary == "Standup (moved)"
    assert events[1].location == "Kitchen"
    assert events[1].id == "ical:https://example.com/team.ics:standup@example.com:2024-01-03T10:00:00.000Z"
    assert len({e.id for e in events}) == 2


def test_new_york_rule_is_expanded_in_local_time():
    feed = parse_feed(ics_feed(NEW_YORK_STANDUP))
    target = SourceTarget(id="https://example.com/ny.ics", label="NY")

    events = extract_events(feed, target, _utc(2026, 1, 2, 12), _utc(2026, 1, 4))

    assert [(e.start, e.end) for e in events] == [
        (_utc(2026, 1, 2, 16), _utc(2026, 1, 2, 17)),
        (_utc(2026, 1, 3, 16), _utc(2026, 1, 3, 17)),
    ]


def test_all_day_and_cancelled_events():
    feed = parse_feed(ics_feed(HOLIDAY, CANCELLED))
    target = SourceTarget(id="https://example.com/misc.ics", label="Misc")

    events = extract_events(feed, target, _utc(2024, 1, 1), _utc(2024, 1, 2))

    assert len(events) == 1
    assert events[0].all_day
    assert (events[0].start, events[0].end) == (date(2024, 1, 1), date(2024, 1, 2))
    assert events[0].to_dict()["start"] == "2024-01-01"


def test_malformed_rule_skips_only_that_event():
    feed = FeedData(name=None, definitions=[
        RecurringEventDefinition(uid="bad", start=_utc(2024, 1, 1, 9), rule="FREQ=SOMETIMES"),
        RecurringEventDefinition(uid="good", start=_utc(2024, 1, 1, 12), summary="Lunch"),
    ])
    target = SourceTarget(id="feed", label="Feed")
    errors: list[dict] = []

    events = extract_events(feed, target, _utc(2024, 1, 1), _utc(2024, 1, 2), errors)

    assert [e.summary for e in events] == ["Lunch"]
    assert len(errors) == 1
    assert errors[0]["feed"] == "feed"


def test_failing_feed_does_not_hide_healthy_feed(feeds):
    feeds.served["https://example.com/team.ics"] = ics_feed(DAILY_STANDUP, name="Team")

    result = sync_ical_events(
        _utc(2023, 12, 31),
        _utc(2024, 1, 5),
        [
            IcalFeed(url="https://example.com/missing.ics"),
            IcalFeed(url="https://example.com/team.ics"),
        ],
    )

    assert result.calendars == 2
    assert len(result.events) == 3
    assert all(e.calendar_label == "Team" for e in result.events)
    assert result.errors == [{"feed": "https://example.com/missing.ics", "message": "HTTP 404"}]


def test_subscription_label_precedence(feeds):
    url = "https://example.com/calendars/family.ics"
    feeds.served[url] = ics_feed(DAILY_STANDUP, name="Household")

    events, _ = ICSSubscription(url, label="Family").get_events(_utc(2024, 1, 1), _utc(2024, 1, 2))
    assert events[0].calendar_label == "Family"

    events, _ = ICSSubscription(url).get_events(_utc(2024, 1, 1), _utc(2024, 1, 2))
    assert events[0].calendar_label == "Household"
    assert events[0].calendar_color == "#2b6f6b"

    feeds.served[url] = ics_feed(DAILY_STANDUP)
    events, _ = ICSSubscription(url).get_events(_utc(2024, 1, 1), _utc(2024, 1, 2))
    assert events[0].calendar_label == "family"


def test_normalize_ical_feeds():
    feeds = normalize_ical_feeds([
        {"url": "  https://example.com/a.ics ", "label": " A "},
        {"url": "", "label": "empty"},
        {"url": "https://example.com/b.ics", "enabled": False},
        IcalFeed(url="https://example.com/c.ics"),
    ])

    assert feeds == [
        {"url": "https://example.com/a.ics", "label": "A", "enabled": True},
        {"url": "https://example.com/c.ics", "label": "", "enabled": True},
    ]


def test_derive_label_from_url():
    assert derive_label_from_url("https://example.com/cal/holidays.ics") == "holidays"
    assert derive_label_from_url("https://example.com/") == "example.com"
