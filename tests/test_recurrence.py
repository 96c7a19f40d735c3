from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest
import pytz

from wallcal.recurrence import (
    OverrideEvent,
    RecurrenceError,
    RecurringEventDefinition,
    expand_recurring_event,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=pytz.UTC)


def _daily(**kwargs) -> RecurringEventDefinition:
    return RecurringEventDefinition(
        uid="standup",
        start=_utc(2024, 1, 1, 10),
        end=_utc(2024, 1, 1, 11),
        summary="Standup",
        rule="FREQ=DAILY;COUNT=3",
        **kwargs,
    )


def test_daily_count_three():
    occurrences = expand_recurring_event(_daily(), _utc(2023, 12, 31), _utc(2024, 1, 5))

    assert [o.start for o in occurrences] == [
        _utc(2024, 1, 1, 10),
        _utc(2024, 1, 2, 10),
        _utc(2024, 1, 3, 10),
    ]
    assert all(o.end - o.start == timedelta(hours=1) for o in occurrences)
    assert all(o.summary == "Standup" for o in occurrences)


def test_exception_and_override():
    definition = _daily(
        exceptions={"2024-01-02T10:00:00.000Z"},
        overrides={
            "2024-01-03T10:00:00.000Z": OverrideEvent(
                start=_utc(2024, 1, 3, 12), end=_utc(2024, 1, 3, 13), summary="Moved"
            )
        },
    )

    occurrences = expand_recurring_event(definition, _utc(2023, 12, 31), _utc(2024, 1, 5))

    assert [(o.start, o.end) for o in occurrences] == [
        (_utc(2024, 1, 1, 10), _utc(2024, 1, 1, 11)),
        (_utc(2024, 1, 3, 12), _utc(2024, 1, 3, 13)),
    ]
    assert occurrences[0].summary == "Standup"
    assert occurrences[1].summary == "Moved"
    assert occurrences[1].recurrence_id == _utc(2024, 1, 3, 10)


def test_date_keys_match_timed_occurrences():
    definition = _daily(
        exceptions={"2024-01-01"},
        overrides={"2024-01-02": OverrideEvent(start=_utc(2024, 1, 2, 15), location="Room 4")},
    )

    occurrences = expand_recurring_event(definition, _utc(2023, 12, 31), _utc(2024, 1, 5))

    assert [o.start for o in occurrences] == [_utc(2024, 1, 2, 15), _utc(2024, 1, 3, 10)]
    assert occurrences[0].end == _utc(2024, 1, 2, 16)
    assert occurrences[0].location == "Room 4"
    assert occurrences[0].summary == "Standup"


def test_no_occurrence_leaks_outside_window():
    range_start = _utc(2024, 1, 2, 10, 30)
    range_end = _utc(2024, 1, 3, 10)

    occurrences = expand_recurring_event(_daily(), range_start, range_end)

    # The in-progress 01-02 occurrence overlaps; 01-03 starts exactly at the end
    assert [o.start for o in occurrences] == [_utc(2024, 1, 2, 10)]
    for o in occurrences:
        assert o.start < range_end and o.end > range_start


def test_expansion_is_idempotent():
    definition = _daily(exceptions={"2024-01-02T10:00:00.000Z"})
    first = expand_recurring_event(definition, _utc(2023, 12, 31), _utc(2024, 1, 5))
    second = expand_recurring_event(definition, _utc(2023, 12, 31), _utc(2024, 1, 5))
    assert first == second


def test_zero_matches_is_empty():
    assert expand_recurring_event(_daily(), _utc(2025, 1, 1), _utc(2025, 2, 1)) == []


def test_timezone_rule_keeps_wall_clock_across_dst():
    definition = RecurringEventDefinition(
        uid="weekly",
        start=_utc(2024, 3, 4, 14),  # 09:00 EST
        end=_utc(2024, 3, 4, 15),
        rule="FREQ=WEEKLY;COUNT=2",
        zone_name="America/New_York",
    )

    occurrences = expand_recurring_event(definition, _utc(2024, 3, 1), _utc(2024, 3, 31))

    assert [o.start for o in occurrences] == [_utc(2024, 3, 4, 14), _utc(2024, 3, 11, 13)]


def test_all_day_rule_yields_dates():
    definition = RecurringEventDefinition(
        uid="bins",
        start=date(2024, 1, 1),
        all_day=True,
        rule="FREQ=WEEKLY;COUNT=2",
    )

    occurrences = expand_recurring_event(definition, _utc(2024, 1, 1), _utc(2024, 1, 31))

    assert [(o.start, o.end) for o in occurrences] == [
        (date(2024, 1, 1), date(2024, 1, 2)),
        (date(2024, 1, 8), date(2024, 1, 9)),
    ]
    assert all(o.all_day for o in occurrences)


def test_non_recurring_definition_is_returned_as_is():
    definition = RecurringEventDefinition(uid="once", start=_utc(2024, 1, 1, 10))
    occurrences = expand_recurring_event(definition, _utc(2024, 1, 1), _utc(2024, 1, 2))
    assert len(occurrences) == 1
    assert occurrences[0].end == _utc(2024, 1, 1, 11)
    assert occurrences[0].recurrence_id is None


def test_malformed_rule_raises():
    definition = _daily()
    definition.rule = "FREQ=SOMETIMES"
    with pytest.raises(RecurrenceError):
        expand_recurring_event(definition, _utc(2024, 1, 1), _utc(2024, 1, 5))
