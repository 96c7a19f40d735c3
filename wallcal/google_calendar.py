"""
Google Calendar client for the directory side of a sync.

The Calendar API expands recurring events on the server
(singleEvents=True), so events only need to be normalized into
CalendarEvent objects. OAuth consent happens elsewhere; this module only
loads the stored authorized-user token.
"""

import sys
from dataclasses import dataclass, field
from datetime import datetime, date
from pathlib import Path
from typing import Iterator, Optional, Union

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from .errors import NotConnectedError
from .event_wrapper import (
    CalendarEvent, SourceTarget, DEFAULT_COLOR, UNTITLED_EVENT,
    normalize_status, repair_end,
)
from .timezone_utils import format_utc_iso, parse_iso_datetime


def _debug_print(msg: str) -> None:
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] GOOGLE: {msg}", file=sys.stderr)


SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]
PAGE_SIZE = 2500


@dataclass
class GoogleSyncResult:
    """Outcome of the Google side of a sync."""
    connected: bool = False
    calendars: int = 0
    events: list[CalendarEvent] = field(default_factory=list)


class GoogleCalendarClient:
    """Read-only access to the calendars of one Google account."""

    def __init__(self, token_file: Optional[Path], scopes: Optional[list[str]] = None):
        """
        Args:
            token_file: Authorized-user JSON written by the OAuth flow
            scopes: OAuth scopes the token was granted
        """
        self.token_file = Path(token_file) if token_file else None
        self.scopes = scopes or SCOPES

    def load_credentials(self) -> Optional[Credentials]:
        """
        Load stored credentials, refreshing an expired access token.

        Returns:
            Credentials, or None when no token has been stored.
        """
        if self.token_file is None or not self.token_file.exists():
            return None

        creds = Credentials.from_authorized_user_file(str(self.token_file), self.scopes)
        if not creds.valid and creds.expired and creds.refresh_token:
            creds.refresh(Request())
            self.token_file.write_text(creds.to_json(), encoding='utf-8')
            _debug_print("Access token refreshed")
        return creds

    def get_authorized_client(self):
        """
        Build a Calendar API service.

        Returns:
            The service object, or None if the account is not connected.
        """
        creds = self.load_credentials()
        if creds is None:
            return None
        return build("calendar", "v3", credentials=creds, cache_discovery=False)

    def list_calendars(self, client) -> list[dict]:
        """List calendars the account can at least read."""
        items = []
        page_token = None
        while True:
            response = client.calendarList().list(
                minAccessRole="reader",
                pageToken=page_token,
            ).execute()
            items.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return items

    def list_events(
        self,
        client,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime
    ) -> Iterator[list[dict]]:
        """
        Yield pages of server-expanded events for [time_min, time_max).

        Blocks on each page request; the caller sees every page of one
        calendar before moving on.
        """
        page_token = None
        while True:
            response = client.events().list(
                calendarId=calendar_id,
                timeMin=format_utc_iso(time_min),
                timeMax=format_utc_iso(time_max),
                singleEvents=True,
                orderBy="startTime",
                maxResults=PAGE_SIZE,
                pageToken=page_token,
            ).execute()
            yield response.get("items", [])
            page_token = response.get("nextPageToken")
            if not page_token:
                break


def _selection_value(selection, key: str):
    if isinstance(selection, dict):
        return selection.get(key)
    return getattr(selection, key, None)


def build_calendar_targets(selections: Optional[list], calendar_list: Optional[list[dict]]) -> list[SourceTarget]:
    """
    Decide which calendars to sync and how to label them.

    With configured selections, exactly the enabled ones are used; their
    label and color fall back to the live listing, then to defaults. With
    no selections at all, every listed calendar is used.
    """
    items = calendar_list or []
    by_id = {item.get("id"): item for item in items}
    selections = selections or []

    if selections:
        targets = []
        for selection in selections:
            if not _selection_value(selection, "enabled"):
                continue
            calendar_id = _selection_value(selection, "id")
            listed = by_id.get(calendar_id, {})
            targets.append(SourceTarget(
                id=calendar_id,
                label=_selection_value(selection, "label") or listed.get("summary") or calendar_id,
                color=_selection_value(selection, "color") or listed.get("backgroundColor") or DEFAULT_COLOR,
            ))
        return targets

    return [
        SourceTarget(
            id=item["id"],
            label=item.get("summary") or item["id"],
            color=item.get("backgroundColor") or DEFAULT_COLOR,
        )
        for item in items
        if item.get("id")
    ]


def _parse_event_time(value: Optional[dict]) -> tuple[Optional[Union[datetime, date]], bool]:
    """Return (value, is_date) for an API start/end object."""
    if not value:
        return None, False
    if value.get("dateTime"):
        return parse_iso_datetime(value["dateTime"]), False
    if value.get("date"):
        try:
            return date.fromisoformat(value["date"]), True
        except ValueError:
            return None, True
    return None, False


def normalize_event(event: Optional[dict], target: SourceTarget) -> Optional[CalendarEvent]:
    """
    Map one API event to a CalendarEvent.

    Returns:
        None for cancelled events and events without a usable start.
    """
    if not event or event.get("status") == "cancelled":
        return None

    start, all_day = _parse_event_time(event.get("start"))
    if start is None:
        return None
    end, _ = _parse_event_time(event.get("end"))

    return CalendarEvent(
        id=event.get("id") or f"google:{target.id}:{format_utc_iso(start)}",
        calendar_id=target.id,
        calendar_label=target.label,
        calendar_color=target.color,
        summary=event.get("summary") or UNTITLED_EVENT,
        description=event.get("description") or "",
        location=event.get("location") or "",
        status=normalize_status(event.get("status")),
        start=start,
        end=repair_end(start, end, all_day),
        all_day=all_day,
    )


def sync_google_events(
    google: Optional[GoogleCalendarClient],
    selections: Optional[list],
    time_min: datetime,
    time_max: datetime,
    require_google: bool = False
) -> GoogleSyncResult:
    """
    Fetch and normalize events from every selected calendar.

    Raises:
        NotConnectedError: If no account is connected and require_google is set.
    """
    client = google.get_authorized_client() if google is not None else None
    if client is None:
        if require_google:
            raise NotConnectedError()
        return GoogleSyncResult(connected=False)

    calendar_list = google.list_calendars(client)
    targets = build_calendar_targets(selections, calendar_list)
    events = []

    for target in targets:
        count = 0
        for page in google.list_events(client, target.id, time_min, time_max):
            for raw in page:
                normalized = normalize_event(raw, target)
                if normalized:
                    events.append(normalized)
                    count += 1
        _debug_print(f"{target.id}: {count} events")

    return GoogleSyncResult(connected=True, calendars=len(targets), events=events)
