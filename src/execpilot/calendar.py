"""Summary: Calendar surface operations and slot suggestion.

Importance: Supplies free/busy data and event writes for meeting scheduling.
Alternatives: Use the Calendar discovery client from google-api-python-client.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from execpilot.gateway import SurfaceGateway
from execpilot.models import TimeSlot, parse_timestamp, to_utc_iso


@dataclass(frozen=True)
class CalendarClient:
    """Summary: Primary-calendar operations bound to one account."""

    gateway: SurfaceGateway
    account_id: str

    def list_events(self, time_min: str, time_max: str, max_results: int = 50) -> list[dict[str, Any]]:
        response = self.gateway.call(
            self.account_id,
            "calendars/primary/events",
            query={
                "timeMin": time_min,
                "timeMax": time_max,
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return response.get("items", []) or []

    def free_busy(self, time_min: str, time_max: str, time_zone: str = "UTC") -> list[dict[str, str]]:
        """Summary: Return busy windows on the primary calendar between two instants."""

        response = self.gateway.call(
            self.account_id,
            "freeBusy",
            method="POST",
            body={
                "timeMin": time_min,
                "timeMax": time_max,
                "timeZone": time_zone,
                "items": [{"id": "primary"}],
            },
        )
        calendars = response.get("calendars", {}) or {}
        return (calendars.get("primary", {}) or {}).get("busy", []) or []

    def insert_event(
        self, event: dict[str, Any], conference_data_version: int | None = None
    ) -> dict[str, Any]:
        return self.gateway.call(
            self.account_id,
            "calendars/primary/events",
            method="POST",
            query={"conferenceDataVersion": conference_data_version},
            body=event,
        )

    def patch_event(self, event_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return self.gateway.call(
            self.account_id,
            f"calendars/primary/events/{event_id}",
            method="PATCH",
            body=changes,
        )

    def delete_event(self, event_id: str) -> None:
        self.gateway.call(self.account_id, f"calendars/primary/events/{event_id}", method="DELETE")


def suggest_meeting_slots(
    busy: list[dict[str, str]],
    now: datetime,
    duration_minutes: int = 30,
    horizon_days: int = 7,
    max_slots: int = 3,
    lead_hours: int = 2,
) -> list[TimeSlot]:
    """Summary: Walk forward from now plus a lead time and propose free slots.

    Importance: Accepted slots are spaced an hour apart; busy overlaps advance in 30 minute steps.
    Alternatives: Ask the calendar service for a scheduling suggestion.
    """

    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    windows = [(parse_timestamp(item["start"]), parse_timestamp(item["end"])) for item in busy]
    horizon = now + timedelta(days=horizon_days)
    duration = timedelta(minutes=duration_minutes)
    cursor = now + timedelta(hours=lead_hours)
    suggestions: list[TimeSlot] = []
    while len(suggestions) < max_slots and cursor < horizon:
        slot_end = cursor + duration
        overlaps = any(cursor < end and slot_end > start for start, end in windows)
        if overlaps:
            cursor = cursor + timedelta(minutes=30)
            continue
        suggestions.append(TimeSlot(start=to_utc_iso(cursor), end=to_utc_iso(slot_end)))
        cursor = slot_end + timedelta(hours=1)
    return suggestions
