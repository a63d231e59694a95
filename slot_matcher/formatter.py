"""Render scored slots for display."""

from datetime import datetime
from typing import Iterable

from slot_matcher.schema import FormattedSlot, ScoredSlot
from slot_matcher.timezones import resolve_timezone, timezone_label


def _format_date(dt: datetime) -> str:
    """e.g. Tuesday, October 14, 2025"""
    return f"{dt:%A, %B} {dt.day}, {dt.year}"


def _format_clock(dt: datetime) -> str:
    """e.g. 5:00 PM"""
    hour = dt.hour % 12 or 12
    return f"{hour}:{dt.minute:02d} {'AM' if dt.hour < 12 else 'PM'}"


def format_slot(slot: ScoredSlot, display_timezone: str) -> FormattedSlot:
    """
    Add display strings to a slot. Times render in the clinician's timezone,
    falling back to display_timezone when the slot has none.
    """
    zone_name = slot.timezone or display_timezone
    tz = resolve_timezone(zone_name, display_timezone)
    start = slot.start_time.astimezone(tz)
    end = slot.end_time.astimezone(tz)

    formatted_date = _format_date(start)
    formatted_time = f"{_format_clock(start)} - {_format_clock(end)}"
    timezone_name = timezone_label(zone_name)

    return FormattedSlot(
        **slot.model_dump(exclude={"timezone"}),
        timezone=zone_name,
        formatted_date=formatted_date,
        formatted_time=formatted_time,
        timezone_name=timezone_name,
        display_text=f"{formatted_date} at {formatted_time} ({timezone_name})",
    )


def format_slots(slots: Iterable[ScoredSlot], display_timezone: str) -> list[FormattedSlot]:
    return [format_slot(s, display_timezone) for s in slots]
