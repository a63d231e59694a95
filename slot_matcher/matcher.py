"""Score clinician availability against interpreted user preferences.

Every instance gets four independent sub-scores, each computed in the
clinician's own timezone:

    day      1.0 exact weekday, 0.5 adjacent weekday, 0.0 otherwise
    time     overlap of preferred and available wall-clock ranges
    date     1.0 inside the date bounds, 0.5 within 3 days, 0.0 otherwise
    pattern  1.0 when the weekday satisfies weekdays/weekends/daily

combined into ``0.3*day + 0.4*time + 0.2*date + 0.1*pattern``. An instance
that misses a requested specific date or recurring pattern is dropped
before scoring. Retained
instances are cut into 30-minute units and the best five are returned.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence, Union
from zoneinfo import ZoneInfoNotFoundError

from slot_matcher.expander import day_of_week
from slot_matcher.schema import (
    DateConstraints,
    ExpandedInstance,
    IndexedAvailability,
    PreferenceModel,
    RecurringPattern,
    ScoredSlot,
    TimeRange,
)
from slot_matcher.timezones import DEFAULT_TIMEZONE, resolve_timezone

logger = logging.getLogger(__name__)

DAY_WEIGHT = 0.3
TIME_WEIGHT = 0.4
DATE_WEIGHT = 0.2
PATTERN_WEIGHT = 0.1

NARROW_RANGE_MINUTES = 120
FLEXIBILITY_MINUTES = 30
DATE_TOLERANCE_DAYS = 3
UNIT_MINUTES = 30
MAX_SLOTS = 5
SCORE_EPSILON = 0.001

MINUTES_PER_DAY = 24 * 60
WEEKDAYS = frozenset({1, 2, 3, 4, 5})
WEEKEND = frozenset({0, 6})


def _parse_time(s: str) -> int:
    """Parse HH:MM to minutes since midnight."""
    hours, minutes = s.split(":")
    return int(hours) * 60 + int(minutes)


def _minutes_of_day(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def _satisfies_pattern(pattern: RecurringPattern, weekday: int) -> bool:
    if pattern == RecurringPattern.WEEKDAYS:
        return weekday in WEEKDAYS
    if pattern == RecurringPattern.WEEKENDS:
        return weekday in WEEKEND
    return True


def day_score(days_of_week: Sequence[int], weekday: int, pattern: RecurringPattern) -> float:
    """Weekday fit; a named pattern overrides the explicit day list."""
    if pattern != RecurringPattern.NONE:
        return 1.0 if _satisfies_pattern(pattern, weekday) else 0.0

    # No day preference: every weekday fits
    if not days_of_week:
        return 1.0
    if weekday in days_of_week:
        return 1.0
    for day in days_of_week:
        if (day - weekday) % 7 in (1, 6):
            return 0.5
    return 0.0


def widen_time_range(start: int, end: int) -> tuple[int, int]:
    """Give ranges shorter than two hours 30 minutes of slack on each side."""
    if end - start >= NARROW_RANGE_MINUTES:
        return start, end
    return (
        max(0, start - FLEXIBILITY_MINUTES),
        min(MINUTES_PER_DAY - 1, end + FLEXIBILITY_MINUTES),
    )


def time_overlap(pref_start: int, pref_end: int, avail_start: int, avail_end: int) -> float:
    """Overlap in minutes divided by the longer of the two ranges."""
    if avail_end < avail_start:
        avail_end += MINUTES_PER_DAY

    overlap = min(pref_end, avail_end) - max(pref_start, avail_start)
    if overlap <= 0:
        return 0.0
    longest = max(pref_end - pref_start, avail_end - avail_start)
    return overlap / longest if longest > 0 else 0.0


def _day_segments(start: int, end: int) -> list[tuple[int, int]]:
    """Split an overnight range like 22:00-02:00 at midnight."""
    if end < start:
        return [(start, MINUTES_PER_DAY - 1), (0, end)]
    return [(start, end)]


def time_score(time_ranges: Sequence[TimeRange], local_start: datetime, local_end: datetime) -> float:
    """Best overlap across the preferred ranges; any time when none are given."""
    if not time_ranges:
        return 1.0

    avail_start = _minutes_of_day(local_start)
    avail_end = _minutes_of_day(local_end)
    best = 0.0
    for tr in time_ranges:
        for seg_start, seg_end in _day_segments(_parse_time(tr.start), _parse_time(tr.end)):
            pref_start, pref_end = widen_time_range(seg_start, seg_end)
            best = max(best, time_overlap(pref_start, pref_end, avail_start, avail_end))
    return best


def date_score(local_date: date, constraints: Optional[DateConstraints]) -> float:
    """Fit against optional start/end bounds, with a few days of tolerance."""
    if constraints is None or (constraints.start_date is None and constraints.end_date is None):
        return 1.0

    start, end = constraints.start_date, constraints.end_date
    if start is not None and local_date < start:
        gap = (start - local_date).days
    elif end is not None and local_date > end:
        gap = (local_date - end).days
    else:
        return 1.0
    return 0.5 if gap <= DATE_TOLERANCE_DAYS else 0.0


def matches_specific_dates(local_date: date, specific_dates: Iterable[date]) -> bool:
    dates = set(specific_dates)
    return not dates or local_date in dates


def pattern_score(pattern: RecurringPattern, weekday: int) -> float:
    return 1.0 if _satisfies_pattern(pattern, weekday) else 0.0


def combined_score(day: float, time: float, date_: float, pattern: float) -> float:
    total = DAY_WEIGHT * day + TIME_WEIGHT * time + DATE_WEIGHT * date_ + PATTERN_WEIGHT * pattern
    # Weighted float sums can land a hair off 1.0
    return min(1.0, round(total, 6))


def score_instance(
    preferences: PreferenceModel,
    instance: ExpandedInstance,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> Optional[float]:
    """
    Combined score for one instance, or None when it fails the specific-date
    gate or the recurring-pattern gate.
    """
    tz = resolve_timezone(instance.timezone, default_timezone)
    local_start = instance.range_start.astimezone(tz)
    local_end = instance.range_end.astimezone(tz)
    local_date = local_start.date()
    weekday = day_of_week(local_date)

    if not matches_specific_dates(local_date, preferences.specific_dates):
        return None

    pattern = preferences.recurring_pattern
    pattern_fit = pattern_score(pattern, weekday)
    if pattern_fit == 0.0:
        return None

    return combined_score(
        day_score(preferences.days_of_week, weekday, pattern),
        time_score(preferences.time_ranges, local_start, local_end),
        date_score(local_date, preferences.date_constraints),
        pattern_fit,
    )


def split_into_units(instance: ExpandedInstance, score: float) -> list[ScoredSlot]:
    """Cut an instance into back-to-back 30-minute slots, dropping any remainder."""
    duration = (instance.range_end - instance.range_start).total_seconds() / 60
    unit = timedelta(minutes=UNIT_MINUTES)
    slots = []
    for i in range(int(duration // UNIT_MINUTES)):
        start = instance.range_start + i * unit
        slots.append(
            ScoredSlot(
                availability_id=instance.id,
                original_id=instance.original_id,
                owner_id=instance.owner_id,
                start_time=start,
                end_time=start + unit,
                timezone=instance.timezone,
                location_id=instance.location_id,
                match_score=score,
            )
        )
    return slots


def _by_start(slot: ScoredSlot) -> datetime:
    return slot.start_time


def rank_slots(slots: Iterable[ScoredSlot], max_slots: int = MAX_SLOTS) -> list[ScoredSlot]:
    """
    Highest score first, earliest start among near-equal scores.

    Slots are grouped by descending score; a group holds every slot within
    SCORE_EPSILON of the group's best score and is ordered by start time.
    """
    by_score = sorted(slots, key=lambda s: (-s.match_score, s.start_time))
    ranked: list[ScoredSlot] = []
    group: list[ScoredSlot] = []
    for slot in by_score:
        if group and group[0].match_score - slot.match_score >= SCORE_EPSILON:
            ranked.extend(sorted(group, key=_by_start))
            group = []
        group.append(slot)
    ranked.extend(sorted(group, key=_by_start))
    return ranked[:max_slots]


def match_availability(
    preferences: PreferenceModel,
    availability: Union[IndexedAvailability, Iterable[ExpandedInstance]],
    default_timezone: str = DEFAULT_TIMEZONE,
    max_slots: int = MAX_SLOTS,
) -> list[ScoredSlot]:
    """
    Rank 30-minute slots from the expanded availability.
    Returns at most max_slots; an empty list means nothing matched.
    """
    if isinstance(availability, IndexedAvailability):
        instances = availability.instances
    else:
        instances = availability

    candidates: list[ScoredSlot] = []
    for instance in instances:
        try:
            score = score_instance(preferences, instance, default_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Skipping availability %s with unknown timezone %r", instance.id, instance.timezone
            )
            continue
        if score is None or score <= 0:
            continue
        candidates.extend(split_into_units(instance, score))

    return rank_slots(candidates, max_slots)
