"""Filter raw availability records and expand weekly ones into concrete instances."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slot_matcher.schema import AvailabilityRecord, ExpandedInstance, IndexedAvailability
from slot_matcher.timezones import DEFAULT_TIMEZONE, resolve_timezone

logger = logging.getLogger(__name__)

DAYS_WINDOW = 60

# (name, first hour, last hour exclusive) in the instance's local time
TIME_OF_DAY_BUCKETS = (
    ("night", 0, 6),
    ("morning", 6, 12),
    ("afternoon", 12, 18),
    ("evening", 18, 24),
)


def day_of_week(d: date) -> int:
    """Weekday number with 0=Sunday, 6=Saturday."""
    return (d.weekday() + 1) % 7


def time_of_day_bucket(hour: int) -> str:
    for name, first, last in TIME_OF_DAY_BUCKETS:
        if first <= hour < last:
            return name
    raise ValueError(f"hour out of range: {hour}")


def start_of_day(now: datetime, tz: ZoneInfo) -> datetime:
    """Midnight of now's calendar day in tz."""
    local = now.astimezone(tz)
    return datetime(local.year, local.month, local.day, tzinfo=tz)


def _record_zone(record: AvailabilityRecord, default_timezone: str) -> ZoneInfo | None:
    try:
        return resolve_timezone(record.timezone, default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Skipping availability %s with unknown timezone %r", record.id, record.timezone
        )
        return None


def filter_active(
    records: Iterable[AvailabilityRecord],
    reference: datetime,
    organization_id: int,
    window_days: int = DAYS_WINDOW,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> list[AvailabilityRecord]:
    """
    Keep records that are live, belong to the organization and start within
    [reference, reference + window_days].
    """
    ref_date = reference.date()
    window_end = ref_date + timedelta(days=window_days)
    active: list[AvailabilityRecord] = []

    for record in records:
        if record.deleted_at is not None:
            continue
        if record.owner_organization_id != organization_id:
            continue
        tz = _record_zone(record, default_timezone)
        if tz is None:
            continue

        start_date = record.range_start.astimezone(tz).date()
        if start_date < ref_date or start_date > window_end:
            continue
        if record.is_repeating and record.end_on is not None and record.end_on < ref_date:
            continue
        # Anything that already started before the reference instant is gone
        if record.range_start < reference:
            continue

        active.append(record)

    return active


def _instance_on(
    record: AvailabilityRecord,
    day: date,
    tz: ZoneInfo,
) -> ExpandedInstance:
    """Copy the record's local start/end time-of-day onto day."""
    start_local = record.range_start.astimezone(tz)
    end_local = record.range_end.astimezone(tz)

    new_start = datetime.combine(day, start_local.time(), tzinfo=tz)
    new_end = datetime.combine(day, end_local.time(), tzinfo=tz)
    if new_end < new_start:
        # Window crosses local midnight
        new_end += timedelta(days=1)

    data = record.model_dump()
    data.update(
        id=f"{record.id}_{day.isoformat()}",
        original_id=record.id,
        range_start=new_start.astimezone(timezone.utc),
        range_end=new_end.astimezone(timezone.utc),
        is_repeating=False,
        expanded_from_repeating=True,
    )
    return ExpandedInstance(**data)


def expand_repeating(
    records: Iterable[AvailabilityRecord],
    reference: datetime,
    window_days: int = DAYS_WINDOW,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> list[ExpandedInstance]:
    """
    Pass one-time records through and turn each weekly record into one
    instance per matching weekday between reference and the window end
    (or end_on, whichever comes first), inclusive.
    """
    ref_date = reference.date()
    window_end = ref_date + timedelta(days=window_days)
    expanded: list[ExpandedInstance] = []

    for record in records:
        if not record.is_repeating:
            data = record.model_dump()
            data.setdefault("original_id", record.id)
            expanded.append(ExpandedInstance(**data))
            continue

        if record.day_of_week is None:
            logger.warning("Skipping repeating availability %s with null day_of_week", record.id)
            continue
        tz = _record_zone(record, default_timezone)
        if tz is None:
            continue

        last_day = window_end
        if record.end_on is not None and record.end_on < last_day:
            last_day = record.end_on

        day = ref_date + timedelta(days=(record.day_of_week - day_of_week(ref_date)) % 7)
        while day <= last_day:
            expanded.append(_instance_on(record, day, tz))
            day += timedelta(days=7)

    return expanded


def index_availability(
    instances: list[ExpandedInstance],
    default_timezone: str = DEFAULT_TIMEZONE,
) -> IndexedAvailability:
    """Bucket instances by local weekday and coarse time of day."""
    by_day: dict[int, list[ExpandedInstance]] = {d: [] for d in range(7)}
    by_time: dict[str, list[ExpandedInstance]] = {name: [] for name, _, _ in TIME_OF_DAY_BUCKETS}

    for instance in instances:
        local = instance.range_start.astimezone(resolve_timezone(instance.timezone, default_timezone))
        by_day[day_of_week(local)].append(instance)
        by_time[time_of_day_bucket(local.hour)].append(instance)

    return IndexedAvailability(
        instances=instances,
        by_day_of_week=by_day,
        by_time_of_day=by_time,
    )


def process_availability(
    records: Iterable[AvailabilityRecord],
    reference: datetime,
    organization_id: int,
    window_days: int = DAYS_WINDOW,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> IndexedAvailability:
    """Filter, expand and index raw records."""
    active = filter_active(records, reference, organization_id, window_days, default_timezone)
    expanded = expand_repeating(active, reference, window_days, default_timezone)
    logger.info(
        "Expanded %d active availability records into %d instances", len(active), len(expanded)
    )
    return index_availability(expanded, default_timezone)
