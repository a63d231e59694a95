"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from slot_matcher.config import Settings
from slot_matcher.schema import AvailabilityRecord, ExpandedInstance

LA = ZoneInfo("America/Los_Angeles")
ORG = 85685


class FakeStore:
    """In-memory AvailabilityStore; optionally blocks until gate is set."""

    def __init__(self, records=None, error=None):
        self.records = list(records or [])
        self.error = error
        self.gate = None
        self.calls = 0

    async def load_availability(self, organization_id, reference, window_days):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [r for r in self.records if r.owner_organization_id == organization_id]


class Clock:
    """Settable clock for cache tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def reference() -> datetime:
    """Start of Monday 2025-10-13 in Los Angeles."""
    return datetime(2025, 10, 13, tzinfo=LA)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        organization_id=ORG,
        default_timezone="America/Los_Angeles",
        window_days=60,
        cache_ttl_seconds=60,
        rate_limit_per_minute=100,
    )


@pytest.fixture
def clock() -> Clock:
    # 08:00 Monday 2025-10-13 in Los Angeles
    return Clock(datetime(2025, 10, 13, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_record():
    """Factory for AvailabilityRecord with sensible defaults."""
    counter = iter(range(1000, 100000))

    def _make(start: datetime, end: datetime, **overrides) -> AvailabilityRecord:
        data = {
            "id": str(next(counter)),
            "owner_id": "clin-1",
            "range_start": start,
            "range_end": end,
            "timezone": "America/Los_Angeles",
            "location_id": "loc-1",
            "owner_organization_id": ORG,
        }
        data.update(overrides)
        return AvailabilityRecord(**data)

    return _make


@pytest.fixture
def make_instance():
    """Factory for one-time ExpandedInstance values."""
    counter = iter(range(1, 100000))

    def _make(start: datetime, end: datetime, **overrides) -> ExpandedInstance:
        rid = str(next(counter))
        data = {
            "id": rid,
            "original_id": rid,
            "owner_id": "clin-1",
            "range_start": start,
            "range_end": end,
            "timezone": "America/Los_Angeles",
            "location_id": "loc-1",
            "owner_organization_id": ORG,
        }
        data.update(overrides)
        return ExpandedInstance(**data)

    return _make
