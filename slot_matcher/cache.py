"""Per-organization cache of expanded availability with single-flight reloads."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from slot_matcher.config import Settings
from slot_matcher.expander import process_availability, start_of_day
from slot_matcher.schema import CacheMetadata, IndexedAvailability
from slot_matcher.store import AvailabilityStore

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    availability: IndexedAvailability
    reference_date: date
    loaded_at: datetime


class AvailabilityCache:
    """
    Holds the expanded availability per organization.

    At most one load runs per organization; concurrent readers join it. An
    entry older than the TTL is served while a background reload runs. An
    entry from a previous day is never served, readers wait for the reload.
    Store errors propagate to every caller waiting on the failed load.
    """

    def __init__(
        self,
        store: AvailabilityStore,
        settings: Settings,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: dict[int, CacheEntry] = {}
        self._inflight: dict[int, asyncio.Task] = {}

    def _reference(self) -> datetime:
        return start_of_day(self._clock(), ZoneInfo(self.settings.default_timezone))

    def _is_fresh(self, entry: CacheEntry, reference: datetime) -> bool:
        if entry.reference_date != reference.date():
            return False
        ttl = self.settings.cache_ttl_seconds
        if ttl is None:
            return True
        return (self._clock() - entry.loaded_at).total_seconds() < ttl

    async def _load(self, organization_id: int) -> CacheEntry:
        reference = self._reference()
        logger.info("Loading availability for organization %s", organization_id)
        records = await self.store.load_availability(
            organization_id, reference, self.settings.window_days
        )
        availability = process_availability(
            records,
            reference,
            organization_id,
            self.settings.window_days,
            self.settings.default_timezone,
        )
        entry = CacheEntry(availability, reference.date(), self._clock())
        self._entries[organization_id] = entry
        logger.info(
            "Cached %d availability instances for organization %s",
            len(availability.instances),
            organization_id,
        )
        return entry

    def _finish(self, organization_id: int, task: asyncio.Task) -> None:
        if self._inflight.get(organization_id) is task:
            del self._inflight[organization_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Availability load failed for organization %s: %s",
                organization_id,
                task.exception(),
            )

    def _start_load(self, organization_id: int) -> asyncio.Task:
        task = self._inflight.get(organization_id)
        if task is None:
            task = asyncio.create_task(self._load(organization_id))
            self._inflight[organization_id] = task
            task.add_done_callback(lambda t: self._finish(organization_id, t))
        return task

    async def get(self, organization_id: int) -> IndexedAvailability:
        """Cached availability, loading or reloading as needed."""
        reference = self._reference()
        entry = self._entries.get(organization_id)
        if entry is not None and self._is_fresh(entry, reference):
            return entry.availability

        task = self._start_load(organization_id)
        if entry is not None and entry.reference_date == reference.date():
            return entry.availability
        # shield: a cancelled reader must not cancel the shared load
        return (await asyncio.shield(task)).availability

    async def refresh(self, organization_id: int) -> IndexedAvailability:
        """Reload now, joining a load that is already running."""
        logger.info("Refreshing availability cache for organization %s", organization_id)
        task = self._start_load(organization_id)
        return (await asyncio.shield(task)).availability

    def invalidate(self, organization_id: Optional[int] = None) -> None:
        """Drop one organization's entry, or all entries; next read reloads."""
        if organization_id is None:
            self._entries.clear()
        else:
            self._entries.pop(organization_id, None)
        logger.info("Availability cache cleared (organization=%s)", organization_id)

    def metadata(self, organization_id: int) -> CacheMetadata:
        entry = self._entries.get(organization_id)
        if entry is None:
            return CacheMetadata(organization_id=organization_id, is_cached=False)
        return CacheMetadata(
            organization_id=organization_id,
            is_cached=True,
            loaded_at=entry.loaded_at,
            reference_date=entry.reference_date,
            record_count=len(entry.availability.instances),
        )
