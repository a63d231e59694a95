"""Availability store adapters: exported CSV file or the clinician_availabilities table."""

import asyncio
import csv
import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Protocol, Union

from pydantic import ValidationError
from sqlalchemy import Boolean, DateTime, Integer, String, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from slot_matcher.config import Settings
from slot_matcher.schema import AvailabilityRecord
from slot_matcher.timezones import DEFAULT_TIMEZONE, is_valid_timezone

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("id", "user_id", "range_start", "range_end")


class AvailabilityStoreError(Exception):
    """Raw availability could not be loaded."""


class AvailabilityStore(Protocol):
    async def load_availability(
        self,
        organization_id: int,
        reference: datetime,
        window_days: int,
    ) -> list[AvailabilityRecord]:
        ...


# --- CSV export ---


def _blank(v: Optional[str]) -> Optional[str]:
    v = (v or "").strip()
    return v or None


def _parse_bool(v: Optional[str]) -> bool:
    return (v or "").strip().lower() in ("true", "t", "1")


def _parse_int(v: Optional[str]) -> Optional[int]:
    v = _blank(v)
    return int(float(v)) if v is not None else None


def _parse_timestamp(v: Optional[str]) -> Optional[str]:
    # Postgres exports short offsets like "+00"
    v = _blank(v)
    return re.sub(r"(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?[+-]\d{2})$", r"\1:00", v) if v else None


class CsvAvailabilityStore:
    """Reads a clinician_availabilities CSV export, one record per row."""

    def __init__(self, path: Union[str, Path], default_timezone: str = DEFAULT_TIMEZONE) -> None:
        self.path = Path(path)
        self.default_timezone = default_timezone

    def _row_to_record(self, row: dict[str, str]) -> AvailabilityRecord:
        tz = _blank(row.get("timezone")) or self.default_timezone
        if not is_valid_timezone(tz):
            logger.warning(
                "Invalid timezone %r for availability %s, using %s",
                tz, row.get("id"), self.default_timezone,
            )
            tz = self.default_timezone

        return AvailabilityRecord(
            id=_parse_int(row["id"]),
            owner_id=_parse_int(row["user_id"]),
            range_start=_parse_timestamp(row["range_start"]),
            range_end=_parse_timestamp(row["range_end"]),
            timezone=tz,
            day_of_week=_parse_int(row.get("day_of_week")),
            is_repeating=_parse_bool(row.get("is_repeating")),
            end_on=_parse_timestamp(row.get("end_on")),
            deleted_at=_parse_timestamp(row.get("deleted_at")),
            location_id=_parse_int(row.get("appointment_location_id")),
            owner_organization_id=_parse_int(row.get("parent_organization_id")),
        )

    def read_records(self) -> list[AvailabilityRecord]:
        """Parse every usable row; malformed and duplicate rows are skipped."""
        try:
            with open(self.path, newline="", encoding="utf-8") as f:
                rows = list(csv.DictReader(f))
        except OSError as e:
            raise AvailabilityStoreError(f"Failed to load availability CSV: {e}") from e

        records: list[AvailabilityRecord] = []
        seen_ids: set[str] = set()
        for line_no, raw in enumerate(rows, start=2):
            row = {(k or "").strip(): v for k, v in raw.items()}
            if any(not _blank(row.get(col)) for col in REQUIRED_COLUMNS):
                logger.warning("Skipping CSV line %d with missing required fields", line_no)
                continue
            try:
                record = self._row_to_record(row)
            except (ValidationError, ValueError) as e:
                logger.warning("Skipping malformed CSV line %d: %s", line_no, e)
                continue
            if record.id in seen_ids:
                logger.warning("Skipping duplicate availability id %s", record.id)
                continue
            seen_ids.add(record.id)
            records.append(record)

        logger.info("Loaded %d availability records from %s", len(records), self.path)
        return records

    async def load_availability(
        self,
        organization_id: int,
        reference: datetime,
        window_days: int,
    ) -> list[AvailabilityRecord]:
        records = await asyncio.to_thread(self.read_records)
        return [r for r in records if r.owner_organization_id == organization_id]


# --- Relational store ---


class Base(DeclarativeBase):
    pass


class ClinicianAvailability(Base):
    __tablename__ = "clinician_availabilities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    range_start: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    range_end: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    timezone: Mapped[str] = mapped_column(String(100))
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 0=Sunday
    is_repeating: Mapped[bool] = mapped_column(Boolean, default=False)
    contact_type_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    appointment_location_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    parent_organization_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


def _naive_utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class SqlAvailabilityStore:
    """Reads clinician_availabilities through SQLAlchemy."""

    def __init__(self, engine: Union[Engine, str], default_timezone: str = DEFAULT_TIMEZONE) -> None:
        self.engine = create_engine(engine) if isinstance(engine, str) else engine
        self.default_timezone = default_timezone

    def _to_record(self, row: ClinicianAvailability) -> AvailabilityRecord:
        return AvailabilityRecord(
            id=row.id,
            owner_id=row.user_id,
            range_start=row.range_start,
            range_end=row.range_end,
            timezone=row.timezone or self.default_timezone,
            day_of_week=row.day_of_week,
            is_repeating=bool(row.is_repeating),
            end_on=row.end_on,
            deleted_at=row.deleted_at,
            location_id=row.appointment_location_id,
            owner_organization_id=row.parent_organization_id,
        )

    def read_records(
        self,
        organization_id: int,
        reference: datetime,
        window_days: int,
    ) -> list[AvailabilityRecord]:
        """
        Coarse prefilter on deletion, organization and start range; the
        expander applies the exact window rules in each record's timezone.
        """
        # A day of slack on both sides covers any UTC offset
        lower = _naive_utc(reference - timedelta(days=1))
        upper = _naive_utc(reference + timedelta(days=window_days + 1))
        stmt = (
            select(ClinicianAvailability)
            .where(
                ClinicianAvailability.deleted_at.is_(None),
                ClinicianAvailability.parent_organization_id == organization_id,
                ClinicianAvailability.range_start >= lower,
                ClinicianAvailability.range_start <= upper,
            )
            .order_by(ClinicianAvailability.range_start)
        )

        records: list[AvailabilityRecord] = []
        with Session(self.engine) as session:
            for row in session.scalars(stmt):
                try:
                    records.append(self._to_record(row))
                except ValidationError as e:
                    logger.warning("Skipping malformed availability %s: %s", row.id, e)

        logger.info("Loaded %d availability records from database", len(records))
        return records

    async def load_availability(
        self,
        organization_id: int,
        reference: datetime,
        window_days: int,
    ) -> list[AvailabilityRecord]:
        try:
            return await asyncio.to_thread(self.read_records, organization_id, reference, window_days)
        except SQLAlchemyError as e:
            raise AvailabilityStoreError(f"Database query failed: {e}") from e


def build_store(settings: Settings) -> AvailabilityStore:
    """Database when AVAILABILITY_DATABASE_URL is set, else the CSV export."""
    if settings.database_url:
        return SqlAvailabilityStore(settings.database_url, settings.default_timezone)
    if settings.csv_path:
        return CsvAvailabilityStore(settings.csv_path, settings.default_timezone)
    raise AvailabilityStoreError(
        "No availability source configured; set AVAILABILITY_DATABASE_URL or AVAILABILITY_CSV_PATH"
    )
