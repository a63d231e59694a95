"""Tests for the CSV and SQL availability stores."""

import asyncio
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from conftest import LA, ORG
from slot_matcher.config import Settings
from slot_matcher.store import (
    Base,
    ClinicianAvailability,
    CsvAvailabilityStore,
    SqlAvailabilityStore,
    AvailabilityStoreError,
    build_store,
)

HEADER = (
    "id,user_id,range_start,range_end,timezone,day_of_week,is_repeating,"
    "end_on,appointment_location_id,parent_organization_id,deleted_at\n"
)


@pytest.fixture
def csv_path(tmp_path):
    rows = [
        "1,501,2025-10-14T16:30:00-07:00,2025-10-14T18:30:00-07:00,America/Los_Angeles,2,true,,77,85685,\n",
        "2,502,2025-10-15 17:00:00+00,2025-10-15 19:00:00+00,,,false,,,85685,\n",
        # duplicate id
        "1,503,2025-10-16T09:00:00Z,2025-10-16T10:00:00Z,UTC,,false,,,85685,\n",
        # missing range_start
        "4,504,,2025-10-16T10:00:00Z,UTC,,false,,,85685,\n",
        # start after end
        "5,505,2025-10-16T11:00:00Z,2025-10-16T10:00:00Z,UTC,,false,,,85685,\n",
        # unknown timezone falls back
        "6,506,2025-10-17T09:00:00Z,2025-10-17T10:00:00Z,Mars/Olympus,,false,,,85685,\n",
        # garbage timestamp
        "7,507,not-a-date,2025-10-17T10:00:00Z,UTC,,false,,,85685,\n",
        # other organization
        "8,508,2025-10-17T09:00:00Z,2025-10-17T10:00:00Z,UTC,,false,,,1,\n",
        # deleted rows are left for the expander to drop
        "9,509,2025-10-17T09:00:00Z,2025-10-17T10:00:00Z,UTC,,false,2025-11-30,,85685,2025-10-01 00:00:00+00\n",
    ]
    path = tmp_path / "clinician_availabilities.csv"
    path.write_text(HEADER + "".join(rows), encoding="utf-8")
    return path


def test_csv_store_reads_valid_rows(csv_path):
    store = CsvAvailabilityStore(csv_path, default_timezone="America/Los_Angeles")
    records = store.read_records()
    by_id = {r.id: r for r in records}

    assert sorted(by_id) == ["1", "2", "6", "8", "9"]
    weekly = by_id["1"]
    assert weekly.owner_id == "501"
    assert weekly.is_repeating is True
    assert weekly.day_of_week == 2
    assert weekly.location_id == "77"
    assert weekly.range_start == datetime(2025, 10, 14, 16, 30, tzinfo=LA)

    short_offset = by_id["2"]
    assert short_offset.range_start == datetime(2025, 10, 15, 17, tzinfo=timezone.utc)
    assert short_offset.timezone == "America/Los_Angeles"

    assert by_id["6"].timezone == "America/Los_Angeles"
    assert by_id["9"].deleted_at is not None
    assert by_id["9"].end_on == date(2025, 11, 30)


def test_csv_store_filters_organization(csv_path):
    store = CsvAvailabilityStore(csv_path)
    records = asyncio.run(store.load_availability(ORG, datetime(2025, 10, 13, tzinfo=LA), 60))
    assert all(r.owner_organization_id == ORG for r in records)
    assert "8" not in {r.id for r in records}


def test_csv_store_missing_file_raises(tmp_path):
    store = CsvAvailabilityStore(tmp_path / "missing.csv")
    with pytest.raises(AvailabilityStoreError):
        asyncio.run(store.load_availability(ORG, datetime(2025, 10, 13, tzinfo=LA), 60))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_sql_store_loads_live_rows_for_organization(engine):
    with Session(engine) as session:
        session.add_all([
            ClinicianAvailability(
                id=1, user_id=501, range_start=_utc(2025, 10, 14, 23, 30),
                range_end=_utc(2025, 10, 15, 1, 30), timezone="America/Los_Angeles",
                day_of_week=2, is_repeating=True, appointment_location_id=77,
                parent_organization_id=ORG,
            ),
            ClinicianAvailability(
                id=2, user_id=502, range_start=_utc(2025, 10, 16, 16),
                range_end=_utc(2025, 10, 16, 17), timezone="",
                parent_organization_id=ORG,
            ),
            ClinicianAvailability(
                id=3, user_id=503, range_start=_utc(2025, 10, 16, 16),
                range_end=_utc(2025, 10, 16, 17), timezone="UTC",
                parent_organization_id=ORG, deleted_at=_utc(2025, 10, 1),
            ),
            ClinicianAvailability(
                id=4, user_id=504, range_start=_utc(2025, 10, 16, 16),
                range_end=_utc(2025, 10, 16, 17), timezone="UTC",
                parent_organization_id=1,
            ),
            ClinicianAvailability(
                id=5, user_id=505, range_start=_utc(2026, 3, 1, 16),
                range_end=_utc(2026, 3, 1, 17), timezone="UTC",
                parent_organization_id=ORG,
            ),
        ])
        session.commit()

    store = SqlAvailabilityStore(engine, default_timezone="America/Los_Angeles")
    records = asyncio.run(store.load_availability(ORG, datetime(2025, 10, 13, tzinfo=LA), 60))

    assert [r.id for r in records] == ["1", "2"]
    weekly = records[0]
    assert weekly.owner_id == "501"
    assert weekly.range_start == _utc(2025, 10, 14, 23, 30)
    assert weekly.is_repeating is True
    assert weekly.location_id == "77"
    assert records[1].timezone == "America/Los_Angeles"


def test_sql_store_wraps_database_errors():
    engine = create_engine("sqlite://")  # no tables
    store = SqlAvailabilityStore(engine)
    with pytest.raises(AvailabilityStoreError):
        asyncio.run(store.load_availability(ORG, datetime(2025, 10, 13, tzinfo=LA), 60))


def test_build_store_prefers_database(tmp_path):
    settings = Settings(database_url="sqlite://", csv_path=str(tmp_path / "a.csv"))
    assert isinstance(build_store(settings), SqlAvailabilityStore)

    settings = Settings(csv_path=str(tmp_path / "a.csv"))
    assert isinstance(build_store(settings), CsvAvailabilityStore)

    with pytest.raises(AvailabilityStoreError):
        build_store(Settings())
