"""Pydantic models for availability records, preferences and matched slots."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from slot_matcher.timezones import is_valid_timezone

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# --- Raw and expanded availability (used by expander/matcher) ---


class AvailabilityRecord(BaseModel):
    """One clinician availability window as stored, one-time or weekly."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str = Field(..., description="Record identifier")
    owner_id: str = Field(..., description="Clinician that owns this window")
    range_start: datetime
    range_end: datetime
    timezone: Optional[str] = Field(
        default=None,
        description="IANA timezone; organizational default when empty",
    )
    day_of_week: Optional[int] = Field(
        default=None,
        ge=0,
        le=6,
        description="0=Sunday, 6=Saturday; required for repeating records",
    )
    is_repeating: bool = False
    end_on: Optional[date] = None
    deleted_at: Optional[datetime] = None
    location_id: Optional[str] = None
    owner_organization_id: Optional[int] = None

    @field_validator("range_start", "range_end", "deleted_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps without an offset are UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("end_on", mode="before")
    @classmethod
    def date_part(cls, v):
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        return v or None

    @field_validator("timezone", mode="before")
    @classmethod
    def blank_timezone(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def check_range(self) -> "AvailabilityRecord":
        if self.range_start > self.range_end:
            raise ValueError("range_start must not be after range_end")
        return self


class ExpandedInstance(AvailabilityRecord):
    """A concrete, non-repeating occurrence of an availability record."""

    original_id: str = Field(..., description="Id of the source record")
    expanded_from_repeating: bool = False


class IndexedAvailability(BaseModel):
    """Flat instance list plus weekday and time-of-day lookups."""

    instances: list[ExpandedInstance] = Field(default_factory=list)
    by_day_of_week: dict[int, list[ExpandedInstance]] = Field(default_factory=dict)
    by_time_of_day: dict[str, list[ExpandedInstance]] = Field(default_factory=dict)


# --- Preference model (produced by the LLM interpretation step) ---


class RecurringPattern(str, Enum):
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    DAILY = "daily"
    NONE = "none"


class TimeRange(BaseModel):
    """Wall-clock time range in HH:MM, 24-hour format."""

    start: str = Field(..., pattern=HHMM_PATTERN, description="Start time HH:MM")
    end: str = Field(..., pattern=HHMM_PATTERN, description="End time HH:MM")
    timezone: Optional[str] = Field(default=None, description="IANA timezone of the user")

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_timezone(v):
            raise ValueError(f"unknown timezone: {v}")
        return v


class DateConstraints(BaseModel):
    """Absolute date bounds; either side may be open."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    relative: Optional[str] = Field(default=None, description="e.g. next_week")


class PreferenceModel(BaseModel):
    """Structured scheduling intent extracted from free text."""

    days_of_week: list[Annotated[int, Field(ge=0, le=6)]] = Field(
        default_factory=list,
        description="Weekday numbers 0=Sunday, 6=Saturday",
    )
    time_ranges: list[TimeRange] = Field(default_factory=list)
    date_constraints: Optional[DateConstraints] = None
    specific_dates: list[date] = Field(default_factory=list)
    recurring_pattern: RecurringPattern = RecurringPattern.NONE

    @field_validator("days_of_week", "time_ranges", "specific_dates", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return [] if v is None else v

    @field_validator("recurring_pattern", mode="before")
    @classmethod
    def null_pattern(cls, v):
        return RecurringPattern.NONE if v is None else v


# --- Matcher output ---


class ScoredSlot(BaseModel):
    """A single 30-minute bookable unit with its match score."""

    model_config = ConfigDict(frozen=True)

    availability_id: str
    original_id: str
    owner_id: str
    start_time: datetime
    end_time: datetime
    timezone: Optional[str] = None
    location_id: Optional[str] = None
    match_score: float = Field(..., ge=0.0, le=1.0)


class FormattedSlot(ScoredSlot):
    """ScoredSlot plus display strings."""

    formatted_date: str
    formatted_time: str
    timezone_name: str
    display_text: str


# --- Request / Response ---


class InterpretRequest(BaseModel):
    """Request body for POST /interpret-scheduling."""

    user_input: str = Field(..., min_length=10, max_length=500)
    user_timezone: str = Field(..., description="IANA timezone of the user")

    @field_validator("user_timezone")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        if not is_valid_timezone(v):
            raise ValueError("user_timezone must be a valid IANA timezone")
        return v


class InterpretResponse(BaseModel):
    success: bool = True
    interpreted_preferences: PreferenceModel


class MatchRequest(BaseModel):
    """Request body for POST /match-availability."""

    interpreted_preferences: PreferenceModel
    organization_id: Optional[int] = Field(
        default=None,
        description="Defaults to the configured organization",
    )
    display_timezone: Optional[str] = None

    @field_validator("display_timezone")
    @classmethod
    def known_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_timezone(v):
            raise ValueError("display_timezone must be a valid IANA timezone")
        return v


class MatchResponse(BaseModel):
    success: bool = True
    matched_slots: list[FormattedSlot] = Field(..., description="Top 5 ranked slots")


class CacheMetadata(BaseModel):
    organization_id: int
    is_cached: bool
    loaded_at: Optional[datetime] = None
    reference_date: Optional[date] = None
    record_count: int = 0
