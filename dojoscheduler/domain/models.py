"""
Domain models for users, availabilities, meetings and their aggregates.

Persisted entities are pydantic models with camelCase aliases so the
stored item layout stays stable regardless of the Python attribute names.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import pendulum
from pendulum import DateTime
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Sentinel value used as the key of the singleton statistics records.
STATISTICS_KEY = "STATISTICS"


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    @classmethod
    def from_iso(cls, start: str, end: str) -> "TimeRange":
        """Parse two ISO-8601 strings into a range."""
        start_dt = pendulum.parse(start)
        end_dt = pendulum.parse(end)
        if not isinstance(start_dt, DateTime) or not isinstance(end_dt, DateTime):
            raise ValueError(f"Could not parse time range: {start} - {end}")
        return cls(start=start_dt, end=end_dt)

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def in_timezone(self, timezone: str) -> "TimeRange":
        return TimeRange(start=self.start.in_timezone(timezone), end=self.end.in_timezone(timezone))

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


def to_utc_iso(value: str) -> str:
    """Normalise an ISO-8601 timestamp to UTC."""
    parsed = pendulum.parse(value)
    if not isinstance(parsed, DateTime):
        raise ValueError(f"Expected a date and time, got {value!r}")
    return parsed.in_timezone("UTC").to_iso8601_string()


def _dedupe(values: List[str]) -> List[str]:
    seen: set[str] = set()
    deduped: List[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            deduped.append(value)
            seen.add(value)
    return deduped


class StoredModel(BaseModel):
    """Base class for everything written to the store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_item(self) -> Dict[str, Any]:
        """Dump as a store item. Unset optional fields are omitted."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    @classmethod
    def from_item(cls, item: Mapping[str, Any]):
        return cls.model_validate(dict(item))


class MeetingStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CANCELED = "CANCELED"


class User(StoredModel):
    """A registered user and their last known ratings."""

    username: str
    email: str = ""
    name: str = ""
    dojo_cohort: Optional[str] = None
    discord_username: Optional[str] = None

    chesscom_username: Optional[str] = None
    lichess_username: Optional[str] = None
    fide_id: Optional[str] = None
    uscf_id: Optional[str] = None
    ecf_id: Optional[str] = None

    current_chesscom_rating: int = 0
    current_lichess_rating: int = 0
    current_fide_rating: int = 0
    current_uscf_rating: int = 0
    current_ecf_rating: int = 0

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("username must not be empty")
        return value


class Availability(StoredModel):
    """
    An owner-published, bookable time slot identified by ``(owner, id)``.

    Never updated in place: it exists until the owner deletes it or a
    booking consumes it.
    """

    owner: str
    id: str
    owner_display_name: Optional[str] = None
    owner_cohort: str
    start_time: str
    end_time: str
    types: List[str]
    cohorts: List[str]
    location: Optional[str] = None
    description: Optional[str] = None

    @field_validator("owner", "id", "owner_cohort")
    @classmethod
    def validate_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("types", "cohorts")
    @classmethod
    def validate_tags(cls, value: List[str]) -> List[str]:
        """Deduplicate tags, preserving order, and require at least one."""
        deduped = _dedupe(value)
        if not deduped:
            raise ValueError("at least one value is required")
        return deduped

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_timestamp(cls, value: str) -> str:
        return to_utc_iso(value)

    @model_validator(mode="after")
    def validate_window(self) -> "Availability":
        self.time_range()
        return self

    @classmethod
    def new(cls, owner: str, **fields: Any) -> "Availability":
        """Create an availability with a freshly generated id."""
        return cls(owner=owner, id=str(uuid.uuid4()), **fields)

    def key(self) -> Dict[str, str]:
        return {"owner": self.owner, "id": self.id}

    def time_range(self) -> TimeRange:
        return TimeRange.from_iso(self.start_time, self.end_time)


class MeetingRequest(BaseModel):
    """What a participant asks for when booking an availability."""

    participant: str
    participant_cohort: str
    type: str
    id: Optional[str] = None


class Meeting(StoredModel):
    """A confirmed booking that consumed exactly one availability."""

    id: str
    owner: str
    owner_cohort: str
    participant: str
    participant_cohort: str
    availability_id: str
    type: str
    start_time: str
    end_time: str
    location: Optional[str] = None
    description: Optional[str] = None
    status: MeetingStatus = MeetingStatus.SCHEDULED
    canceler: Optional[str] = None

    @classmethod
    def from_booking(cls, availability: Availability, request: MeetingRequest) -> "Meeting":
        """Build the meeting that replaces ``availability``."""
        return cls(
            id=request.id or str(uuid.uuid4()),
            owner=availability.owner,
            owner_cohort=availability.owner_cohort,
            participant=request.participant,
            participant_cohort=request.participant_cohort,
            availability_id=availability.id,
            type=request.type,
            start_time=availability.start_time,
            end_time=availability.end_time,
            location=availability.location,
            description=availability.description,
        )

    def key(self) -> Dict[str, str]:
        return {"id": self.id}

    def time_range(self) -> TimeRange:
        return TimeRange.from_iso(self.start_time, self.end_time)


class AvailabilityStats(StoredModel):
    """Aggregate counters over the availability lifecycle."""

    created: int = 0
    deleted: int = 0
    booked: int = 0
    owner_cohorts: Dict[str, int] = {}
    deleter_cohorts: Dict[str, int] = {}
    bookable_cohorts: Dict[str, int] = {}
    types: Dict[str, int] = {}

    @classmethod
    def seeded(cls, cohorts: List[str], types: List[str]) -> "AvailabilityStats":
        return cls(
            owner_cohorts=dict.fromkeys(cohorts, 0),
            deleter_cohorts=dict.fromkeys(cohorts, 0),
            bookable_cohorts=dict.fromkeys(cohorts, 0),
            types=dict.fromkeys(types, 0),
        )


class MeetingStats(StoredModel):
    """Aggregate counters over the meeting lifecycle."""

    created: int = 0
    canceled: int = 0
    owner_cohorts: Dict[str, int] = {}
    participant_cohorts: Dict[str, int] = {}
    canceler_cohorts: Dict[str, int] = {}
    types: Dict[str, int] = {}

    @classmethod
    def seeded(cls, cohorts: List[str], types: List[str]) -> "MeetingStats":
        return cls(
            owner_cohorts=dict.fromkeys(cohorts, 0),
            participant_cohorts=dict.fromkeys(cohorts, 0),
            canceler_cohorts=dict.fromkeys(cohorts, 0),
            types=dict.fromkeys(types, 0),
        )
