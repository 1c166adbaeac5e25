"""
Domain models for availability, slots and persisted scheduler records.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .time_utils import (
    DATE_PATTERN,
    DEFAULT_TIMEZONE,
    is_valid_time,
    minutes_to_time,
    parse_date,
    time_to_minutes,
)

MeetingDuration = Literal[15, 30, 60]
MeetingType = Literal["video", "phone"]
RecurrenceType = Literal["none", "weekly", "monthly"]
MeetingStatus = Literal["scheduled", "completed", "cancelled"]
TemplateType = Literal["confirmation", "reminder", "cancellation"]

MEETING_DURATIONS: tuple[int, ...] = (15, 30, 60)
MEETING_TYPES: tuple[str, ...] = ("video", "phone")
MEETING_STATUSES: tuple[str, ...] = ("scheduled", "completed", "cancelled")
TEMPLATE_TYPES: tuple[str, ...] = ("confirmation", "reminder", "cancellation")

# scheduled is the initial state; cancelled bookings may be reactivated
STATUS_TRANSITIONS: Dict[str, frozenset[str]] = {
    "scheduled": frozenset({"completed", "cancelled"}),
    "cancelled": frozenset({"scheduled"}),
    "completed": frozenset(),
}

CONFIG_ID = "meeting_config"


def can_transition(current: str, requested: str) -> bool:
    """Check whether a booking may move from one status to another."""
    if current == requested:
        return True
    return requested in STATUS_TRANSITIONS.get(current, frozenset())


def _check_date(value: str) -> str:
    if not DATE_PATTERN.match(value):
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")
    return value


def _check_time(value: str) -> str:
    if not is_valid_time(value):
        raise ValueError(f"Invalid time '{value}', expected HH:mm")
    return value


@dataclass(frozen=True)
class TimeRange:
    """
    Immutable half-open interval [start, end) in minutes since midnight.

    Invariant: start must be before end.
    """
    start: int
    end: int

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(
                f"Start time {minutes_to_time(self.start)} must be before "
                f"end time {minutes_to_time(self.end)}"
            )

    @classmethod
    def from_times(cls, start_time: str, end_time: str) -> "TimeRange":
        return cls(start=time_to_minutes(start_time), end=time_to_minutes(end_time))

    @classmethod
    def from_start(cls, start_time: str, duration_minutes: int) -> "TimeRange":
        start = time_to_minutes(start_time)
        return cls(start=start, end=start + duration_minutes)

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return self.end - self.start

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another."""
        return self.start < other.end and self.end > other.start

    def contains(self, minute: int) -> bool:
        """Check if a minute offset falls inside the range."""
        return self.start <= minute < self.end

    def intersect(self, other: "TimeRange") -> "TimeRange | None":
        """
        Calculate the intersection of two time ranges.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None
        return TimeRange(start=max(self.start, other.start), end=min(self.end, other.end))

    def __str__(self) -> str:
        return f"{minutes_to_time(self.start)} - {minutes_to_time(self.end)}"


@dataclass
class TimeSlot:
    """
    A discrete bookable slot. Recomputed on every query, never persisted.
    """
    id: str
    date: str
    time: str
    available: bool
    blocked: bool = False

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Mon, Jun 03, 2024 at 10:30 AM
        """
        day = parse_date(self.date)
        minutes = time_to_minutes(self.time)
        hour = minutes // 60
        suffix = "AM" if hour < 12 else "PM"
        display_hour = hour % 12 or 12
        return f"{day.strftime('%a, %b %d, %Y')} at {display_hour}:{minutes % 60:02d} {suffix}"


@dataclass
class DaySlots:
    """Slots generated for a single calendar day."""
    date: str
    slots: List[TimeSlot] = field(default_factory=list)


class Record(BaseModel):
    """
    Base class for persisted records.

    Attributes are snake_case in Python; the stored document uses camelCase.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = ""

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the JSON document shape used by every backend."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, data: Dict[str, Any]):
        return cls.model_validate(data)

    @classmethod
    def field_name(cls, key: str) -> str:
        """Resolve an attribute name or camelCase alias to the attribute name."""
        if key in cls.model_fields:
            return key
        for name, info in cls.model_fields.items():
            if info.alias == key:
                return name
        raise KeyError(key)


class MeetingBooking(Record):
    """A booked meeting."""
    name: str
    email: str
    phone: str
    meeting_type: MeetingType
    duration: MeetingDuration
    date: str
    time: str
    recurrence: RecurrenceType = "none"
    recurrence_end_date: Optional[str] = None
    status: MeetingStatus = "scheduled"
    join_link: Optional[str] = None
    phone_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    reminder_sent: bool = False
    confirmation_sent: bool = False

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: str) -> str:
        return _check_date(value)

    @field_validator("time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _check_time(value)

    @field_validator("recurrence_end_date")
    @classmethod
    def validate_recurrence_end(cls, value: Optional[str]) -> Optional[str]:
        return _check_date(value) if value else value

    def time_range(self) -> TimeRange:
        """The occupied interval [time, time + duration)."""
        return TimeRange.from_start(self.time, self.duration)


class AvailabilityConfig(BaseModel):
    """
    Working-hours configuration used for slot generation.

    Weekdays are indexed 0=Sunday ... 6=Saturday.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start_time: str = "10:00"
    end_time: str = "18:00"
    timezone: str = DEFAULT_TIMEZONE
    working_days: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    slot_duration: int = 15
    buffer_time: int = 0

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, value: str) -> str:
        return _check_time(value)

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, value: List[int]) -> List[int]:
        """Ensure weekdays are in valid range and non-empty."""
        if not value:
            raise ValueError("At least one working day must be selected")
        invalid_days = [day for day in value if day not in range(7)]
        if invalid_days:
            raise ValueError(f"working_days must be between 0 and 6, got {invalid_days}")
        return value

    @field_validator("slot_duration")
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        if not 5 <= value <= 120:
            raise ValueError("Slot duration must be between 5 and 120 minutes")
        return value

    @field_validator("buffer_time")
    @classmethod
    def validate_buffer_time(cls, value: int) -> int:
        if not 0 <= value <= 60:
            raise ValueError("Buffer time must be between 0 and 60 minutes")
        return value

    @model_validator(mode="after")
    def validate_hours_order(self) -> "AvailabilityConfig":
        """Ensure the configured window opens before it closes."""
        if time_to_minutes(self.end_time) <= time_to_minutes(self.start_time):
            raise ValueError("End time must be after start time")
        return self

    def working_hours(self) -> TimeRange:
        return TimeRange.from_times(self.start_time, self.end_time)


class BlockedTimeSlot(Record):
    """An admin-declared unavailability window on one date."""
    date: str
    start_time: str
    end_time: str
    reason: Optional[str] = None
    created_at: str = ""

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: str) -> str:
        return _check_date(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_times(cls, value: str) -> str:
        return _check_time(value)

    @model_validator(mode="after")
    def validate_range(self) -> "BlockedTimeSlot":
        if time_to_minutes(self.end_time) <= time_to_minutes(self.start_time):
            raise ValueError("Invalid time range: end time must be after start time")
        return self

    def time_range(self) -> TimeRange:
        return TimeRange.from_times(self.start_time, self.end_time)


class EmailTemplate(Record):
    """Notification template with {{placeholder}} variables."""
    type: TemplateType
    subject: str
    body: str
    variables: List[str] = Field(default_factory=list)


class MeetingConfig(Record):
    """Singleton deployment configuration."""
    id: str = CONFIG_ID
    availability: AvailabilityConfig = Field(default_factory=AvailabilityConfig)
    durations: List[MeetingDuration] = Field(default_factory=lambda: list(MEETING_DURATIONS))
    meeting_types: List[MeetingType] = Field(default_factory=lambda: list(MEETING_TYPES))
    email_templates: List[EmailTemplate] = Field(default_factory=list)
    default_phone_number: Optional[str] = None
    auto_generate_join_link: bool = True
    reminder_hours: int = 24


def default_meeting_config() -> MeetingConfig:
    """A fresh copy of the default configuration."""
    return MeetingConfig()


NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z\s.'-]*$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{0,15}$")


class BookingRequest(BaseModel):
    """Data submitted by the booking form."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    email: str
    phone: str
    meeting_type: MeetingType
    duration: MeetingDuration
    date: str
    time: str
    recurrence: RecurrenceType = "none"
    recurrence_end_date: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: str) -> str:
        return _check_date(value)

    @field_validator("time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _check_time(value)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if not 2 <= len(value) <= 100:
            raise ValueError("Name must be between 2 and 100 characters")
        if not NAME_PATTERN.match(value):
            raise ValueError("Name can only contain letters and spaces")
        return value

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Please enter a valid email address")
        return value

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: str) -> str:
        normalized = re.sub(r"[\s()-]", "", value)
        if not PHONE_PATTERN.match(normalized):
            raise ValueError("Please enter a valid phone number")
        return normalized

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) > 500:
            raise ValueError("Notes must be less than 500 characters")
        return value or None

    @model_validator(mode="after")
    def validate_recurrence(self) -> "BookingRequest":
        if self.recurrence_end_date:
            _check_date(self.recurrence_end_date)
            if self.recurrence == "none":
                raise ValueError("recurrenceEndDate requires a recurring meeting")
            if self.recurrence_end_date <= self.date:
                raise ValueError("recurrenceEndDate must be after the meeting date")
        return self

    def to_booking(self) -> MeetingBooking:
        return MeetingBooking(**self.model_dump())


class ExportMetadata(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    exported_at: str
    version: str
    backend: str


class StorageData(BaseModel):
    """Canonical backup/restore payload covering all four collections."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    meetings: List[MeetingBooking] = Field(default_factory=list)
    config: Optional[MeetingConfig] = None
    blocked_slots: List[BlockedTimeSlot] = Field(default_factory=list)
    email_templates: List[EmailTemplate] = Field(default_factory=list)
    metadata: Optional[ExportMetadata] = None

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
