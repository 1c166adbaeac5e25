"""
Domain layer - Pure business logic without external dependencies.
"""

from .models import (
    AvailabilityConfig,
    BlockedTimeSlot,
    BookingRequest,
    DaySlots,
    EmailTemplate,
    MeetingBooking,
    MeetingConfig,
    StorageData,
    TimeRange,
    TimeSlot,
)
from .slot_calculator import SlotCalculator

__all__ = [
    "AvailabilityConfig",
    "BlockedTimeSlot",
    "BookingRequest",
    "DaySlots",
    "EmailTemplate",
    "MeetingBooking",
    "MeetingConfig",
    "StorageData",
    "TimeRange",
    "TimeSlot",
    "SlotCalculator",
]
