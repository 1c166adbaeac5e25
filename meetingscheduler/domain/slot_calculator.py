"""
Core business logic for calculating bookable time slots.

This is the heart of the application - pure domain logic without any
external dependencies (no storage, no I/O). The only impurity is the clock,
which is injectable so callers and tests can pin "now".
"""

from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional, Sequence

from pendulum import DateTime

from .models import (
    AvailabilityConfig,
    BlockedTimeSlot,
    DaySlots,
    MeetingBooking,
    TimeRange,
    TimeSlot,
)
from .time_utils import (
    format_date,
    is_working_day,
    iter_dates,
    minutes_to_time,
    now_in,
    slot_datetime,
    time_to_minutes,
)

Clock = Callable[[], DateTime]


class SlotCalculator:
    """
    Generates per-day slots from working hours and filters them by duration.

    Algorithm:
    1. Skip days that are not configured working days
    2. Step through working hours in slot_duration increments
    3. Mark slots inside blocked windows, at booked times or in the past
    4. Optionally keep only slots that fit a requested meeting duration
    """

    def __init__(self, config: AvailabilityConfig, clock: Optional[Clock] = None):
        self.config = config
        self._clock = clock or (lambda: now_in(config.timezone))

    def generate_slots_for_date(
        self,
        day: date,
        bookings: Sequence[MeetingBooking] = (),
        blocked_slots: Sequence[BlockedTimeSlot] = (),
    ) -> List[TimeSlot]:
        """
        Generate the slots of a single day.

        Args:
            day: Calendar date to generate slots for
            bookings: Existing bookings (only scheduled ones block a slot)
            blocked_slots: Admin-blocked windows

        Returns:
            Slots in chronological order; empty on non-working days
        """
        if not is_working_day(day, self.config):
            return []

        date_string = format_date(day)
        blocked_ranges = [
            block.time_range() for block in blocked_slots if block.date == date_string
        ]
        booked_times = {
            booking.time
            for booking in bookings
            if booking.date == date_string and booking.status == "scheduled"
        }
        now = self._clock()

        slots: List[TimeSlot] = []
        for minutes in self._slot_offsets():
            time_string = minutes_to_time(minutes)

            is_blocked = any(blocked.contains(minutes) for blocked in blocked_ranges)
            is_booked = time_string in booked_times
            # a slot starting exactly now is already gone
            is_past = not slot_datetime(day, time_string, self.config.timezone) > now

            slots.append(
                TimeSlot(
                    id=f"{date_string}-{time_string}",
                    date=date_string,
                    time=time_string,
                    available=not (is_blocked or is_booked or is_past),
                    blocked=is_blocked,
                )
            )

        return slots

    def generate_slots(
        self,
        start_date: date,
        end_date: date,
        bookings: Sequence[MeetingBooking] = (),
        blocked_slots: Sequence[BlockedTimeSlot] = (),
    ) -> List[DaySlots]:
        """
        Generate slots for every day from start_date to end_date inclusive.

        Days without any slot (non-working days) are omitted.
        """
        result: List[DaySlots] = []

        for day in iter_dates(start_date, end_date):
            slots = self.generate_slots_for_date(day, bookings, blocked_slots)
            if slots:
                result.append(DaySlots(date=format_date(day), slots=slots))

        return result

    def can_accommodate_duration(
        self,
        slot: TimeSlot,
        duration: int,
        bookings: Sequence[MeetingBooking] = (),
    ) -> bool:
        """
        Check whether a meeting of the given duration can start at this slot.

        A meeting may end exactly at the end of working hours.
        """
        if not slot.available:
            return False

        start = time_to_minutes(slot.time)
        if start + duration > time_to_minutes(self.config.end_time):
            return False

        candidate = TimeRange(start=start, end=start + duration)
        return not any(
            candidate.overlaps(booking.time_range())
            for booking in self._scheduled_on(bookings, slot.date)
        )

    def get_available_slots_for_duration(
        self,
        days: Iterable[DaySlots],
        duration: int,
        bookings: Sequence[MeetingBooking] = (),
    ) -> List[DaySlots]:
        """Keep only slots that fit the duration, dropping days left empty."""
        result: List[DaySlots] = []

        for day in days:
            slots = [
                slot for slot in day.slots
                if self.can_accommodate_duration(slot, duration, bookings)
            ]
            if slots:
                result.append(DaySlots(date=day.date, slots=slots))

        return result

    def get_next_available_slot(
        self,
        duration: int,
        bookings: Sequence[MeetingBooking] = (),
        blocked_slots: Sequence[BlockedTimeSlot] = (),
        days_ahead: int = 30,
    ) -> TimeSlot | None:
        """Find the earliest slot within days_ahead that fits the duration."""
        today = self._clock().date()
        end = today + timedelta(days=days_ahead)

        days = self.generate_slots(today, end, bookings, blocked_slots)
        for day in self.get_available_slots_for_duration(days, duration, bookings):
            return day.slots[0]

        return None

    def _slot_offsets(self) -> range:
        hours = self.config.working_hours()
        step = self.config.slot_duration
        # only full slots: floor((end - start) / step) of them
        return range(hours.start, hours.end - step + 1, step)

    @staticmethod
    def _scheduled_on(bookings: Sequence[MeetingBooking], date_string: str) -> List[MeetingBooking]:
        return [
            booking for booking in bookings
            if booking.date == date_string and booking.status == "scheduled"
        ]
