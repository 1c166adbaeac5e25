"""
Tests for slot calculator.
"""

from datetime import date

import pendulum

from meetingscheduler.domain.models import AvailabilityConfig, BlockedTimeSlot
from meetingscheduler.domain.slot_calculator import SlotCalculator

from conftest import NOW, TZ, make_booking

MONDAY = date(2024, 6, 3)


def _calculator(now=NOW, **config) -> SlotCalculator:
    return SlotCalculator(AvailabilityConfig(timezone=TZ, **config), clock=lambda: now)


def _blocked(start_time, end_time, day="2024-06-03") -> BlockedTimeSlot:
    return BlockedTimeSlot(id=f"b-{start_time}", date=day, start_time=start_time, end_time=end_time)


class TestGenerateSlots:
    """Tests for per-day slot generation."""

    def test_full_working_day(self):
        """10:00-18:00 in 15 minute steps gives 32 slots."""
        slots = _calculator().generate_slots_for_date(MONDAY)

        assert len(slots) == 32
        assert slots[0].time == "10:00"
        assert slots[-1].time == "17:45"
        assert slots[0].id == "2024-06-03-10:00"
        assert all(slot.available for slot in slots)

    def test_non_working_day_has_no_slots(self):
        calculator = _calculator()

        assert calculator.generate_slots_for_date(date(2024, 6, 8)) == []  # Saturday
        assert calculator.generate_slots_for_date(date(2024, 6, 9)) == []  # Sunday

    def test_only_full_slots_are_generated(self):
        """A trailing partial step is dropped."""
        slots = _calculator(start_time="10:00", end_time="10:50").generate_slots_for_date(MONDAY)

        assert [slot.time for slot in slots] == ["10:00", "10:15", "10:30"]

    def test_past_slots_are_unavailable(self):
        """A slot starting exactly now is already in the past."""
        now = pendulum.datetime(2024, 6, 3, 10, 15, tz=TZ)
        slots = _calculator(now=now).generate_slots_for_date(MONDAY)
        by_time = {slot.time: slot for slot in slots}

        assert not by_time["10:00"].available
        assert not by_time["10:15"].available
        assert by_time["10:30"].available
        assert not by_time["10:00"].blocked

    def test_booked_start_time_is_unavailable(self):
        bookings = [make_booking(time="11:00", duration=30)]
        slots = _calculator().generate_slots_for_date(MONDAY, bookings)
        by_time = {slot.time: slot for slot in slots}

        assert not by_time["11:00"].available
        assert by_time["11:15"].available
        assert not by_time["11:00"].blocked

    def test_cancelled_booking_does_not_block(self):
        bookings = [make_booking(time="11:00", status="cancelled")]
        slots = _calculator().generate_slots_for_date(MONDAY, bookings)

        assert all(slot.available for slot in slots)

    def test_blocked_window_is_half_open(self):
        slots = _calculator().generate_slots_for_date(MONDAY, blocked_slots=[_blocked("12:00", "13:00")])
        by_time = {slot.time: slot for slot in slots}

        assert by_time["12:00"].blocked and not by_time["12:00"].available
        assert by_time["12:45"].blocked
        assert not by_time["13:00"].blocked
        assert by_time["13:00"].available

    def test_blocks_on_other_dates_are_ignored(self):
        slots = _calculator().generate_slots_for_date(
            MONDAY, blocked_slots=[_blocked("10:00", "18:00", day="2024-06-04")]
        )

        assert all(slot.available for slot in slots)

    def test_generate_slots_skips_non_working_days(self):
        days = _calculator().generate_slots(date(2024, 6, 1), date(2024, 6, 9))

        assert [day.date for day in days] == [
            "2024-06-03", "2024-06-04", "2024-06-05", "2024-06-06", "2024-06-07",
        ]

    def test_custom_working_days(self):
        days = _calculator(working_days=[0, 6]).generate_slots(date(2024, 6, 3), date(2024, 6, 9))

        assert [day.date for day in days] == ["2024-06-08", "2024-06-09"]


class TestDurationFit:
    """Tests for duration filtering."""

    def test_meeting_may_end_at_closing_time(self):
        calculator = _calculator()
        slots = {slot.time: slot for slot in calculator.generate_slots_for_date(MONDAY)}

        assert calculator.can_accommodate_duration(slots["17:30"], 30)
        assert not calculator.can_accommodate_duration(slots["17:30"], 60)

    def test_overlap_with_longer_booking(self):
        bookings = [make_booking(time="11:00", duration=30)]
        calculator = _calculator()
        slots = {
            slot.time: slot for slot in calculator.generate_slots_for_date(MONDAY, bookings)
        }

        assert calculator.can_accommodate_duration(slots["10:30"], 30, bookings)
        assert not calculator.can_accommodate_duration(slots["10:45"], 30, bookings)
        assert not calculator.can_accommodate_duration(slots["11:15"], 15, bookings)
        assert calculator.can_accommodate_duration(slots["11:30"], 60, bookings)

    def test_unavailable_slot_never_fits(self):
        calculator = _calculator()
        slot = calculator.generate_slots_for_date(MONDAY, blocked_slots=[_blocked("10:00", "11:00")])[0]

        assert not calculator.can_accommodate_duration(slot, 15)

    def test_filter_drops_empty_days(self):
        calculator = _calculator(start_time="17:00", end_time="18:00")
        blocked = [_blocked("17:00", "18:00", day="2024-06-04")]
        days = calculator.generate_slots(MONDAY, date(2024, 6, 4), blocked_slots=blocked)

        result = calculator.get_available_slots_for_duration(days, 60)

        assert [day.date for day in result] == ["2024-06-03"]
        assert [slot.time for slot in result[0].slots] == ["17:00"]


class TestNextAvailableSlot:
    def test_first_slot_of_today(self):
        slot = _calculator().get_next_available_slot(30)

        assert slot is not None
        assert (slot.date, slot.time) == ("2024-06-03", "10:00")

    def test_skips_blocked_day(self):
        blocked = [_blocked("00:00", "23:59")]
        slot = _calculator().get_next_available_slot(30, blocked_slots=blocked)

        assert (slot.date, slot.time) == ("2024-06-04", "10:00")

    def test_respects_bookings(self):
        bookings = [make_booking(time="10:00", duration=60)]
        slot = _calculator().get_next_available_slot(30, bookings)

        assert slot.time == "11:00"

    def test_none_when_nothing_fits(self):
        calculator = _calculator(start_time="10:00", end_time="10:30")

        assert calculator.get_next_available_slot(60, days_ahead=7) is None
