"""
Tests for domain models.
"""

import pytest
from pydantic import ValidationError

from meetingscheduler.domain.models import (
    AvailabilityConfig,
    BookingRequest,
    MeetingBooking,
    MeetingConfig,
    StorageData,
    TimeRange,
    TimeSlot,
    can_transition,
)

from conftest import make_booking


class TestTimeRange:
    """Tests for TimeRange model."""

    def test_create_valid_time_range(self):
        """Test creating a valid time range."""
        tr = TimeRange.from_times("09:00", "17:00")

        assert tr.start == 540
        assert tr.end == 1020
        assert tr.duration_minutes() == 480  # 8 hours

    def test_invalid_time_range_raises_error(self):
        """Test that creating an invalid time range raises ValueError."""
        with pytest.raises(ValueError, match="Start time .* must be before end time"):
            TimeRange.from_times("17:00", "09:00")

    def test_overlaps(self):
        """Test overlap detection."""
        tr1 = TimeRange.from_times("09:00", "12:00")
        tr2 = TimeRange.from_times("11:00", "14:00")
        tr3 = TimeRange.from_times("12:00", "13:00")

        assert tr1.overlaps(tr2)
        assert tr2.overlaps(tr1)
        assert not tr1.overlaps(tr3)  # touching ranges do not overlap

    def test_contains_is_half_open(self):
        tr = TimeRange.from_times("12:00", "13:00")

        assert tr.contains(720)
        assert tr.contains(779)
        assert not tr.contains(780)

    def test_intersect(self):
        """Test range intersection."""
        tr1 = TimeRange.from_times("09:00", "12:00")
        tr2 = TimeRange.from_times("11:00", "14:00")

        assert tr1.intersect(tr2) == TimeRange.from_times("11:00", "12:00")
        assert tr1.intersect(TimeRange.from_times("13:00", "14:00")) is None

    def test_from_start(self):
        assert str(TimeRange.from_start("10:45", 30)) == "10:45 - 11:15"


class TestAvailabilityConfig:
    """Tests for AvailabilityConfig model."""

    def test_defaults(self):
        config = AvailabilityConfig()

        assert config.start_time == "10:00"
        assert config.end_time == "18:00"
        assert config.working_days == [1, 2, 3, 4, 5]
        assert config.slot_duration == 15
        assert config.buffer_time == 0

    def test_accepts_camel_case_keys(self):
        config = AvailabilityConfig.model_validate({"startTime": "09:00", "workingDays": [0, 6]})

        assert config.start_time == "09:00"
        assert config.working_days == [0, 6]

    def test_end_before_start_raises(self):
        with pytest.raises(ValidationError, match="End time must be after start time"):
            AvailabilityConfig(start_time="18:00", end_time="10:00")

    def test_invalid_working_days(self):
        with pytest.raises(ValidationError):
            AvailabilityConfig(working_days=[])
        with pytest.raises(ValidationError):
            AvailabilityConfig(working_days=[1, 7])

    def test_slot_duration_bounds(self):
        with pytest.raises(ValidationError):
            AvailabilityConfig(slot_duration=4)
        assert AvailabilityConfig(slot_duration=120).slot_duration == 120


class TestTimeSlot:
    def test_format_display(self):
        slot = TimeSlot(id="2024-06-03-10:30", date="2024-06-03", time="10:30", available=True)
        assert slot.format_display() == "Mon, Jun 03, 2024 at 10:30 AM"

    def test_format_display_afternoon(self):
        slot = TimeSlot(id="2024-06-03-12:15", date="2024-06-03", time="12:15", available=True)
        assert slot.format_display().endswith("12:15 PM")


class TestMeetingBooking:
    def test_document_uses_camel_case_and_drops_none(self):
        document = make_booking(join_link="https://meet.google.com/abc-defg-hij").to_document()

        assert document["meetingType"] == "video"
        assert document["joinLink"] == "https://meet.google.com/abc-defg-hij"
        assert "phoneNumber" not in document
        assert MeetingBooking.from_document(document) == make_booking(
            join_link="https://meet.google.com/abc-defg-hij"
        )

    def test_field_name_resolves_aliases(self):
        assert MeetingBooking.field_name("meetingType") == "meeting_type"
        assert MeetingBooking.field_name("meeting_type") == "meeting_type"
        with pytest.raises(KeyError):
            MeetingBooking.field_name("colour")

    def test_invalid_date_rejected(self):
        with pytest.raises(ValidationError):
            make_booking(date="2024/06/03")

    def test_time_range(self):
        assert make_booking(time="10:45", duration=30).time_range() == TimeRange(645, 675)


class TestStatusTransitions:
    @pytest.mark.parametrize(
        "current,requested,allowed",
        [
            ("scheduled", "completed", True),
            ("scheduled", "cancelled", True),
            ("cancelled", "scheduled", True),
            ("completed", "scheduled", False),
            ("completed", "cancelled", False),
            ("cancelled", "completed", False),
            ("scheduled", "scheduled", True),
        ],
    )
    def test_can_transition(self, current, requested, allowed):
        assert can_transition(current, requested) is allowed


class TestBookingRequest:
    """Form validation for new bookings."""

    def _request(self, **overrides):
        data = {
            "name": "Asha Rao",
            "email": "asha@example.com",
            "phone": "+91 98765-43210",
            "meetingType": "phone",
            "duration": 15,
            "date": "2024-06-03",
            "time": "10:00",
        }
        data.update(overrides)
        return BookingRequest.model_validate(data)

    def test_normalizes_email_and_phone(self):
        request = self._request(email="  Asha@Example.COM ")

        assert request.email == "asha@example.com"
        assert request.phone == "+919876543210"

    def test_rejects_bad_name(self):
        with pytest.raises(ValidationError, match="Name can only contain letters and spaces"):
            self._request(name="R2-D2")

    def test_rejects_unsupported_duration(self):
        with pytest.raises(ValidationError):
            self._request(duration=45)

    def test_recurrence_end_requires_recurrence(self):
        with pytest.raises(ValidationError, match="requires a recurring meeting"):
            self._request(recurrenceEndDate="2024-07-01")

    def test_recurrence_end_after_date(self):
        request = self._request(recurrence="weekly", recurrenceEndDate="2024-07-01")
        assert request.recurrence_end_date == "2024-07-01"

    def test_to_booking_starts_scheduled(self):
        booking = self._request(notes="").to_booking()

        assert booking.status == "scheduled"
        assert booking.notes is None
        assert booking.id == ""


class TestStorageData:
    def test_json_dict_uses_collection_aliases(self):
        data = StorageData(meetings=[make_booking()], config=MeetingConfig())
        document = data.to_json_dict()

        assert set(document) == {"meetings", "config", "blockedSlots", "emailTemplates"}
        assert document["config"]["availability"]["startTime"] == "10:00"
