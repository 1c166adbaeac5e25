"""
Tests for blocked time windows.
"""

import asyncio

import pytest

from meetingscheduler.domain.exceptions import SchedulingConflictError, ValidationFailedError


@pytest.fixture
def blocked(factory):
    return factory.create_blocked_slots_storage()


class TestBlockTimeRange:
    def test_block_creates_record(self, blocked):
        slot = asyncio.run(blocked.block_time_range("2024-06-03", "12:00", "13:00", "Lunch"))

        assert slot.id.startswith("blocked_")
        assert slot.created_at
        assert asyncio.run(blocked.get_by_date("2024-06-03")) == [slot]

    def test_overlap_is_rejected(self, blocked):
        asyncio.run(blocked.block_time_range("2024-06-03", "12:00", "13:00"))

        with pytest.raises(SchedulingConflictError, match="overlaps with existing blocked slot"):
            asyncio.run(blocked.block_time_range("2024-06-03", "12:30", "14:00"))

    def test_adjacent_ranges_are_allowed(self, blocked):
        asyncio.run(blocked.block_time_range("2024-06-03", "12:00", "13:00"))
        asyncio.run(blocked.block_time_range("2024-06-03", "13:00", "14:00"))

        assert asyncio.run(blocked.count()) == 2

    def test_invalid_range(self, blocked):
        with pytest.raises(ValidationFailedError, match="end time must be after start time"):
            asyncio.run(blocked.block_time_range("2024-06-03", "13:00", "12:00"))

    def test_invalid_time_format(self, blocked):
        with pytest.raises(ValidationFailedError):
            asyncio.run(blocked.block_time_range("2024-06-03", "noon", "13:00"))


class TestQueries:
    def test_slot_blocked_is_half_open(self, blocked):
        asyncio.run(blocked.block_time_range("2024-06-03", "12:00", "13:00"))

        assert asyncio.run(blocked.is_slot_blocked("2024-06-03", "12:00"))
        assert asyncio.run(blocked.is_slot_blocked("2024-06-03", "12:45"))
        assert not asyncio.run(blocked.is_slot_blocked("2024-06-03", "13:00"))
        assert not asyncio.run(blocked.is_slot_blocked("2024-06-04", "12:00"))

    def test_time_range_blocked(self, blocked):
        asyncio.run(blocked.block_time_range("2024-06-03", "12:00", "13:00"))

        assert asyncio.run(blocked.is_time_range_blocked("2024-06-03", "11:30", "12:15"))
        assert not asyncio.run(blocked.is_time_range_blocked("2024-06-03", "11:00", "12:00"))

    def test_blocked_times_for_date_sorted(self, blocked):
        asyncio.run(blocked.block_time_range("2024-06-03", "15:00", "16:00"))
        asyncio.run(blocked.block_time_range("2024-06-03", "09:00", "10:00", "Standup"))

        times = asyncio.run(blocked.get_blocked_times_for_date("2024-06-03"))

        assert times == [
            {"start_time": "09:00", "end_time": "10:00", "reason": "Standup"},
            {"start_time": "15:00", "end_time": "16:00", "reason": None},
        ]

    def test_date_range(self, blocked):
        for day in ("2024-06-02", "2024-06-03", "2024-06-05"):
            asyncio.run(blocked.block_full_day(day))

        found = asyncio.run(blocked.get_by_date_range("2024-06-03", "2024-06-05"))

        assert [slot.date for slot in found] == ["2024-06-03", "2024-06-05"]


class TestBulkOperations:
    def test_full_day(self, blocked):
        slot = asyncio.run(blocked.block_full_day("2024-06-03"))

        assert (slot.start_time, slot.end_time) == ("00:00", "23:59")
        assert slot.reason == "Full day blocked"
        assert asyncio.run(blocked.unblock_full_day("2024-06-03")) is True
        assert asyncio.run(blocked.unblock_full_day("2024-06-03")) is False

    def test_unblock_time_range_removes_overlapping(self, blocked):
        asyncio.run(blocked.block_time_range("2024-06-03", "09:00", "10:00"))
        asyncio.run(blocked.block_time_range("2024-06-03", "12:00", "13:00"))
        asyncio.run(blocked.block_time_range("2024-06-03", "15:00", "16:00"))

        assert asyncio.run(blocked.unblock_time_range("2024-06-03", "09:30", "12:30")) is True

        remaining = asyncio.run(blocked.get_by_date("2024-06-03"))
        assert [slot.start_time for slot in remaining] == ["15:00"]
        assert asyncio.run(blocked.unblock_time_range("2024-06-03", "10:00", "11:00")) is False

    def test_block_multiple_days_skips_failures(self, blocked):
        asyncio.run(blocked.block_time_range("2024-06-04", "12:00", "13:00"))

        created = asyncio.run(
            blocked.block_multiple_days(["2024-06-03", "2024-06-04", "not-a-date"], "12:00", "13:00")
        )

        assert [slot.date for slot in created] == ["2024-06-03"]

    def test_block_recurring(self, blocked):
        """Mondays and Wednesdays over two weeks."""
        created = asyncio.run(
            blocked.block_recurring("2024-06-03", "2024-06-16", [1, 3], "17:00", "18:00", "Gym")
        )

        assert [slot.date for slot in created] == [
            "2024-06-03", "2024-06-05", "2024-06-10", "2024-06-12",
        ]
        assert all(slot.reason == "Gym" for slot in created)


class TestMaintenance:
    def test_cleanup_expired_blocks(self, blocked):
        """The clock is pinned to 2024-06-03."""
        asyncio.run(blocked.block_full_day("2024-06-01"))
        asyncio.run(blocked.block_full_day("2024-06-03"))

        assert asyncio.run(blocked.cleanup_expired_blocks()) == 1
        assert [slot.date for slot in asyncio.run(blocked.get_all())] == ["2024-06-03"]

    def test_upcoming_blocks(self, blocked):
        for day in ("2024-06-01", "2024-06-10", "2024-08-01"):
            asyncio.run(blocked.block_full_day(day))

        upcoming = asyncio.run(blocked.get_upcoming_blocks(days=30))

        assert [slot.date for slot in upcoming] == ["2024-06-10"]

    def test_statistics(self, blocked):
        asyncio.run(blocked.block_time_range("2024-06-03", "12:00", "13:00"))
        asyncio.run(blocked.block_time_range("2024-06-03", "15:00", "15:30"))
        asyncio.run(blocked.block_time_range("2024-06-04", "09:00", "11:00"))

        stats = asyncio.run(blocked.get_statistics())

        assert stats["total"] == 3
        assert stats["by_date"] == {"2024-06-03": 2, "2024-06-04": 1}
        assert stats["total_blocked_hours"] == 3.5
        assert stats["average_block_duration"] == 70
