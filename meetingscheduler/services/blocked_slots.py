"""
Admin-declared unavailability windows.
"""

import logging
import secrets
import time
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..domain.exceptions import SchedulerError, SchedulingConflictError
from ..domain.models import BlockedTimeSlot, TimeRange
from ..domain.slot_calculator import Clock
from ..domain.time_utils import (
    DEFAULT_TIMEZONE,
    format_date,
    iter_dates,
    now_in,
    parse_date,
    time_to_minutes,
    utc_timestamp,
    weekday_index,
)
from ..storage.base import BaseStorageAdapter, QueryOptions
from .base import RecordService

logger = logging.getLogger(__name__)

FULL_DAY_START = "00:00"
FULL_DAY_END = "23:59"


class BlockedSlotsService(RecordService[BlockedTimeSlot]):
    """Blocked windows; a time t is blocked when start <= t < end on that date."""

    model = BlockedTimeSlot

    def __init__(
        self,
        adapter: BaseStorageAdapter[BlockedTimeSlot],
        timezone: str = DEFAULT_TIMEZONE,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(adapter)
        self.timezone = timezone
        self._clock = clock or (lambda: now_in(timezone))

    async def create(self, data: BlockedTimeSlot | Mapping[str, Any]) -> BlockedTimeSlot:
        slot = self._to_record(data)
        if not slot.created_at:
            slot = slot.model_copy(update={"created_at": utc_timestamp()})
        return await self._adapter.create(slot)

    async def create_many(
        self, items: Sequence[BlockedTimeSlot | Mapping[str, Any]]
    ) -> List[BlockedTimeSlot]:
        now = utc_timestamp()
        slots = []
        for item in items:
            slot = self._to_record(item)
            slots.append(slot if slot.created_at else slot.model_copy(update={"created_at": now}))
        return await self._adapter.create_many(slots)

    # Queries

    async def get_by_date(self, date: str) -> List[BlockedTimeSlot]:
        slots = await self.find(QueryOptions(where={"date": date}))
        return sorted(slots, key=lambda slot: slot.start_time)

    async def get_by_date_range(self, start_date: str, end_date: str) -> List[BlockedTimeSlot]:
        slots = await self.get_all()
        return sorted(
            (slot for slot in slots if start_date <= slot.date <= end_date),
            key=lambda slot: (slot.date, slot.start_time),
        )

    async def is_slot_blocked(self, date: str, time_string: str) -> bool:
        minute = time_to_minutes(time_string)
        return any(slot.time_range().contains(minute) for slot in await self.get_by_date(date))

    async def is_time_range_blocked(self, date: str, start_time: str, end_time: str) -> bool:
        candidate = TimeRange.from_times(start_time, end_time)
        return any(slot.time_range().overlaps(candidate) for slot in await self.get_by_date(date))

    async def get_blocked_times_for_date(self, date: str) -> List[Dict[str, Optional[str]]]:
        return [
            {"start_time": slot.start_time, "end_time": slot.end_time, "reason": slot.reason}
            for slot in await self.get_by_date(date)
        ]

    # Blocking

    async def block_time_range(
        self, date: str, start_time: str, end_time: str, reason: Optional[str] = None
    ) -> BlockedTimeSlot:
        """
        Block [start_time, end_time) on date.

        Raises:
            ValidationFailedError: Malformed date/time or end not after start
            SchedulingConflictError: Overlap with an existing blocked window
        """
        slot = self._to_record(
            {
                "id": f"blocked_{int(time.time() * 1000)}_{secrets.token_hex(6)}",
                "date": date,
                "start_time": start_time,
                "end_time": end_time,
                "reason": reason,
                "created_at": utc_timestamp(),
            }
        )

        if await self.is_time_range_blocked(date, start_time, end_time):
            raise SchedulingConflictError("Time range overlaps with existing blocked slot")

        return await self._adapter.create(slot)

    async def unblock_time_range(self, date: str, start_time: str, end_time: str) -> bool:
        """Remove every window on date overlapping [start_time, end_time)."""
        candidate = TimeRange.from_times(start_time, end_time)
        overlapping = [
            slot.id for slot in await self.get_by_date(date)
            if slot.time_range().overlaps(candidate)
        ]
        if not overlapping:
            return False
        return await self.delete_many(overlapping)

    async def block_full_day(self, date: str, reason: Optional[str] = None) -> BlockedTimeSlot:
        return await self.block_time_range(
            date, FULL_DAY_START, FULL_DAY_END, reason or "Full day blocked"
        )

    async def unblock_full_day(self, date: str) -> bool:
        slots = await self.get_by_date(date)
        if not slots:
            return False
        return await self.delete_many([slot.id for slot in slots])

    async def block_multiple_days(
        self,
        dates: Sequence[str],
        start_time: str,
        end_time: str,
        reason: Optional[str] = None,
    ) -> List[BlockedTimeSlot]:
        """Block the same window on several dates; failing dates are logged and skipped."""
        blocked: List[BlockedTimeSlot] = []
        for date in dates:
            try:
                blocked.append(await self.block_time_range(date, start_time, end_time, reason))
            except SchedulerError as exc:
                logger.warning("Failed to block %s: %s", date, exc)
        return blocked

    async def block_recurring(
        self,
        start_date: str,
        end_date: str,
        days_of_week: Sequence[int],
        start_time: str,
        end_time: str,
        reason: Optional[str] = None,
    ) -> List[BlockedTimeSlot]:
        """Block the window on every matching weekday (0=Sunday) in the date range."""
        dates = [
            format_date(day)
            for day in iter_dates(parse_date(start_date), parse_date(end_date))
            if weekday_index(day) in days_of_week
        ]
        return await self.block_multiple_days(dates, start_time, end_time, reason)

    # Maintenance

    async def cleanup_expired_blocks(self) -> int:
        """Delete windows dated before today; returns how many were removed."""
        today = self._clock().to_date_string()
        expired = [slot.id for slot in await self.get_all() if slot.date < today]
        if expired:
            await self.delete_many(expired)
        return len(expired)

    async def get_upcoming_blocks(self, days: int = 30) -> List[BlockedTimeSlot]:
        today = self._clock().date()
        return await self.get_by_date_range(
            format_date(today), format_date(today + timedelta(days=days))
        )

    async def get_statistics(self) -> Dict[str, Any]:
        slots = await self.get_all()
        by_date: Dict[str, int] = {}
        total_minutes = 0
        for slot in slots:
            by_date[slot.date] = by_date.get(slot.date, 0) + 1
            total_minutes += slot.time_range().duration_minutes()

        return {
            "total": len(slots),
            "by_date": by_date,
            "total_blocked_hours": total_minutes / 60,
            "average_block_duration": total_minutes / len(slots) if slots else 0,
        }
