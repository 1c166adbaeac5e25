"""
Meeting booking service: timestamps, queries, status changes and conflicts.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..domain.exceptions import InvalidStatusTransitionError
from ..domain.models import (
    MEETING_STATUSES,
    MEETING_TYPES,
    MeetingBooking,
    TimeRange,
    can_transition,
)
from ..domain.slot_calculator import Clock
from ..domain.time_utils import DEFAULT_TIMEZONE, now_in, slot_datetime, utc_timestamp
from ..storage.base import BaseStorageAdapter, OrderBy, QueryOptions
from .base import RecordService

logger = logging.getLogger(__name__)


class MeetingService(RecordService[MeetingBooking]):
    """
    Bookings collection with domain queries.

    "Upcoming" and "past" compare booking date-times in the reference
    timezone against the injected clock.
    """

    model = MeetingBooking

    def __init__(
        self,
        adapter: BaseStorageAdapter[MeetingBooking],
        timezone: str = DEFAULT_TIMEZONE,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(adapter)
        self.timezone = timezone
        self._clock = clock or (lambda: now_in(timezone))

    async def create(self, data: MeetingBooking | Mapping[str, Any]) -> MeetingBooking:
        return await self._adapter.create(self._stamp(self._to_record(data)))

    async def create_many(
        self, items: Sequence[MeetingBooking | Mapping[str, Any]]
    ) -> List[MeetingBooking]:
        return await self._adapter.create_many(
            [self._stamp(self._to_record(item)) for item in items]
        )

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> MeetingBooking | None:
        return await self._adapter.update(record_id, {**changes, "updated_at": utc_timestamp()})

    async def update_many(
        self, updates: Sequence[Tuple[str, Mapping[str, Any]]]
    ) -> List[MeetingBooking]:
        now = utc_timestamp()
        return await self._adapter.update_many(
            [(record_id, {**changes, "updated_at": now}) for record_id, changes in updates]
        )

    def _stamp(self, booking: MeetingBooking) -> MeetingBooking:
        now = utc_timestamp()
        return booking.model_copy(
            update={"created_at": booking.created_at or now, "updated_at": now}
        )

    # Queries

    async def get_by_date_range(self, start_date: str, end_date: str) -> List[MeetingBooking]:
        """Bookings with start_date <= date <= end_date, chronologically."""
        meetings = await self.get_all()
        return _chronological(
            meeting for meeting in meetings if start_date <= meeting.date <= end_date
        )

    async def get_by_date(self, date: str) -> List[MeetingBooking]:
        return _chronological(await self.find(QueryOptions(where={"date": date})))

    async def get_by_date_and_time(self, date: str, time: str) -> List[MeetingBooking]:
        return await self.find(QueryOptions(where={"date": date, "time": time}))

    async def get_by_status(self, status: str) -> List[MeetingBooking]:
        return _chronological(await self.find(QueryOptions(where={"status": status})))

    async def get_by_email(self, email: str) -> List[MeetingBooking]:
        return await self.find(
            QueryOptions(where={"email": email}, order_by=OrderBy("createdAt", "desc"))
        )

    async def get_by_phone_number(self, phone: str) -> List[MeetingBooking]:
        return await self.find(
            QueryOptions(where={"phone": phone}, order_by=OrderBy("createdAt", "desc"))
        )

    async def get_by_meeting_type(self, meeting_type: str) -> List[MeetingBooking]:
        return _chronological(await self.find(QueryOptions(where={"meetingType": meeting_type})))

    async def get_by_duration(self, duration: int) -> List[MeetingBooking]:
        return _chronological(await self.find(QueryOptions(where={"duration": duration})))

    async def get_recurring_meetings(self) -> List[MeetingBooking]:
        return [meeting for meeting in await self.get_all() if meeting.recurrence != "none"]

    async def get_upcoming(self) -> List[MeetingBooking]:
        """Scheduled bookings strictly after now, soonest first."""
        now = self._clock()
        return _chronological(
            meeting for meeting in await self.get_by_status("scheduled")
            if self._starts_at(meeting) > now
        )

    async def get_past(self) -> List[MeetingBooking]:
        """Bookings not after now or no longer scheduled, most recent first."""
        now = self._clock()
        past = [
            meeting for meeting in await self.get_all()
            if not self._starts_at(meeting) > now or meeting.status != "scheduled"
        ]
        return list(reversed(_chronological(past)))

    async def search(self, term: str) -> List[MeetingBooking]:
        """Case-insensitive match on name, email, phone and notes."""
        needle = term.lower()
        return [
            meeting for meeting in await self.get_all()
            if needle in meeting.name.lower()
            or needle in meeting.email.lower()
            or needle in meeting.phone
            or (meeting.notes and needle in meeting.notes.lower())
        ]

    def _starts_at(self, meeting: MeetingBooking):
        return slot_datetime(meeting.date, meeting.time, self.timezone)

    # Status handling

    async def update_status(self, record_id: str, status: str) -> bool:
        """
        Move a booking to a new status.

        Returns False when the booking does not exist; raises
        InvalidStatusTransitionError for a transition the lifecycle forbids.
        """
        meeting = await self.get_by_id(record_id)
        if meeting is None:
            return False
        if not can_transition(meeting.status, status):
            raise InvalidStatusTransitionError(meeting.status, status)

        return await self.update(record_id, {"status": status}) is not None

    async def cancel_multiple(self, ids: Sequence[str]) -> int:
        return await self._transition_many(ids, "cancelled")

    async def complete_multiple(self, ids: Sequence[str]) -> int:
        return await self._transition_many(ids, "completed")

    async def _transition_many(self, ids: Sequence[str], status: str) -> int:
        updates = []
        for record_id in ids:
            meeting = await self.get_by_id(record_id)
            if meeting is None:
                continue
            if not can_transition(meeting.status, status):
                logger.warning(
                    "Skipping %s: cannot change status from %s to %s",
                    record_id, meeting.status, status,
                )
                continue
            updates.append((record_id, {"status": status}))

        return len(await self.update_many(updates))

    # Conflicts and statistics

    async def has_conflict(
        self, date: str, time: str, duration: int, exclude_id: Optional[str] = None
    ) -> bool:
        """Check whether [time, time + duration) overlaps a scheduled booking on date."""
        candidate = TimeRange.from_start(time, duration)
        return any(
            candidate.overlaps(meeting.time_range())
            for meeting in await self.get_by_date(date)
            if meeting.status == "scheduled" and meeting.id != exclude_id
        )

    async def get_statistics(self) -> Dict[str, Any]:
        meetings = await self.get_all()
        upcoming = await self.get_upcoming()
        past = await self.get_past()

        by_status = {status: 0 for status in MEETING_STATUSES}
        by_status.update(Counter(meeting.status for meeting in meetings))
        by_meeting_type = {meeting_type: 0 for meeting_type in MEETING_TYPES}
        by_meeting_type.update(Counter(meeting.meeting_type for meeting in meetings))

        return {
            "total": len(meetings),
            "by_status": by_status,
            "by_meeting_type": by_meeting_type,
            "by_duration": dict(Counter(meeting.duration for meeting in meetings)),
            "upcoming": len(upcoming),
            "past": len(past),
        }


def _chronological(meetings) -> List[MeetingBooking]:
    return sorted(meetings, key=lambda meeting: (meeting.date, meeting.time))
