"""
Application service for finding slots and booking meetings.

The service coordinates the storage-backed domain services and delegates
slot generation to the domain-level ``SlotCalculator``. It keeps the CLI
thin and serializes check-and-create for the meetings collection.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, List, Mapping, Optional

from pydantic import ValidationError

from ..domain.exceptions import (
    RecordNotFoundError,
    SchedulingConflictError,
    ValidationFailedError,
)
from ..domain.models import BookingRequest, DaySlots, MeetingBooking, MeetingConfig, TimeSlot
from ..domain.slot_calculator import Clock, SlotCalculator
from ..domain.time_utils import format_date, now_in, parse_date, slot_datetime
from .base import validation_messages
from .blocked_slots import BlockedSlotsService
from .email_templates import EmailTemplateService
from .meeting_config import ConfigService
from .meetings import MeetingService
from .notifications import EmailMessage, EmailSender, generate_join_link, render_email

if TYPE_CHECKING:
    from ..storage.factory import StorageFactory

logger = logging.getLogger(__name__)


class SchedulingService:
    """
    Orchestrates configuration, bookings and blocked windows.

    All "now" comparisons use the injected clock, falling back to the
    current time in the configured availability timezone.
    """

    def __init__(
        self,
        meetings: MeetingService,
        config: ConfigService,
        blocked_slots: BlockedSlotsService,
        templates: EmailTemplateService,
        clock: Optional[Clock] = None,
        sender: Optional[EmailSender] = None,
    ) -> None:
        self._meetings = meetings
        self._config = config
        self._blocked_slots = blocked_slots
        self._templates = templates
        self._clock = clock
        self._sender = sender
        self._booking_lock = asyncio.Lock()

    @classmethod
    def from_factory(
        cls,
        factory: "StorageFactory",
        clock: Optional[Clock] = None,
        sender: Optional[EmailSender] = None,
    ) -> "SchedulingService":
        return cls(
            meetings=factory.create_meeting_storage(),
            config=factory.create_config_storage(),
            blocked_slots=factory.create_blocked_slots_storage(),
            templates=factory.create_email_template_storage(),
            clock=clock,
            sender=sender,
        )

    async def _calculator(self, config: Optional[MeetingConfig] = None) -> SlotCalculator:
        config = config or await self._config.get()
        return SlotCalculator(config.availability, clock=self._clock)

    def _now(self, config: MeetingConfig):
        return self._clock() if self._clock else now_in(config.availability.timezone)

    # Availability

    async def get_available_slots(
        self,
        start_date: date,
        end_date: date,
        duration: Optional[int] = None,
    ) -> List[DaySlots]:
        """
        Generate slots for the inclusive date range.

        Without a duration all slots are returned with their availability
        flags; with a duration only slots that fit it are kept.
        """
        calculator = await self._calculator()
        start, end = format_date(start_date), format_date(end_date)
        bookings = await self._meetings.get_by_date_range(start, end)
        blocked = await self._blocked_slots.get_by_date_range(start, end)

        days = calculator.generate_slots(start_date, end_date, bookings, blocked)
        if duration is None:
            return days
        return calculator.get_available_slots_for_duration(days, duration, bookings)

    async def get_next_available_slot(self, duration: int, days_ahead: int = 30) -> TimeSlot | None:
        config = await self._config.get()
        calculator = await self._calculator(config)
        today = self._now(config).date()
        start, end = format_date(today), format_date(today + timedelta(days=days_ahead))

        return calculator.get_next_available_slot(
            duration,
            await self._meetings.get_by_date_range(start, end),
            await self._blocked_slots.get_by_date_range(start, end),
            days_ahead=days_ahead,
        )

    async def _ensure_bookable(
        self,
        config: MeetingConfig,
        date_string: str,
        time_string: str,
        duration: int,
        exclude_id: Optional[str] = None,
    ) -> None:
        """Raise SchedulingConflictError unless the slot exists, is free and fits."""
        calculator = await self._calculator(config)
        bookings = [
            booking for booking in await self._meetings.get_by_date(date_string)
            if booking.id != exclude_id
        ]
        blocked = await self._blocked_slots.get_by_date(date_string)

        slots = calculator.generate_slots_for_date(parse_date(date_string), bookings, blocked)
        slot = next((slot for slot in slots if slot.time == time_string), None)
        if slot is None:
            raise SchedulingConflictError(f"{date_string} {time_string} is not a bookable slot")
        if not slot.available:
            raise SchedulingConflictError(f"{date_string} {time_string} is not available")
        if not calculator.can_accommodate_duration(slot, duration, bookings):
            raise SchedulingConflictError(
                f"A {duration}-minute meeting does not fit at {date_string} {time_string}"
            )
        if await self._meetings.has_conflict(date_string, time_string, duration, exclude_id):
            raise SchedulingConflictError(
                f"{date_string} {time_string} overlaps an existing meeting"
            )

    # Booking lifecycle

    async def book_meeting(self, request: BookingRequest | Mapping[str, Any]) -> MeetingBooking:
        """
        Validate a booking request against the configuration and create it.

        Raises:
            ValidationFailedError: Invalid request, or duration/type not offered
            SchedulingConflictError: Slot missing, unavailable, too short or overlapping
        """
        if not isinstance(request, BookingRequest):
            try:
                request = BookingRequest.model_validate(dict(request))
            except ValidationError as exc:
                raise ValidationFailedError(validation_messages(exc)) from exc

        async with self._booking_lock:
            config = await self._config.get()

            errors = []
            if request.duration not in config.durations:
                errors.append(f"Duration of {request.duration} minutes is not offered.")
            if request.meeting_type not in config.meeting_types:
                errors.append(f"Meeting type '{request.meeting_type}' is not offered.")
            if errors:
                raise ValidationFailedError(errors)

            await self._ensure_bookable(config, request.date, request.time, request.duration)

            booking = request.to_booking()
            if booking.meeting_type == "video" and config.auto_generate_join_link:
                booking.join_link = generate_join_link()
            elif booking.meeting_type == "phone":
                booking.phone_number = config.default_phone_number

            created = await self._meetings.create(booking)

        logger.info("Booked %s on %s at %s", created.id, created.date, created.time)
        if self._sender is not None:
            await self.send_notification(created, "confirmation")
        return created

    async def reschedule_meeting(
        self, record_id: str, new_date: str, new_time: str
    ) -> MeetingBooking:
        async with self._booking_lock:
            booking = await self._require(record_id)
            if booking.status != "scheduled":
                raise SchedulingConflictError(
                    f"Only scheduled meetings can be rescheduled (status: {booking.status})"
                )

            config = await self._config.get()
            await self._ensure_bookable(config, new_date, new_time, booking.duration, exclude_id=record_id)
            updated = await self._meetings.update(
                record_id, {"date": new_date, "time": new_time, "reminder_sent": False}
            )

        if updated is None:
            raise RecordNotFoundError(f"Meeting '{record_id}' not found")
        return updated

    async def cancel_meeting(self, record_id: str) -> bool:
        changed = await self._meetings.update_status(record_id, "cancelled")
        if changed and self._sender is not None:
            booking = await self._meetings.get_by_id(record_id)
            if booking is not None:
                await self.send_notification(booking, "cancellation")
        return changed

    async def complete_meeting(self, record_id: str) -> bool:
        return await self._meetings.update_status(record_id, "completed")

    async def reactivate_meeting(self, record_id: str) -> bool:
        """Move a cancelled meeting back to scheduled if its slot is still free."""
        async with self._booking_lock:
            booking = await self._meetings.get_by_id(record_id)
            if booking is None:
                return False
            if booking.status == "cancelled":
                config = await self._config.get()
                await self._ensure_bookable(
                    config, booking.date, booking.time, booking.duration, exclude_id=record_id
                )
            return await self._meetings.update_status(record_id, "scheduled")

    async def _require(self, record_id: str) -> MeetingBooking:
        booking = await self._meetings.get_by_id(record_id)
        if booking is None:
            raise RecordNotFoundError(f"Meeting '{record_id}' not found")
        return booking

    # Notifications

    async def render_notification(self, booking: MeetingBooking, template_type: str) -> EmailMessage:
        config = await self._config.get()
        template = await self._templates.get_or_default(template_type)
        return render_email(booking, template, config.availability.timezone)

    async def send_notification(self, booking: MeetingBooking, template_type: str) -> bool:
        if self._sender is None:
            raise RuntimeError("No email sender configured")

        message = await self.render_notification(booking, template_type)
        sent = await self._sender.send(message)
        if not sent:
            logger.warning("Failed to send %s email for %s", template_type, booking.id)
            return False

        if template_type == "confirmation":
            await self._meetings.update(booking.id, {"confirmation_sent": True})
        elif template_type == "reminder":
            await self._meetings.update(booking.id, {"reminder_sent": True})
        return True

    async def get_due_reminders(self) -> List[MeetingBooking]:
        """Upcoming meetings within the configured reminder window that got no reminder yet."""
        config = await self._config.get()
        now = self._now(config)
        horizon = now.add(hours=config.reminder_hours)
        timezone = config.availability.timezone
        return [
            booking for booking in await self._meetings.get_upcoming()
            if not booking.reminder_sent
            and slot_datetime(booking.date, booking.time, timezone) <= horizon
        ]

    async def send_reminders(self) -> int:
        sent = 0
        for booking in await self.get_due_reminders():
            if await self.send_notification(booking, "reminder"):
                sent += 1
        return sent
