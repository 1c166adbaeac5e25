"""
Minimal always-available storage used when the configured backend fails.

Each collection is one JSON document in a key-value store. Reads of
missing or unreadable data return a default; write failures raise.

``RetryingStorageAdapter`` puts the same retry in front of the adapters
the storage factory hands to its services.
"""

import json
import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Type, TypeVar

from pydantic import ValidationError

from ..domain.exceptions import (
    InvalidRecordError,
    InvalidStatusTransitionError,
    RecordConflictError,
    StorageError,
)
from ..domain.models import (
    MEETING_STATUSES,
    MEETING_TYPES,
    BlockedTimeSlot,
    EmailTemplate,
    MeetingBooking,
    MeetingConfig,
    Record,
    can_transition,
    default_meeting_config,
)
from ..domain.slot_calculator import Clock
from ..domain.time_utils import DEFAULT_TIMEZONE, now_in, slot_datetime, time_to_minutes, utc_timestamp
from .base import BaseStorageAdapter, QueryOptions, RecordT, StorageEventListener
from .kv import KeyValueStore
from .local import DurableStorageAdapter

logger = logging.getLogger(__name__)

BACKEND = "fallback"

T = TypeVar("T", bound=Record)
R = TypeVar("R")


class SimpleStorage:
    """JSON values in a key-value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self, key: str, default: Any) -> Any:
        try:
            raw = self.store.get_item(key)
            return json.loads(raw) if raw else default
        except (OSError, ValueError) as exc:
            logger.warning("Error reading fallback key %s: %s", key, exc)
            return default

    def set(self, key: str, value: Any) -> None:
        try:
            self.store.set_item(key, json.dumps(value))
        except OSError as exc:
            raise StorageError(f"Fallback write to {key} failed: {exc}", "WRITE_FAILED", BACKEND, "set") from exc

    def remove(self, key: str) -> None:
        try:
            self.store.remove_item(key)
        except OSError as exc:
            raise StorageError(f"Fallback removal of {key} failed: {exc}", "WRITE_FAILED", BACKEND, "remove") from exc


async def run_with_fallback(
    operation: str,
    primary: Callable[[], Awaitable[R]],
    fallback: Callable[[], Awaitable[R]],
) -> R:
    """
    Await ``primary``; on a backend failure log it and await ``fallback``.

    Conflicts and invalid records are caller errors and propagate, as does
    anything the fallback raises.
    """
    try:
        return await primary()
    except (RecordConflictError, InvalidRecordError):
        raise
    except StorageError as exc:
        logger.warning(
            "Storage %s failed on %s backend, using fallback: %s", operation, exc.backend, exc
        )
    return await fallback()


class FallbackDurableAdapter(DurableStorageAdapter[RecordT]):
    """Durable adapter over the fallback store."""

    backend = BACKEND


class RetryingStorageAdapter(BaseStorageAdapter[RecordT]):
    """
    Runs every operation on ``primary`` and repeats it once on ``fallback``
    when the primary backend raises ``StorageError``.

    Listeners are registered on both adapters, so events from writes that
    landed on the fallback are delivered as well.
    """

    def __init__(self, primary: BaseStorageAdapter[RecordT], fallback: BaseStorageAdapter[RecordT]):
        super().__init__(primary.collection, primary.model)
        self.primary = primary
        self.fallback = fallback
        self.backend = primary.backend

    async def _run(
        self, operation: str, call: Callable[[BaseStorageAdapter[RecordT]], Awaitable[R]]
    ) -> R:
        return await run_with_fallback(
            operation, lambda: call(self.primary), lambda: call(self.fallback)
        )

    async def create(self, data: RecordT | Mapping[str, Any]) -> RecordT:
        return await self._run("create", lambda adapter: adapter.create(data))

    async def get_by_id(self, record_id: str) -> RecordT | None:
        return await self._run("get_by_id", lambda adapter: adapter.get_by_id(record_id))

    async def get_all(self, query: QueryOptions | None = None) -> List[RecordT]:
        return await self._run("get_all", lambda adapter: adapter.get_all(query))

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> RecordT | None:
        return await self._run("update", lambda adapter: adapter.update(record_id, changes))

    async def delete(self, record_id: str) -> bool:
        return await self._run("delete", lambda adapter: adapter.delete(record_id))

    async def clear(self) -> None:
        await self._run("clear", lambda adapter: adapter.clear())

    async def create_many(self, items: Sequence[RecordT | Mapping[str, Any]]) -> List[RecordT]:
        return await self._run("create_many", lambda adapter: adapter.create_many(items))

    async def delete_many(self, ids: Sequence[str]) -> bool:
        return await self._run("delete_many", lambda adapter: adapter.delete_many(ids))

    def subscribe(self, collection: str, listener: StorageEventListener) -> Callable[[], None]:
        self.primary.subscribe(collection, listener)
        self.fallback.subscribe(collection, listener)
        return lambda: self.unsubscribe(collection, listener)

    def unsubscribe(self, collection: str, listener: StorageEventListener) -> None:
        self.primary.unsubscribe(collection, listener)
        self.fallback.unsubscribe(collection, listener)


class _RecordList:
    """A list of records stored under one key."""

    key: str
    model: Type[Record]

    def __init__(self, storage: SimpleStorage):
        self.storage = storage

    def _load(self) -> List[Any]:
        records = []
        for document in self.storage.get(self.key, []):
            try:
                records.append(self.model.model_validate(document))
            except ValidationError as exc:
                logger.warning("Skipping unreadable record in %s: %s", self.key, exc)
        return records

    def _store(self, records: List[Any]) -> None:
        self.storage.set(self.key, [record.to_document() for record in records])

    async def get_all(self) -> List[Any]:
        return self._load()

    async def get_by_id(self, record_id: str) -> Optional[Any]:
        return next((record for record in self._load() if record.id == record_id), None)

    async def save(self, record: Any) -> None:
        """Insert or replace by id."""
        records = self._load()
        for index, existing in enumerate(records):
            if existing.id == record.id:
                records[index] = record
                break
        else:
            records.append(record)
        self._store(records)

    async def delete(self, record_id: str) -> bool:
        records = self._load()
        remaining = [record for record in records if record.id != record_id]
        if len(remaining) == len(records):
            return False
        self._store(remaining)
        return True

    async def clear(self) -> None:
        self.storage.remove(self.key)


class FallbackBookingStorage(_RecordList):
    key = "meeting_bookings"
    model = MeetingBooking

    def __init__(
        self,
        storage: SimpleStorage,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Optional[Clock] = None,
    ):
        super().__init__(storage)
        self.timezone = timezone
        self._clock = clock or (lambda: now_in(timezone))

    async def save(self, record: MeetingBooking) -> None:
        if await self.get_by_id(record.id) is not None:
            record = record.model_copy(update={"updated_at": utc_timestamp()})
        await super().save(record)

    async def get_by_status(self, status: str) -> List[MeetingBooking]:
        return [booking for booking in self._load() if booking.status == status]

    async def get_by_date_range(self, start_date: str, end_date: str) -> List[MeetingBooking]:
        return sorted(
            (booking for booking in self._load() if start_date <= booking.date <= end_date),
            key=lambda booking: (booking.date, booking.time),
        )

    async def update_status(self, record_id: str, status: str) -> bool:
        booking = await self.get_by_id(record_id)
        if booking is None:
            return False
        if not can_transition(booking.status, status):
            raise InvalidStatusTransitionError(booking.status, status)
        await self.save(booking.model_copy(update={"status": status}))
        return True

    async def get_upcoming(self) -> List[MeetingBooking]:
        now = self._clock()
        return sorted(
            (
                booking for booking in await self.get_by_status("scheduled")
                if slot_datetime(booking.date, booking.time, self.timezone) > now
            ),
            key=lambda booking: (booking.date, booking.time),
        )

    async def get_past(self) -> List[MeetingBooking]:
        now = self._clock()
        return sorted(
            (
                booking for booking in self._load()
                if not slot_datetime(booking.date, booking.time, self.timezone) > now
                or booking.status != "scheduled"
            ),
            key=lambda booking: (booking.date, booking.time),
            reverse=True,
        )

    async def search(self, term: str) -> List[MeetingBooking]:
        needle = term.lower()
        return [
            booking for booking in self._load()
            if needle in booking.name.lower()
            or needle in booking.email.lower()
            or needle in booking.phone
            or (booking.notes and needle in booking.notes.lower())
        ]

    async def get_statistics(self) -> Dict[str, Any]:
        bookings = self._load()
        by_status = {status: 0 for status in MEETING_STATUSES}
        by_status.update(Counter(booking.status for booking in bookings))
        by_meeting_type = {meeting_type: 0 for meeting_type in MEETING_TYPES}
        by_meeting_type.update(Counter(booking.meeting_type for booking in bookings))
        return {
            "total": len(bookings),
            "by_status": by_status,
            "by_meeting_type": by_meeting_type,
            "by_duration": dict(Counter(booking.duration for booking in bookings)),
            "upcoming": len(await self.get_upcoming()),
            "past": len(await self.get_past()),
        }


class FallbackConfigStorage:
    key = "meeting_config"

    def __init__(self, storage: SimpleStorage):
        self.storage = storage

    async def get(self) -> MeetingConfig:
        document = self.storage.get(self.key, None)
        if document is None:
            return default_meeting_config()
        try:
            return MeetingConfig.model_validate(document)
        except ValidationError as exc:
            logger.warning("Stored fallback configuration is invalid, using defaults: %s", exc)
            return default_meeting_config()

    async def save(self, config: MeetingConfig) -> MeetingConfig:
        self.storage.set(self.key, config.to_document())
        return config

    async def update(self, updates: Mapping[str, Any]) -> MeetingConfig:
        current = (await self.get()).to_document()
        fields = MeetingConfig.model_fields
        changes = {
            fields[MeetingConfig.field_name(key)].alias or key: value
            for key, value in updates.items()
        }
        merged = MeetingConfig.model_validate({**current, **changes})
        return await self.save(merged)

    async def reset(self) -> MeetingConfig:
        return await self.save(default_meeting_config())


class FallbackBlockedSlotsStorage(_RecordList):
    key = "blocked_time_slots"
    model = BlockedTimeSlot

    async def get_by_date(self, date: str) -> List[BlockedTimeSlot]:
        return [slot for slot in self._load() if slot.date == date]

    async def is_slot_blocked(self, date: str, time_string: str) -> bool:
        minute = time_to_minutes(time_string)
        return any(slot.time_range().contains(minute) for slot in await self.get_by_date(date))


class FallbackEmailTemplateStorage(_RecordList):
    key = "email_templates"
    model = EmailTemplate

    async def get_by_type(self, template_type: str) -> Optional[EmailTemplate]:
        return next((template for template in self._load() if template.type == template_type), None)
