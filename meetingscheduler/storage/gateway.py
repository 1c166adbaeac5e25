"""
Facades that use the configured storage and retry against the fallback.

A backend failure (``StorageError``) is logged and the same operation is
repeated once on the fallback storage. Conflicts and invalid records are
caller errors and propagate unchanged, as do fallback failures.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Generic, List, Mapping, Optional, TypeVar

from ..domain.exceptions import StorageError
from ..domain.models import BlockedTimeSlot, EmailTemplate, MeetingBooking, MeetingConfig
from ..services.base import RecordService
from ..services.blocked_slots import BlockedSlotsService
from ..services.email_templates import EmailTemplateService
from ..services.meeting_config import ConfigService
from ..services.meetings import MeetingService
from .factory import StorageFactory
from .fallback import (
    FallbackBlockedSlotsStorage,
    FallbackBookingStorage,
    FallbackConfigStorage,
    FallbackEmailTemplateStorage,
    run_with_fallback,
)

logger = logging.getLogger(__name__)

S = TypeVar("S")
F = TypeVar("F")
R = TypeVar("R")


class _Gateway(ABC, Generic[S, F]):
    def __init__(self, factory: Optional[StorageFactory], fallback: F):
        self.factory = factory
        self.fallback = fallback

    @abstractmethod
    def _create_service(self, factory: StorageFactory) -> S:
        """Build the primary service from an initialized factory."""

    def _service(self) -> Optional[S]:
        if self.factory is None:
            return None
        try:
            return self._create_service(self.factory)
        except StorageError as exc:
            logger.warning("Main storage unavailable, using fallback: %s", exc)
            return None

    async def _run(
        self,
        operation: str,
        primary: Callable[[S], Awaitable[R]],
        fallback: Callable[[F], Awaitable[R]],
    ) -> R:
        service = self._service()
        if service is None:
            return await fallback(self.fallback)
        return await run_with_fallback(
            operation, lambda: primary(service), lambda: fallback(self.fallback)
        )


async def _upsert(service: RecordService[Any], record: Any) -> None:
    if await service.exists(record.id):
        await service.update(record.id, record.model_dump(exclude={"id"}))
    else:
        await service.create(record)


class BookingStorage(_Gateway[MeetingService, FallbackBookingStorage]):
    def _create_service(self, factory: StorageFactory) -> MeetingService:
        return factory.create_meeting_storage()

    async def get_all(self) -> List[MeetingBooking]:
        return await self._run("get_all", lambda s: s.get_all(), lambda f: f.get_all())

    async def get_by_id(self, record_id: str) -> Optional[MeetingBooking]:
        return await self._run(
            "get_by_id", lambda s: s.get_by_id(record_id), lambda f: f.get_by_id(record_id)
        )

    async def save(self, booking: MeetingBooking) -> None:
        await self._run("save", lambda s: _upsert(s, booking), lambda f: f.save(booking))

    async def delete(self, record_id: str) -> bool:
        return await self._run(
            "delete", lambda s: s.delete(record_id), lambda f: f.delete(record_id)
        )

    async def get_by_date_range(self, start_date: str, end_date: str) -> List[MeetingBooking]:
        return await self._run(
            "get_by_date_range",
            lambda s: s.get_by_date_range(start_date, end_date),
            lambda f: f.get_by_date_range(start_date, end_date),
        )

    async def get_by_status(self, status: str) -> List[MeetingBooking]:
        return await self._run(
            "get_by_status", lambda s: s.get_by_status(status), lambda f: f.get_by_status(status)
        )

    async def update_status(self, record_id: str, status: str) -> bool:
        return await self._run(
            "update_status",
            lambda s: s.update_status(record_id, status),
            lambda f: f.update_status(record_id, status),
        )

    async def clear(self) -> None:
        await self._run("clear", lambda s: s.clear(), lambda f: f.clear())

    async def get_upcoming(self) -> List[MeetingBooking]:
        return await self._run("get_upcoming", lambda s: s.get_upcoming(), lambda f: f.get_upcoming())

    async def get_past(self) -> List[MeetingBooking]:
        return await self._run("get_past", lambda s: s.get_past(), lambda f: f.get_past())

    async def search(self, term: str) -> List[MeetingBooking]:
        return await self._run("search", lambda s: s.search(term), lambda f: f.search(term))

    async def get_statistics(self) -> Dict[str, Any]:
        return await self._run(
            "get_statistics", lambda s: s.get_statistics(), lambda f: f.get_statistics()
        )


class ConfigStorage(_Gateway[ConfigService, FallbackConfigStorage]):
    def _create_service(self, factory: StorageFactory) -> ConfigService:
        return factory.create_config_storage()

    async def get(self) -> MeetingConfig:
        return await self._run("get", lambda s: s.get(), lambda f: f.get())

    async def save(self, config: MeetingConfig) -> MeetingConfig:
        return await self._run("save", lambda s: s.save(config), lambda f: f.save(config))

    async def update(self, updates: Mapping[str, Any]) -> MeetingConfig:
        return await self._run(
            "update", lambda s: s.update_config(updates), lambda f: f.update(updates)
        )

    async def reset(self) -> MeetingConfig:
        return await self._run("reset", lambda s: s.reset(), lambda f: f.reset())


class BlockedSlotsStorage(_Gateway[BlockedSlotsService, FallbackBlockedSlotsStorage]):
    def _create_service(self, factory: StorageFactory) -> BlockedSlotsService:
        return factory.create_blocked_slots_storage()

    async def get_all(self) -> List[BlockedTimeSlot]:
        return await self._run("get_all", lambda s: s.get_all(), lambda f: f.get_all())

    async def get_by_id(self, record_id: str) -> Optional[BlockedTimeSlot]:
        return await self._run(
            "get_by_id", lambda s: s.get_by_id(record_id), lambda f: f.get_by_id(record_id)
        )

    async def save(self, slot: BlockedTimeSlot) -> None:
        await self._run("save", lambda s: _upsert(s, slot), lambda f: f.save(slot))

    async def delete(self, record_id: str) -> bool:
        return await self._run(
            "delete", lambda s: s.delete(record_id), lambda f: f.delete(record_id)
        )

    async def get_by_date(self, date: str) -> List[BlockedTimeSlot]:
        return await self._run(
            "get_by_date", lambda s: s.get_by_date(date), lambda f: f.get_by_date(date)
        )

    async def is_slot_blocked(self, date: str, time_string: str) -> bool:
        return await self._run(
            "is_slot_blocked",
            lambda s: s.is_slot_blocked(date, time_string),
            lambda f: f.is_slot_blocked(date, time_string),
        )

    async def clear(self) -> None:
        await self._run("clear", lambda s: s.clear(), lambda f: f.clear())


class EmailTemplateStorage(_Gateway[EmailTemplateService, FallbackEmailTemplateStorage]):
    def _create_service(self, factory: StorageFactory) -> EmailTemplateService:
        return factory.create_email_template_storage()

    async def get_all(self) -> List[EmailTemplate]:
        return await self._run("get_all", lambda s: s.get_all(), lambda f: f.get_all())

    async def get_by_id(self, record_id: str) -> Optional[EmailTemplate]:
        return await self._run(
            "get_by_id", lambda s: s.get_by_id(record_id), lambda f: f.get_by_id(record_id)
        )

    async def get_by_type(self, template_type: str) -> Optional[EmailTemplate]:
        return await self._run(
            "get_by_type",
            lambda s: s.get_by_type(template_type),
            lambda f: f.get_by_type(template_type),
        )

    async def save(self, template: EmailTemplate) -> None:
        await self._run("save", lambda s: _upsert(s, template), lambda f: f.save(template))

    async def delete(self, record_id: str) -> bool:
        return await self._run(
            "delete", lambda s: s.delete(record_id), lambda f: f.delete(record_id)
        )

    async def clear(self) -> None:
        await self._run("clear", lambda s: s.clear(), lambda f: f.clear())
