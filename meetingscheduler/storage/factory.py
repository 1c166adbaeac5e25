"""
Storage factory: builds adapters for the configured backend and hands out
domain services, plus health checks, export/import and backend migration.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple

import requests
from pydantic import ValidationError

from .. import __version__
from ..config import StorageConfig
from ..domain.exceptions import (
    InvalidStorageConfigError,
    MigrationError,
    SchedulerError,
    StorageConnectionError,
    StorageError,
    StorageNotInitializedError,
    ValidationFailedError,
)
from ..domain.models import (
    CONFIG_ID,
    BlockedTimeSlot,
    EmailTemplate,
    ExportMetadata,
    MeetingBooking,
    MeetingConfig,
    StorageData,
)
from ..domain.slot_calculator import Clock
from ..domain.time_utils import DEFAULT_TIMEZONE, utc_timestamp
from ..services.base import validation_messages
from ..services.blocked_slots import BlockedSlotsService
from ..services.email_templates import EmailTemplateService
from ..services.meeting_config import ConfigService
from ..services.meetings import MeetingService
from .base import BaseStorageAdapter, StorageEventListener
from .cloud import CloudDocumentStorageAdapter
from .fallback import FallbackDurableAdapter, RetryingStorageAdapter
from .kv import FileKeyValueStore, KeyValueStore, SessionKeyValueStore
from .local import DurableStorageAdapter
from .memory import MemoryStorageAdapter

logger = logging.getLogger(__name__)

COLLECTIONS: Dict[str, type] = {
    "meetings": MeetingBooking,
    "config": MeetingConfig,
    "blocked_slots": BlockedTimeSlot,
    "email_templates": EmailTemplate,
}

CAPABILITIES: Dict[str, Tuple[str, ...]] = {
    "durable": ("offline", "local-only", "limited-storage"),
    "memory": ("fast", "temporary", "testing"),
    "cloud-document": ("real-time", "cloud", "offline-sync"),
}

DEGRADED_LATENCY_MS = 1000.0

HealthStatus = Literal["healthy", "degraded", "unhealthy"]

Adapters = Dict[str, BaseStorageAdapter[Any]]


@dataclass
class StorageHealth:
    status: HealthStatus
    backend: str
    latency_ms: float
    errors: List[str] = field(default_factory=list)
    last_check: str = ""


class StorageFactory:
    """
    Owns one adapter per collection for the configured backend.

    Adapters are cached, so services created at different times share the
    same data and listeners. Nothing can be created before ``initialize``.

    Services see the backend through ``RetryingStorageAdapter``: an
    operation that fails with ``StorageError`` is repeated once on a durable
    store under ``fallback_directory`` (or the given ``fallback_store``).
    """

    def __init__(
        self,
        config: StorageConfig,
        *,
        session_store: Optional[KeyValueStore] = None,
        http_session: Optional[requests.Session] = None,
        clock: Optional[Clock] = None,
        timezone: str = DEFAULT_TIMEZONE,
        fallback_store: Optional[KeyValueStore] = None,
    ) -> None:
        self.config = config
        self.timezone = timezone
        self._session_store = session_store if session_store is not None else SessionKeyValueStore()
        self._http_session = http_session
        self._clock = clock
        self._adapters: Adapters = {}
        if fallback_store is None:
            fallback_store = FileKeyValueStore(config.get_fallback_directory())
        self._fallback_adapters: Adapters = {
            name: FallbackDurableAdapter(name, model, fallback_store)
            for name, model in COLLECTIONS.items()
        }
        self._listeners: List[Tuple[str, StorageEventListener]] = []
        self._initialized = False

    @property
    def backend(self) -> str:
        return self.config.backend

    async def initialize(self) -> None:
        if self._initialized:
            return

        try:
            self._adapters = await self._build_adapters(self.config)
        except StorageError:
            logger.exception("Failed to initialize storage factory")
            raise

        self._attach_listeners(self._adapters)
        self._initialized = True
        logger.info("Storage factory initialized with %s backend", self.backend)

    def is_ready(self) -> bool:
        return self._initialized

    @staticmethod
    def validate_config(config: StorageConfig) -> None:
        if config.backend == "cloud-document":
            missing = config.options.cloud_document.missing_settings()
            if missing:
                raise InvalidStorageConfigError(
                    config.backend,
                    f"Cloud document storage requires: {', '.join(missing)}",
                )

    async def _build_adapters(self, config: StorageConfig) -> Adapters:
        self.validate_config(config)

        if config.backend == "durable":
            directory = config.options.durable.get_directory()
            store = FileKeyValueStore(directory)
            if not DurableStorageAdapter.is_available(store):
                raise StorageConnectionError(
                    config.backend, f"Directory {directory} is not writable", "initialize"
                )
            return {
                name: DurableStorageAdapter(name, model, store)
                for name, model in COLLECTIONS.items()
            }

        if config.backend == "memory":
            persistent = config.options.memory.persistent
            return {
                name: MemoryStorageAdapter(
                    name, model, persistent=persistent, session_store=self._session_store
                )
                for name, model in COLLECTIONS.items()
            }

        if config.backend == "cloud-document":
            adapters: Adapters = {
                name: CloudDocumentStorageAdapter(
                    name, model, config.options.cloud_document, session=self._http_session
                )
                for name, model in COLLECTIONS.items()
            }
            if not await adapters["meetings"].is_connected():
                raise StorageConnectionError(
                    config.backend, "Firestore is not reachable", "initialize"
                )
            return adapters

        raise InvalidStorageConfigError(config.backend, f"Unsupported storage backend: {config.backend}")

    def get_backend_info(self) -> Dict[str, Any]:
        return {
            "type": self.backend,
            "version": __version__,
            "capabilities": list(CAPABILITIES.get(self.backend, ())),
        }

    def _adapter(self, collection: str) -> BaseStorageAdapter[Any]:
        if not self._initialized:
            raise StorageNotInitializedError(self.backend)
        return self._adapters[collection]

    def _service_adapter(self, collection: str) -> BaseStorageAdapter[Any]:
        return RetryingStorageAdapter(self._adapter(collection), self._fallback_adapters[collection])

    # Service factories

    def create_meeting_storage(self) -> MeetingService:
        return MeetingService(self._service_adapter("meetings"), self.timezone, self._clock)

    def create_config_storage(self) -> ConfigService:
        return ConfigService(self._service_adapter("config"))

    def create_blocked_slots_storage(self) -> BlockedSlotsService:
        return BlockedSlotsService(self._service_adapter("blocked_slots"), self.timezone, self._clock)

    def create_email_template_storage(self) -> EmailTemplateService:
        return EmailTemplateService(self._service_adapter("email_templates"))

    # Change notification

    def subscribe(self, collection: str, listener: StorageEventListener) -> Callable[[], None]:
        """
        Listen to a collection; the subscription survives ``switch_backend``.
        """
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        entry = (collection, listener)
        self._listeners.append(entry)
        self._fallback_adapters[collection].subscribe(collection, listener)
        if self._initialized:
            self._adapters[collection].subscribe(collection, listener)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)
            self._fallback_adapters[collection].unsubscribe(collection, listener)
            if collection in self._adapters:
                self._adapters[collection].unsubscribe(collection, listener)

        return unsubscribe

    def _attach_listeners(self, adapters: Adapters) -> None:
        for collection, listener in self._listeners:
            adapters[collection].subscribe(collection, listener)

    # Health

    async def health_check(self) -> StorageHealth:
        """Count the meetings collection and time it."""
        start = time.perf_counter()
        errors: List[str] = []
        status: HealthStatus = "healthy"

        try:
            await self._adapter("meetings").count()
        except SchedulerError as exc:
            errors.append(str(exc))
            status = "unhealthy"

        latency_ms = (time.perf_counter() - start) * 1000
        if latency_ms > DEGRADED_LATENCY_MS:
            if status == "healthy":
                status = "degraded"
            errors.append("High latency detected")

        return StorageHealth(
            status=status,
            backend=self.backend,
            latency_ms=latency_ms,
            errors=errors,
            last_check=utc_timestamp(),
        )

    # Export / import

    async def export_data(self) -> StorageData:
        return await self._export_from(self._checked_adapters(), self.backend)

    async def import_data(self, data: StorageData | Mapping[str, Any]) -> None:
        """
        Replace every collection with the payload's contents.

        The current records are snapshotted first and put back when the
        import fails part way.
        """
        payload = _as_storage_data(data)
        _check_unique_ids(payload)
        adapters = self._checked_adapters()
        snapshot = {name: await adapter.backup() for name, adapter in adapters.items()}
        try:
            await self._import_into(adapters, payload)
        except SchedulerError:
            logger.error("Import failed, restoring the previous %s data", self.backend)
            await self._restore(adapters, snapshot)
            raise

    async def clear_all_data(self) -> None:
        for adapter in self._checked_adapters().values():
            await adapter.clear()

    def _checked_adapters(self) -> Adapters:
        if not self._initialized:
            raise StorageNotInitializedError(self.backend)
        return self._adapters

    @staticmethod
    async def _export_from(adapters: Adapters, backend: str) -> StorageData:
        return StorageData(
            meetings=await adapters["meetings"].get_all(),
            config=await adapters["config"].get_by_id(CONFIG_ID),
            blocked_slots=await adapters["blocked_slots"].get_all(),
            email_templates=await adapters["email_templates"].get_all(),
            metadata=ExportMetadata(
                exported_at=utc_timestamp(), version=__version__, backend=backend
            ),
        )

    @staticmethod
    async def _import_into(adapters: Adapters, data: StorageData) -> None:
        for adapter in adapters.values():
            await adapter.clear()

        if data.meetings:
            await adapters["meetings"].create_many(data.meetings)
        if data.config is not None:
            await adapters["config"].create(data.config.model_copy(update={"id": CONFIG_ID}))
        if data.blocked_slots:
            await adapters["blocked_slots"].create_many(data.blocked_slots)
        if data.email_templates:
            await adapters["email_templates"].create_many(data.email_templates)

    @staticmethod
    async def _restore(adapters: Adapters, snapshot: Mapping[str, List[Any]]) -> None:
        for name, records in snapshot.items():
            try:
                await adapters[name].restore(records)
            except StorageError as exc:
                logger.error("Could not restore %s: %s", name, exc)

    # Migration

    async def switch_backend(self, new_config: StorageConfig) -> None:
        """
        Copy all data into a new backend and make it authoritative.

        The switch commits only after every record was imported. On failure
        the new backend is cleared best-effort, the current backend stays
        active and MigrationError is raised.
        """
        source = self.backend
        target = new_config.backend
        data = await self.export_data()

        try:
            adapters = await self._build_adapters(new_config)
        except StorageError as exc:
            raise MigrationError(source, target, str(exc)) from exc

        try:
            await self._import_into(adapters, data)
            await self._verify_counts(adapters, data)
        except SchedulerError as exc:
            await self._discard(adapters)
            raise MigrationError(source, target, str(exc)) from exc

        self._detach_listeners()
        self.config = new_config
        self._adapters = adapters
        self._attach_listeners(adapters)
        logger.info(
            "Switched storage from %s to %s (%d meetings)", source, target, len(data.meetings)
        )

    @staticmethod
    async def _verify_counts(adapters: Adapters, data: StorageData) -> None:
        expected = {
            "meetings": len(data.meetings),
            "config": 1 if data.config is not None else 0,
            "blocked_slots": len(data.blocked_slots),
            "email_templates": len(data.email_templates),
        }
        for name, count in expected.items():
            actual = await adapters[name].count()
            if actual != count:
                raise StorageError(
                    f"Expected {count} records in {name}, found {actual}",
                    "MIGRATION_INCOMPLETE",
                    adapters[name].backend,
                    "switch_backend",
                )

    @staticmethod
    async def _discard(adapters: Adapters) -> None:
        for name, adapter in adapters.items():
            try:
                await adapter.clear()
            except StorageError as exc:
                logger.warning("Could not clear %s after failed migration: %s", name, exc)

    def _detach_listeners(self) -> None:
        for collection, listener in self._listeners:
            self._adapters[collection].unsubscribe(collection, listener)


def _as_storage_data(data: StorageData | Mapping[str, Any]) -> StorageData:
    if isinstance(data, StorageData):
        return data
    try:
        return StorageData.model_validate(dict(data))
    except ValidationError as exc:
        raise ValidationFailedError(validation_messages(exc)) from exc


def _check_unique_ids(data: StorageData) -> None:
    errors = []
    for name, records in (
        ("meetings", data.meetings),
        ("blockedSlots", data.blocked_slots),
        ("emailTemplates", data.email_templates),
    ):
        counts = Counter(record.id for record in records if record.id)
        errors.extend(
            f"{name}: duplicate id '{record_id}'" for record_id, count in counts.items() if count > 1
        )
    if errors:
        raise ValidationFailedError(errors)


async def initialize_storage(
    config: Optional[StorageConfig] = None, **kwargs: Any
) -> StorageFactory:
    """
    Build and initialize a factory, falling back to durable storage.

    Keyword arguments are passed to ``StorageFactory``.
    """
    config = config or StorageConfig.from_env()
    factory = StorageFactory(config, **kwargs)
    try:
        await factory.initialize()
        return factory
    except StorageError as exc:
        if config.backend == "durable":
            raise
        logger.warning(
            "Failed to initialize %s storage (%s); falling back to durable storage",
            config.backend, exc,
        )

    fallback = StorageFactory(config.with_backend("durable"), **kwargs)
    await fallback.initialize()
    return fallback
