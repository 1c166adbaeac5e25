"""
Tests for the storage factory: initialization, export/import, health and migration.
"""

import asyncio
import itertools

import pytest

from meetingscheduler.config import CloudDocumentOptions, DurableOptions, StorageConfig, StorageOptions
from meetingscheduler.domain.exceptions import (
    InvalidStorageConfigError,
    MigrationError,
    StorageConnectionError,
    StorageError,
    StorageNotInitializedError,
    ValidationFailedError,
)
from meetingscheduler.domain.models import CONFIG_ID, MeetingConfig, default_meeting_config
from meetingscheduler.storage import factory as factory_module
from meetingscheduler.storage.factory import StorageFactory, initialize_storage
from meetingscheduler.storage.kv import FileKeyValueStore

from conftest import TZ, BrokenSession, make_booking


def _durable(directory) -> StorageConfig:
    return StorageConfig(
        backend="durable", options=StorageOptions(durable=DurableOptions(directory=str(directory)))
    )


def _cloud(**options) -> StorageConfig:
    return StorageConfig(
        backend="cloud-document",
        options=StorageOptions(cloud_document=CloudDocumentOptions(**options)),
    )


async def _seed(factory: StorageFactory) -> None:
    await factory.create_meeting_storage().create(make_booking())
    await factory.create_meeting_storage().create(make_booking(id="meeting-2", time="11:00"))
    await factory.create_blocked_slots_storage().block_full_day("2024-06-04", "Holiday")
    await factory.create_email_template_storage().ensure_default_templates()
    await factory.create_config_storage().update_config({"reminderHours": 12})


class TestInitialization:
    def test_services_require_initialize(self):
        factory = StorageFactory(StorageConfig(backend="memory"))

        assert not factory.is_ready()
        with pytest.raises(StorageNotInitializedError):
            factory.create_meeting_storage()

    def test_initialize_is_idempotent(self, factory):
        service = factory.create_meeting_storage()
        asyncio.run(service.create(make_booking()))

        asyncio.run(factory.initialize())

        assert asyncio.run(factory.create_meeting_storage().count()) == 1

    def test_cloud_requires_settings(self):
        with pytest.raises(InvalidStorageConfigError, match="project_id"):
            StorageFactory.validate_config(_cloud())

    def test_durable_directory_must_be_writable(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")

        with pytest.raises(StorageConnectionError):
            asyncio.run(StorageFactory(_durable(blocker)).initialize())

    def test_unreachable_cloud_fails(self):
        factory = StorageFactory(_cloud(project_id="demo", api_key="k"), http_session=BrokenSession())

        with pytest.raises(StorageConnectionError):
            asyncio.run(factory.initialize())

    def test_initialize_storage_falls_back_to_durable(self, tmp_path):
        config = _cloud(project_id="demo", api_key="k")
        config.options.durable.directory = str(tmp_path)

        factory = asyncio.run(initialize_storage(config, http_session=BrokenSession()))

        assert factory.backend == "durable"
        assert factory.is_ready()

    def test_backend_info(self, factory):
        info = factory.get_backend_info()

        assert info["type"] == "memory"
        assert info["capabilities"] == ["fast", "temporary", "testing"]

    def test_services_share_adapters(self, factory):
        asyncio.run(factory.create_meeting_storage().create(make_booking()))

        assert asyncio.run(factory.create_meeting_storage().exists("meeting-1"))


class TestExportImport:
    def test_export_contains_every_collection(self, factory):
        asyncio.run(_seed(factory))

        data = asyncio.run(factory.export_data())

        assert len(data.meetings) == 2
        assert data.config.reminder_hours == 12
        assert data.blocked_slots[0].reason == "Holiday"
        assert len(data.email_templates) == 3
        assert data.metadata.backend == "memory"

        document = data.to_json_dict()
        assert document["metadata"]["exportedAt"]
        assert document["blockedSlots"][0]["startTime"] == "00:00"

    def test_import_replaces_data(self, factory, clock, tmp_path):
        asyncio.run(_seed(factory))
        exported = asyncio.run(factory.export_data()).to_json_dict()

        target = StorageFactory(_durable(tmp_path), clock=clock, timezone=TZ)
        asyncio.run(target.initialize())
        asyncio.run(target.create_meeting_storage().create(make_booking(id="stale")))

        asyncio.run(target.import_data(exported))

        meetings = asyncio.run(target.create_meeting_storage().get_all())
        assert sorted(meeting.id for meeting in meetings) == ["meeting-1", "meeting-2"]
        assert asyncio.run(target.create_config_storage().get()).reminder_hours == 12
        assert asyncio.run(target.create_email_template_storage().count()) == 3

    def test_import_rejects_malformed_payload(self, factory):
        with pytest.raises(ValidationFailedError):
            asyncio.run(factory.import_data({"meetings": [{"name": "No date"}]}))

    def test_clear_all_data(self, factory):
        asyncio.run(_seed(factory))

        asyncio.run(factory.clear_all_data())

        data = asyncio.run(factory.export_data())
        assert data.meetings == [] and data.config is None and data.blocked_slots == []

    def test_export_clear_import_restores_everything(self, factory):
        asyncio.run(_seed(factory))
        exported = asyncio.run(factory.export_data())

        asyncio.run(factory.clear_all_data())
        asyncio.run(factory.import_data(exported.to_json_dict()))

        again = asyncio.run(factory.export_data())
        assert again.meetings == exported.meetings
        assert again.config == exported.config
        assert again.blocked_slots == exported.blocked_slots
        assert again.email_templates == exported.email_templates

    def test_duplicate_ids_rejected_before_anything_changes(self, factory):
        asyncio.run(factory.create_meeting_storage().create(make_booking(id="keep-me")))
        duplicate = make_booking(id="dup").to_document()

        with pytest.raises(ValidationFailedError, match="meetings: duplicate id 'dup'"):
            asyncio.run(factory.import_data({"meetings": [duplicate, duplicate]}))

        meetings = asyncio.run(factory.create_meeting_storage().get_all())
        assert [meeting.id for meeting in meetings] == ["keep-me"]

    def test_failed_import_restores_previous_data(self, factory, monkeypatch):
        asyncio.run(_seed(factory))

        async def failing_create(data):
            raise StorageError("disk full", "WRITE_FAILED", "memory", "create")

        monkeypatch.setattr(factory._adapters["config"], "create", failing_create)
        payload = {
            "meetings": [make_booking(id="incoming").to_document()],
            "config": default_meeting_config().to_document(),
        }

        with pytest.raises(StorageError, match="disk full"):
            asyncio.run(factory.import_data(payload))

        meetings = asyncio.run(factory.create_meeting_storage().get_all())
        assert sorted(meeting.id for meeting in meetings) == ["meeting-1", "meeting-2"]
        assert asyncio.run(factory._adapters["config"].get_by_id(CONFIG_ID)).reminder_hours == 12
        assert asyncio.run(factory.create_email_template_storage().count()) == 3


class TestHealth:
    def test_healthy(self, factory):
        health = asyncio.run(factory.health_check())

        assert health.status == "healthy"
        assert health.backend == "memory"
        assert health.errors == []
        assert health.last_check

    def test_unhealthy_when_backend_fails(self, factory, monkeypatch):
        async def failing_count(query=None):
            raise StorageError("disk gone", "READ_FAILED", "memory", "count")

        monkeypatch.setattr(factory._adapters["meetings"], "count", failing_count)

        health = asyncio.run(factory.health_check())

        assert health.status == "unhealthy"
        assert health.errors == ["disk gone"]

    def test_degraded_when_slow(self, factory, monkeypatch):
        ticks = itertools.count()
        monkeypatch.setattr(factory_module.time, "perf_counter", lambda: next(ticks) * 1.5)

        health = asyncio.run(factory.health_check())

        assert health.status == "degraded"
        assert health.errors == ["High latency detected"]
        assert health.latency_ms > 1000


class TestSwitchBackend:
    def test_data_moves_to_new_backend(self, factory, tmp_path):
        asyncio.run(_seed(factory))

        asyncio.run(factory.switch_backend(_durable(tmp_path)))

        assert factory.backend == "durable"
        assert asyncio.run(factory.create_meeting_storage().count()) == 2
        assert asyncio.run(factory.create_config_storage().get_by_id(CONFIG_ID)).reminder_hours == 12
        assert (tmp_path / "meeting_scheduler_meetings.json").exists()

    def test_durable_to_memory(self, tmp_path, clock):
        factory = StorageFactory(_durable(tmp_path), clock=clock, timezone=TZ)
        asyncio.run(factory.initialize())
        asyncio.run(_seed(factory))

        asyncio.run(factory.switch_backend(StorageConfig(backend="memory")))

        assert factory.backend == "memory"
        assert asyncio.run(factory.create_meeting_storage().count()) == 2
        assert asyncio.run(factory.create_blocked_slots_storage().count()) == 1
        assert asyncio.run(factory.create_email_template_storage().count()) == 3
        assert asyncio.run(factory.create_config_storage().get()).reminder_hours == 12

    def test_listeners_survive_switch(self, factory, tmp_path):
        events = []
        factory.subscribe("meetings", events.append)

        asyncio.run(factory.switch_backend(_durable(tmp_path)))
        asyncio.run(factory.create_meeting_storage().create(make_booking()))

        assert [event.type for event in events] == ["created"]

    def test_unsubscribe(self, factory):
        events = []
        unsubscribe = factory.subscribe("meetings", events.append)
        unsubscribe()

        asyncio.run(factory.create_meeting_storage().create(make_booking()))

        assert events == []

    def test_unknown_collection(self, factory):
        with pytest.raises(ValueError):
            factory.subscribe("invoices", print)

    def test_unreachable_target_keeps_current_backend(self, factory):
        asyncio.run(_seed(factory))
        factory._http_session = BrokenSession()

        with pytest.raises(MigrationError) as excinfo:
            asyncio.run(factory.switch_backend(_cloud(project_id="demo", api_key="k")))

        assert excinfo.value.source == "memory"
        assert factory.backend == "memory"
        assert asyncio.run(factory.create_meeting_storage().count()) == 2

    def test_failed_import_discards_partial_copy(self, factory, tmp_path, monkeypatch):
        asyncio.run(_seed(factory))

        async def incomplete(adapters, data):
            raise StorageError("count mismatch", "MIGRATION_INCOMPLETE", "durable", "switch_backend")

        monkeypatch.setattr(StorageFactory, "_verify_counts", staticmethod(incomplete))

        with pytest.raises(MigrationError, match="count mismatch"):
            asyncio.run(factory.switch_backend(_durable(tmp_path)))

        assert factory.backend == "memory"
        assert FileKeyValueStore(tmp_path).get_item("meeting_scheduler_meetings") is None
        assert isinstance(asyncio.run(factory.create_config_storage().get()), MeetingConfig)
