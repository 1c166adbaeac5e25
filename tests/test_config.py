"""
Tests for YAML and environment configuration.
"""

import pytest
from pydantic import ValidationError

from meetingscheduler.config import (
    AppConfig,
    CloudDocumentOptions,
    StorageConfig,
    apply_env_overrides,
)


class TestLoadFromYaml:
    def test_full_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "timezone: Europe/Berlin\n"
            "days_ahead: 7\n"
            "log_level: info\n"
            "storage:\n"
            "  backend: memory\n"
            "  options:\n"
            "    memory:\n"
            "      persistent: true\n",
            encoding="utf-8",
        )

        config = AppConfig.load_from_yaml(path)

        assert config.timezone == "Europe/Berlin"
        assert config.days_ahead == 7
        assert config.log_level == "INFO"
        assert config.storage.backend == "memory"
        assert config.storage.options.memory.persistent is True

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        config = AppConfig.load_from_yaml(path)

        assert config.storage.backend == "durable"
        assert config.timezone == "Asia/Kolkata"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.example.yaml"):
            AppConfig.load_from_yaml(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("storage: [unclosed\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid YAML"):
            AppConfig.load_from_yaml(path)

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- durable\n- memory\n", encoding="utf-8")

        with pytest.raises(ValueError, match="mapping at the root"):
            AppConfig.load_from_yaml(path)

    def test_unknown_backend(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("storage:\n  backend: floppy\n", encoding="utf-8")

        with pytest.raises(ValidationError):
            AppConfig.load_from_yaml(path)


class TestValidation:
    @pytest.mark.parametrize("days", [0, 366])
    def test_days_ahead_range(self, days):
        with pytest.raises(ValidationError):
            AppConfig(days_ahead=days)

    def test_unknown_log_level(self):
        with pytest.raises(ValidationError):
            AppConfig(log_level="chatty")

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            CloudDocumentOptions(timeout=0)

    def test_missing_cloud_settings(self):
        assert CloudDocumentOptions().missing_settings() == ["project_id", "api_key or access_token"]
        assert CloudDocumentOptions(project_id="demo", access_token="t").missing_settings() == []


class TestEnvironment:
    def test_overrides(self):
        environ = {
            "MEETING_SCHEDULER_STORAGE_BACKEND": "cloud-document",
            "MEETING_SCHEDULER_DATA_DIR": "/srv/meetings",
            "MEETING_SCHEDULER_FIRESTORE_PROJECT": "demo",
            "MEETING_SCHEDULER_FIRESTORE_API_KEY": "key",
        }

        storage = apply_env_overrides(StorageConfig(), environ)

        assert storage.backend == "cloud-document"
        assert storage.options.durable.directory == "/srv/meetings"
        assert storage.options.cloud_document.project_id == "demo"
        assert storage.options.cloud_document.api_key == "key"

    def test_overrides_do_not_mutate_input(self):
        original = StorageConfig()

        apply_env_overrides(original, {"MEETING_SCHEDULER_STORAGE_BACKEND": "memory"})

        assert original.backend == "durable"

    def test_load_applies_env_to_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("storage:\n  backend: durable\n", encoding="utf-8")

        config = AppConfig.load(path, environ={"MEETING_SCHEDULER_STORAGE_BACKEND": "memory"})

        assert config.storage.backend == "memory"

    def test_from_env(self):
        assert StorageConfig.from_env({}).backend == "durable"


class TestPresets:
    def test_development(self):
        config = StorageConfig.preset("development")

        assert config.backend == "memory"
        assert config.options.memory.persistent

    def test_cloud_reads_environment(self):
        config = StorageConfig.preset("cloud", {"MEETING_SCHEDULER_FIRESTORE_TOKEN": "abc"})

        assert config.backend == "cloud-document"
        assert config.options.cloud_document.access_token == "abc"

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown storage preset"):
            StorageConfig.preset("staging")

    def test_with_backend(self):
        original = StorageConfig()

        switched = original.with_backend("memory")

        assert switched.backend == "memory"
        assert original.backend == "durable"
        with pytest.raises(ValueError, match="Unknown storage backend"):
            original.with_backend("floppy")
