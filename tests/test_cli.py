"""
Tests for the command line interface against a temporary durable store.
"""

import json

import pendulum
import pytest
from typer.testing import CliRunner

from meetingscheduler import __version__
from meetingscheduler.cli.app import app

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    for name in (
        "MEETING_SCHEDULER_STORAGE_BACKEND",
        "MEETING_SCHEDULER_DATA_DIR",
        "MEETING_SCHEDULER_FIRESTORE_PROJECT",
        "MEETING_SCHEDULER_FIRESTORE_API_KEY",
        "MEETING_SCHEDULER_FIRESTORE_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)

    path = tmp_path / "config.yaml"
    path.write_text(
        "timezone: Asia/Kolkata\n"
        "storage:\n"
        "  backend: durable\n"
        "  options:\n"
        "    durable:\n"
        f"      directory: {tmp_path / 'data'}\n"
        f"  fallback_directory: {tmp_path / 'fallback'}\n",
        encoding="utf-8",
    )
    return path


def _invoke(config_file, *args):
    return runner.invoke(app, [*args, "--config", str(config_file)])


def _next_monday() -> str:
    return pendulum.today("Asia/Kolkata").next(pendulum.MONDAY).to_date_string()


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_missing_config_file(tmp_path):
    result = runner.invoke(app, ["meetings", "--config", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 1
    assert "Config file not found" in result.stdout


def test_book_and_list(config_file):
    monday = _next_monday()

    booked = _invoke(
        config_file, "book", "Asha Rao", "asha@example.com", "+919876543210",
        "--date", monday, "--time", "10:00",
    )

    assert booked.exit_code == 0, booked.stdout
    assert "Meeting booked" in booked.stdout

    listed = _invoke(config_file, "meetings")
    assert listed.exit_code == 0
    assert monday in listed.stdout


def test_book_with_unreadable_meetings_file(config_file, tmp_path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    (data_dir / "meeting_scheduler_meetings.json").write_text("{not json", encoding="utf-8")

    booked = _invoke(
        config_file, "book", "Asha Rao", "asha@example.com", "+919876543210",
        "--date", _next_monday(), "--time", "10:00",
    )

    assert booked.exit_code == 0, booked.stdout
    assert "asha@example.com" in (tmp_path / "fallback" / "meeting_scheduler_meetings.json").read_text(
        encoding="utf-8"
    )


def test_double_booking_fails(config_file):
    monday = _next_monday()
    args = ("book", "Asha Rao", "asha@example.com", "+919876543210", "--date", monday, "--time", "10:00")

    assert _invoke(config_file, *args).exit_code == 0
    second = _invoke(config_file, *args)

    assert second.exit_code == 1
    assert "Error" in second.stdout


def test_invalid_booking_lists_problems(config_file):
    result = _invoke(
        config_file, "book", "Asha Rao", "not-an-email", "+919876543210",
        "--date", _next_monday(), "--time", "10:00",
    )

    assert result.exit_code == 1
    assert "Validation failed" in result.stdout


def test_slots_respect_blocks(config_file):
    monday = _next_monday()

    blocked = _invoke(config_file, "block", monday, "--from", "10:00", "--to", "17:00", "--reason", "Offsite")
    assert blocked.exit_code == 0, blocked.stdout

    result = _invoke(config_file, "slots", "--start", monday, "--end", monday)
    assert result.exit_code == 0
    assert "17:00" in result.stdout
    assert "10:00" not in result.stdout


def test_block_requires_both_times(config_file):
    result = _invoke(config_file, "block", _next_monday(), "--from", "10:00")

    assert result.exit_code == 1


def test_unblock_full_day(config_file):
    monday = _next_monday()
    _invoke(config_file, "block", monday)

    assert "Unblocked" in _invoke(config_file, "unblock", monday).stdout
    assert "Nothing blocked" in _invoke(config_file, "unblock", monday).stdout


def test_config_set_and_show(config_file):
    updated = _invoke(config_file, "config", "set", "--start-time", "09:00", "--working-days", "1,2,3")
    assert updated.exit_code == 0, updated.stdout

    shown = _invoke(config_file, "config", "show")
    assert shown.exit_code == 0
    assert "09:00 - 18:00" in shown.stdout
    assert "Mon, Tue, Wed" in shown.stdout


def test_config_set_rejects_invalid_values(config_file):
    result = _invoke(config_file, "config", "set", "--durations", "45")

    assert result.exit_code == 1
    assert "Validation failed" in result.stdout


def test_export_to_file(config_file, tmp_path):
    _invoke(config_file, "block", _next_monday())
    output = tmp_path / "backup.json"

    result = _invoke(config_file, "export", "-o", str(output))

    assert result.exit_code == 0
    data = json.loads(output.read_text(encoding="utf-8"))
    assert len(data["blockedSlots"]) == 1
    assert data["metadata"]["backend"] == "durable"


def test_health(config_file):
    result = _invoke(config_file, "health")

    assert result.exit_code == 0
    assert "healthy" in result.stdout
