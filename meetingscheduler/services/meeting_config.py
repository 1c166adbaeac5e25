"""
Singleton meeting configuration: defaults, validation, presets, import/export.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Type

from pydantic import BaseModel, ValidationError

from ..domain.exceptions import ValidationFailedError
from ..domain.models import (
    CONFIG_ID,
    MEETING_DURATIONS,
    MEETING_TYPES,
    AvailabilityConfig,
    MeetingConfig,
    default_meeting_config,
)
from ..domain.time_utils import is_valid_time, time_to_minutes
from .base import RecordService, validation_messages

logger = logging.getLogger(__name__)


def _camel_keys(model: Type[BaseModel], data: Mapping[str, Any]) -> Dict[str, Any]:
    """Rename attribute-name keys to their aliases; unknown keys are errors."""
    renamed: Dict[str, Any] = {}
    unknown: List[str] = []
    for key, value in data.items():
        info = model.model_fields.get(key)
        if info is not None:
            renamed[info.alias or key] = value
        elif any(field.alias == key for field in model.model_fields.values()):
            renamed[key] = value
        else:
            unknown.append(key)
    if unknown:
        raise ValidationFailedError(f"Unknown configuration field '{key}'." for key in unknown)
    return renamed


def _as_document(value: Any) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return dict(value)


class ConfigService(RecordService[MeetingConfig]):
    """
    Stores exactly one configuration record under ``meeting_config``.

    Stored records are parsed through the model, so fields missing from an
    older record come back with their default values.
    """

    model = MeetingConfig

    async def get(self) -> MeetingConfig:
        """Return the configuration, creating the defaults on first access."""
        config = await self.get_by_id(CONFIG_ID)
        if config is None:
            logger.info("No meeting configuration stored; saving defaults")
            return await self.save(default_meeting_config())
        return config

    async def save(self, config: MeetingConfig | Mapping[str, Any]) -> MeetingConfig:
        record = self._to_record({**_as_document(config), "id": CONFIG_ID})

        if await self.exists(CONFIG_ID):
            changes = record.model_dump(exclude={"id"})
            updated = await self._adapter.update(CONFIG_ID, changes)
            return updated or record
        return await self._adapter.create(record)

    async def update_config(self, updates: Mapping[str, Any]) -> MeetingConfig:
        """
        Apply a partial update; ``availability`` is merged key by key.

        Nothing is written when validation fails.
        """
        errors = self.validate_config(updates)
        if errors:
            raise ValidationFailedError(errors)

        current = (await self.get()).to_document()
        changes = _camel_keys(MeetingConfig, updates)
        changes.pop("id", None)

        if "availability" in changes:
            availability = _camel_keys(AvailabilityConfig, _as_document(changes["availability"]))
            changes["availability"] = {**current["availability"], **availability}

        try:
            merged = MeetingConfig.model_validate({**current, **changes})
        except ValidationError as exc:
            raise ValidationFailedError(validation_messages(exc)) from exc

        return await self.save(merged)

    async def reset(self) -> MeetingConfig:
        await self.delete(CONFIG_ID)
        return await self.save(default_meeting_config())

    def validate_config(self, config: Mapping[str, Any] | MeetingConfig) -> List[str]:
        """Collect every problem in a (partial) configuration."""
        data = _as_document(config)
        errors: List[str] = []

        availability = _pick(data, "availability")
        if availability is not None and not isinstance(availability, (Mapping, BaseModel)):
            errors.append("Availability must be an object.")
        elif availability is not None:
            availability = _as_document(availability)
            start_time = _pick(availability, "startTime", "start_time")
            end_time = _pick(availability, "endTime", "end_time")
            start_valid = isinstance(start_time, str) and is_valid_time(start_time)
            end_valid = isinstance(end_time, str) and is_valid_time(end_time)

            if start_time is not None and not start_valid:
                errors.append("Invalid start time format. Use HH:mm format.")
            if end_time is not None and not end_valid:
                errors.append("Invalid end time format. Use HH:mm format.")
            if start_valid and end_valid and time_to_minutes(end_time) <= time_to_minutes(start_time):
                errors.append("End time must be after start time.")

            working_days = _pick(availability, "workingDays", "working_days")
            if working_days is not None:
                if not isinstance(working_days, list):
                    errors.append("Working days must be a list of day numbers.")
                elif len(working_days) == 0:
                    errors.append("At least one working day must be selected.")
                elif any(not _is_int(day) or day not in range(7) for day in working_days):
                    errors.append("Working days must be between 0 (Sunday) and 6 (Saturday).")

            slot_duration = _pick(availability, "slotDuration", "slot_duration")
            if slot_duration is not None and not (_is_int(slot_duration) and 5 <= slot_duration <= 120):
                errors.append("Slot duration must be between 5 and 120 minutes.")

            buffer_time = _pick(availability, "bufferTime", "buffer_time")
            if buffer_time is not None and not (_is_int(buffer_time) and 0 <= buffer_time <= 60):
                errors.append("Buffer time must be between 0 and 60 minutes.")

        durations = _pick(data, "durations")
        if durations is not None:
            if not isinstance(durations, list):
                errors.append("Durations must be a list of minutes.")
            elif len(durations) == 0:
                errors.append("At least one duration option must be available.")
            elif any(not _is_int(duration) or duration not in MEETING_DURATIONS for duration in durations):
                errors.append("Invalid duration options. Only 15, 30, and 60 minutes are supported.")

        meeting_types = _pick(data, "meetingTypes", "meeting_types")
        if meeting_types is not None:
            if not isinstance(meeting_types, list):
                errors.append("Meeting types must be a list.")
            elif len(meeting_types) == 0:
                errors.append("At least one meeting type must be available.")
            elif any(meeting_type not in MEETING_TYPES for meeting_type in meeting_types):
                errors.append("Invalid meeting types. Only video and phone are supported.")

        reminder_hours = _pick(data, "reminderHours", "reminder_hours")
        if reminder_hours is not None and not (_is_int(reminder_hours) and 1 <= reminder_hours <= 168):
            errors.append("Reminder hours must be between 1 and 168 (1 week).")

        return errors

    @staticmethod
    def get_presets() -> Dict[str, MeetingConfig]:
        default = default_meeting_config()
        return {
            "default": default,
            "business": default.model_copy(
                update={
                    "availability": AvailabilityConfig(
                        start_time="09:00", end_time="17:00",
                        working_days=[1, 2, 3, 4, 5], slot_duration=30, buffer_time=15,
                    ),
                    "durations": [30, 60],
                    "reminder_hours": 24,
                },
                deep=True,
            ),
            "flexible": default.model_copy(
                update={
                    "availability": AvailabilityConfig(
                        start_time="08:00", end_time="20:00",
                        working_days=[1, 2, 3, 4, 5, 6], slot_duration=15, buffer_time=0,
                    ),
                    "durations": [15, 30, 60],
                    "reminder_hours": 2,
                },
                deep=True,
            ),
            "minimal": default.model_copy(
                update={
                    "availability": AvailabilityConfig(
                        start_time="10:00", end_time="16:00",
                        working_days=[1, 2, 3, 4, 5], slot_duration=60, buffer_time=30,
                    ),
                    "durations": [60],
                    "meeting_types": ["video"],
                    "reminder_hours": 48,
                },
                deep=True,
            ),
        }

    async def apply_preset(self, name: str) -> MeetingConfig:
        presets = self.get_presets()
        if name not in presets:
            raise ValueError(f"Preset '{name}' not found. Available: {', '.join(presets)}")
        return await self.save(presets[name])

    async def export_config(self) -> str:
        return json.dumps((await self.get()).to_document(), indent=2)

    async def import_config(self, config_json: str) -> MeetingConfig:
        try:
            data = json.loads(config_json)
        except json.JSONDecodeError as exc:
            raise ValidationFailedError([f"Invalid configuration JSON: {exc}"]) from exc
        if not isinstance(data, dict):
            raise ValidationFailedError(["Configuration must be a JSON object."])

        errors = self.validate_config(data)
        if errors:
            raise ValidationFailedError(errors)
        return await self.save(data)


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _is_int(value: Any) -> bool:
    # bool is an int subclass but never a valid count
    return isinstance(value, int) and not isinstance(value, bool)
