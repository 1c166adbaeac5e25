"""
Email templates with {{placeholder}} variables.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..domain.exceptions import RecordNotFoundError, ValidationFailedError
from ..domain.models import TEMPLATE_TYPES, EmailTemplate
from ..storage.base import QueryOptions
from .base import RecordService

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

MAX_SUBJECT_LENGTH = 200
MAX_BODY_LENGTH = 5000

AVAILABLE_VARIABLES: Dict[str, str] = {
    "name": "Attendee name",
    "email": "Attendee email",
    "phone": "Attendee phone number",
    "date": "Meeting date",
    "time": "Meeting time",
    "duration": "Meeting duration",
    "meetingType": "Meeting type (Video Call or Phone Call)",
    "meetingLink": "Video meeting link (for video calls)",
    "phoneNumber": "Phone number (for phone calls)",
    "notes": "Additional notes",
    "bookingId": "Booking ID",
    "joinInstructions": "Meeting join instructions",
}

_DETAILS = """Meeting Details:
- Date: {{date}}
- Time: {{time}}
- Duration: {{duration}}
- Type: {{meetingType}}"""

DEFAULT_TEMPLATES: tuple[EmailTemplate, ...] = (
    EmailTemplate(
        id="default-confirmation",
        type="confirmation",
        subject="Meeting Confirmation - {{date}} at {{time}}",
        body=(
            "Dear {{name}},\n\n"
            "Your meeting has been successfully scheduled!\n\n"
            f"{_DETAILS}\n\n"
            "{{joinInstructions}}\n\n"
            "If you need to reschedule or cancel this meeting, please contact us as soon as possible.\n\n"
            "Best regards,\nMeeting Scheduler Team\n\n"
            "Booking ID: {{bookingId}}"
        ),
        variables=["name", "date", "time", "duration", "meetingType", "joinInstructions", "bookingId"],
    ),
    EmailTemplate(
        id="default-reminder",
        type="reminder",
        subject="Meeting Reminder - Tomorrow at {{time}}",
        body=(
            "Dear {{name}},\n\n"
            "This is a friendly reminder about your upcoming meeting:\n\n"
            f"{_DETAILS}\n\n"
            "{{joinInstructions}}\n\n"
            "Please make sure you're available at the scheduled time.\n\n"
            "Best regards,\nMeeting Scheduler Team\n\n"
            "Booking ID: {{bookingId}}"
        ),
        variables=["name", "date", "time", "duration", "meetingType", "joinInstructions", "bookingId"],
    ),
    EmailTemplate(
        id="default-cancellation",
        type="cancellation",
        subject="Meeting Cancelled - {{date}} at {{time}}",
        body=(
            "Dear {{name}},\n\n"
            "We regret to inform you that your meeting scheduled for {{date}} at {{time}} "
            "has been cancelled.\n\n"
            f"Original {_DETAILS}\n\n"
            "If you would like to reschedule, please contact us or visit our scheduling page.\n\n"
            "We apologize for any inconvenience caused.\n\n"
            "Best regards,\nMeeting Scheduler Team\n\n"
            "Booking ID: {{bookingId}}"
        ),
        variables=["name", "date", "time", "duration", "meetingType", "bookingId"],
    ),
)


@dataclass
class TemplateVariableReport:
    """Result of checking declared variables against the placeholders in use."""
    valid: bool
    unused_variables: List[str] = field(default_factory=list)
    undefined_variables: List[str] = field(default_factory=list)


def used_placeholders(template: EmailTemplate) -> List[str]:
    """Placeholder names in subject and body, in order of first use."""
    seen: Dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(f"{template.subject} {template.body}"):
        seen.setdefault(match.group(1), None)
    return list(seen)


def substitute(text: str, values: Mapping[str, str]) -> str:
    """Replace every known {{placeholder}}; unknown ones are left as they are."""
    return PLACEHOLDER_PATTERN.sub(
        lambda match: values.get(match.group(1), match.group(0)), text
    )


def default_template(template_type: str) -> EmailTemplate:
    for template in DEFAULT_TEMPLATES:
        if template.type == template_type:
            return template.model_copy(deep=True)
    raise ValueError(f"Unknown template type: {template_type}")


class EmailTemplateService(RecordService[EmailTemplate]):
    model = EmailTemplate

    @staticmethod
    def validate_template(template: EmailTemplate) -> List[str]:
        errors = []
        if template.type not in TEMPLATE_TYPES:
            errors.append("Invalid template type. Must be confirmation, reminder, or cancellation.")
        if not template.subject.strip():
            errors.append("Template subject is required.")
        if not template.body.strip():
            errors.append("Template body is required.")
        if len(template.subject) > MAX_SUBJECT_LENGTH:
            errors.append(f"Template subject must be at most {MAX_SUBJECT_LENGTH} characters.")
        if len(template.body) > MAX_BODY_LENGTH:
            errors.append(f"Template body must be at most {MAX_BODY_LENGTH} characters.")
        return errors

    def _checked(self, data: EmailTemplate | Mapping[str, Any]) -> EmailTemplate:
        template = self._to_record(data)
        errors = self.validate_template(template)
        if errors:
            raise ValidationFailedError(errors)
        return template

    async def create(self, data: EmailTemplate | Mapping[str, Any]) -> EmailTemplate:
        return await self._adapter.create(self._checked(data))

    async def create_many(
        self, items: Sequence[EmailTemplate | Mapping[str, Any]]
    ) -> List[EmailTemplate]:
        return await self._adapter.create_many([self._checked(item) for item in items])

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> EmailTemplate | None:
        existing = await self.get_by_id(record_id)
        if existing is None:
            return None

        merged = existing.model_dump()
        merged.update({EmailTemplate.field_name(key): value for key, value in changes.items()})
        self._checked(merged)
        return await self._adapter.update(record_id, changes)

    # Queries and defaults

    async def get_by_type(self, template_type: str) -> EmailTemplate | None:
        matches = await self.find(QueryOptions(where={"type": template_type}, limit=1))
        return matches[0] if matches else None

    async def get_or_default(self, template_type: str) -> EmailTemplate:
        return await self.get_by_type(template_type) or default_template(template_type)

    @staticmethod
    def get_default_templates() -> List[EmailTemplate]:
        return [template.model_copy(deep=True) for template in DEFAULT_TEMPLATES]

    async def ensure_default_templates(self) -> List[EmailTemplate]:
        """Create the default template of every type that has none; returns those created."""
        created = []
        for template in self.get_default_templates():
            if await self.get_by_type(template.type) is None:
                created.append(await self.create(template))
        return created

    async def reset_to_defaults(self) -> List[EmailTemplate]:
        await self.clear()
        return await self.create_many(self.get_default_templates())

    async def update_template(
        self, template_type: str, changes: Mapping[str, Any]
    ) -> EmailTemplate | None:
        existing = await self.get_by_type(template_type)
        if existing is None:
            return None
        return await self.update(existing.id, changes)

    # Variables

    @staticmethod
    def available_variables() -> Dict[str, str]:
        return {f"{{{{{name}}}}}": description for name, description in AVAILABLE_VARIABLES.items()}

    @staticmethod
    def validate_template_variables(template: EmailTemplate) -> TemplateVariableReport:
        """
        Compare declared variables with placeholders used in subject and body.

        Valid only when every declared variable is used and every used
        placeholder is a known variable.
        """
        used = used_placeholders(template)
        undefined = [f"{{{{{name}}}}}" for name in used if name not in AVAILABLE_VARIABLES]
        unused = [name for name in template.variables if name not in used]
        return TemplateVariableReport(
            valid=not undefined and not unused,
            unused_variables=unused,
            undefined_variables=undefined,
        )

    async def preview_template(
        self, template_id: str, sample_data: Optional[Mapping[str, str]] = None
    ) -> Dict[str, str]:
        """
        Render a stored template with sample values.

        Known variables missing from sample_data render as ``[description]``.
        Keys may be given with or without braces.
        """
        template = await self.get_by_id(template_id)
        if template is None:
            raise RecordNotFoundError(f"Template '{template_id}' not found")

        samples = {key.strip("{}"): value for key, value in (sample_data or {}).items()}
        values = {
            name: samples.get(name) or f"[{description}]"
            for name, description in AVAILABLE_VARIABLES.items()
        }
        return {
            "subject": substitute(template.subject, values),
            "body": substitute(template.body, values),
        }

    async def get_usage_stats(self) -> Dict[str, Dict[str, Any]]:
        stats: Dict[str, Dict[str, Any]] = {}
        for template_type in TEMPLATE_TYPES:
            template = await self.get_by_type(template_type)
            stats[template_type] = {
                "template_exists": template is not None,
                "variable_count": len(template.variables) if template else 0,
                "character_count": {
                    "subject": len(template.subject) if template else 0,
                    "body": len(template.body) if template else 0,
                },
            }
        return stats

    async def export_templates(self) -> str:
        return json.dumps([template.to_document() for template in await self.get_all()], indent=2)

    async def import_templates(self, templates_json: str) -> List[EmailTemplate]:
        """Replace all templates; every template is validated before anything is cleared."""
        try:
            documents = json.loads(templates_json)
        except json.JSONDecodeError as exc:
            raise ValidationFailedError([f"Invalid templates JSON: {exc}"]) from exc
        if not isinstance(documents, list):
            raise ValidationFailedError(["Templates must be a JSON array."])

        templates = [self._checked(document) for document in documents]
        await self.clear()
        return await self._adapter.create_many(templates)
