"""
Service layer helpers that orchestrate storage adapters and domain logic.
"""

from .blocked_slots import BlockedSlotsService
from .email_templates import EmailTemplateService, TemplateVariableReport
from .meeting_config import ConfigService
from .meetings import MeetingService
from .notifications import EmailMessage, EmailSender, LoggingEmailSender, render_email
from .scheduling import SchedulingService

__all__ = [
    "BlockedSlotsService",
    "ConfigService",
    "EmailMessage",
    "EmailSender",
    "EmailTemplateService",
    "LoggingEmailSender",
    "MeetingService",
    "SchedulingService",
    "TemplateVariableReport",
    "render_email",
]
