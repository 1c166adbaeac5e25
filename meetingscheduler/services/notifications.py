"""
Email rendering and join-link helpers.

Actual delivery is pluggable through ``EmailSender``; the bundled
``LoggingEmailSender`` only logs the message.
"""

import logging
import re
import secrets
import string
from dataclasses import dataclass
from typing import Dict, Protocol

from ..domain.models import EmailTemplate, MeetingBooking
from ..domain.time_utils import DEFAULT_TIMEZONE, parse_date, slot_datetime
from .email_templates import substitute

logger = logging.getLogger(__name__)

MEET_URL = "https://meet.google.com/"
MEET_ID_PATTERN = re.compile(r"meet\.google\.com/([a-z]{3}-[a-z]{4}-[a-z]{3})")


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str


class EmailSender(Protocol):
    """Protocol describing an email delivery backend."""

    async def send(self, message: EmailMessage) -> bool:
        """Deliver the message; returns False when delivery failed."""


class LoggingEmailSender:
    """Records messages in the log instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> bool:
        logger.info("Email to %s: %s", message.to, message.subject)
        self.sent.append(message)
        return True


def generate_join_link() -> str:
    """Generate a meeting link shaped like https://meet.google.com/abc-defg-hij."""
    parts = ("".join(secrets.choice(string.ascii_lowercase) for _ in range(size)) for size in (3, 4, 3))
    return MEET_URL + "-".join(parts)


def extract_meeting_id(link: str | None) -> str | None:
    match = MEET_ID_PATTERN.search(link or "")
    return match.group(1) if match else None


def format_phone_number(phone: str) -> str:
    """Group Indian and ten-digit numbers for display; others are returned unchanged."""
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("91") and len(digits) == 12:
        return f"+91 {digits[2:7]} {digits[7:]}"
    if len(digits) == 10:
        return f"{digits[:5]} {digits[5:]}"
    return phone


def join_instructions(booking: MeetingBooking) -> str:
    if booking.meeting_type == "video":
        return (
            "To join the video meeting:\n"
            f"1. Open the meeting link: {booking.join_link or 'N/A'}\n"
            "2. Allow camera and microphone access when prompted\n"
            "3. Click \"Join now\" to enter the meeting\n\n"
            f"Meeting ID: {extract_meeting_id(booking.join_link) or 'N/A'}"
        )
    return (
        "To join the phone meeting:\n"
        f"1. Call: {booking.phone_number or 'N/A'}\n"
        "2. Have your phone ready at the scheduled time\n"
        f"3. The host will call you at {format_phone_number(booking.phone)}\n\n"
        "Please ensure you're available at the scheduled time."
    )


def template_values(booking: MeetingBooking, timezone: str = DEFAULT_TIMEZONE) -> Dict[str, str]:
    """Values for every supported placeholder."""
    starts_at = slot_datetime(booking.date, booking.time, timezone)
    return {
        "name": booking.name,
        "email": booking.email,
        "phone": format_phone_number(booking.phone),
        "date": parse_date(booking.date).strftime("%A, %B %d, %Y"),
        "time": f"{starts_at.format('h:mm A')} {starts_at.tzname()}",
        "duration": f"{booking.duration} minutes",
        "meetingType": "Video Call" if booking.meeting_type == "video" else "Phone Call",
        "meetingLink": booking.join_link or "N/A",
        "phoneNumber": booking.phone_number or "N/A",
        "notes": booking.notes or "No additional notes",
        "bookingId": booking.id,
        "joinInstructions": join_instructions(booking),
    }


def render_email(
    booking: MeetingBooking, template: EmailTemplate, timezone: str = DEFAULT_TIMEZONE
) -> EmailMessage:
    values = template_values(booking, timezone)
    return EmailMessage(
        to=booking.email,
        subject=substitute(template.subject, values),
        body=substitute(template.body, values),
    )
