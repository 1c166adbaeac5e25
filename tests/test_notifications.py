"""
Tests for email rendering helpers.
"""

import asyncio
import re

from meetingscheduler.services.email_templates import default_template
from meetingscheduler.services.notifications import (
    EmailMessage,
    LoggingEmailSender,
    extract_meeting_id,
    format_phone_number,
    generate_join_link,
    join_instructions,
    render_email,
    template_values,
)

from conftest import TZ, make_booking


def test_generate_join_link_shape():
    link = generate_join_link()

    assert re.fullmatch(r"https://meet\.google\.com/[a-z]{3}-[a-z]{4}-[a-z]{3}", link)
    assert extract_meeting_id(link) == link.rsplit("/", 1)[-1]


def test_extract_meeting_id_without_link():
    assert extract_meeting_id(None) is None
    assert extract_meeting_id("https://example.com/call") is None


def test_format_phone_number():
    assert format_phone_number("+919876543210") == "+91 98765 43210"
    assert format_phone_number("9876543210") == "98765 43210"
    assert format_phone_number("+14155550100") == "+14155550100"


def test_join_instructions_for_phone_meeting():
    booking = make_booking(meeting_type="phone", phone_number="+911234567890")

    instructions = join_instructions(booking)

    assert "Call: +911234567890" in instructions
    assert "+91 98765 43210" in instructions


def test_template_values():
    booking = make_booking(join_link="https://meet.google.com/abc-defg-hij")

    values = template_values(booking, TZ)

    assert values["date"] == "Monday, June 03, 2024"
    assert values["time"].startswith("10:00 AM")
    assert values["duration"] == "30 minutes"
    assert values["meetingType"] == "Video Call"
    assert values["notes"] == "No additional notes"
    assert "Meeting ID: abc-defg-hij" in values["joinInstructions"]


def test_render_confirmation():
    booking = make_booking(join_link="https://meet.google.com/abc-defg-hij")

    message = render_email(booking, default_template("confirmation"), TZ)

    assert message.to == "asha@example.com"
    assert message.subject.startswith("Meeting Confirmation - Monday, June 03, 2024 at 10:00 AM")
    assert "Dear Asha Rao" in message.body
    assert "Booking ID: meeting-1" in message.body
    assert "{{" not in message.body


def test_logging_sender_records_messages():
    sender = LoggingEmailSender()
    message = EmailMessage(to="asha@example.com", subject="Hi", body="Body")

    assert asyncio.run(sender.send(message)) is True
    assert sender.sent == [message]
