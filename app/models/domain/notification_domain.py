# app/models/domain/notification_domain.py
"""
Notification payload models.
CalendarEvent is the locale-aware event handed to the email sender.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

TranslateFn = Callable[..., str]


@dataclass(slots=True)
class Language:
    translate: TranslateFn
    locale: str


@dataclass(slots=True)
class Person:
    name: str
    email: str
    time_zone: str
    language: Language


@dataclass(slots=True)
class CalendarEvent:
    type: str
    title: str
    start_time: str  # ISO-8601
    end_time: str  # ISO-8601
    organizer: Person
    uid: str
    attendees: list[Person] = field(default_factory=list)
    description: str | None = None
    custom_inputs: dict[str, Any] | None = None
    location: str = ""
    destination_calendar: dict[str, str] | None = None

    def to_log_context(self) -> dict[str, Any]:
        """Identifying fields only; no addresses or free text."""
        return {
            "uid": self.uid,
            "organizer_locale": self.organizer.language.locale,
            "attendee_count": len(self.attendees),
        }


@dataclass(slots=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None
    reply_to: str | None = None
