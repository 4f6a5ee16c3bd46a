# app/models/domain/booking_domain.py
"""
Booking Domain Models
Read-only projections of bookings, organizers and attendees as the reminder
job sees them. Rows are produced by BookingRepository.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class BookingStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


@dataclass(slots=True)
class DestinationCalendar:
    """Calendar an accepted booking is written to."""

    integration: str
    external_id: str

    def to_dict(self) -> dict[str, str]:
        return {"integration": self.integration, "externalId": self.external_id}


@dataclass(slots=True)
class Organizer:
    """The user who owns the booking and has to confirm it."""

    email: str
    name: str | None = None
    username: str | None = None
    locale: str | None = None
    time_zone: str | None = None
    destination_calendar: DestinationCalendar | None = None

    @property
    def display_name(self) -> str | None:
        return self.name or self.username or None


@dataclass(slots=True)
class Attendee:
    name: str
    email: str
    time_zone: str
    locale: str | None = None


@dataclass(slots=True)
class Booking:
    """A booking row with its organizer and attendees attached."""

    id: int
    uid: str
    status: BookingStatus
    title: str
    created_at: datetime
    start_time: datetime
    end_time: datetime
    description: str | None = None
    location: str | None = None
    custom_inputs: Any = None
    organizer: Organizer | None = None
    attendees: list[Attendee] = field(default_factory=list)
    destination_calendar: DestinationCalendar | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == BookingStatus.PENDING

    def effective_destination_calendar(self) -> DestinationCalendar | None:
        """Booking-level override first, then the organizer's default."""
        if self.destination_calendar:
            return self.destination_calendar
        if self.organizer:
            return self.organizer.destination_calendar
        return None
