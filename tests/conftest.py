from datetime import UTC, datetime, timedelta

import pytest

from app.db.helpers import DatabaseError
from app.models.domain.booking_domain import (
    Attendee,
    Booking,
    BookingStatus,
    DestinationCalendar,
    Organizer,
)
from app.models.domain.reminder_domain import ReminderRecord, ReminderType
from app.repositories.reminder_repository import ReminderConflictError, ReminderRepositoryError
from app.services.notifications.email_sender import EmailSender, EmailSendError

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeBookingRepository:
    def __init__(self, bookings: list[Booking] | None = None):
        self.bookings = list(bookings or [])
        self.fail = False
        self.cutoffs: list[datetime] = []

    async def find_pending_older_than(self, cutoff: datetime) -> list[Booking]:
        self.cutoffs.append(cutoff)
        if self.fail:
            raise DatabaseError("connection refused", operation="fetch_all")
        return [
            b for b in self.bookings if b.status == BookingStatus.PENDING and b.created_at <= cutoff
        ]


class FakeReminderLedger:
    """In-memory reminder_mails with the same >= lookup and unique key."""

    def __init__(self):
        self.records: list[ReminderRecord] = []
        self.fail_writes = False

    def add(self, booking_id: int, elapsed_minutes: int, kind=ReminderType.PENDING_BOOKING_CONFIRMATION):
        self.records.append(ReminderRecord(len(self.records) + 1, booking_id, kind, elapsed_minutes))

    async def find_existing(self, kind, booking_ids, min_elapsed) -> set[int]:
        ids = set(booking_ids)
        return {
            r.reference_id
            for r in self.records
            if r.reminder_type == kind and r.reference_id in ids and r.elapsed_minutes >= min_elapsed
        }

    async def record(self, booking_id, kind, elapsed_minutes) -> ReminderRecord:
        if self.fail_writes:
            raise ReminderRepositoryError("insert failed", operation="record")
        for r in self.records:
            if (r.reference_id, r.reminder_type, r.elapsed_minutes) == (booking_id, kind, elapsed_minutes):
                raise ReminderConflictError("duplicate")
        record = ReminderRecord(len(self.records) + 1, booking_id, kind, elapsed_minutes, NOW)
        self.records.append(record)
        return record

    def elapsed_for(self, booking_id: int) -> list[int]:
        return [r.elapsed_minutes for r in self.records if r.reference_id == booking_id]


class FakeEmailSender(EmailSender):
    def __init__(self):
        self.messages = []
        self.events = []
        self.fail_for_uids: set[str] = set()

    async def send_organizer_request_reminder(self, event):
        if event.uid in self.fail_for_uids:
            raise EmailSendError("smtp down")
        self.events.append(event)
        return await super().send_organizer_request_reminder(event)

    async def send(self, message) -> str | None:
        self.messages.append(message)
        return f"msg-{len(self.messages)}"


def make_booking(
    booking_id: int = 1,
    *,
    age_hours: float = 50,
    status: BookingStatus = BookingStatus.PENDING,
    organizer: Organizer | None = None,
    attendee_locales: list[str | None] | None = None,
    **overrides,
) -> Booking:
    if organizer is None:
        organizer = Organizer(email="jane@example.com", name="Jane", locale="en", time_zone="UTC")
    attendees = [
        Attendee(name=f"Guest {i}", email=f"guest{i}@example.com", time_zone="Europe/Paris", locale=loc)
        for i, loc in enumerate(attendee_locales if attendee_locales is not None else ["en"])
    ]
    start = NOW + timedelta(days=3)
    fields = {
        "id": booking_id,
        "uid": f"uid-{booking_id}",
        "status": status,
        "title": "Intro call",
        "created_at": NOW - timedelta(hours=age_hours),
        "start_time": start,
        "end_time": start + timedelta(minutes=30),
        "organizer": organizer,
        "attendees": attendees,
    }
    fields.update(overrides)
    return Booking(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger():
    return FakeReminderLedger()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def calendar():
    return DestinationCalendar(integration="google_calendar", external_id="primary")


@pytest.fixture
def booking_factory():
    return make_booking


@pytest.fixture
def booking_repository():
    return FakeBookingRepository()
