"""
Builds the CalendarEvent payload for an organizer reminder.

Translators for the organizer and every attendee are resolved before the
payload is assembled; a payload is never built from partial results.
"""

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.models.domain.booking_domain import Attendee, Booking
from app.models.domain.notification_domain import CalendarEvent, Language, Person
from app.services.i18n.translation_service import (
    TranslationService,
    Translator,
    translation_service,
)


class BookingValidationError(Exception):
    """The booking lacks organizer data needed to address the reminder."""

    def __init__(self, booking_id: int, missing: list[str]):
        super().__init__(
            f"Booking {booking_id} is missing required properties for booking reminder: "
            f"{', '.join(missing)}"
        )
        self.booking_id = booking_id
        self.missing = missing


def missing_organizer_fields(booking: Booking) -> list[str]:
    """Names of required organizer fields that are absent (empty list when valid)."""
    organizer = booking.organizer
    if organizer is None:
        return ["organizer"]
    missing = []
    if not organizer.display_name:
        missing.append("organizer.name")
    if not organizer.time_zone:
        missing.append("organizer.time_zone")
    return missing


def as_mapping_or_none(value: Any) -> dict[str, Any] | None:
    """Keep custom inputs only when they are a key/value object."""
    if isinstance(value, Mapping) and all(isinstance(key, str) for key in value):
        return dict(value)
    return None


def to_utc_iso(value: datetime) -> str:
    """UTC timestamp with millisecond precision and a Z suffix, e.g. 2026-10-21T12:00:00.000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _person(name: str, email: str, time_zone: str, translator: Translator, locale: str) -> Person:
    return Person(
        name=name,
        email=email,
        time_zone=time_zone,
        language=Language(translate=translator, locale=locale),
    )


def compose_calendar_event(
    booking: Booking,
    organizer_translator: Translator,
    attendee_translators: list[Translator],
) -> CalendarEvent:
    """
    Assemble the payload from a validated booking and resolved translators.

    ``attendee_translators`` is positional: index i belongs to booking.attendees[i].

    Raises:
        BookingValidationError: If organizer fields are missing
    """
    missing = missing_organizer_fields(booking)
    if missing:
        raise BookingValidationError(booking.id, missing)
    if len(attendee_translators) != len(booking.attendees):
        raise ValueError("One translator per attendee is required")

    organizer = booking.organizer
    attendees = [
        _person(
            attendee.name,
            attendee.email,
            attendee.time_zone,
            translator,
            attendee.locale or settings.DEFAULT_LOCALE,
        )
        for attendee, translator in zip(booking.attendees, attendee_translators)
    ]
    destination = booking.effective_destination_calendar()

    return CalendarEvent(
        type=booking.title,
        title=booking.title,
        description=booking.description or None,
        custom_inputs=as_mapping_or_none(booking.custom_inputs),
        location=booking.location or "",
        start_time=to_utc_iso(booking.start_time),
        end_time=to_utc_iso(booking.end_time),
        organizer=_person(
            organizer.display_name,
            organizer.email,
            organizer.time_zone,
            organizer_translator,
            organizer.locale or settings.DEFAULT_LOCALE,
        ),
        attendees=attendees,
        uid=booking.uid,
        destination_calendar=destination.to_dict() if destination else None,
    )


async def _attendee_translator(service: TranslationService, attendee: Attendee) -> Translator:
    return await service.get_translation(attendee.locale or settings.DEFAULT_LOCALE, "common")


async def build_calendar_event(
    booking: Booking, service: TranslationService | None = None
) -> CalendarEvent:
    """
    Resolve translators and compose the reminder payload for ``booking``.

    Attendee translators are resolved concurrently; asyncio.gather returns
    them in attendee order whatever order they complete in.

    Raises:
        BookingValidationError: If organizer fields are missing
    """
    service = service or translation_service

    missing = missing_organizer_fields(booking)
    if missing:
        raise BookingValidationError(booking.id, missing)

    organizer_translator = await service.get_translation(
        booking.organizer.locale or settings.DEFAULT_LOCALE, "common"
    )
    attendee_translators = await asyncio.gather(
        *(_attendee_translator(service, attendee) for attendee in booking.attendees)
    )

    return compose_calendar_event(booking, organizer_translator, list(attendee_translators))
