"""
Read model for bookings awaiting organizer confirmation.

Tables read: bookings, users (organizer), attendees, destination_calendars.
Nothing in this module writes.
"""

from datetime import datetime

from app.db.helpers import DatabaseError, fetch_all
from app.infrastructure.observability.logging import get_logger
from app.models.domain.booking_domain import (
    Attendee,
    Booking,
    BookingStatus,
    DestinationCalendar,
    Organizer,
)

logger = get_logger(__name__)


class BookingRepositoryError(DatabaseError):
    """Raised when bookings cannot be loaded."""


class BookingRepository:
    """Queries backing the booking reminder job."""

    PENDING_BOOKINGS_QUERY = """
        SELECT
            b.id, b.uid, b.status, b.title, b.description, b.location,
            b.custom_inputs, b.created_at, b.start_time, b.end_time,
            u.email AS organizer_email,
            u.name AS organizer_name,
            u.username AS organizer_username,
            u.locale AS organizer_locale,
            u.time_zone AS organizer_time_zone,
            bdc.integration AS booking_calendar_integration,
            bdc.external_id AS booking_calendar_external_id,
            udc.integration AS organizer_calendar_integration,
            udc.external_id AS organizer_calendar_external_id,
            COALESCE(
                (
                    SELECT json_agg(
                        json_build_object(
                            'name', a.name,
                            'email', a.email,
                            'time_zone', a.time_zone,
                            'locale', a.locale
                        )
                        ORDER BY a.id
                    )
                    FROM attendees a
                    WHERE a.booking_id = b.id
                ),
                '[]'::json
            ) AS attendees
        FROM bookings b
        LEFT JOIN users u ON u.id = b.user_id
        LEFT JOIN destination_calendars bdc ON bdc.booking_id = b.id
        LEFT JOIN destination_calendars udc ON udc.user_id = u.id
        WHERE b.status = %s
          AND b.created_at <= %s
        ORDER BY b.id
    """

    @staticmethod
    def _calendar(row: dict, prefix: str) -> DestinationCalendar | None:
        integration = row.get(f"{prefix}_calendar_integration")
        external_id = row.get(f"{prefix}_calendar_external_id")
        if not integration or not external_id:
            return None
        return DestinationCalendar(integration=integration, external_id=external_id)

    @classmethod
    def _row_to_booking(cls, row: dict) -> Booking:
        organizer = None
        if row.get("organizer_email"):
            organizer = Organizer(
                email=row["organizer_email"],
                name=row.get("organizer_name"),
                username=row.get("organizer_username"),
                locale=row.get("organizer_locale"),
                time_zone=row.get("organizer_time_zone"),
                destination_calendar=cls._calendar(row, "organizer"),
            )

        attendees = [
            Attendee(
                name=item.get("name") or "",
                email=item["email"],
                time_zone=item.get("time_zone") or "UTC",
                locale=item.get("locale"),
            )
            for item in row.get("attendees") or []
        ]

        return Booking(
            id=row["id"],
            uid=row["uid"],
            status=BookingStatus(str(row["status"]).lower()),
            title=row["title"],
            description=row.get("description"),
            location=row.get("location"),
            custom_inputs=row.get("custom_inputs"),
            created_at=row["created_at"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            organizer=organizer,
            attendees=attendees,
            destination_calendar=cls._calendar(row, "booking"),
        )

    @classmethod
    async def find_pending_older_than(cls, cutoff: datetime) -> list[Booking]:
        """
        Return pending bookings created at or before ``cutoff``.

        Raises:
            ValueError: If cutoff is naive
            DatabaseError: If the query fails
        """
        if cutoff.tzinfo is None:
            raise ValueError("cutoff must be timezone-aware")

        rows = await fetch_all(cls.PENDING_BOOKINGS_QUERY, (BookingStatus.PENDING.value, cutoff))
        bookings = [cls._row_to_booking(row) for row in rows]

        logger.debug(
            "Loaded pending bookings", cutoff=cutoff.isoformat(), booking_count=len(bookings)
        )
        return bookings
