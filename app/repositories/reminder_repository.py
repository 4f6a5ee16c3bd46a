"""
Reminder ledger backed by the reminder_mails table.

    reminder_mails(
        id serial primary key,
        reference_id integer not null,      -- booking id
        reminder_type text not null,
        elapsed_minutes integer not null,
        created_at timestamptz not null default now(),
        unique (reference_id, reminder_type, elapsed_minutes)
    )

Rows are only ever inserted. The unique constraint is what keeps two
overlapping job runs from both recording the same reminder.
"""

from collections.abc import Iterable

from app.db.helpers import DatabaseError, fetch_all, fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.reminder_domain import ReminderRecord, ReminderType

logger = get_logger(__name__)


class ReminderRepositoryError(DatabaseError):
    """Raised when the ledger cannot be read or written."""


class ReminderConflictError(ReminderRepositoryError):
    """Another run already recorded this (booking, type, elapsed) reminder."""

    def __init__(self, message: str):
        super().__init__(message, operation="record", recoverable=False)


class ReminderRepository:
    """Query/insert operations for sent reminders."""

    @classmethod
    async def find_existing(
        cls, kind: ReminderType, booking_ids: Iterable[int], min_elapsed: int
    ) -> set[int]:
        """
        Booking ids that already have a ``kind`` reminder at ``min_elapsed``
        minutes or later.

        The comparison is >= on purpose: a 48h reminder also covers the 24h
        and 3h checks, but a 3h reminder does not cover the 24h one.
        """
        ids = sorted(set(booking_ids))
        if not ids:
            return set()

        query = """
            SELECT DISTINCT reference_id
            FROM reminder_mails
            WHERE reminder_type = %s
              AND reference_id = ANY(%s)
              AND elapsed_minutes >= %s
        """
        rows = await fetch_all(query, (kind.value, ids, min_elapsed))
        return {row["reference_id"] for row in rows}

    @classmethod
    async def record(
        cls, booking_id: int, kind: ReminderType, elapsed_minutes: int
    ) -> ReminderRecord:
        """
        Insert a reminder row.

        Raises:
            ReminderConflictError: If the row already exists
            ReminderRepositoryError: If the insert fails
        """
        query = """
            INSERT INTO reminder_mails (reference_id, reminder_type, elapsed_minutes)
            VALUES (%s, %s, %s)
            ON CONFLICT (reference_id, reminder_type, elapsed_minutes) DO NOTHING
            RETURNING id, reference_id, reminder_type, elapsed_minutes, created_at
        """

        try:
            row = await fetch_one(query, (booking_id, kind.value, elapsed_minutes))
        except DatabaseError as e:
            raise ReminderRepositoryError(
                f"Failed to record reminder for booking {booking_id}: {e}", operation="record"
            ) from e

        if not row:
            raise ReminderConflictError(
                f"Reminder already recorded for booking {booking_id} at {elapsed_minutes} minutes"
            )

        logger.info(
            "Reminder recorded",
            booking_id=booking_id,
            reminder_type=kind.value,
            elapsed_minutes=elapsed_minutes,
        )
        return ReminderRecord(
            id=row["id"],
            reference_id=row["reference_id"],
            reminder_type=ReminderType(row["reminder_type"]),
            elapsed_minutes=row["elapsed_minutes"],
            created_at=row.get("created_at"),
        )
