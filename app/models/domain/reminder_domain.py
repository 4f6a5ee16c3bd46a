# app/models/domain/reminder_domain.py
"""
Reminder Domain Models

ReminderRecord mirrors a reminder_mails row. The dispatch result types
(BookingOutcome, ThresholdReport, DispatchReport) carry per-booking results
out of the reminder job; the sent count is always derived from them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ReminderType(str, Enum):
    PENDING_BOOKING_CONFIRMATION = "PENDING_BOOKING_CONFIRMATION"


@dataclass(slots=True)
class ReminderRecord:
    """
    A sent reminder. Immutable once written.

    A record at elapsed_minutes=E marks every threshold T <= E as done for
    the same booking and reminder type.
    """

    id: int
    reference_id: int
    reminder_type: ReminderType
    elapsed_minutes: int
    created_at: datetime | None = None


class OutcomeStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class BookingOutcome:
    booking_id: int
    threshold_minutes: int
    status: OutcomeStatus
    reason: str | None = None
    error: str | None = None

    @classmethod
    def sent(cls, booking_id: int, threshold_minutes: int) -> "BookingOutcome":
        return cls(booking_id, threshold_minutes, OutcomeStatus.SENT)

    @classmethod
    def skipped(cls, booking_id: int, threshold_minutes: int, reason: str) -> "BookingOutcome":
        return cls(booking_id, threshold_minutes, OutcomeStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(
        cls, booking_id: int, threshold_minutes: int, reason: str, error: str | None = None
    ) -> "BookingOutcome":
        return cls(booking_id, threshold_minutes, OutcomeStatus.FAILED, reason=reason, error=error)


@dataclass(slots=True)
class ThresholdReport:
    """Results of one threshold pass."""

    threshold_minutes: int
    bookings_found: int = 0
    already_reminded: int = 0
    outcomes: list[BookingOutcome] = field(default_factory=list)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def notifications_sent(self) -> int:
        return self.count(OutcomeStatus.SENT)

    def to_dict(self) -> dict:
        return {
            "threshold_minutes": self.threshold_minutes,
            "bookings_found": self.bookings_found,
            "already_reminded": self.already_reminded,
            "sent": self.notifications_sent,
            "skipped": self.count(OutcomeStatus.SKIPPED),
            "failed": self.count(OutcomeStatus.FAILED),
        }


@dataclass(slots=True)
class DispatchReport:
    """Results of a full run across all thresholds."""

    started_at: datetime
    thresholds: list[ThresholdReport] = field(default_factory=list)
    finished_at: datetime | None = None

    @property
    def outcomes(self) -> list[BookingOutcome]:
        return [outcome for report in self.thresholds for outcome in report.outcomes]

    @property
    def notifications_sent(self) -> int:
        return sum(report.notifications_sent for report in self.thresholds)

    def to_dict(self) -> dict:
        duration = (
            (self.finished_at - self.started_at).total_seconds() if self.finished_at else 0.0
        )
        outcomes = self.outcomes
        return {
            "job_run": "booking_reminder",
            "start_time": self.started_at.isoformat(),
            "total_duration_seconds": round(duration, 2),
            "notifications_sent": self.notifications_sent,
            "skipped": sum(1 for o in outcomes if o.status == OutcomeStatus.SKIPPED),
            "failed": sum(1 for o in outcomes if o.status == OutcomeStatus.FAILED),
            "thresholds": [report.to_dict() for report in self.thresholds],
        }
