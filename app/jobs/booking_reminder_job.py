"""
Booking Reminder Job.

Reminds organizers about booking requests still waiting for confirmation,
once per elapsed-time threshold (48h, 24h and 3h after the booking was
created by default).

Each (booking, threshold) pair is reminded at most once: after a send the job
writes a reminder_mails row, and later passes skip any booking that already
has a row at that threshold or a larger one. The job can be triggered as
often as needed; a run that finds nothing new sends nothing.

Sending happens before recording. If the process dies between the two, the
booking is reminded again on the next run.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.booking_domain import Booking
from app.models.domain.reminder_domain import (
    BookingOutcome,
    DispatchReport,
    ReminderType,
    ThresholdReport,
)
from app.repositories.booking_repository import BookingRepository
from app.repositories.reminder_repository import (
    ReminderConflictError,
    ReminderRepository,
)
from app.services.i18n.translation_service import TranslationService, translation_service
from app.services.notifications.composer import (
    BookingValidationError,
    build_calendar_event,
)
from app.services.notifications.email_sender import EmailSender, get_email_sender

logger = get_logger(__name__)

REMINDER_TYPE = ReminderType.PENDING_BOOKING_CONFIRMATION

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class BookingReminderJobError(Exception):
    """Raised when a run cannot complete (bookings or reminders could not be loaded)."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class BookingReminderJob:
    """
    Dispatches organizer reminders for pending bookings.

    Collaborators are injectable so tests can run the job against in-memory
    fakes; defaults are the Postgres repositories and the configured email
    transport.
    """

    def __init__(
        self,
        booking_repository=BookingRepository,
        reminder_repository=ReminderRepository,
        translations: TranslationService | None = None,
        email_sender: EmailSender | None = None,
        intervals_minutes: list[int] | None = None,
        max_concurrent_sends: int | None = None,
        clock: Clock = utc_now,
    ):
        self.bookings = booking_repository
        self.reminders = reminder_repository
        self.translations = translations or translation_service
        self.email_sender = email_sender or get_email_sender()
        self.intervals_minutes = list(intervals_minutes or settings.REMINDER_INTERVALS_MINUTES)
        self.max_concurrent_sends = max(
            1, max_concurrent_sends or settings.REMINDER_MAX_CONCURRENT_SENDS
        )
        self.clock = clock

        self._active_runs = 0
        self.last_run_time: datetime | None = None
        self.last_report: DispatchReport | None = None

    @property
    def is_running(self) -> bool:
        return self._active_runs > 0

    async def run_once(self) -> DispatchReport:
        """
        Run every threshold pass once.

        Returns:
            DispatchReport: per-threshold, per-booking outcomes

        Raises:
            BookingReminderJobError: If a threshold's bookings or reminders cannot be loaded
        """
        if self.is_running:
            # Overlapping runs are allowed
            logger.info("Booking reminder job already running in this process")

        report = DispatchReport(started_at=self.clock())
        self._active_runs += 1

        try:
            with structlog.contextvars.bound_contextvars(job_run="booking_reminder"):
                logger.info("Starting booking reminder job", intervals=self.intervals_minutes)

                for threshold in self.intervals_minutes:
                    report.thresholds.append(await self.process_threshold(threshold))

                report.finished_at = self.clock()
                self.last_run_time = report.finished_at
                self.last_report = report

                logger.info("Booking reminder job completed", **report.to_dict())
                return report

        except BookingReminderJobError:
            raise
        except Exception as e:
            logger.error("Booking reminder job failed", error=str(e), error_type=type(e).__name__)
            raise BookingReminderJobError(
                f"Booking reminder job failed: {e}", operation="run_once"
            ) from e

        finally:
            self._active_runs -= 1

    async def process_threshold(self, threshold_minutes: int) -> ThresholdReport:
        """
        Remind every pending booking older than ``threshold_minutes`` that has
        no reminder at this threshold or above.
        """
        report = ThresholdReport(threshold_minutes=threshold_minutes)
        cutoff = self.clock() - timedelta(minutes=threshold_minutes)

        try:
            bookings = await self.bookings.find_pending_older_than(cutoff)
            already_reminded = await self.reminders.find_existing(
                REMINDER_TYPE, {booking.id for booking in bookings}, threshold_minutes
            )
        except DatabaseError as e:
            logger.error(
                "Failed to load bookings for reminder pass",
                threshold_minutes=threshold_minutes,
                error=str(e),
            )
            raise BookingReminderJobError(
                f"Failed to load bookings for {threshold_minutes} minute pass: {e}",
                operation="process_threshold",
            ) from e

        report.bookings_found = len(bookings)
        report.already_reminded = len(already_reminded)

        candidates = [
            booking
            for booking in bookings
            if booking.id not in already_reminded and booking.is_pending
        ]

        semaphore = asyncio.Semaphore(self.max_concurrent_sends)
        report.outcomes = list(
            await asyncio.gather(
                *(self._send_with_semaphore(semaphore, b, threshold_minutes) for b in candidates)
            )
        )

        logger.info("Reminder pass completed", **report.to_dict())
        return report

    async def _send_with_semaphore(
        self, semaphore: asyncio.Semaphore, booking: Booking, threshold_minutes: int
    ) -> BookingOutcome:
        async with semaphore:
            return await self.send_reminder(booking, threshold_minutes)

    async def send_reminder(self, booking: Booking, threshold_minutes: int) -> BookingOutcome:
        """
        Validate, compose, send and record one reminder.

        Never raises for per-booking problems; they come back as SKIPPED or
        FAILED outcomes and the pass carries on.
        """
        log = logger.bind(booking_id=booking.id, threshold_minutes=threshold_minutes)

        try:
            event = await build_calendar_event(booking, self.translations)
        except BookingValidationError as e:
            log.warning("Booking is missing required properties for booking reminder", missing=e.missing)
            return BookingOutcome.skipped(booking.id, threshold_minutes, "missing_organizer_fields")
        except Exception as e:
            log.error("Failed to compose booking reminder", error=str(e), error_type=type(e).__name__)
            return BookingOutcome.failed(booking.id, threshold_minutes, "compose_failed", str(e))

        try:
            await self.email_sender.send_organizer_request_reminder(event)
        except Exception as e:
            log.error("Failed to send booking reminder", error=str(e), error_type=type(e).__name__)
            return BookingOutcome.failed(booking.id, threshold_minutes, "send_failed", str(e))

        try:
            await self.reminders.record(booking.id, REMINDER_TYPE, threshold_minutes)
        except ReminderConflictError as e:
            log.error(
                "Reminder already recorded by a concurrent run; this send is a possible duplicate",
                error=str(e),
            )
            return BookingOutcome.failed(booking.id, threshold_minutes, "ledger_conflict", str(e))
        except Exception as e:
            log.error(
                "Reminder sent but not recorded; it may be sent again on the next run",
                error=str(e),
                error_type=type(e).__name__,
            )
            return BookingOutcome.failed(booking.id, threshold_minutes, "ledger_write_failed", str(e))

        log.info("Booking reminder sent", **event.to_log_context())
        return BookingOutcome.sent(booking.id, threshold_minutes)

    def get_job_status(self) -> dict:
        """Current job status and last run metrics."""
        return {
            "job_name": "booking_reminder",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "interval_minutes": settings.REMINDER_JOB_INTERVAL_MINUTES,
            "reminder_intervals_minutes": self.intervals_minutes,
            "max_concurrent_sends": self.max_concurrent_sends,
            "last_run_metrics": self.last_report.to_dict() if self.last_report else None,
        }

    def health_check(self) -> dict:
        """Unhealthy when the job has not completed within twice its interval."""
        now = self.clock()
        overdue_threshold = timedelta(minutes=settings.REMINDER_JOB_INTERVAL_MINUTES * 2)
        is_overdue = self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold

        health_status = {
            "healthy": not is_overdue,
            "service": "booking_reminder_job",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
        }

        if is_overdue:
            health_status["warning"] = (
                f"Job overdue by {(now - self.last_run_time).total_seconds() / 60:.1f} minutes"
            )

        return health_status


# Singleton instance for application use
booking_reminder_job = BookingReminderJob()


async def run_booking_reminder_job() -> dict:
    """Run a single iteration and return the trigger response body."""
    report = await booking_reminder_job.run_once()
    return {"notificationsSent": report.notifications_sent}


def get_booking_reminder_job_status() -> dict:
    return booking_reminder_job.get_job_status()


def booking_reminder_job_health() -> dict:
    return booking_reminder_job.health_check()


async def start_booking_reminder_scheduler():
    """
    Run the booking reminder job every REMINDER_JOB_INTERVAL_MINUTES.

    For deployments without an external cron hitting the HTTP trigger.
    """
    from app.db.pool import db_pool

    interval_minutes = settings.REMINDER_JOB_INTERVAL_MINUTES
    logger.info("Starting booking reminder scheduler", interval_minutes=interval_minutes)

    if not db_pool.initialized:
        await db_pool.initialize()

    try:
        while True:
            try:
                result = await run_booking_reminder_job()
                logger.info("Booking reminder cycle completed", **result)
            except BookingReminderJobError as e:
                # The next cycle retries the whole run
                logger.error("Booking reminder cycle failed", error=str(e), operation=e.operation)

            await asyncio.sleep(interval_minutes * 60)
    finally:
        await db_pool.close()
