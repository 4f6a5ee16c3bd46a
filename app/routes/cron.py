"""
Cron trigger endpoints.

An external scheduler calls POST /api/cron/bookingReminder with the shared
CRON_API_KEY, either as the Authorization header or the apiKey query
parameter. The secret is checked before the HTTP method.
"""

import hmac

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.jobs.booking_reminder_job import (
    BookingReminderJob,
    BookingReminderJobError,
    booking_reminder_job,
)
from app.models.api.cron_response import (
    BookingReminderResponse,
    BookingReminderStatusResponse,
    CronMessageResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def get_booking_reminder_job() -> BookingReminderJob:
    return booking_reminder_job


def _provided_secret(request: Request) -> str | None:
    return request.headers.get("authorization") or request.query_params.get("apiKey")


def is_authorized(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison; an unset CRON_API_KEY rejects every caller."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _message(status_code: int, message: str) -> JSONResponse:
    body = CronMessageResponse(message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@router.api_route("/bookingReminder", methods=ALL_METHODS, response_model=None)
async def booking_reminder(
    request: Request,
    job: BookingReminderJob = Depends(get_booking_reminder_job),
):
    """Send due organizer reminders for pending bookings."""
    if not is_authorized(_provided_secret(request), settings.CRON_API_KEY):
        logger.warning("Rejected booking reminder trigger", reason="not_authenticated")
        return _message(status.HTTP_401_UNAUTHORIZED, "Not authenticated")

    if request.method != "POST":
        return _message(status.HTTP_405_METHOD_NOT_ALLOWED, "Invalid method")

    try:
        report = await job.run_once()
    except BookingReminderJobError as e:
        logger.error("Booking reminder trigger failed", error=str(e), operation=e.operation)
        return _message(status.HTTP_500_INTERNAL_SERVER_ERROR, "Reminder dispatch failed")

    return BookingReminderResponse(notificationsSent=report.notifications_sent).model_dump()


@router.get("/bookingReminder/status", response_model=None)
async def booking_reminder_status(
    request: Request,
    job: BookingReminderJob = Depends(get_booking_reminder_job),
):
    """Last run metrics for the booking reminder job."""
    if not is_authorized(_provided_secret(request), settings.CRON_API_KEY):
        return _message(status.HTTP_401_UNAUTHORIZED, "Not authenticated")

    return BookingReminderStatusResponse(**job.get_job_status()).model_dump()
