# app/models/api/cron_response.py
"""
Cron trigger response models.
Field names follow the trigger's public JSON contract (camelCase).
"""

from typing import Any

from pydantic import BaseModel, Field


class BookingReminderResponse(BaseModel):
    """Body returned after a completed reminder run."""

    notificationsSent: int = Field(..., ge=0, description="Reminders sent and recorded in this run")


class CronMessageResponse(BaseModel):
    """Error body for rejected or failed trigger calls."""

    message: str = Field(..., description="Human readable reason")


class BookingReminderStatusResponse(BaseModel):
    """Job status snapshot for operators."""

    job_name: str
    is_running: bool
    last_run_time: str | None = None
    interval_minutes: int
    reminder_intervals_minutes: list[int]
    max_concurrent_sends: int
    last_run_metrics: dict[str, Any] | None = None
