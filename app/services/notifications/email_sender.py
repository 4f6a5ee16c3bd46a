"""
Outbound email delivery for booking reminders.

HttpEmailSender posts to a transactional email API (EMAIL_API_URL).
ConsoleEmailSender only logs, for local runs without a transport.
Transport retries are not attempted here; a failed send is retried by the
next job run because no reminder is recorded for it.
"""

from abc import ABC, abstractmethod

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.notification_domain import CalendarEvent, EmailMessage
from app.services.notifications.templates.organizer_request_reminder import (
    OrganizerRequestReminderTemplate,
)

logger = get_logger(__name__)


class EmailSendError(Exception):
    """Raised when a message could not be handed to the email transport."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class EmailSender(ABC):
    """Abstract interface for email dispatch adapters."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> str | None:
        """
        Deliver one message.

        Returns:
            Provider message id when available

        Raises:
            EmailSendError: If delivery was not accepted
        """

    async def send_organizer_request_reminder(self, event: CalendarEvent) -> str | None:
        """Render the pending-confirmation reminder and send it to the organizer."""
        rendered = OrganizerRequestReminderTemplate.render(event)
        message = EmailMessage(
            to=event.organizer.email,
            subject=rendered["subject"],
            text=rendered["body"],
            html=rendered["html_body"],
        )
        return await self.send(message)


class HttpEmailSender(EmailSender):
    """JSON-over-HTTP email API client."""

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        from_address: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.from_address = from_address or settings.EMAIL_FROM
        self.timeout = timeout or settings.EMAIL_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def send(self, message: EmailMessage) -> str | None:
        payload = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
        }
        if message.html:
            payload["html"] = message.html
        if message.reply_to:
            payload["reply_to"] = message.reply_to

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.api_url, json=payload, headers=self._headers())
        except httpx.RequestError as e:
            logger.error("Email transport request failed", error=str(e), error_type=type(e).__name__)
            raise EmailSendError(f"Email transport unreachable: {e}") from e

        if response.is_success:
            try:
                body = response.json() if response.content else {}
            except ValueError:
                body = {}
            message_id = body.get("id") if isinstance(body, dict) else None
            logger.debug("Email accepted by transport", status_code=response.status_code)
            return message_id

        logger.error(
            "Email transport rejected message",
            status_code=response.status_code,
            response_preview=response.text[:200],
        )
        raise EmailSendError(
            f"Email transport returned {response.status_code}",
            status_code=response.status_code,
            recoverable=response.status_code >= 500 or response.status_code == 429,
        )


class ConsoleEmailSender(EmailSender):
    """Logs messages instead of sending them."""

    async def send(self, message: EmailMessage) -> str | None:
        logger.info("Email (console transport)", subject=message.subject, text=message.text)
        return None


def get_email_sender() -> EmailSender:
    """HTTP transport when EMAIL_API_URL is configured, console otherwise."""
    if settings.EMAIL_API_URL:
        return HttpEmailSender(settings.EMAIL_API_URL, api_key=settings.EMAIL_API_KEY)

    if settings.environment == "production":
        logger.warning("EMAIL_API_URL not configured in production; reminders will only be logged")
    return ConsoleEmailSender()
