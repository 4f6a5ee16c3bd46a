"""Organizer request reminder template: the booking still awaits confirmation."""

from datetime import datetime
from html import escape
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import settings
from app.models.domain.notification_domain import CalendarEvent

DATE_FORMAT = "%Y-%m-%d %H:%M"


def _local_time(iso_value: str, time_zone: str) -> str:
    instant = datetime.fromisoformat(iso_value)
    try:
        zone = ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo("UTC")
        time_zone = "UTC"
    return f"{instant.astimezone(zone).strftime(DATE_FORMAT)} ({time_zone})"


class OrganizerRequestReminderTemplate:
    template_name = "organizer_request_reminder"

    @staticmethod
    def render(event: CalendarEvent) -> dict:
        t = event.organizer.language.translate
        tz = event.organizer.time_zone
        start = _local_time(event.start_time, tz)
        end = _local_time(event.end_time, tz)
        bookings_url = f"{settings.webapp_url()}/bookings/upcoming"

        who = [f"{event.organizer.name} - {t('organizer')}"]
        who += [f"{person.name} <{person.email}> - {t('attendee')}" for person in event.attendees]

        rows = [
            (t("what"), event.title),
            (t("when"), f"{start} - {end}"),
            (t("who"), "\n".join(who)),
            (t("where"), event.location or t("no_location")),
        ]
        if event.description:
            rows.append((t("description"), event.description))
        for label, value in (event.custom_inputs or {}).items():
            rows.append((label, str(value)))

        subject = t("event_awaiting_approval_subject", title=event.title, date=start)
        intro = t("someone_requested_an_event", name=event.organizer.name)
        action = t("confirm_or_reject_request")

        text_lines = [t("event_still_awaiting_approval"), "", intro, ""]
        for label, value in rows:
            text_lines.append(f"{label}:")
            text_lines.extend(f"  {line}" for line in value.splitlines() or [""])
        text_lines += ["", f"{action}: {bookings_url}"]

        html_rows = "".join(
            f"<tr><th align=\"left\">{escape(label)}</th>"
            f"<td>{escape(value).replace(chr(10), '<br>')}</td></tr>"
            for label, value in rows
        )
        html = (
            f"<h2>{escape(t('event_still_awaiting_approval'))}</h2>"
            f"<p>{escape(intro)}</p>"
            f"<table>{html_rows}</table>"
            f"<p><a href=\"{escape(bookings_url)}\">{escape(action)}</a></p>"
        )

        return {"subject": subject, "body": "\n".join(text_lines), "html_body": html}
