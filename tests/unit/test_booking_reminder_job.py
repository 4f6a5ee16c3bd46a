import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.jobs import booking_reminder_job as job_module
from app.jobs.booking_reminder_job import BookingReminderJob, BookingReminderJobError
from app.models.domain.booking_domain import BookingStatus, Organizer
from app.models.domain.reminder_domain import OutcomeStatus, ReminderType
from app.repositories.reminder_repository import ReminderConflictError
from app.services.i18n.translation_service import TranslationService

INTERVALS = [2880, 1440, 180]


@pytest.fixture
def make_job(booking_repository, ledger, email_sender, clock):
    def _make(**kwargs):
        params = {
            "booking_repository": booking_repository,
            "reminder_repository": ledger,
            "translations": TranslationService(),
            "email_sender": email_sender,
            "intervals_minutes": INTERVALS,
            "clock": clock,
        }
        params.update(kwargs)
        return BookingReminderJob(**params)

    return _make


@pytest.mark.asyncio
async def test_fifty_hour_old_booking_is_reminded_once_at_48h(
    make_job, booking_repository, ledger, email_sender, booking_factory
):
    booking_repository.bookings = [booking_factory(1, age_hours=50)]

    report = await make_job().run_once()

    assert report.notifications_sent == 1
    assert ledger.elapsed_for(1) == [2880]
    assert [r.notifications_sent for r in report.thresholds] == [1, 0, 0]
    # The 24h pass saw the booking but found it already reminded
    assert report.thresholds[1].bookings_found == 1
    assert report.thresholds[1].already_reminded == 1
    assert len(email_sender.messages) == 1
    assert email_sender.messages[0].to == "jane@example.com"


@pytest.mark.asyncio
async def test_second_run_without_time_advance_sends_nothing(
    make_job, booking_repository, email_sender, booking_factory
):
    booking_repository.bookings = [
        booking_factory(1, age_hours=50),
        booking_factory(2, age_hours=30),
        booking_factory(3, age_hours=4),
    ]
    job = make_job()

    first = await job.run_once()
    second = await job.run_once()

    assert first.notifications_sent == 3
    assert second.notifications_sent == 0
    assert len(email_sender.messages) == 3


@pytest.mark.asyncio
async def test_booking_is_reminded_again_when_it_crosses_next_threshold(
    make_job, booking_repository, ledger, clock, booking_factory
):
    booking_repository.bookings = [booking_factory(1, age_hours=4)]
    job = make_job()

    assert (await job.run_once()).notifications_sent == 1
    assert ledger.elapsed_for(1) == [180]

    clock.advance(hours=21)
    assert (await job.run_once()).notifications_sent == 1
    assert ledger.elapsed_for(1) == [180, 1440]

    clock.advance(hours=24)
    assert (await job.run_once()).notifications_sent == 1
    assert ledger.elapsed_for(1) == [180, 1440, 2880]


@pytest.mark.asyncio
async def test_larger_recorded_elapsed_suppresses_smaller_thresholds(
    make_job, booking_repository, ledger, booking_factory
):
    booking_repository.bookings = [booking_factory(1, age_hours=50)]
    ledger.add(1, 2880)
    job = make_job()

    assert (await job.process_threshold(1440)).notifications_sent == 0
    assert (await job.process_threshold(180)).notifications_sent == 0


@pytest.mark.asyncio
async def test_smaller_recorded_elapsed_does_not_suppress_larger_threshold(
    make_job, booking_repository, ledger, booking_factory
):
    booking_repository.bookings = [booking_factory(1, age_hours=30)]
    ledger.add(1, 180)

    report = await make_job().process_threshold(1440)

    assert report.notifications_sent == 1
    assert ledger.elapsed_for(1) == [180, 1440]


@pytest.mark.asyncio
async def test_records_of_other_reminder_types_do_not_suppress(
    make_job, booking_repository, ledger, booking_factory
):
    booking_repository.bookings = [booking_factory(1, age_hours=50)]
    ledger.add(1, 2880, kind="SOME_OTHER_REMINDER")

    report = await make_job().run_once()

    assert report.notifications_sent == 1


@pytest.mark.asyncio
async def test_each_threshold_uses_its_own_cutoff(make_job, booking_repository, clock):
    await make_job().run_once()

    assert booking_repository.cutoffs == [
        clock.now - timedelta(minutes=2880),
        clock.now - timedelta(minutes=1440),
        clock.now - timedelta(minutes=180),
    ]


@pytest.mark.asyncio
async def test_non_pending_bookings_are_never_candidates(make_job, ledger, email_sender, booking_factory):
    class UnfilteredRepository:
        def __init__(self, bookings):
            self.bookings = bookings

        async def find_pending_older_than(self, cutoff):
            return [b for b in self.bookings if b.created_at <= cutoff]

    bookings = [
        booking_factory(1, status=BookingStatus.ACCEPTED),
        booking_factory(2, status=BookingStatus.CANCELLED),
        booking_factory(3, status=BookingStatus.REJECTED),
    ]

    report = await make_job(booking_repository=UnfilteredRepository(bookings)).run_once()

    assert report.notifications_sent == 0
    assert report.outcomes == []
    assert email_sender.messages == []
    assert ledger.records == []


@pytest.mark.asyncio
async def test_missing_organizer_timezone_is_skipped_without_record(
    make_job, booking_repository, ledger, email_sender, booking_factory
):
    organizer = Organizer(email="jane@example.com", name="Jane", time_zone=None)
    booking_repository.bookings = [booking_factory(1, organizer=organizer)]

    report = await make_job().run_once()

    assert report.notifications_sent == 0
    assert email_sender.events == []
    assert ledger.records == []
    assert {o.status for o in report.outcomes} == {OutcomeStatus.SKIPPED}
    assert all(o.reason == "missing_organizer_fields" for o in report.outcomes)


@pytest.mark.asyncio
async def test_missing_organizer_name_is_skipped_and_logged(
    make_job, booking_repository, ledger, booking_factory, monkeypatch
):
    fake_logger = MagicMock()
    monkeypatch.setattr(job_module, "logger", fake_logger)

    nameless = Organizer(email="anon@example.com", name=None, username=None, time_zone="UTC")
    booking_repository.bookings = [
        booking_factory(1, age_hours=50),
        booking_factory(2, age_hours=50, organizer=nameless),
    ]

    report = await make_job(intervals_minutes=[2880]).run_once()

    assert report.notifications_sent == 1
    assert ledger.elapsed_for(2) == []
    fake_logger.bind.assert_any_call(booking_id=2, threshold_minutes=2880)
    warning = fake_logger.bind.return_value.warning
    warning.assert_called_once()
    assert warning.call_args.kwargs["missing"] == ["organizer.name"]


@pytest.mark.asyncio
async def test_username_is_used_when_organizer_name_missing(
    make_job, booking_repository, email_sender, booking_factory
):
    organizer = Organizer(email="j@example.com", name=None, username="jdoe", time_zone="UTC")
    booking_repository.bookings = [booking_factory(1, organizer=organizer)]

    report = await make_job().run_once()

    assert report.notifications_sent == 1
    assert email_sender.events[0].organizer.name == "jdoe"


@pytest.mark.asyncio
async def test_send_failure_writes_no_record_and_is_retried_next_run(
    make_job, booking_repository, ledger, email_sender, booking_factory
):
    booking_repository.bookings = [booking_factory(1), booking_factory(2)]
    email_sender.fail_for_uids = {"uid-1"}
    job = make_job()

    report = await job.run_once()

    assert report.notifications_sent == 1
    assert ledger.elapsed_for(1) == []
    failed = [o for o in report.outcomes if o.status == OutcomeStatus.FAILED]
    assert [(o.booking_id, o.reason) for o in failed] == [(1, "send_failed")] * 3

    email_sender.fail_for_uids = set()
    retry = await job.run_once()

    assert retry.notifications_sent == 1
    assert ledger.elapsed_for(1) == [2880]


@pytest.mark.asyncio
async def test_ledger_write_failure_is_not_counted(
    make_job, booking_repository, ledger, email_sender, booking_factory
):
    booking_repository.bookings = [booking_factory(1, age_hours=4)]
    ledger.fail_writes = True

    report = await make_job().run_once()

    assert report.notifications_sent == 0
    # The email did go out; only the record is missing
    assert len(email_sender.messages) == 1
    assert report.outcomes[0].reason == "ledger_write_failed"


@pytest.mark.asyncio
async def test_lost_insert_race_is_not_counted(
    make_job, booking_repository, ledger, booking_factory, monkeypatch
):
    class RacingLedger(type(ledger)):
        async def record(self, booking_id, kind, elapsed_minutes):
            raise ReminderConflictError("recorded by another run")

    fake_logger = MagicMock()
    monkeypatch.setattr(job_module, "logger", fake_logger)
    booking_repository.bookings = [booking_factory(1, age_hours=4)]

    report = await make_job(reminder_repository=RacingLedger()).run_once()

    assert report.notifications_sent == 0
    assert report.outcomes[0].reason == "ledger_conflict"
    bound = fake_logger.bind.return_value
    bound.error.assert_called_once()
    assert "possible duplicate" in bound.error.call_args.args[0]
    bound.warning.assert_not_called()


@pytest.mark.asyncio
async def test_fetch_failure_aborts_the_run(make_job, booking_repository, email_sender, booking_factory):
    booking_repository.bookings = [booking_factory(1)]
    booking_repository.fail = True
    job = make_job()

    with pytest.raises(BookingReminderJobError) as exc_info:
        await job.run_once()

    assert exc_info.value.operation == "process_threshold"
    assert email_sender.messages == []
    assert job.is_running is False
    assert job.last_run_time is None


@pytest.mark.asyncio
async def test_attendee_order_is_preserved_regardless_of_resolution_order(
    make_job, booking_repository, email_sender, booking_factory
):
    delays = {"en": 0.05, "fr": 0.02, "es": 0.0}

    class SlowTranslations(TranslationService):
        async def get_translation(self, locale, namespace="common"):
            await asyncio.sleep(delays.get(locale, 0))
            return await super().get_translation(locale, namespace)

    booking_repository.bookings = [booking_factory(1, attendee_locales=["en", "fr", "es"])]

    await make_job(translations=SlowTranslations()).run_once()

    event = email_sender.events[0]
    assert [a.language.locale for a in event.attendees] == ["en", "fr", "es"]
    assert [a.email for a in event.attendees] == [
        "guest0@example.com",
        "guest1@example.com",
        "guest2@example.com",
    ]
    assert event.attendees[1].language.translate("who") == "Qui"


@pytest.mark.asyncio
async def test_parallel_sends_keep_counts_and_order(
    make_job, booking_repository, ledger, booking_factory
):
    booking_repository.bookings = [booking_factory(i, age_hours=50) for i in range(1, 6)]

    report = await make_job(max_concurrent_sends=3).run_once()

    assert report.notifications_sent == 5
    assert [o.booking_id for o in report.thresholds[0].outcomes] == [1, 2, 3, 4, 5]
    assert sorted(r.reference_id for r in ledger.records) == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_report_metrics_and_job_status(make_job, booking_repository, booking_factory):
    booking_repository.bookings = [booking_factory(1)]
    job = make_job()

    report = await job.run_once()
    metrics = report.to_dict()
    status = job.get_job_status()

    assert metrics["notifications_sent"] == 1
    assert [t["threshold_minutes"] for t in metrics["thresholds"]] == INTERVALS
    assert status["job_name"] == "booking_reminder"
    assert status["is_running"] is False
    assert status["last_run_metrics"]["notifications_sent"] == 1
    assert job.health_check()["healthy"] is True


def test_health_check_reports_overdue(make_job, clock):
    job = make_job()
    job.last_run_time = clock.now - timedelta(days=1)

    health = job.health_check()

    assert health["healthy"] is False
    assert health["is_overdue"] is True
    assert "overdue" in health["warning"]


@pytest.mark.asyncio
async def test_run_booking_reminder_job_returns_trigger_body(monkeypatch, make_job, booking_repository, booking_factory):
    booking_repository.bookings = [booking_factory(1)]
    monkeypatch.setattr(job_module, "booking_reminder_job", make_job())

    result = await job_module.run_booking_reminder_job()

    assert result == {"notificationsSent": 1}


def test_reminder_type_filter_constant():
    assert job_module.REMINDER_TYPE is ReminderType.PENDING_BOOKING_CONFIRMATION
