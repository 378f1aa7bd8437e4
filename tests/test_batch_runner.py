from datetime import date, datetime, time, timedelta, timezone

import pytest

from condonotify.errors import ConfigurationError, UnknownProviderError
from condonotify.models import DeliveryRecord, JobExecutionLog, PartyHallBooking, Resident
from condonotify.services.batch_runner import MAX_ATTEMPTS, BatchRunner
from condonotify.services.job_log import is_paused, set_paused
from condonotify.services.targets import get_kind

from tests.conftest import NOW, TOMORROW, make_response

REMINDER = get_kind("reminder")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def runner(db, settings, http, clock, sleeps):
    return BatchRunner(db, settings=settings, session=http, clock=clock, sleep=sleeps.append)


def _failed_record(db, booking, at):
    db.add(
        DeliveryRecord(
            function_name=REMINDER.function_name,
            notification_type=REMINDER.name,
            target_id=booking.booking_id,
            condominium_id=booking.condominium_id,
            template_slug=REMINDER.slug,
            template_source="fallback",
            message_content="...",
            status="failed",
            error_message="gateway down",
            sent_at=at,
        )
    )
    db.commit()


def test_paused_job_is_skipped_without_sending(db, runner, gateway_config, booking, http):
    set_paused(db, REMINDER.function_name, True)

    job = runner.run_scheduled(REMINDER)

    assert job.to_dict() == {"success": True, "message": "Function is paused"}
    assert db.query(DeliveryRecord).count() == 0
    http.get.assert_not_called()
    log = db.query(JobExecutionLog).one()
    assert log.status == "skipped"
    assert log.ended_at is not None


def test_resume_clears_pause(db):
    set_paused(db, REMINDER.function_name, True)
    set_paused(db, REMINDER.function_name, False)
    assert is_paused(db, REMINDER.function_name) is False


def test_default_window_is_tomorrow_in_local_offset(db, settings, http, sleeps):
    # 01:30 UTC on the 20th is still the 19th at UTC-3
    late = datetime(2025, 12, 20, 1, 30, tzinfo=timezone.utc)
    runner = BatchRunner(db, settings=settings, session=http, clock=lambda: late, sleep=sleeps.append)

    assert runner.default_window_date() == date(2025, 12, 20)


def test_run_sends_to_every_eligible_booking(db, runner, gateway_config, make_booking, sleeps):
    first = make_booking()
    second = make_booking()
    make_booking(status="cancelada")

    job = runner.run_scheduled(REMINDER)

    assert job.date == TOMORROW
    assert (job.total, job.sent, job.failed) == (2, 2, 0)
    assert sleeps == [0.5]

    db.expire_all()
    for booking in (first, second):
        assert db.get(PartyHallBooking, booking.booking_id).notification_sent_at is not None

    log = db.query(JobExecutionLog).one()
    assert log.status == "completed"
    assert log.trigger_type == "cron"
    assert log.result["sent"] == 2
    assert {d["targetId"] for d in log.result["details"]} == {str(first.booking_id), str(second.booking_id)}
    assert all(d["success"] for d in log.result["details"])


def test_missing_phone_does_not_block_the_batch(db, runner, gateway_config, condo, make_booking, http):
    no_phone = Resident(condominium_id=condo.condominium_id, full_name="Sem Telefone", phone=None)
    db.add(no_phone)
    db.commit()
    make_booking(phone_resident=no_phone, start_time=time(10, 0))
    reached = make_booking()

    job = runner.run_scheduled(REMINDER)

    assert (job.total, job.sent, job.failed) == (2, 1, 1)
    failed = db.query(DeliveryRecord).filter(DeliveryRecord.status == "failed").one()
    assert "phone" in failed.error_message
    assert [r["success"] for r in job.results] == [False, True]
    assert job.results[1]["targetId"] == str(reached.booking_id)
    assert http.get.call_count == 1


def test_second_run_skips_already_notified(db, runner, gateway_config, booking, http):
    runner.run_scheduled(REMINDER)
    job = runner.run_scheduled(REMINDER)

    assert job.total == 0
    assert job.message == "No targets to notify"
    assert http.get.call_count == 1
    assert db.query(DeliveryRecord).count() == 1


def test_all_failed_marks_job_as_error(db, runner, gateway_config, make_booking, http):
    http.get.return_value = make_response(500, {"message": "gateway down"})
    make_booking()
    make_booking()

    job = runner.run_scheduled(REMINDER, trigger_type="manual")

    assert (job.sent, job.failed) == (0, 2)
    log = db.query(JobExecutionLog).one()
    assert log.status == "error"
    assert log.trigger_type == "manual"
    assert [d["error"] for d in log.result["details"]] == ["gateway down", "gateway down"]


def test_exhausted_target_is_excluded(db, runner, gateway_config, booking, http):
    for hours in range(MAX_ATTEMPTS):
        _failed_record(db, booking, NOW - timedelta(hours=5 + hours))

    job = runner.run_scheduled(REMINDER)

    assert job.total == 0
    http.get.assert_not_called()


def test_target_backs_off_after_recent_failure(db, runner, gateway_config, booking, http):
    _failed_record(db, booking, NOW - timedelta(minutes=2))

    assert runner.run_scheduled(REMINDER).total == 0

    http.get.assert_not_called()


def test_target_retried_once_backoff_elapsed(db, runner, gateway_config, booking, http):
    _failed_record(db, booking, NOW - timedelta(minutes=40))
    _failed_record(db, booking, NOW - timedelta(minutes=31))

    job = runner.run_scheduled(REMINDER)

    assert job.sent == 1


def test_missing_config_aborts_run(db, runner, booking):
    with pytest.raises(ConfigurationError):
        runner.run_scheduled(REMINDER)

    log = db.query(JobExecutionLog).one()
    assert log.status == "error"
    assert log.error_message == "WhatsApp not configured"


def test_empty_window_completes_without_gateway_config(db, runner):
    job = runner.run_scheduled(REMINDER)

    assert job.success
    assert job.message == "No targets to notify"
    log = db.query(JobExecutionLog).one()
    assert log.status == "completed"
    assert log.error_message is None


def test_unknown_provider_aborts_before_any_send(db, runner, make_config, booking, http):
    make_config(provider="twilio")

    with pytest.raises(UnknownProviderError):
        runner.run_scheduled(REMINDER)

    http.get.assert_not_called()
    assert db.query(DeliveryRecord).count() == 0
    assert db.query(JobExecutionLog).one().status == "error"


def test_non_batch_kind_is_rejected(runner):
    with pytest.raises(ValueError):
        runner.run_scheduled(get_kind("cancelled"))
