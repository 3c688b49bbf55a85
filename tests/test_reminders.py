import asyncio
import threading
from datetime import datetime

import pytest

from booking_dashboard import lifecycle, reminders
from booking_dashboard.errors import IllegalTransitionError
from booking_dashboard.reminders import send_due_reminders, send_reminder
from booking_dashboard.slots import ScheduleConfig, reserve_slot
from tests.conftest import FakeMailer

OWNER = "clinic@example.com"
NOW = datetime(2030, 1, 14, 9, 0)
TOMORROW = "2030-01-15"

CFG = ScheduleConfig(working_days=frozenset(range(7)), slots_per_hour=2)


def book(db, date=TOMORROW, time="10:00", **fields):
    fields.setdefault("name", "Client")
    fields.setdefault("email", "client@example.com")
    fields.setdefault("service", "Consultation")
    return reserve_slot(db, CFG, OWNER, date, time, **fields)


def test_sweep_twice_sends_one_reminder_per_booking(db):
    mailer = FakeMailer()
    a = book(db, time="10:00", email="a@example.com")
    b = book(db, time="11:00", email="b@example.com")

    assert asyncio.run(send_due_reminders(db, mailer, now=NOW)) == 2
    assert asyncio.run(send_due_reminders(db, mailer, now=NOW)) == 0

    assert sorted(m["to"] for m in mailer.sent) == ["a@example.com", "b@example.com"]
    for booking in (a, b):
        db.refresh(booking)
        assert booking.reminder_sent is True
        assert booking.reminder_sent_at == NOW


def test_sweep_only_picks_tomorrows_confirmed_client_bookings(db):
    mailer = FakeMailer()
    book(db, email="due@example.com")
    book(db, date="2030-01-16", email="later@example.com")
    book(db, date="2030-01-14", time="15:00", email="today@example.com")
    book(db, time="12:00", kind="blocked", email="")
    cancelled = book(db, time="13:00", email="cancelled@example.com")
    lifecycle.cancel(db, cancelled.id, OWNER, now=NOW)

    sent = asyncio.run(send_due_reminders(db, mailer, now=NOW))

    assert sent == 1
    assert [m["to"] for m in mailer.sent] == ["due@example.com"]
    assert "Reminder" in mailer.sent[0]["subject"]


def test_failed_delivery_is_not_retried(db):
    booking = book(db)

    assert asyncio.run(send_due_reminders(db, FakeMailer(fail=True), now=NOW)) == 0

    retry = FakeMailer()
    assert asyncio.run(send_due_reminders(db, retry, now=NOW)) == 0
    assert retry.sent == []
    db.refresh(booking)
    assert booking.reminder_sent is True


def test_manual_reminder_shares_the_sweep_gate(db):
    mailer = FakeMailer()
    booking = book(db)

    assert asyncio.run(send_reminder(db, mailer, booking.id, OWNER, now=NOW)) is True
    assert asyncio.run(send_due_reminders(db, mailer, now=NOW)) == 0
    with pytest.raises(IllegalTransitionError) as exc:
        asyncio.run(send_reminder(db, mailer, booking.id, OWNER, now=NOW))

    assert exc.value.message == "Reminder already sent"
    assert len(mailer.sent) == 1


def test_manual_reminder_needs_a_client_email(db):
    blocked = book(db, kind="blocked", email="")

    with pytest.raises(IllegalTransitionError):
        asyncio.run(send_reminder(db, FakeMailer(), blocked.id, OWNER, now=NOW))


def test_database_work_runs_off_the_event_loop(db, monkeypatch):
    claim_threads = []
    original = reminders.claim_reminder

    def recording_claim(*args, **kwargs):
        claim_threads.append(threading.get_ident())
        return original(*args, **kwargs)

    monkeypatch.setattr(reminders, "claim_reminder", recording_claim)
    book(db, time="10:00", email="a@example.com")
    manual = book(db, date="2030-01-16", email="b@example.com")
    mailer = FakeMailer()

    async def run():
        loop_thread = threading.get_ident()
        await send_due_reminders(db, mailer, now=NOW)
        await send_reminder(db, mailer, manual.id, OWNER, now=NOW)
        return loop_thread

    loop_thread = asyncio.run(run())

    assert len(claim_threads) == 2
    assert loop_thread not in claim_threads
    assert [m["to"] for m in mailer.sent] == ["a@example.com", "b@example.com"]
