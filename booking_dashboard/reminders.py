"""
Appointment reminders.

Once an hour the sweep looks for confirmed client bookings taking place
on the next calendar day and emails a reminder for each one that has not
been reminded yet.

A reminder is claimed before it is sent: ``reminder_sent`` flips from
false to true in a conditional UPDATE and only the caller whose update
hit the row sends the email. Overlapping sweeps and manual sends
therefore deliver at most one reminder per booking. A failed delivery
is logged and not retried.

Queries and claims run in a worker thread via ``asyncio.to_thread``;
only the mail delivery is awaited on the event loop.
"""

import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from .database import SessionLocal
from .email_service import render_reminder_email
from .errors import IllegalTransitionError
from .lifecycle import get_booking
from .models import Booking, Owner

logger = logging.getLogger(__name__)

REMINDER_SUBJECT = "Reminder: your appointment tomorrow"


def claim_reminder(db: Session, booking_id: int, now: datetime) -> bool:
    result = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.reminder_sent.is_(False))
        .values(reminder_sent=True, reminder_sent_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _clinic_name(db: Session, owner_key: str) -> str:
    owner = db.query(Owner).filter(Owner.email == owner_key).first()
    return owner.clinic_name if owner else ""


def _render(db: Session, booking: Booking) -> tuple[str, str]:
    return booking.email, render_reminder_email(booking, _clinic_name(db, booking.owner_key))


def claim_due_reminders(db: Session, now: datetime) -> list[tuple[str, str]]:
    """Claim tomorrow's unreminded bookings (synchronous). Returns (recipient, html) pairs to send."""
    tomorrow = (now + timedelta(days=1)).strftime("%Y-%m-%d")

    due = (
        db.query(Booking)
        .filter(
            Booking.date == tomorrow,
            Booking.status == "confirmed",
            Booking.kind == "booking",
            Booking.email != "",
            Booking.reminder_sent.is_(False),
        )
        .order_by(Booking.time)
        .all()
    )

    claimed = [_render(db, booking) for booking in due if claim_reminder(db, booking.id, now)]
    logger.info("Reminder sweep for %s: %s due, %s claimed", tomorrow, len(due), len(claimed))
    return claimed


def claim_manual_reminder(db: Session, booking_id: int, owner_key: str, now: datetime) -> tuple[str, str]:
    booking = get_booking(db, booking_id, owner_key)
    if booking.kind != "booking" or not booking.email:
        raise IllegalTransitionError("Booking has no client email")
    if booking.status != "confirmed":
        raise IllegalTransitionError(f"Booking is already {booking.status}")
    if not claim_reminder(db, booking.id, now):
        raise IllegalTransitionError("Reminder already sent")
    return _render(db, booking)


async def send_due_reminders(db: Session, mailer, now: datetime | None = None) -> int:
    """Send reminders for tomorrow's bookings. Returns how many were sent."""
    claimed = await asyncio.to_thread(claim_due_reminders, db, now or datetime.now())

    sent = 0
    for to, html in claimed:
        if await mailer.send(to, REMINDER_SUBJECT, html):
            sent += 1
    return sent


async def send_reminder(db: Session, mailer, booking_id: int, owner_key: str, now: datetime | None = None) -> bool:
    to, html = await asyncio.to_thread(claim_manual_reminder, db, booking_id, owner_key, now or datetime.now())
    return await mailer.send(to, REMINDER_SUBJECT, html)


async def reminder_loop(mailer, interval: int) -> None:
    logger.info("reminder_loop started (every %ss)", interval)

    while True:
        db = SessionLocal()
        try:
            await send_due_reminders(db, mailer)
        except asyncio.CancelledError:
            logger.info("reminder_loop cancelled")
            raise
        except Exception:
            logger.exception("reminder_loop error")
        finally:
            db.close()

        await asyncio.sleep(interval)
