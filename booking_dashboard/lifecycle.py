"""
Booking status transitions.

    confirmed -> completed | no-show | cancelled

All three targets are terminal. Every transition is a conditional UPDATE
guarded by ``status == 'confirmed'``; a booking that already left that
state raises IllegalTransitionError and is left untouched.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from .errors import IllegalTransitionError, NotFoundError
from .models import Booking
from .slots import parse_slot

logger = logging.getLogger(__name__)

FREE_SLOT_NOTICE = timedelta(hours=6)


@dataclass(frozen=True)
class CancellationOutcome:
    slot_freed: bool
    hours_until: float
    status_after: str = "cancelled"

    @property
    def message(self) -> str:
        if self.slot_freed:
            return "Booking cancelled and slot freed"
        return "Booking cancelled (slot not freed - less than 6 hours notice)"


def evaluate_cancellation(date: str, time: str, now: datetime) -> CancellationOutcome:
    """
    Decide whether cancelling at ``now`` counts as a clean cancellation.

    Appointment and ``now`` are both naive local times. The threshold is
    inclusive: exactly six hours of notice frees the slot. The outcome is
    advisory only, cancellation itself is never refused.
    """
    delta = parse_slot(date, time) - now
    return CancellationOutcome(
        slot_freed=delta >= FREE_SLOT_NOTICE,
        hours_until=delta.total_seconds() / 3600,
    )


def get_booking(db: Session, booking_id: int, owner_key: str) -> Booking:
    booking = (
        db.query(Booking)
        .filter(Booking.id == booking_id, Booking.owner_key == owner_key)
        .first()
    )
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _transition(db: Session, booking: Booking, target: str, values: dict) -> Booking:
    if booking.status != "confirmed":
        raise IllegalTransitionError(f"Booking is already {booking.status}")

    result = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == "confirmed")
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(booking)
        raise IllegalTransitionError(f"Booking is already {booking.status}")
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s marked %s", booking.id, target)
    return booking


def mark_complete(db: Session, booking_id: int, owner_key: str, now: datetime | None = None) -> Booking:
    booking = get_booking(db, booking_id, owner_key)
    return _transition(db, booking, "completed", {"completed_at": now or datetime.now()})


def mark_no_show(db: Session, booking_id: int, owner_key: str, now: datetime | None = None) -> Booking:
    booking = get_booking(db, booking_id, owner_key)
    return _transition(db, booking, "no-show", {"marked_at": now or datetime.now()})


def _cancel(db: Session, booking: Booking, cancelled_by: str, now: datetime | None):
    now = now or datetime.now()
    if booking.status != "confirmed":
        raise IllegalTransitionError(f"Booking is already {booking.status}")
    outcome = evaluate_cancellation(booking.date, booking.time, now)
    _transition(
        db,
        booking,
        outcome.status_after,
        {
            "cancelled_at": now,
            "cancelled_by": cancelled_by,
            "slot_freed": outcome.slot_freed,
        },
    )
    return booking, outcome


def cancel(db: Session, booking_id: int, owner_key: str, cancelled_by: str = "owner", now: datetime | None = None):
    booking = get_booking(db, booking_id, owner_key)
    return _cancel(db, booking, cancelled_by, now)


def cancel_by_token(db: Session, token: str, now: datetime | None = None):
    booking = db.query(Booking).filter(Booking.cancel_token == token).first()
    if not booking:
        raise NotFoundError("Booking not found")
    return _cancel(db, booking, "client", now)
