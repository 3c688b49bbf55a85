"""
Slot capacity checks.

A slot is one (date, time) pair of an owner's schedule. Up to
``slots_per_hour`` active bookings may share a slot; bookings whose
status is cancelled or no-show do not count, whatever their
``slot_freed`` flag says. Blocked entries count like client bookings.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, insert, literal, select
from sqlalchemy.orm import Session

from .errors import CapacityExceededError, ValidationError
from .models import Booking

logger = logging.getLogger(__name__)

RELEASED_STATUSES = ("cancelled", "no-show")
DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


@dataclass(frozen=True)
class ScheduleConfig:
    start_hour: int = 9
    end_hour: int = 17
    working_days: frozenset = frozenset({1, 2, 3, 4, 5})
    slots_per_hour: int = 1
    services: tuple = ("Consultation",)

    @classmethod
    def from_owner(cls, owner) -> "ScheduleConfig":
        return cls(
            start_hour=owner.start_hour,
            end_hour=owner.end_hour,
            working_days=frozenset(owner.working_days or ()),
            slots_per_hour=owner.slots_per_hour,
            services=tuple(owner.services or ()),
        )

    @property
    def minute_offsets(self) -> tuple:
        """The ``slots_per_hour`` start minutes inside each hour."""
        n = self.slots_per_hour
        return tuple(i * 60 // n for i in range(n))

    def slot_times(self) -> list[str]:
        return [
            f"{hour:02d}:{minute:02d}"
            for hour in range(self.start_hour, self.end_hour)
            for minute in self.minute_offsets
        ]


def weekday_index(day) -> int:
    """Weekday with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def parse_slot(date: str, time: str) -> datetime:
    if not date:
        raise ValidationError("Date is required")
    if not time:
        raise ValidationError("Time is required")
    try:
        day = datetime.strptime(date, DATE_FORMAT)
    except ValueError:
        raise ValidationError("Date must be in YYYY-MM-DD format")
    try:
        clock = datetime.strptime(time, TIME_FORMAT)
    except ValueError:
        raise ValidationError("Time must be in HH:MM format")
    return day.replace(hour=clock.hour, minute=clock.minute)


def slot_key(date: str, time: str) -> tuple[str, str]:
    """Canonical ``(YYYY-MM-DD, HH:MM)`` strings, so ``2025-6-1 9:0`` and ``2025-06-01 09:00`` are one slot."""
    start = parse_slot(date, time)
    return start.strftime(DATE_FORMAT), start.strftime(TIME_FORMAT)


def validate_slot(config: ScheduleConfig, date: str, time: str) -> datetime:
    """Check that (date, time) is a bookable slot and return it as a naive datetime."""
    start = parse_slot(date, time)
    if weekday_index(start) not in config.working_days:
        raise ValidationError("Closed on this day")
    if not config.start_hour <= start.hour < config.end_hour:
        raise ValidationError("Outside working hours")
    if start.minute not in config.minute_offsets:
        allowed = ", ".join(f":{m:02d}" for m in config.minute_offsets)
        raise ValidationError(f"Time must start at {allowed}")
    return start


def _active_count(owner_key: str, date: str, time: str):
    return (
        select(func.count(Booking.id))
        .where(
            Booking.owner_key == owner_key,
            Booking.date == date,
            Booking.time == time,
            Booking.status.not_in(RELEASED_STATUSES),
        )
        .correlate(None)
        .scalar_subquery()
    )


def taken_count(db: Session, owner_key: str, date: str, time: str) -> int:
    date, time = slot_key(date, time)
    return db.execute(select(_active_count(owner_key, date, time))).scalar_one()


def can_book(db: Session, owner_key: str, date: str, time: str, slots_per_hour: int) -> bool:
    return taken_count(db, owner_key, date, time) < slots_per_hour


def reserve_slot(db: Session, config: ScheduleConfig, owner_key: str, date: str, time: str, **fields) -> Booking:
    """
    Insert a confirmed booking if the slot still has room.

    The capacity check and the insert are a single INSERT ... SELECT ...
    WHERE count < capacity statement, so concurrent requests for the same
    slot cannot push it over ``slots_per_hour``.
    """
    date, time = slot_key(date, time)
    values = {
        "kind": "booking",
        "service": "",
        "name": "",
        "email": "",
        "phone": "",
        "notes": "",
        "source": "dashboard",
        **{k: v for k, v in fields.items() if v is not None},
        "owner_key": owner_key,
        "date": date,
        "time": time,
        "status": "confirmed",
        "cancel_token": secrets.token_hex(16),
        "reminder_sent": False,
        "created_at": datetime.now(),
    }
    columns = Booking.__table__.c
    names = list(values)
    row = select(*[literal(values[name], columns[name].type) for name in names]).where(
        _active_count(owner_key, date, time) < config.slots_per_hour
    )
    result = db.execute(insert(Booking.__table__).from_select(names, row))
    if result.rowcount != 1:
        db.rollback()
        taken = taken_count(db, owner_key, date, time)
        logger.info("Slot %s %s for %s is full (%s/%s)", date, time, owner_key, taken, config.slots_per_hour)
        raise CapacityExceededError(taken, config.slots_per_hour)
    db.commit()

    booking = db.query(Booking).filter(Booking.cancel_token == values["cancel_token"]).one()
    logger.info("Booking %s created for %s on %s %s", booking.id, owner_key, date, time)
    return booking


def day_availability(db: Session, config: ScheduleConfig, owner_key: str, date: str) -> list[dict]:
    date, _ = slot_key(date, "00:00")
    day = parse_slot(date, "00:00")
    if weekday_index(day) not in config.working_days:
        return []

    rows = (
        db.query(Booking.time, func.count(Booking.id))
        .filter(
            Booking.owner_key == owner_key,
            Booking.date == date,
            Booking.status.not_in(RELEASED_STATUSES),
        )
        .group_by(Booking.time)
        .all()
    )
    taken = dict(rows)
    return [
        {
            "time": t,
            "taken": taken.get(t, 0),
            "capacity": config.slots_per_hour,
            "available": taken.get(t, 0) < config.slots_per_hour,
        }
        for t in config.slot_times()
    ]
