from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text

from .database import Base

DEFAULT_WORKING_DAYS = [1, 2, 3, 4, 5]  # 0=Sunday .. 6=Saturday
DEFAULT_SERVICES = ["Consultation"]


class Owner(Base):
    __tablename__ = "owners"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    invitation_code = Column(String, unique=True, nullable=True)
    invited_at = Column(DateTime, default=datetime.now)

    clinic_name = Column(String, nullable=False, default="")
    clinic_email = Column(String, nullable=False, default="")
    clinic_phone = Column(String, nullable=False, default="")
    clinic_address = Column(String, nullable=False, default="")
    website_url = Column(String, nullable=False, default="")

    start_hour = Column(Integer, nullable=False, default=9)
    end_hour = Column(Integer, nullable=False, default=17)
    working_days = Column(JSON, nullable=False, default=lambda: list(DEFAULT_WORKING_DAYS))
    slots_per_hour = Column(Integer, nullable=False, default=1)
    services = Column(JSON, nullable=False, default=lambda: list(DEFAULT_SERVICES))

    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_slot", "owner_key", "date", "time"),
    )

    id = Column(Integer, primary_key=True)
    owner_key = Column(String, nullable=False, index=True)
    date = Column(String, nullable=False)
    time = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="booking")

    service = Column(String, nullable=False, default="")
    name = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    notes = Column(Text, nullable=False, default="")
    source = Column(String, nullable=False, default="dashboard")

    status = Column(String, nullable=False, default="confirmed")
    cancel_token = Column(String, unique=True, nullable=False)

    cancelled_at = Column(DateTime)
    cancelled_by = Column(String)
    slot_freed = Column(Boolean)
    completed_at = Column(DateTime)
    marked_at = Column(DateTime)

    reminder_sent = Column(Boolean, nullable=False, default=False)
    reminder_sent_at = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=datetime.now)
