from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .services import parse_services


class PublicBookingCreate(BaseModel):
    """Booking request coming from a business's public booking page."""
    owner: EmailStr = Field(description="Email of the business being booked")
    date: str = Field(description="Date in YYYY-MM-DD format")
    time: str = Field(description="Time in HH:MM format")
    service: str
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = ""
    notes: str = ""


class DashboardBookingCreate(BaseModel):
    date: str
    time: str
    kind: Literal["booking", "blocked"] = Field("booking", alias="type")
    service: str = ""
    name: str = ""
    email: str = ""
    phone: str = ""
    notes: str = ""

    model_config = {"populate_by_name": True}


class BookingRead(BaseModel):
    id: int
    date: str
    time: str
    type: str = Field(validation_alias="kind")
    service: str
    name: str
    email: str
    phone: str
    notes: str
    source: str
    status: str
    slot_freed: Optional[bool] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    marked_at: Optional[datetime] = None
    reminder_sent: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class SettingsUpdate(BaseModel):
    clinic_name: str = ""
    clinic_phone: str = ""
    clinic_address: str = ""
    website_url: str = ""
    start_hour: int = Field(9, ge=0, le=23)
    end_hour: int = Field(17, ge=1, le=23)
    working_days: list[int] = [1, 2, 3, 4, 5]
    slots_per_hour: int = Field(1, ge=1, le=60)
    services: list[str] = ["Consultation"]

    @field_validator("working_days")
    @classmethod
    def validate_working_days(cls, v: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("Working days must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(v))

    @field_validator("services", mode="before")
    @classmethod
    def split_services(cls, v):
        return parse_services(v)

    @model_validator(mode="after")
    def check_hours(self):
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self


class OwnerRead(BaseModel):
    id: int
    email: str
    status: str
    clinic_name: str
    clinic_email: str
    clinic_phone: str
    clinic_address: str
    website_url: str
    start_hour: int
    end_hour: int
    working_days: list[int]
    slots_per_hour: int
    services: list[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class InviteCreate(BaseModel):
    email: EmailStr
    clinic_name: str = ""
