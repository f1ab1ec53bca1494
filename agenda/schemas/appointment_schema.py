"""Appointment records and the patch shape accepted by the ledger."""

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from agenda.schemas.availability_schema import SlotKey
from agenda.utils import time_field

RELOCATED_MARKER = "(Reagendado automaticamente)"
NEEDS_RESCHEDULE_MARKER = "(ATENÇÃO: Precisa reagendar - conflito)"


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class IncludedProduct(BaseModel):
    """A product bundled with the booked package."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    quantity: int = 1
    unit_price: float = 0.0


class Appointment(BaseModel):
    """A booking request or confirmation tied to a client and a slot."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    session_id: Optional[str] = None
    date: dt.date
    time: str
    title: str
    type: str = ""
    client: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    description: Optional[str] = None
    package_id: Optional[str] = None
    paid_amount: Optional[float] = None
    products_included: list[IncludedProduct] = Field(default_factory=list)

    @field_validator("time")
    @classmethod
    def _normalize_time(cls, v: Optional[str]) -> Optional[str]:
        return time_field(v)

    @property
    def key(self) -> SlotKey:
        return (self.date, self.time)

    @property
    def is_confirmed(self) -> bool:
        return self.status == AppointmentStatus.CONFIRMED


class AppointmentCreate(BaseModel):
    """Data needed to create an appointment; the ledger assigns the id."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: Optional[str] = None
    date: dt.date
    time: str
    title: str
    type: str = ""
    client: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    description: Optional[str] = None
    package_id: Optional[str] = None
    paid_amount: Optional[float] = None
    products_included: list[IncludedProduct] = Field(default_factory=list)

    @field_validator("time")
    @classmethod
    def _normalize_time(cls, v: Optional[str]) -> Optional[str]:
        return time_field(v)


class AppointmentPatch(BaseModel):
    """Partial update. Only fields explicitly set are applied."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: Optional[str] = None
    date: Optional[dt.date] = None
    time: Optional[str] = None
    title: Optional[str] = None
    type: Optional[str] = None
    client: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    description: Optional[str] = None
    package_id: Optional[str] = None
    paid_amount: Optional[float] = None
    products_included: Optional[list[IncludedProduct]] = None

    @field_validator("time")
    @classmethod
    def _normalize_time(cls, v: Optional[str]) -> Optional[str]:
        return time_field(v)
