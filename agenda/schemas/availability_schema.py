"""Availability type and slot records."""

import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from agenda.utils import time_field

SlotKey = tuple[dt.date, str]


class AvailabilityType(BaseModel):
    """A labeled category of offered time, e.g. in-studio or on-location."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    color: str


class AvailabilitySlot(BaseModel):
    """An offerable, not-yet-booked time unit.

    ``label`` and ``color`` are copies of the type taken at creation time,
    so renaming a type later does not change how existing slots display.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    date: dt.date
    time: str
    duration: int = 60
    type_id: str
    label: str = ""
    color: str = ""

    @field_validator("time")
    @classmethod
    def _normalize_time(cls, v: Optional[str]) -> Optional[str]:
        return time_field(v)

    @property
    def key(self) -> SlotKey:
        return (self.date, self.time)


class SlotFilter(BaseModel):
    """Optional constraints for AvailabilityCatalog.list_slots."""

    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    type_id: Optional[str] = None
    include_occupied: bool = False
