"""Shared test fixtures and helpers."""

from datetime import date
from typing import Optional

import pytest
import pytest_asyncio

from agenda.schemas.appointment_schema import Appointment, AppointmentStatus
from agenda.schemas.availability_schema import AvailabilitySlot, AvailabilityType
from agenda.scheduling.catalog import AvailabilityCatalog
from agenda.service import AgendaService
from agenda.storage.memory import InMemoryStorage

TYPE_ID = "type-studio"
DAY = date(2024, 6, 10)  # a Monday


def make_type(
    type_id: str = TYPE_ID, name: str = "Estúdio", color: str = "#10b981"
) -> AvailabilityType:
    return AvailabilityType(id=type_id, name=name, color=color)


def make_slot(
    slot_date: date,
    time: str,
    type_id: str = TYPE_ID,
    slot_id: Optional[str] = None,
) -> AvailabilitySlot:
    """Helper to create a stored slot with a predictable id."""
    return AvailabilitySlot(
        id=slot_id or f"slot-{slot_date.isoformat()}-{time}",
        date=slot_date,
        time=time,
        duration=60,
        type_id=type_id,
        label="Estúdio",
        color="#10b981",
    )


def make_appointment(
    appointment_id: str,
    slot_date: date = DAY,
    time: str = "14:00",
    status: AppointmentStatus = AppointmentStatus.PENDING,
    client: Optional[str] = None,
    description: Optional[str] = None,
) -> Appointment:
    """Helper to create a stored appointment with sensible defaults."""
    client = client or appointment_id.title()
    return Appointment(
        id=appointment_id,
        date=slot_date,
        time=time,
        title=f"Ensaio {client}",
        type="Ensaio Família",
        client=client,
        status=status,
        description=description,
    )


async def build_service(
    types: Optional[list[AvailabilityType]] = None,
    slots: Optional[list[AvailabilitySlot]] = None,
    appointments: Optional[list[Appointment]] = None,
) -> AgendaService:
    """Create and load a service over a fresh in-memory store."""
    storage = InMemoryStorage(
        types=types if types is not None else [make_type()],
        slots=slots,
        appointments=appointments,
    )
    service = AgendaService(storage)
    await service.load()
    return service


@pytest.fixture
def storage():
    return InMemoryStorage(types=[make_type()])


@pytest_asyncio.fixture
async def catalog(storage):
    catalog = AvailabilityCatalog(storage)
    await catalog.load()
    return catalog


@pytest_asyncio.fixture
async def service(storage):
    service = AgendaService(storage)
    await service.load()
    yield service
    service.close()
