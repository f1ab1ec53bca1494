"""
In-memory storage backend.

Used by tests and the console demo. Supports failure injection so that
rollback paths can be exercised, and manual emission of change events to
simulate another client writing to the same agenda.
"""

import logging
from typing import Iterable, Optional

from agenda.errors import PersistenceError
from agenda.schemas.appointment_schema import Appointment
from agenda.schemas.availability_schema import AvailabilitySlot, AvailabilityType
from agenda.schemas.event_schema import ChangeEvent
from agenda.storage.base import AgendaStorage

logger = logging.getLogger(__name__)


class InMemoryStorage(AgendaStorage):
    """Dict-backed storage. Records are copied on the way in and out."""

    def __init__(
        self,
        types: Optional[list[AvailabilityType]] = None,
        slots: Optional[list[AvailabilitySlot]] = None,
        appointments: Optional[list[Appointment]] = None,
    ) -> None:
        super().__init__()
        self.types: dict[str, AvailabilityType] = {t.id: t.model_copy() for t in types or []}
        self.slots: dict[str, AvailabilitySlot] = {s.id: s.model_copy() for s in slots or []}
        self.appointments: dict[str, Appointment] = {
            a.id: a.model_copy(deep=True) for a in appointments or []
        }
        self.preserved_payments: dict[str, Optional[float]] = {}
        self.calls: list[str] = []
        self._failures_pending = 0

    def fail_next(self, count: int = 1) -> None:
        """Make the next ``count`` write calls raise PersistenceError."""
        self._failures_pending = count

    def emit(self, event: ChangeEvent) -> None:
        """Push a change event to subscribers as if another client wrote it."""
        self._notify(event)

    def _write(self, name: str) -> None:
        self.calls.append(name)
        if self._failures_pending > 0:
            self._failures_pending -= 1
            logger.debug("Injected failure on %s", name)
            raise PersistenceError(f"Simulated storage failure during {name}")

    async def load_types(self) -> list[AvailabilityType]:
        return [t.model_copy() for t in self.types.values()]

    async def save_type(self, availability_type: AvailabilityType) -> None:
        self._write("save_type")
        self.types[availability_type.id] = availability_type.model_copy()

    async def delete_type(self, type_id: str) -> None:
        self._write("delete_type")
        self.types.pop(type_id, None)

    async def load_slots(self) -> list[AvailabilitySlot]:
        return [s.model_copy() for s in self.slots.values()]

    async def save_slots(
        self, batch: list[AvailabilitySlot], removed_ids: Iterable[str] = ()
    ) -> None:
        self._write("save_slots")
        for slot_id in removed_ids:
            self.slots.pop(slot_id, None)
        for slot in batch:
            self.slots[slot.id] = slot.model_copy()

    async def load_appointments(self) -> list[Appointment]:
        return [a.model_copy(deep=True) for a in self.appointments.values()]

    async def save_appointments(self, batch: list[Appointment]) -> None:
        self._write("save_appointments")
        for appointment in batch:
            self.appointments[appointment.id] = appointment.model_copy(deep=True)

    async def delete_appointment(
        self, appointment_id: str, preserve_payments: bool = False
    ) -> None:
        self._write("delete_appointment")
        removed = self.appointments.pop(appointment_id, None)
        if preserve_payments and removed is not None:
            self.preserved_payments[appointment_id] = removed.paid_amount
