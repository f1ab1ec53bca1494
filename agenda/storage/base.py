"""
Persistence contract consumed by the scheduling core.

Every call is an await point. Implementations raise PersistenceError on
any transport or storage failure and must apply batch calls all-or-nothing.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable

from agenda.schemas.appointment_schema import Appointment
from agenda.schemas.availability_schema import AvailabilitySlot, AvailabilityType
from agenda.schemas.event_schema import ChangeEvent

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class AgendaStorage(ABC):
    """Async storage backend for types, slots, and appointments."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    # --- Availability types ---

    @abstractmethod
    async def load_types(self) -> list[AvailabilityType]: ...

    @abstractmethod
    async def save_type(self, availability_type: AvailabilityType) -> None: ...

    @abstractmethod
    async def delete_type(self, type_id: str) -> None: ...

    # --- Availability slots ---

    @abstractmethod
    async def load_slots(self) -> list[AvailabilitySlot]: ...

    @abstractmethod
    async def save_slots(
        self, batch: list[AvailabilitySlot], removed_ids: Iterable[str] = ()
    ) -> None:
        """Upsert ``batch`` and delete ``removed_ids`` in one atomic step."""

    # --- Appointments ---

    @abstractmethod
    async def load_appointments(self) -> list[Appointment]: ...

    async def save_appointment(self, appointment: Appointment) -> None:
        await self.save_appointments([appointment])

    @abstractmethod
    async def save_appointments(self, batch: list[Appointment]) -> None:
        """Upsert every appointment in ``batch`` in one atomic step."""

    @abstractmethod
    async def delete_appointment(
        self, appointment_id: str, preserve_payments: bool = False
    ) -> None: ...

    # --- Change feed ---

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register for out-of-band changes. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: ChangeEvent) -> None:
        for callback in list(self._subscribers):
            callback(event)
        logger.debug(
            "Delivered %s %s to %d subscriber(s)",
            event.table.value, event.operation.value, len(self._subscribers),
        )
