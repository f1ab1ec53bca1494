"""
Conflict resolution run when an appointment becomes confirmed.

Sequence, applied inside the caller's optimistic transaction:
1. Occupy: the confirmed (date, time) is excluded from future offers.
2. Detect: pending appointments at the same (date, time) collide.
3. Relocate each collision to the next free slot, or flag it for manual
   rescheduling when the search horizon holds none. Collisions stay pending.
4. The ledger persists everything in one write once this returns.

A flagged appointment is data, not an error: confirmation of the winning
appointment always goes through.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from agenda.logging_context import get_operation_logger
from agenda.schemas.appointment_schema import (
    NEEDS_RESCHEDULE_MARKER,
    RELOCATED_MARKER,
    Appointment,
    AppointmentStatus,
)
from agenda.schemas.availability_schema import SlotKey
from agenda.scheduling.catalog import AvailabilityCatalog
from agenda.scheduling.finder import FreeSlot, NextSlotFinder
from agenda.scheduling.ledger import AppointmentLedger
from agenda.scheduling.transaction import OptimisticTransaction
from agenda.utils import append_marker

logger = get_operation_logger(__name__)


class ResolutionOutcome(str, Enum):
    RELOCATED = "relocated"
    NEEDS_RESCHEDULE = "needs_reschedule"


@dataclass(frozen=True)
class Resolution:
    """What happened to one colliding appointment."""
    appointment_id: str
    client: str
    previous_date: date
    previous_time: str
    outcome: ResolutionOutcome
    new_slot: Optional[FreeSlot] = None


class ConflictResolutionEngine:
    """
    Handles the side effects of confirmed appointments on the slot pool.

    Registers itself as the ledger's occupancy handler, so every
    pending -> confirmed transition in the ledger passes through
    handle_confirmation before it is persisted.
    """

    def __init__(
        self,
        ledger: AppointmentLedger,
        catalog: AvailabilityCatalog,
        finder: NextSlotFinder,
    ) -> None:
        self._ledger = ledger
        self._catalog = catalog
        self._finder = finder
        ledger.set_occupancy_handler(self)

    def handle_confirmation(
        self, appointment: Appointment, tx: OptimisticTransaction
    ) -> list[Resolution]:
        self._catalog.occupy(appointment.date, appointment.time, tx)

        colliding = [
            other for other in self._ledger.list_at(appointment.date, appointment.time)
            if other.status == AppointmentStatus.PENDING and other.id != appointment.id
        ]
        if not colliding:
            return []

        logger.info(
            "Confirming %s at %s %s: %d pending collision(s)",
            appointment.id, appointment.date, appointment.time, len(colliding),
        )
        claimed: set[SlotKey] = set()
        return [self._resolve_one(other, claimed, tx) for other in colliding]

    def _resolve_one(
        self, other: Appointment, claimed: set[SlotKey], tx: OptimisticTransaction
    ) -> Resolution:
        found = self._finder.find(other.date, exclude=claimed)
        if found is None:
            self._ledger.apply(
                other.model_copy(update={
                    "description": append_marker(other.description, NEEDS_RESCHEDULE_MARKER),
                }),
                tx,
            )
            logger.warning(
                "No free slot for %s (%s); left at %s %s for manual rescheduling",
                other.id, other.client, other.date, other.time,
            )
            return Resolution(
                appointment_id=other.id,
                client=other.client,
                previous_date=other.date,
                previous_time=other.time,
                outcome=ResolutionOutcome.NEEDS_RESCHEDULE,
            )

        claimed.add(found.key)
        self._ledger.apply(
            other.model_copy(update={
                "date": found.date,
                "time": found.time,
                "description": append_marker(other.description, RELOCATED_MARKER),
            }),
            tx,
        )
        logger.info(
            "Relocated %s (%s) from %s %s to %s %s",
            other.id, other.client, other.date, other.time, found.date, found.time,
        )
        return Resolution(
            appointment_id=other.id,
            client=other.client,
            previous_date=other.date,
            previous_time=other.time,
            outcome=ResolutionOutcome.RELOCATED,
            new_slot=found,
        )

    def handle_occupied(self, key: SlotKey, tx: OptimisticTransaction) -> None:
        self._catalog.occupy(key[0], key[1], tx)

    def handle_vacated(self, key: SlotKey, tx: OptimisticTransaction) -> None:
        self._catalog.release(key[0], key[1], tx)
