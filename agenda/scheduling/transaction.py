"""
Optimistic in-memory transactions.

Stores apply a change to their in-memory state immediately, record the
exact inverse as a Mutation, and only then await the storage call. If the
storage call fails, the transaction replays the inverses newest-first so
the in-memory state returns to its pre-operation value.

Usage:
    tx = OptimisticTransaction("delete slot abc")
    removed = slots.pop("abc")
    tx.record("remove slot abc", lambda: slots.__setitem__("abc", removed))
    try:
        await storage.save_slots([], removed_ids=["abc"])
    except PersistenceError:
        tx.rollback()
        raise
"""

from dataclasses import dataclass, field
from typing import Callable

from agenda.logging_context import get_operation_logger
from agenda.schemas.appointment_schema import Appointment

logger = get_operation_logger(__name__)


@dataclass
class Mutation:
    """One applied in-memory change and the callable that undoes it."""
    description: str
    revert: Callable[[], None]


@dataclass
class OptimisticTransaction:
    """Ordered log of mutations belonging to one logical operation."""

    name: str
    mutations: list[Mutation] = field(default_factory=list)
    # Appointments written by this operation, keyed by id, in write order
    appointments: dict[str, Appointment] = field(default_factory=dict)

    def record(self, description: str, revert: Callable[[], None]) -> None:
        self.mutations.append(Mutation(description, revert))
        logger.debug("[%s] applied: %s", self.name, description)

    def touch(self, appointment: Appointment) -> None:
        """Mark an appointment as needing to be persisted with this operation."""
        self.appointments[appointment.id] = appointment

    def rollback(self) -> None:
        """Undo every recorded mutation, newest first."""
        for mutation in reversed(self.mutations):
            mutation.revert()
            logger.debug("[%s] reverted: %s", self.name, mutation.description)
        logger.warning("Rolled back '%s' (%d mutation(s))", self.name, len(self.mutations))
        self.mutations.clear()
        self.appointments.clear()

    def __len__(self) -> int:
        return len(self.mutations)
