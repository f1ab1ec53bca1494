"""
Appointment ledger: owns appointment records.

Invariant: at most one confirmed appointment per (date, time). Several
pending appointments may share a slot until one of them is confirmed.

Status only moves pending -> confirmed. That transition is handed to the
registered OccupancyHandler inside the same optimistic transaction, so the
caller never sees a confirmed appointment whose collisions are unresolved.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Protocol, Union

from pydantic import ValidationError as PydanticValidationError

from agenda.errors import InvariantError, NotFoundError, PersistenceError, ValidationError
from agenda.logging_context import get_operation_logger
from agenda.schemas.appointment_schema import (
    Appointment,
    AppointmentCreate,
    AppointmentPatch,
    AppointmentStatus,
)
from agenda.schemas.availability_schema import SlotKey
from agenda.scheduling.transaction import OptimisticTransaction
from agenda.storage.base import AgendaStorage
from agenda.utils import DateLike, normalize_time, parse_date, time_to_minutes

logger = get_operation_logger(__name__)

REQUIRED_TEXT_FIELDS = ("title", "client")


class OccupancyHandler(Protocol):
    """Side effects of confirmed appointments claiming or leaving a slot."""

    def handle_confirmation(self, appointment: Appointment, tx: OptimisticTransaction) -> list[Any]: ...

    def handle_occupied(self, key: SlotKey, tx: OptimisticTransaction) -> None: ...

    def handle_vacated(self, key: SlotKey, tx: OptimisticTransaction) -> None: ...


@dataclass
class ConflictCheck:
    """Answer to "may an appointment with this status sit at this slot?"."""
    valid: bool
    reason: Optional[str] = None
    needs_resolution: bool = False
    conflicting: list[Appointment] = field(default_factory=list)


@dataclass
class UpdateOutcome:
    """Result of AppointmentLedger.update."""
    appointment: Appointment
    resolutions: list[Any] = field(default_factory=list)


def _key(slot_date: DateLike, time: str) -> SlotKey:
    return (parse_date(slot_date), normalize_time(time))


def _sort_key(appointment: Appointment) -> tuple[date, int]:
    return (appointment.date, time_to_minutes(appointment.time))


def _validation_message(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


class AppointmentLedger:
    """In-memory appointment state with an async persistence side-channel."""

    def __init__(self, storage: AgendaStorage) -> None:
        self._storage = storage
        self._appointments: dict[str, Appointment] = {}
        self._occupancy: Optional[OccupancyHandler] = None

    def set_occupancy_handler(self, handler: OccupancyHandler) -> None:
        self._occupancy = handler

    async def load(self) -> None:
        self._appointments = {a.id: a for a in await self._storage.load_appointments()}
        logger.info("Ledger loaded: %d appointment(s)", len(self._appointments))

    # --- Queries ---

    def get(self, appointment_id: str) -> Appointment:
        try:
            return self._appointments[appointment_id]
        except KeyError:
            raise NotFoundError(f"Appointment {appointment_id!r} not found") from None

    def list_all(self) -> list[Appointment]:
        return sorted(self._appointments.values(), key=_sort_key)

    def list_at(self, slot_date: DateLike, time: str) -> list[Appointment]:
        key = _key(slot_date, time)
        return [a for a in self.list_all() if a.key == key]

    def has_confirmed_at(
        self, slot_date: DateLike, time: str, excluding_id: Optional[str] = None
    ) -> bool:
        key = _key(slot_date, time)
        return any(
            a.is_confirmed and a.key == key and a.id != excluding_id
            for a in self._appointments.values()
        )

    def confirmed_keys(self) -> set[SlotKey]:
        return {a.key for a in self._appointments.values() if a.is_confirmed}

    def for_date(self, slot_date: DateLike) -> list[Appointment]:
        day = parse_date(slot_date)
        return [a for a in self.list_all() if a.date == day]

    def by_status(self, status: Union[AppointmentStatus, str]) -> list[Appointment]:
        status = AppointmentStatus(status)
        return [a for a in self.list_all() if a.status == status]

    def in_range(self, start_date: DateLike, end_date: DateLike) -> list[Appointment]:
        start, end = parse_date(start_date), parse_date(end_date)
        return [a for a in self.list_all() if start <= a.date <= end]

    def search(self, query: str) -> list[Appointment]:
        """Case-insensitive match over client, title, description, and type."""
        needle = query.lower().strip()
        return [
            a for a in self.list_all()
            if needle in a.client.lower()
            or needle in a.title.lower()
            or needle in (a.description or "").lower()
            or needle in a.type.lower()
        ]

    def list_upcoming_confirmed(self, today: date, limit: Optional[int] = None) -> list[Appointment]:
        if limit is not None and limit < 1:
            raise ValidationError(f"Limit must be at least 1, got {limit}")
        upcoming = [a for a in self.list_all() if a.is_confirmed and a.date >= today]
        return upcoming[:limit] if limit is not None else upcoming

    def pending_conflicts(self, slot_date: DateLike, time: str) -> list[Appointment]:
        return [a for a in self.list_at(slot_date, time) if a.status == AppointmentStatus.PENDING]

    def conflict_counts(self) -> dict[SlotKey, int]:
        """Number of pending appointments per slot that has at least one."""
        counts: dict[SlotKey, int] = {}
        for appointment in self._appointments.values():
            if appointment.status == AppointmentStatus.PENDING:
                counts[appointment.key] = counts.get(appointment.key, 0) + 1
        return counts

    def validate_time_conflict(
        self,
        slot_date: DateLike,
        time: str,
        status: Union[AppointmentStatus, str],
        excluding_id: Optional[str] = None,
    ) -> ConflictCheck:
        status = AppointmentStatus(status)
        others = [a for a in self.list_at(slot_date, time) if a.id != excluding_id]
        if status != AppointmentStatus.CONFIRMED:
            return ConflictCheck(valid=True)
        if any(a.is_confirmed for a in others):
            return ConflictCheck(
                valid=False,
                reason="A confirmed appointment already exists at this time",
            )
        pending = [a for a in others if a.status == AppointmentStatus.PENDING]
        if pending:
            return ConflictCheck(valid=True, needs_resolution=True, conflicting=pending)
        return ConflictCheck(valid=True)

    # --- Mutations ---

    def apply(self, appointment: Appointment, tx: OptimisticTransaction) -> None:
        """Write an appointment into memory as part of ``tx``.

        The recorded revert only undoes this write while it is still the
        current value; a later operation that replaced the record wins.
        """
        previous = self._appointments.get(appointment.id)
        self._appointments[appointment.id] = appointment

        def revert() -> None:
            if self._appointments.get(appointment.id) is not appointment:
                logger.warning(
                    "Not reverting appointment %s: changed by a later operation", appointment.id
                )
                return
            if previous is None:
                del self._appointments[appointment.id]
            else:
                self._appointments[appointment.id] = previous

        action = "insert" if previous is None else "replace"
        tx.record(f"{action} appointment {appointment.id}", revert)
        tx.touch(appointment)

    async def _commit(self, tx: OptimisticTransaction) -> None:
        try:
            await self._storage.save_appointments(list(tx.appointments.values()))
        except PersistenceError:
            tx.rollback()
            raise

    @staticmethod
    def _check_text_fields(values: dict[str, Any]) -> None:
        for name in REQUIRED_TEXT_FIELDS:
            if name in values and (values[name] is None or not str(values[name]).strip()):
                raise ValidationError(f"Appointment {name} is required")

    async def create(self, data: Union[AppointmentCreate, dict[str, Any]]) -> Appointment:
        """
        Create an appointment.

        Creating one directly as confirmed counts as a pending -> confirmed
        transition, so colliding pending appointments are resolved.

        Raises:
            ValidationError: malformed or missing fields.
            InvariantError: confirmed onto a slot that is already confirmed.
            PersistenceError: storage failed; nothing was kept.
        """
        try:
            payload = data if isinstance(data, AppointmentCreate) else AppointmentCreate.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(_validation_message(exc)) from None
        self._check_text_fields(payload.model_dump(include=set(REQUIRED_TEXT_FIELDS)))

        if payload.status == AppointmentStatus.CONFIRMED and self.has_confirmed_at(payload.date, payload.time):
            raise InvariantError(
                f"A confirmed appointment already exists at {payload.date} {payload.time}"
            )

        appointment = Appointment(id=uuid.uuid4().hex, **dict(payload))
        tx = OptimisticTransaction(f"create appointment {appointment.id}")
        self.apply(appointment, tx)
        if appointment.is_confirmed and self._occupancy is not None:
            self._occupancy.handle_confirmation(appointment, tx)
        await self._commit(tx)
        logger.info(
            "Appointment created: %s for %s on %s at %s (%s)",
            appointment.id, appointment.client, appointment.date,
            appointment.time, appointment.status.value,
        )
        return appointment

    async def update(
        self, appointment_id: str, patch: Union[AppointmentPatch, dict[str, Any]]
    ) -> UpdateOutcome:
        """
        Apply a partial update.

        A pending -> confirmed change runs the occupancy handler before the
        single storage write, and the whole sequence rolls back together if
        that write fails.

        Raises:
            NotFoundError: unknown id.
            ValidationError: malformed patch.
            InvariantError: second confirmed appointment at a slot, or an
                attempt to revert a confirmed appointment to pending.
            PersistenceError: storage failed; nothing was kept.
        """
        current = self.get(appointment_id)
        try:
            patch = patch if isinstance(patch, AppointmentPatch) else AppointmentPatch.model_validate(patch)
        except PydanticValidationError as exc:
            raise ValidationError(_validation_message(exc)) from None

        changes = {name: getattr(patch, name) for name in patch.model_fields_set}
        self._check_text_fields(changes)
        for name in ("date", "time", "status", "products_included"):
            if name in changes and changes[name] is None:
                raise ValidationError(f"Appointment {name} cannot be cleared")

        updated = current.model_copy(update=changes)
        becoming_confirmed = not current.is_confirmed and updated.is_confirmed
        moved = updated.key != current.key

        if current.is_confirmed and not updated.is_confirmed:
            raise InvariantError("A confirmed appointment cannot be reverted to pending")
        if updated.is_confirmed and (becoming_confirmed or moved):
            if self.has_confirmed_at(updated.date, updated.time, excluding_id=appointment_id):
                raise InvariantError(
                    f"A confirmed appointment already exists at {updated.date} {updated.time}"
                )

        tx = OptimisticTransaction(f"update appointment {appointment_id}")
        self.apply(updated, tx)
        resolutions: list[Any] = []
        if self._occupancy is not None:
            if becoming_confirmed:
                resolutions = self._occupancy.handle_confirmation(updated, tx)
            elif current.is_confirmed and moved:
                self._occupancy.handle_vacated(current.key, tx)
                self._occupancy.handle_occupied(updated.key, tx)
        await self._commit(tx)
        logger.info("Appointment updated: %s (%s)", appointment_id, ", ".join(sorted(changes)) or "no changes")
        return UpdateOutcome(appointment=updated, resolutions=resolutions)

    async def delete(self, appointment_id: str, preserve_payments: bool = False) -> None:
        """Delete an appointment; ``preserve_payments`` keeps its payment history in storage."""
        removed = self.get(appointment_id)
        tx = OptimisticTransaction(f"delete appointment {appointment_id}")
        del self._appointments[appointment_id]
        tx.record(
            f"remove appointment {appointment_id}",
            lambda: self._appointments.setdefault(appointment_id, removed),
        )
        if removed.is_confirmed and self._occupancy is not None:
            self._occupancy.handle_vacated(removed.key, tx)
        try:
            await self._storage.delete_appointment(appointment_id, preserve_payments=preserve_payments)
        except PersistenceError:
            tx.rollback()
            raise
        logger.info("Appointment deleted: %s (preserve_payments=%s)", appointment_id, preserve_payments)

    # --- Remote changes ---

    def merge_remote(self, record: dict[str, Any]) -> None:
        incoming = Appointment.model_validate(record)
        self._appointments[incoming.id] = incoming

    def remove_remote(self, appointment_id: str) -> None:
        self._appointments.pop(appointment_id, None)
