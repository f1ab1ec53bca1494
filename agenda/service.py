"""
Agenda facade exposed to the UI/API layer.

Wires the catalog, ledger, finder, expander, resolver, and realtime
reconciler around one storage backend. Each public coroutine runs under
its own operation id so its log lines can be traced together.

Usage:
    service = AgendaService(InMemoryStorage())
    await service.load()
    result = await service.expand_and_create_slots(
        "2024-06-10", "2024-06-14", weekdays={1, 2, 3}, times=["09:00", "14:00"],
        type_id=service.list_types()[0].id,
    )
"""

import asyncio
import functools
from datetime import date
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from agenda.config import AppConfig, settings
from agenda.errors import ValidationError
from agenda.logging_context import get_operation_logger, new_operation_id, set_operation_id
from agenda.schemas.appointment_schema import (
    Appointment,
    AppointmentCreate,
    AppointmentPatch,
    AppointmentStatus,
)
from agenda.schemas.availability_schema import (
    AvailabilitySlot,
    AvailabilityType,
    SlotFilter,
    SlotKey,
)
from agenda.scheduling.catalog import AvailabilityCatalog
from agenda.scheduling.expander import GenerationResult, SlotRangeExpander
from agenda.scheduling.finder import FreeSlot, NextSlotFinder
from agenda.scheduling.ledger import AppointmentLedger, ConflictCheck
from agenda.scheduling.realtime import RealtimeReconciler
from agenda.scheduling.resolver import ConflictResolutionEngine, Resolution
from agenda.storage.base import AgendaStorage
from agenda.tools.packages import FALLBACK_CATEGORY, PackageDirectory
from agenda.utils import DateLike

logger = get_operation_logger(__name__)


def _operation(func: Callable) -> Callable:
    """Run a facade coroutine under a fresh operation id."""

    @functools.wraps(func)
    async def wrapper(self: "AgendaService", *args: Any, **kwargs: Any) -> Any:
        set_operation_id(new_operation_id())
        logger.debug("Starting %s", func.__name__)
        return await func(self, *args, **kwargs)

    return wrapper


class AgendaService:
    """Single entry point for availability and appointment operations."""

    def __init__(
        self,
        storage: AgendaStorage,
        packages: Optional[PackageDirectory] = None,
        config: AppConfig = settings,
    ) -> None:
        self.storage = storage
        self.config = config
        self.packages = packages or PackageDirectory()
        self.catalog = AvailabilityCatalog(
            storage, default_duration=config.scheduling.default_slot_duration
        )
        self.ledger = AppointmentLedger(storage)
        self.finder = NextSlotFinder(self.catalog, self.ledger)
        self.expander = SlotRangeExpander(self.catalog, self.ledger)
        self.engine = ConflictResolutionEngine(self.ledger, self.catalog, self.finder)
        self.reconciler = RealtimeReconciler(self.catalog, self.ledger)
        self._slot_locks: dict[SlotKey, asyncio.Lock] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def load(self) -> None:
        """Load both stores and start listening for remote changes."""
        await self.catalog.load()
        await self.ledger.load()
        self.catalog.sync_occupied(self.ledger.confirmed_keys())
        if self._unsubscribe is None:
            self._unsubscribe = self.reconciler.attach(self.storage)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _lock_for(self, key: SlotKey) -> asyncio.Lock:
        """Confirmations targeting the same (date, time) run one at a time."""
        return self._slot_locks.setdefault(key, asyncio.Lock())

    # --- Availability types ---

    def list_types(self) -> list[AvailabilityType]:
        return self.catalog.list_types()

    @_operation
    async def add_type(self, name: str, color: str) -> AvailabilityType:
        return await self.catalog.add_type(name, color)

    @_operation
    async def update_type(self, type_id: str, patch: dict[str, Any]) -> AvailabilityType:
        return await self.catalog.update_type(type_id, patch)

    @_operation
    async def delete_type(self, type_id: str) -> None:
        await self.catalog.delete_type(type_id)

    # --- Availability slots ---

    def list_slots(self, slot_filter: Optional[SlotFilter] = None) -> list[AvailabilitySlot]:
        return self.catalog.list_slots(slot_filter)

    def availability_for_date(self, slot_date: DateLike) -> list[AvailabilitySlot]:
        """Slots still on offer for one day."""
        return self.catalog.slots_for_date(slot_date, include_occupied=False)

    @_operation
    async def expand_and_create_slots(
        self,
        start_date: DateLike,
        end_date: DateLike,
        weekdays: Iterable[int],
        times: Iterable[str],
        type_id: str,
        clear_existing: bool = False,
    ) -> GenerationResult:
        return await self.expander.generate(
            start_date, end_date, weekdays, times, type_id, clear_existing
        )

    @_operation
    async def add_slot(
        self, slot_date: DateLike, time: str, type_id: str, duration: Optional[int] = None
    ) -> Optional[AvailabilitySlot]:
        if self.ledger.has_confirmed_at(slot_date, time):
            logger.info("Not offering %s %s: already confirmed", slot_date, time)
            return None
        return await self.catalog.add_slot(slot_date, time, type_id, duration)

    @_operation
    async def delete_slot(self, slot_id: str) -> None:
        await self.catalog.delete_slot(slot_id)

    @_operation
    async def clear_slots_for_date(self, slot_date: DateLike) -> int:
        return await self.catalog.clear_slots_for_date(slot_date)

    @_operation
    async def delete_slots_in_range(self, start_date: DateLike, end_date: DateLike) -> int:
        return await self.catalog.delete_slots_in_range(start_date, end_date)

    def find_next_free_slot(self, from_date: DateLike) -> Optional[FreeSlot]:
        return self.finder.find(from_date)

    # --- Appointments ---

    def appointments_for_date(self, slot_date: DateLike) -> list[Appointment]:
        return self.ledger.for_date(slot_date)

    def list_upcoming_confirmed(
        self, limit: Optional[int] = None, today: Optional[date] = None
    ) -> list[Appointment]:
        return self.ledger.list_upcoming_confirmed(
            today or date.today(),
            limit if limit is not None else self.config.scheduling.upcoming_limit,
        )

    def conflict_counts(self) -> dict[SlotKey, int]:
        return self.ledger.conflict_counts()

    def validate_time_conflict(
        self,
        slot_date: DateLike,
        time: str,
        status: Union[AppointmentStatus, str],
        excluding_id: Optional[str] = None,
    ) -> ConflictCheck:
        return self.ledger.validate_time_conflict(slot_date, time, status, excluding_id)

    @_operation
    async def create_appointment(
        self, data: Union[AppointmentCreate, dict[str, Any]]
    ) -> Appointment:
        """Create an appointment, labeling it from its package when no type is given."""
        try:
            payload = data if isinstance(data, AppointmentCreate) else AppointmentCreate.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid appointment data: {exc.error_count()} error(s)") from None

        if not payload.type.strip():
            category = self.packages.category_for(payload.package_id)
            payload = payload.model_copy(update={"type": category or FALLBACK_CATEGORY})

        if payload.status != AppointmentStatus.CONFIRMED:
            return await self.ledger.create(payload)
        async with self._lock_for((payload.date, payload.time)):
            return await self.ledger.create(payload)

    @_operation
    async def update_appointment(
        self, appointment_id: str, patch: Union[AppointmentPatch, dict[str, Any]]
    ) -> list[Resolution]:
        """
        Apply a partial update.

        When the patch confirms the appointment, colliding pending
        appointments are relocated or flagged before this returns.

        Returns:
            One Resolution per colliding appointment (empty when none).
        """
        current = self.ledger.get(appointment_id)
        try:
            patch = patch if isinstance(patch, AppointmentPatch) else AppointmentPatch.model_validate(patch)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid appointment patch: {exc.error_count()} error(s)") from None

        target = (
            patch.date or current.date,
            patch.time or current.time,
        )
        async with self._lock_for(target):
            outcome = await self.ledger.update(appointment_id, patch)
        return outcome.resolutions

    @_operation
    async def delete_appointment(self, appointment_id: str, preserve_payments: bool = False) -> None:
        await self.ledger.delete(appointment_id, preserve_payments=preserve_payments)

