"""
Availability catalog: owns availability types and the pool of bookable slots.

Invariants:
- at least one AvailabilityType exists once the catalog is loaded
- no two live slots share the same (date, time)

Slots whose (date, time) holds a confirmed appointment are "occupied". They
stay in the pool for the audit trail but are left out of offers.

Usage:
    catalog = AvailabilityCatalog(storage)
    await catalog.load()
    studio = await catalog.add_type("Estúdio", "#10b981")
    result = await catalog.add_slots([catalog.build_slot("2024-06-10", "09:00", studio)])
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Optional

from agenda.config import DEFAULT_AVAILABILITY_TYPES, settings
from agenda.errors import InvariantError, NotFoundError, PersistenceError, ValidationError
from agenda.logging_context import get_operation_logger
from agenda.schemas.availability_schema import (
    AvailabilitySlot,
    AvailabilityType,
    SlotFilter,
    SlotKey,
)
from agenda.scheduling.transaction import OptimisticTransaction
from agenda.storage.base import AgendaStorage
from agenda.utils import DateLike, normalize_time, parse_date, time_to_minutes

logger = get_operation_logger(__name__)

EDITABLE_TYPE_FIELDS = {"name", "color"}


def _slot_sort_key(slot: AvailabilitySlot) -> tuple[date, int]:
    return (slot.date, time_to_minutes(slot.time))


@dataclass
class SlotBatchResult:
    """Outcome of add_slots: what was stored and how many were skipped."""
    added: list[AvailabilitySlot] = field(default_factory=list)
    removed: int = 0
    duplicates: int = 0


class AvailabilityCatalog:
    """In-memory availability state with an async persistence side-channel."""

    def __init__(
        self,
        storage: AgendaStorage,
        default_duration: int = settings.scheduling.default_slot_duration,
    ) -> None:
        self._storage = storage
        self.default_duration = default_duration
        self._types: dict[str, AvailabilityType] = {}
        self._slots: dict[str, AvailabilitySlot] = {}
        self._occupied: set[SlotKey] = set()

    async def load(self) -> None:
        """Load types and slots from storage, seeding default types if none exist."""
        types = await self._storage.load_types()
        if not types:
            for name, color in DEFAULT_AVAILABILITY_TYPES:
                seeded = AvailabilityType(id=uuid.uuid4().hex, name=name, color=color)
                await self._storage.save_type(seeded)
                types.append(seeded)
            logger.info("Seeded %d default availability type(s)", len(types))
        self._types = {t.id: t for t in types}

        self._slots = {}
        seen: set[SlotKey] = set()
        for slot in sorted(await self._storage.load_slots(), key=_slot_sort_key):
            if slot.key in seen:
                logger.warning("Ignoring stored duplicate slot %s at %s %s",
                               slot.id, slot.date, slot.time)
                continue
            seen.add(slot.key)
            self._slots[slot.id] = slot
        logger.info("Catalog loaded: %d type(s), %d slot(s)", len(self._types), len(self._slots))

    async def _commit(self, tx: OptimisticTransaction, write: Any) -> None:
        try:
            await write
        except PersistenceError:
            tx.rollback()
            raise

    # --- Availability types ---

    def list_types(self) -> list[AvailabilityType]:
        return list(self._types.values())

    def get_type(self, type_id: str) -> AvailabilityType:
        try:
            return self._types[type_id]
        except KeyError:
            raise NotFoundError(f"Availability type {type_id!r} not found") from None

    async def add_type(self, name: str, color: str) -> AvailabilityType:
        if not name or not name.strip():
            raise ValidationError("Availability type name is required")
        if not color or not color.strip():
            raise ValidationError("Availability type color is required")

        new_type = AvailabilityType(id=uuid.uuid4().hex, name=name.strip(), color=color.strip())
        tx = OptimisticTransaction(f"add type {new_type.id}")
        self._types[new_type.id] = new_type
        tx.record(f"insert type {new_type.name}", lambda: self._types.pop(new_type.id, None))
        await self._commit(tx, self._storage.save_type(new_type))
        logger.info("Availability type created: %s (%s)", new_type.name, new_type.id)
        return new_type

    async def update_type(self, type_id: str, patch: dict[str, Any]) -> AvailabilityType:
        current = self.get_type(type_id)
        unknown = set(patch) - EDITABLE_TYPE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update availability type field(s): {sorted(unknown)}")
        for key in EDITABLE_TYPE_FIELDS & set(patch):
            value = patch[key]
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"Availability type {key} must be a non-empty string")

        updated = current.model_copy(update={k: v.strip() for k, v in patch.items()})
        tx = OptimisticTransaction(f"update type {type_id}")
        self._types[type_id] = updated
        tx.record(f"update type {type_id}", lambda: self._types.__setitem__(type_id, current))
        await self._commit(tx, self._storage.save_type(updated))
        logger.info("Availability type updated: %s", type_id)
        return updated

    async def delete_type(self, type_id: str) -> None:
        removed = self.get_type(type_id)
        if len(self._types) <= 1:
            raise InvariantError("Cannot delete the last availability type")

        tx = OptimisticTransaction(f"delete type {type_id}")
        del self._types[type_id]
        tx.record(f"remove type {type_id}", lambda: self._types.__setitem__(type_id, removed))
        await self._commit(tx, self._storage.delete_type(type_id))
        logger.info("Availability type deleted: %s (%s)", removed.name, type_id)

    # --- Slot queries ---

    def is_occupied(self, slot_date: DateLike, time: str) -> bool:
        return (parse_date(slot_date), normalize_time(time)) in self._occupied

    def slot_at(self, slot_date: DateLike, time: str) -> Optional[AvailabilitySlot]:
        key = (parse_date(slot_date), normalize_time(time))
        for slot in self._slots.values():
            if slot.key == key:
                return slot
        return None

    def get_slot(self, slot_id: str) -> AvailabilitySlot:
        try:
            return self._slots[slot_id]
        except KeyError:
            raise NotFoundError(f"Availability slot {slot_id!r} not found") from None

    def slots_for_date(
        self, slot_date: DateLike, include_occupied: bool = True
    ) -> list[AvailabilitySlot]:
        """All slots on one day in ascending time order."""
        day = parse_date(slot_date)
        slots = [
            s for s in self._slots.values()
            if s.date == day and (include_occupied or s.key not in self._occupied)
        ]
        return sorted(slots, key=_slot_sort_key)

    def list_slots(self, slot_filter: Optional[SlotFilter] = None) -> list[AvailabilitySlot]:
        """Live slots ordered by date then time. Occupied slots are excluded by default."""
        slot_filter = slot_filter or SlotFilter()
        results = []
        for slot in self._slots.values():
            if slot_filter.start_date and slot.date < slot_filter.start_date:
                continue
            if slot_filter.end_date and slot.date > slot_filter.end_date:
                continue
            if slot_filter.type_id and slot.type_id != slot_filter.type_id:
                continue
            if not slot_filter.include_occupied and slot.key in self._occupied:
                continue
            results.append(slot)
        return sorted(results, key=_slot_sort_key)

    # --- Slot mutations ---

    def build_slot(
        self,
        slot_date: DateLike,
        time: str,
        availability_type: AvailabilityType,
        duration: Optional[int] = None,
    ) -> AvailabilitySlot:
        """Create an unsaved slot carrying the type's current label and color."""
        return AvailabilitySlot(
            id=uuid.uuid4().hex,
            date=parse_date(slot_date),
            time=normalize_time(time),
            duration=duration or self.default_duration,
            type_id=availability_type.id,
            label=availability_type.name,
            color=availability_type.color,
        )

    def _remove_slot(self, slot_id: str, tx: OptimisticTransaction) -> None:
        removed = self._slots.pop(slot_id)
        tx.record(
            f"remove slot {removed.date} {removed.time}",
            lambda: self._slots.__setitem__(slot_id, removed),
        )

    async def add_slots(
        self, slots: list[AvailabilitySlot], removed_ids: Iterable[str] = ()
    ) -> SlotBatchResult:
        """
        Add a batch of slots, optionally removing others in the same atomic write.

        Entries whose (date, time) already exists in the pool, or appears
        earlier in the batch, are skipped and counted as duplicates.

        Raises:
            PersistenceError: storage rejected the batch; nothing was kept.
        """
        result = SlotBatchResult()
        tx = OptimisticTransaction(f"add {len(slots)} slot(s)")

        removed_list = [slot_id for slot_id in dict.fromkeys(removed_ids) if slot_id in self._slots]
        for slot_id in removed_list:
            self._remove_slot(slot_id, tx)
        result.removed = len(removed_list)

        live_keys = {s.key for s in self._slots.values()}
        for slot in slots:
            if slot.key in live_keys:
                result.duplicates += 1
                continue
            live_keys.add(slot.key)
            self._slots[slot.id] = slot
            tx.record(
                f"insert slot {slot.date} {slot.time}",
                lambda slot_id=slot.id: self._slots.pop(slot_id, None),
            )
            result.added.append(slot)

        if not result.added and not removed_list:
            return result

        await self._commit(tx, self._storage.save_slots(result.added, removed_ids=removed_list))
        logger.info(
            "Slots saved: %d added, %d removed, %d duplicate(s) skipped",
            len(result.added), result.removed, result.duplicates,
        )
        return result

    async def add_slot(
        self, slot_date: DateLike, time: str, type_id: str, duration: Optional[int] = None
    ) -> Optional[AvailabilitySlot]:
        """Create a single slot. Returns None if the (date, time) already exists."""
        result = await self.add_slots([self.build_slot(slot_date, time, self.get_type(type_id), duration)])
        return result.added[0] if result.added else None

    async def delete_slot(self, slot_id: str) -> None:
        self.get_slot(slot_id)
        tx = OptimisticTransaction(f"delete slot {slot_id}")
        self._remove_slot(slot_id, tx)
        await self._commit(tx, self._storage.save_slots([], removed_ids=[slot_id]))
        logger.info("Slot deleted: %s", slot_id)

    async def delete_slots_in_range(self, start_date: DateLike, end_date: DateLike) -> int:
        start, end = parse_date(start_date), parse_date(end_date)
        if start > end:
            raise ValidationError(f"Start date {start} is after end date {end}")
        ids = [s.id for s in self._slots.values() if start <= s.date <= end]
        if not ids:
            return 0
        tx = OptimisticTransaction(f"delete slots {start}..{end}")
        for slot_id in ids:
            self._remove_slot(slot_id, tx)
        await self._commit(tx, self._storage.save_slots([], removed_ids=ids))
        logger.info("Cleared %d slot(s) between %s and %s", len(ids), start, end)
        return len(ids)

    async def clear_slots_for_date(self, slot_date: DateLike) -> int:
        """Remove every slot on one day. Returns how many were removed."""
        day = parse_date(slot_date)
        return await self.delete_slots_in_range(day, day)

    # --- Occupation ---

    def occupy(self, slot_date: date, time: str, tx: OptimisticTransaction) -> None:
        """Exclude (date, time) from future offers."""
        key = (slot_date, time)
        if key in self._occupied:
            return
        self._occupied.add(key)
        tx.record(f"occupy {slot_date} {time}", lambda: self._occupied.discard(key))

    def release(self, slot_date: date, time: str, tx: OptimisticTransaction) -> None:
        key = (slot_date, time)
        if key not in self._occupied:
            return
        self._occupied.discard(key)
        tx.record(f"release {slot_date} {time}", lambda: self._occupied.add(key))

    def sync_occupied(self, keys: Iterable[SlotKey]) -> None:
        """Replace the occupied set, e.g. after loading appointments."""
        self._occupied = set(keys)

    # --- Remote changes ---

    def merge_remote_type(self, record: dict[str, Any]) -> None:
        incoming = AvailabilityType.model_validate(record)
        self._types[incoming.id] = incoming

    def remove_remote_type(self, type_id: str) -> None:
        self._types.pop(type_id, None)

    def merge_remote_slot(self, record: dict[str, Any]) -> None:
        """Upsert a slot pushed by another writer. The remote record wins its (date, time)."""
        incoming = AvailabilitySlot.model_validate(record)
        for other in list(self._slots.values()):
            if other.key == incoming.key and other.id != incoming.id:
                logger.warning("Remote slot %s replaces local duplicate %s", incoming.id, other.id)
                del self._slots[other.id]
        self._slots[incoming.id] = incoming

    def remove_remote_slot(self, slot_id: str) -> None:
        self._slots.pop(slot_id, None)

