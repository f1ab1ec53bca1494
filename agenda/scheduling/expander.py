"""
Expands a date range + weekdays + times request into concrete slots.

Every (date, time) pair in the cartesian product is considered once:
- confirmed appointment there      -> skipped, counted as a conflict
- slot already there (not cleared) -> skipped, counted as a duplicate
- otherwise                        -> new slot carrying the type's label/color

The created batch, together with any slots cleared on the way, is written
in a single storage call.
"""

from dataclasses import dataclass, field
from typing import Iterable

from agenda.errors import NotFoundError, ValidationError
from agenda.logging_context import get_operation_logger
from agenda.schemas.availability_schema import AvailabilitySlot, SlotFilter, SlotKey
from agenda.scheduling.catalog import AvailabilityCatalog
from agenda.scheduling.ledger import AppointmentLedger
from agenda.utils import (
    DateLike,
    is_valid_time,
    iter_dates,
    normalize_time,
    parse_date,
    sunday_based_weekday,
    time_to_minutes,
)

logger = get_operation_logger(__name__)

# 0 = Sunday ... 6 = Saturday
VALID_WEEKDAYS = frozenset(range(7))


@dataclass
class GenerationResult:
    created: int = 0
    conflicts: int = 0
    duplicates: int = 0
    considered: int = 0
    slots: list[AvailabilitySlot] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {"created": self.created, "conflicts": self.conflicts, "duplicates": self.duplicates}


def prepare_times(times: Iterable[str]) -> list[str]:
    """Drop invalid entries, normalize to HH:mm, dedupe, and sort by minutes since midnight."""
    valid = set()
    for value in times:
        if is_valid_time(value):
            valid.add(normalize_time(value))
        else:
            logger.debug("Discarding invalid time %r", value)
    return sorted(valid, key=time_to_minutes)


class SlotRangeExpander:
    def __init__(self, catalog: AvailabilityCatalog, ledger: AppointmentLedger) -> None:
        self._catalog = catalog
        self._ledger = ledger

    async def generate(
        self,
        start_date: DateLike,
        end_date: DateLike,
        weekdays: Iterable[int],
        times: Iterable[str],
        type_id: str,
        clear_existing: bool = False,
    ) -> GenerationResult:
        """
        Create slots for every selected day and time.

        Args:
            weekdays: days to keep, 0 = Sunday ... 6 = Saturday; empty keeps all.
            clear_existing: replace a slot already at the same (date, time)
                instead of counting it as a duplicate.

        Raises:
            ValidationError: no valid time, start after end, bad weekday, or
                unknown type. Raised before anything changes.
            PersistenceError: the batch write failed; nothing was kept.
        """
        valid_times = prepare_times(times)
        if not valid_times:
            raise ValidationError("At least one valid HH:mm time is required")

        start, end = parse_date(start_date), parse_date(end_date)
        if start > end:
            raise ValidationError(f"Start date {start} is after end date {end}")

        selected_days = set(weekdays)
        if not selected_days <= VALID_WEEKDAYS:
            raise ValidationError(f"Weekdays must be between 0 and 6, got {sorted(selected_days)}")

        try:
            availability_type = self._catalog.get_type(type_id)
        except NotFoundError:
            raise ValidationError(f"Unknown availability type {type_id!r}") from None

        days = [d for d in iter_dates(start, end)
                if not selected_days or sunday_based_weekday(d) in selected_days]

        # Key indexes, built once per call
        confirmed = self._ledger.confirmed_keys()
        existing_by_key = {
            s.key: s for s in self._catalog.list_slots(
                SlotFilter(start_date=start, end_date=end, include_occupied=True)
            )
        }

        result = GenerationResult()
        batch: list[AvailabilitySlot] = []
        batch_keys: set[SlotKey] = set()
        removed_ids: list[str] = []

        for day in days:
            for time in valid_times:
                result.considered += 1
                if (day, time) in confirmed:
                    result.conflicts += 1
                    continue

                existing = existing_by_key.get((day, time))
                if clear_existing and existing is not None:
                    removed_ids.append(existing.id)
                    existing = None
                if existing is not None or (day, time) in batch_keys:
                    result.duplicates += 1
                    continue

                batch_keys.add((day, time))
                batch.append(self._catalog.build_slot(day, time, availability_type))

        if batch or removed_ids:
            saved = await self._catalog.add_slots(batch, removed_ids=removed_ids)
            result.slots = saved.added
            result.created = len(saved.added)
            result.duplicates += saved.duplicates

        logger.info(
            "Expanded %s..%s for '%s': %d created, %d conflict(s), %d duplicate(s) of %d considered",
            start, end, availability_type.name,
            result.created, result.conflicts, result.duplicates, result.considered,
        )
        return result
