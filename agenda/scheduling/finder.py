"""Bounded forward search for the earliest free slot."""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Collection, Optional

from agenda.errors import ValidationError
from agenda.logging_context import get_operation_logger
from agenda.schemas.availability_schema import SlotKey
from agenda.scheduling.catalog import AvailabilityCatalog
from agenda.scheduling.ledger import AppointmentLedger
from agenda.utils import DateLike, parse_date

logger = get_operation_logger(__name__)

RELOCATION_HORIZON_DAYS = 30


@dataclass(frozen=True)
class FreeSlot:
    date: date
    time: str

    @property
    def key(self) -> SlotKey:
        return (self.date, self.time)


class NextSlotFinder:
    """Finds the first slot, day by day and earliest time first, with no confirmed booking."""

    def __init__(self, catalog: AvailabilityCatalog, ledger: AppointmentLedger) -> None:
        self._catalog = catalog
        self._ledger = ledger

    def find(
        self,
        from_date: DateLike,
        horizon_days: int = RELOCATION_HORIZON_DAYS,
        exclude: Collection[SlotKey] = (),
    ) -> Optional[FreeSlot]:
        """
        Scan ``horizon_days`` days starting at ``from_date`` (inclusive).

        ``exclude`` lists slots already promised elsewhere, e.g. to another
        appointment relocated earlier in the same resolution pass.

        Returns:
            The first free slot, or None when the horizon holds none.
        """
        start = parse_date(from_date)
        if horizon_days < 1:
            raise ValidationError(f"Search horizon must be at least one day, got {horizon_days}")

        for offset in range(horizon_days):
            day = start + timedelta(days=offset)
            for slot in self._catalog.slots_for_date(day):
                if slot.key in exclude:
                    continue
                if self._ledger.has_confirmed_at(slot.date, slot.time):
                    continue
                logger.debug("Free slot found: %s %s (offset %d)", slot.date, slot.time, offset)
                return FreeSlot(date=slot.date, time=slot.time)

        logger.debug("No free slot within %d day(s) of %s", horizon_days, start)
        return None
