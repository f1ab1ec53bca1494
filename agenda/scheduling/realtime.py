"""
Reconciles out-of-band change events into the local stores.

Events are merged by record id, never by replacing a whole collection, so
an optimistic local mutation that is still waiting on storage is not
clobbered by an unrelated remote change.
"""

from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from agenda.errors import ValidationError
from agenda.logging_context import get_operation_logger
from agenda.schemas.event_schema import ChangeEvent, ChangeOperation, ChangeTable
from agenda.scheduling.catalog import AvailabilityCatalog
from agenda.scheduling.ledger import AppointmentLedger
from agenda.storage.base import AgendaStorage

logger = get_operation_logger(__name__)


class RealtimeReconciler:
    def __init__(self, catalog: AvailabilityCatalog, ledger: AppointmentLedger) -> None:
        self._catalog = catalog
        self._ledger = ledger

    def attach(self, storage: AgendaStorage) -> Callable[[], None]:
        """Subscribe to ``storage``'s change feed. Returns the unsubscribe function."""
        return storage.subscribe(self.handle)

    def handle(self, event: ChangeEvent) -> None:
        record_id = event.record.get("id")
        if not record_id:
            logger.warning("Dropping %s event on %s without an id", event.operation.value, event.table.value)
            return

        try:
            if event.table == ChangeTable.AVAILABILITY_TYPES:
                self._apply(event, self._catalog.merge_remote_type, self._catalog.remove_remote_type)
            elif event.table == ChangeTable.AVAILABILITY_SLOTS:
                self._apply(event, self._catalog.merge_remote_slot, self._catalog.remove_remote_slot)
            else:
                self._apply(event, self._ledger.merge_remote, self._ledger.remove_remote)
                self._catalog.sync_occupied(self._ledger.confirmed_keys())
        except (PydanticValidationError, ValidationError) as exc:
            logger.warning("Dropping malformed %s record %s: %s", event.table.value, record_id, exc)
            return
        logger.debug("Merged %s %s %s", event.table.value, event.operation.value, record_id)

    @staticmethod
    def _apply(event: ChangeEvent, upsert: Callable, remove: Callable) -> None:
        if event.operation == ChangeOperation.DELETE:
            remove(event.record["id"])
        else:
            upsert(event.record)
