from agenda.scheduling.catalog import AvailabilityCatalog
from agenda.scheduling.expander import GenerationResult, SlotRangeExpander
from agenda.scheduling.finder import RELOCATION_HORIZON_DAYS, FreeSlot, NextSlotFinder
from agenda.scheduling.ledger import AppointmentLedger, ConflictCheck, UpdateOutcome
from agenda.scheduling.realtime import RealtimeReconciler
from agenda.scheduling.resolver import ConflictResolutionEngine, Resolution, ResolutionOutcome
from agenda.scheduling.transaction import OptimisticTransaction

__all__ = [
    "AvailabilityCatalog",
    "AppointmentLedger",
    "SlotRangeExpander",
    "NextSlotFinder",
    "ConflictResolutionEngine",
    "RealtimeReconciler",
    "OptimisticTransaction",
    "GenerationResult",
    "FreeSlot",
    "RELOCATION_HORIZON_DAYS",
    "ConflictCheck",
    "UpdateOutcome",
    "Resolution",
    "ResolutionOutcome",
]
