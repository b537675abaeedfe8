"""
Pure domain layer.

This module contains data transfer objects and the carrier state machine
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from stock_kernel.domain.carrier_state import (
    check_scan_in,
    check_scan_out,
    derive_state,
    needs_unit_repair,
    units_to_move,
)
from stock_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
    ensure_utc,
)
from stock_kernel.domain.dtos import (
    Admission,
    CarrierInfo,
    CarrierState,
    CarrierView,
    ConsistencyReport,
    Direction,
    LedgerEntryDraft,
    LedgerEntryRecord,
    MovementPage,
    MovementResult,
    RejectionReason,
    ScanOutcome,
)

__all__ = [
    "Admission",
    "CarrierInfo",
    "CarrierState",
    "CarrierView",
    "Clock",
    "ConsistencyReport",
    "DeterministicClock",
    "Direction",
    "LedgerEntryDraft",
    "LedgerEntryRecord",
    "MovementPage",
    "MovementResult",
    "RejectionReason",
    "ScanOutcome",
    "SystemClock",
    "check_scan_in",
    "check_scan_out",
    "derive_state",
    "ensure_utc",
    "needs_unit_repair",
    "units_to_move",
]
