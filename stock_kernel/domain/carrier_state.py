"""
Carrier state machine -- pure transition rules for unit carriers.

Responsibility:
    Decides whether a carrier may be scanned in or out, and whether a
    stocked-in carrier needs its unit count repaired.  Holds no state and
    performs no I/O; the registry applies the outcome to the ORM row.

Architecture position:
    Kernel > Domain -- pure functional core.

Invariants enforced:
    - A carrier contributes units at most once: scan_in is allowed only from
      UNASSIGNED or STOCKED_OUT.
    - scan_out is allowed only from STOCKED_IN.
    - A STOCKED_IN carrier with zero units is a repairable defect.

Failure modes:
    - AlreadyStockedInError from check_scan_in.
    - NeverStockedInError from check_scan_out (message tells "never" apart
      from "no longer").
"""

from stock_kernel.domain.dtos import CarrierState
from stock_kernel.exceptions import AlreadyStockedInError, NeverStockedInError


def derive_state(stocked_in: bool, ever_stocked_in: bool) -> CarrierState:
    """Map the persisted flags to a CarrierState."""
    if stocked_in:
        return CarrierState.STOCKED_IN
    if ever_stocked_in:
        return CarrierState.STOCKED_OUT
    return CarrierState.UNASSIGNED


def check_scan_in(code: str, state: CarrierState) -> None:
    """Raise unless the carrier may move to STOCKED_IN."""
    if state is CarrierState.STOCKED_IN:
        raise AlreadyStockedInError(code)


def check_scan_out(code: str, state: CarrierState) -> None:
    """Raise unless the carrier may move to STOCKED_OUT."""
    if state is not CarrierState.STOCKED_IN:
        raise NeverStockedInError(
            code,
            previously_stocked_in=state is CarrierState.STOCKED_OUT,
        )


def needs_unit_repair(state: CarrierState, units_assigned: int) -> bool:
    """True for the stocked-in-with-zero-units defect."""
    return state is CarrierState.STOCKED_IN and units_assigned == 0


def units_to_move(units_assigned: int, default_unit_count: int) -> tuple[int, bool]:
    """
    Units a scan of this carrier moves, and whether the default was used.

    Carriers issued without a unit count move ``default_unit_count``.
    """
    if units_assigned > 0:
        return units_assigned, False
    return default_unit_count, True
