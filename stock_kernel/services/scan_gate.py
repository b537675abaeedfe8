"""
ScanGate -- idempotency and validity filter in front of the ledger.

Responsibility:
    Decides whether a scan ``(code, direction)`` may become a ledger entry.
    Rejects unknown codes, state-invalid transitions, a scanner firing
    twice for one physical pass, and rapid re-scans of an already processed
    carrier, before anything is written.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    StockTransactionProcessor at the start of its unit of work.

Admission order:
    1. lookup            -> UnknownBarcodeError
    2. carrier state     -> AlreadyStockedInError / NeverStockedInError
    3. immediate repeat  -> ImmediateRepeatError (any direction)
    4. cooldown          -> DuplicateOperationError (same carrier+direction)

    State precedes immediate-repeat, so an instant same-direction repeat
    reports the business reason; the repeat guard catches the
    opposite-direction echo of the same label.

Invariants enforced:
    - A rejected or failed scan leaves no trace in the repeat tracker: the
      tracker entry is only a reservation until the processor confirms it
      after commit, and is released on any failure.
    - The product row, then the carrier row, are locked before the state
      check, matching the processor's lock order.

Failure modes:
    - Any StockRejection listed above.
"""

import threading
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.carrier_state import (
    check_scan_in,
    check_scan_out,
    units_to_move,
)
from stock_kernel.domain.clock import Clock, SystemClock, ensure_utc
from stock_kernel.domain.dtos import Admission, Direction
from stock_kernel.exceptions import (
    DuplicateOperationError,
    ImmediateRepeatError,
    UnknownBarcodeError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.ledger import LedgerEntry
from stock_kernel.services.aggregate_projector import AggregateProjector
from stock_kernel.services.carrier_registry import CarrierRegistry, carrier_state

logger = get_logger("services.scan_gate")


class ImmediateRepeatTracker:
    """
    Remembers the last accepted scan code across the whole gate.

    Contract:
        ``reserve`` blocks a code that equals the last confirmed code within
        the window, or that is currently in flight.  ``confirm`` makes a
        reserved code the last accepted one; ``release`` forgets a
        reservation without recording anything.

    Guarantees:
        - All state is guarded by one ``threading.Lock``.
        - A confirmed code stops blocking once the window passes or a
          different code is confirmed.
    """

    def __init__(self, window_seconds: float = 3, clock: Clock | None = None):
        if window_seconds < 0:
            raise ValueError("window_seconds must not be negative")
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._last_code: str | None = None
        self._last_at: datetime | None = None
        self._in_flight: set[str] = set()

    def reserve(self, code: str) -> None:
        """
        Raises:
            ImmediateRepeatError: if ``code`` is blocked.
        """
        now = self._clock.now_utc()
        with self._lock:
            if code in self._in_flight or self._blocks(code, now):
                raise ImmediateRepeatError(code)
            self._in_flight.add(code)

    def confirm(self, code: str) -> None:
        now = self._clock.now_utc()
        with self._lock:
            self._in_flight.discard(code)
            self._last_code = code
            self._last_at = now

    def release(self, code: str) -> None:
        with self._lock:
            self._in_flight.discard(code)

    def last_accepted(self) -> str | None:
        """The code still blocking repeats, if any."""
        now = self._clock.now_utc()
        with self._lock:
            if self._last_code is not None and self._blocks(self._last_code, now):
                return self._last_code
            return None

    def _blocks(self, code: str, now: datetime) -> bool:
        if self._last_code != code or self._last_at is None:
            return False
        return now - self._last_at < self._window


class ScanGate:
    """
    Admits scans for one unit of work.

    Contract:
        ``admit`` runs inside the processor's transaction and leaves the
        product and carrier rows locked.  A successful admit holds a
        tracker reservation that the caller MUST settle with ``confirm``
        (after commit) or ``release`` (on any failure).
    """

    def __init__(
        self,
        session: Session,
        tracker: ImmediateRepeatTracker,
        registry: CarrierRegistry,
        projector: AggregateProjector,
        cooldown_seconds: float = 300,
        clock: Clock | None = None,
    ):
        self.session = session
        self._tracker = tracker
        self._registry = registry
        self._projector = projector
        self._cooldown = timedelta(seconds=cooldown_seconds)
        self._clock = clock or SystemClock()

    def admit(self, code: str, direction: Direction) -> Admission:
        """
        Admit a scan or raise the rejection that applies.

        Returns:
            Admission with the product, carrier and unit count to move.
        """
        direction = Direction(direction)

        carrier = self._registry.get_by_code(code)
        if carrier is None:
            raise UnknownBarcodeError(code)

        self._projector.lock_product(carrier.product_id)
        carrier = self._registry.lock_by_code(code)
        if carrier is None:
            raise UnknownBarcodeError(code)

        state = carrier_state(carrier)
        if direction is Direction.IN:
            check_scan_in(code, state)
        else:
            check_scan_out(code, state)

        self._tracker.reserve(code)
        try:
            self._check_cooldown(code, carrier.id, direction)
        except DuplicateOperationError:
            self._tracker.release(code)
            raise

        units, defaulted = units_to_move(
            carrier.units_assigned, self._registry.default_unit_count
        )

        logger.info(
            "scan_admitted",
            extra={
                "scan_code": code,
                "direction": direction.value,
                "product_id": str(carrier.product_id),
                "carrier_id": str(carrier.id),
                "units": units,
                "units_defaulted": defaulted,
            },
        )
        return Admission(
            scan_code=code,
            direction=direction,
            product_id=carrier.product_id,
            carrier_id=carrier.id,
            units=units,
            units_defaulted=defaulted,
        )

    def confirm(self, admission: Admission) -> None:
        """Record the admitted scan as the last accepted one (after commit)."""
        self._tracker.confirm(admission.scan_code)

    def release(self, admission: Admission) -> None:
        """Drop the reservation of a scan whose unit of work failed."""
        self._tracker.release(admission.scan_code)

    def _check_cooldown(self, code, carrier_id, direction: Direction) -> None:
        if self._cooldown <= timedelta(0):
            return
        last_at = self.session.execute(
            select(LedgerEntry.created_at)
            .where(
                LedgerEntry.carrier_id == carrier_id,
                LedgerEntry.direction == direction.value,
            )
            .order_by(LedgerEntry.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        if last_at is None:
            return

        last_at = ensure_utc(last_at)
        if self._clock.now_utc() - last_at < self._cooldown:
            raise DuplicateOperationError(
                scan_code=code,
                direction=direction.value,
                last_accepted_at=last_at.isoformat(),
                cooldown_seconds=self._cooldown.total_seconds(),
            )
