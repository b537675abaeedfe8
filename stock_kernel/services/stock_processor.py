"""
StockTransactionProcessor -- one stock movement, end to end, atomically.

Responsibility:
    Orchestrates a scan-triggered or manual movement: scan gate admission,
    carrier transition, ledger append and aggregate projection, all in one
    transaction, followed by commit and post-commit notifications.

Architecture position:
    Kernel > Services -- the transaction boundary.  Owns commit/rollback
    when ``auto_commit=True`` (default); every collaborator only flushes.

Invariants enforced:
    - All-or-nothing: the carrier transition, the ledger entry and both
      aggregate views commit together or not at all.
    - Aggregate stock never goes negative: OUT movements are checked
      against the locked product row before any mutation.
    - Lock order: product row, then carrier row, then the ledger sequence
      counter.  The same order is used by every writer.
    - Scan gate reservations are confirmed only after commit and released
      on any failure, so a failed scan never blocks a legitimate retry.

Failure modes:
    - StockRejection subclasses propagate unchanged (after rollback).
    - Datastore failures other than integrity violations are rolled back
      and raised as StorageUnavailableError (retryable).
"""

import time
from collections.abc import Callable
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    Admission,
    CarrierInfo,
    Direction,
    LedgerEntryDraft,
    MovementResult,
)
from stock_kernel.exceptions import (
    InvalidEntryError,
    StockRejection,
    StorageUnavailableError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.services.aggregate_projector import AggregateProjector
from stock_kernel.services.carrier_registry import CarrierRegistry
from stock_kernel.services.ledger_service import (
    REFERENCE_UNIT_REPAIR,
    LedgerService,
    scan_reference,
)
from stock_kernel.services.notifications import (
    MovementRecorded,
    Notification,
    NotificationBus,
    StockChanged,
)
from stock_kernel.services.scan_gate import ImmediateRepeatTracker, ScanGate

logger = get_logger("services.stock_processor")


def coerce_direction(direction: Direction | str) -> Direction:
    try:
        return Direction(direction)
    except ValueError:
        raise InvalidEntryError(f"unknown direction {direction!r}") from None


class StockTransactionProcessor:
    """
    Processes stock movements within a single session.

    Contract:
        With ``auto_commit=True`` each ``process_*`` call is its own
        transaction.  With ``auto_commit=False`` the caller commits or rolls
        back, then calls ``after_commit()`` or ``after_rollback()`` so that
        scan reservations are settled and notifications published.

    Non-goals:
        - Does NOT verify or repair drift; see ConsistencyReconciler.
    """

    def __init__(
        self,
        session: Session,
        tracker: ImmediateRepeatTracker,
        clock: Clock | None = None,
        bus: NotificationBus | None = None,
        metrics=None,
        auto_commit: bool = True,
        cooldown_seconds: float = 300,
        default_unit_count: int = 1,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._bus = bus
        self._metrics = metrics
        self._auto_commit = auto_commit

        self._registry = CarrierRegistry(session, default_unit_count=default_unit_count)
        self._projector = AggregateProjector(session, self._clock)
        self._ledger = LedgerService(session, self._clock)
        self._gate = ScanGate(
            session,
            tracker,
            self._registry,
            self._projector,
            cooldown_seconds=cooldown_seconds,
            clock=self._clock,
        )

        self._pending_notifications: list[Notification] = []
        self._pending_admissions: list[Admission] = []

    # ------------------------------------------------------------------
    # Scan-triggered movements
    # ------------------------------------------------------------------

    def process_scan(
        self,
        code: str,
        direction: Direction | str,
        actor: str,
        note: str | None = None,
    ) -> MovementResult:
        """
        Admit a scan and move the carrier's units.

        Raises:
            StockRejection: any rejection from the gate, or
                InsufficientStockError for an OUT larger than stock.
            StorageUnavailableError: datastore failure; nothing committed.
        """
        direction = coerce_direction(direction)

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor=actor,
            scan_code=code,
        ):
            return self._run(
                operation="scan",
                body=lambda: self._scan_unit_of_work(code, direction, actor, note),
            )

    def _scan_unit_of_work(
        self, code: str, direction: Direction, actor: str, note: str | None
    ) -> MovementResult:
        admission = self._gate.admit(code, direction)
        self._pending_admissions.append(admission)

        carrier = self._registry.lock_by_code(code)
        moved_at = self._clock.now_utc()

        if direction is Direction.IN:
            self._registry.scan_in(carrier, admission.units, moved_at)
        else:
            product = self._projector.lock_product(admission.product_id)
            if admission.units_defaulted:
                self._record_unit_repair(carrier, admission, actor)
            self._projector.ensure_available(product, admission.units)
            self._registry.scan_out(carrier, moved_at)

        record = self._ledger.append(
            LedgerEntryDraft(
                product_id=admission.product_id,
                direction=direction,
                quantity=admission.units,
                actor=actor,
                carrier_id=admission.carrier_id,
                note=note,
                reference=scan_reference(code),
            )
        )
        new_quantity = self._projector.apply(
            admission.product_id, record.signed_quantity
        )

        return MovementResult(
            entry=record,
            new_quantity=new_quantity,
            carrier=CarrierInfo.from_model(carrier),
        )

    def _record_unit_repair(
        self, carrier: UnitCarrier, admission: Admission, actor: str
    ) -> None:
        """
        Book the defaulted units of a zero-unit stocked-in carrier.

        The carrier was stocked in without any units reaching the ledger or
        the views, so its normalized count is entered as a carrier IN first;
        the OUT that follows then balances against it.
        """
        if not self._registry.normalize_units(carrier):
            return
        record = self._ledger.append(
            LedgerEntryDraft(
                product_id=admission.product_id,
                direction=Direction.IN,
                quantity=carrier.units_assigned,
                actor=actor,
                carrier_id=carrier.id,
                note="zero-unit carrier normalized before stock out",
                reference=REFERENCE_UNIT_REPAIR,
            )
        )
        new_quantity = self._projector.apply(admission.product_id, record.signed_quantity)
        self._pending_notifications.append(MovementRecorded(entry=record))
        logger.warning(
            "carrier_unit_repair_recorded",
            extra={
                "carrier_id": str(carrier.id),
                "entry_id": str(record.id),
                "units": record.quantity,
                "new_quantity": new_quantity,
            },
        )

    # ------------------------------------------------------------------
    # Manual adjustments
    # ------------------------------------------------------------------

    def process_adjustment(
        self,
        product_id: UUID,
        direction: Direction | str,
        quantity: int,
        actor: str,
        note: str | None = None,
        reference: str | None = None,
    ) -> MovementResult:
        """
        Record a manual stock change (no carrier, no scan gate).

        Raises:
            InvalidEntryError, UnknownProductError, InsufficientStockError.
            StorageUnavailableError: datastore failure; nothing committed.
        """
        direction = coerce_direction(direction)

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor=actor,
            product_id=str(product_id),
        ):
            return self._run(
                operation="adjustment",
                body=lambda: self._adjustment_unit_of_work(
                    product_id, direction, quantity, actor, note, reference
                ),
            )

    def _adjustment_unit_of_work(
        self,
        product_id: UUID,
        direction: Direction,
        quantity: int,
        actor: str,
        note: str | None,
        reference: str | None,
    ) -> MovementResult:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidEntryError(f"quantity must be a positive integer, got {quantity!r}")

        product = self._projector.lock_product(product_id)
        if direction is Direction.OUT:
            self._projector.ensure_available(product, quantity)

        record = self._ledger.append(
            LedgerEntryDraft(
                product_id=product_id,
                direction=direction,
                quantity=quantity,
                actor=actor,
                note=note,
                reference=reference,
            )
        )
        new_quantity = self._projector.apply(product_id, record.signed_quantity)
        return MovementResult(entry=record, new_quantity=new_quantity)

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    def _run(self, operation: str, body: Callable[[], MovementResult]) -> MovementResult:
        t0 = time.monotonic()
        mark = len(self._pending_admissions)
        try:
            result = body()
            self._queue_notifications(result)

            if self._auto_commit:
                self._session.commit()
                self.after_commit()

            logger.info(
                "movement_committed",
                extra={
                    "operation": operation,
                    "direction": result.entry.direction.value,
                    "quantity": result.entry.quantity,
                    "new_quantity": result.new_quantity,
                    "seq": result.entry.seq,
                    "entry_id": str(result.entry.id),
                    "product_id": str(result.entry.product_id),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            if self._metrics is not None and operation == "scan":
                self._metrics.record_accepted(result.entry.direction)
            return result

        except StockRejection as exc:
            self._abort(mark)
            logger.warning(
                "scan_rejected" if operation == "scan" else "adjustment_rejected",
                extra={
                    "operation": operation,
                    "rejection_kind": exc.kind.value,
                    "rejection_code": exc.code,
                    "reason": str(exc),
                },
            )
            if self._metrics is not None:
                self._metrics.record_rejection(exc.kind)
            raise

        except SAIntegrityError:
            self._abort(mark)
            logger.error("movement_rolled_back", extra={"operation": operation}, exc_info=True)
            raise

        except DBAPIError as exc:
            self._abort(mark)
            logger.error("movement_rolled_back", extra={"operation": operation}, exc_info=True)
            raise StorageUnavailableError(
                operation=operation, detail=str(exc.orig or exc)
            ) from exc

        except Exception:
            self._abort(mark)
            logger.error("movement_rolled_back", extra={"operation": operation}, exc_info=True)
            raise

    def _abort(self, mark: int) -> None:
        if self._auto_commit:
            self._session.rollback()
            self.after_rollback()
        else:
            # Caller owns the rollback; settle only this movement's admission
            for admission in self._pending_admissions[mark:]:
                self._gate.release(admission)
            del self._pending_admissions[mark:]

    def _queue_notifications(self, result: MovementResult) -> None:
        entry = result.entry
        self._pending_notifications.append(
            StockChanged(
                product_id=entry.product_id,
                new_quantity=result.new_quantity,
                direction=entry.direction,
                quantity_delta=entry.signed_quantity,
            )
        )
        self._pending_notifications.append(MovementRecorded(entry=entry))

    def after_commit(self) -> None:
        """Confirm scan reservations and publish queued notifications."""
        for admission in self._pending_admissions:
            self._gate.confirm(admission)
        self._pending_admissions.clear()

        pending, self._pending_notifications = self._pending_notifications, []
        if self._bus is not None:
            for notification in pending:
                self._bus.publish(notification)

    def after_rollback(self) -> None:
        """Release scan reservations and drop queued notifications."""
        self._pending_notifications.clear()
        self._release_admissions()

    def _release_admissions(self) -> None:
        for admission in self._pending_admissions:
            self._gate.release(admission)
        self._pending_admissions.clear()
