"""
ConsistencyReconciler -- detects and repairs drift in the cached stock views.

Responsibility:
    Recomputes each product's stock from carrier state and from the ledger,
    compares it with Product.aggregate_stock and InventorySnapshot.quantity,
    and overwrites both views when they drift.  Normalizes zero-unit
    stocked-in carriers first, per the configured repair policy.

Architecture position:
    Kernel > Services.  Owns its own transaction boundary for ``repair``
    (``auto_commit=True`` by default).  Run by StockEngine after scans and
    by ReconcileScheduler on an interval.

Truth:
    carrier_units        = sum(units_assigned) over stocked-in carriers
    adjustment_net       = signed sum of carrier-less (manual) ledger entries
    truth_from_carriers  = carrier_units + adjustment_net
    truth_from_ledger    = signed sum of all ledger entries

    The views are compared with truth_from_carriers.  A disagreement
    between the two truths is reported as ledger_carrier_mismatch: that is
    a ledger/carrier desync, not cache drift, and repair does not hide it.

Invariants enforced:
    - repair is one unit of work holding the product row lock, then the
      carrier row locks, so it serializes with in-flight movements for the
      same product instead of racing them.
    - Both views are written from the same value (max(truth, 0)).

Failure modes:
    - UnknownProductError for a missing product.
    - Datastore errors propagate after rollback.  Integrity defects never
      raise; they are logged and published.
"""

import time
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import ConsistencyReport, Direction
from stock_kernel.exceptions import UnknownProductError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.ledger import LedgerEntry
from stock_kernel.models.product import Product
from stock_kernel.services.aggregate_projector import AggregateProjector
from stock_kernel.services.carrier_registry import CarrierRegistry
from stock_kernel.services.notifications import (
    ConsistencyReportEmitted,
    NotificationBus,
)

logger = get_logger("services.reconciler")

_SIGNED_QUANTITY = case(
    (LedgerEntry.direction == Direction.IN.value, LedgerEntry.quantity),
    else_=-LedgerEntry.quantity,
)


@dataclass(frozen=True)
class SweepResult:
    """Outcome of a full reconciliation pass."""

    checked: int
    repaired: tuple[UUID, ...] = ()
    mismatched: tuple[UUID, ...] = ()
    reports: tuple[ConsistencyReport, ...] = field(default=(), repr=False)

    @property
    def drift_found(self) -> bool:
        return bool(self.repaired)


class ConsistencyReconciler:
    """
    Verifies and repairs the cached aggregate views.

    Contract:
        ``verify`` is read-only.  ``repair`` locks, normalizes, overwrites
        and (with auto_commit) commits, then publishes a
        ConsistencyReportEmitted carrying the pre-repair report.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        bus: NotificationBus | None = None,
        metrics=None,
        default_unit_count: int = 1,
        normalize_zero_unit_carriers: bool = True,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._bus = bus
        self._metrics = metrics
        self._normalize = normalize_zero_unit_carriers
        self._auto_commit = auto_commit
        self._registry = CarrierRegistry(session, default_unit_count=default_unit_count)
        self._projector = AggregateProjector(session, self._clock)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, product_id: UUID) -> ConsistencyReport:
        """Compare both cached views with derived truth for one product."""
        cached = self._session.execute(
            select(Product.aggregate_stock).where(Product.id == product_id)
        ).scalar_one_or_none()
        if cached is None:
            raise UnknownProductError(str(product_id))

        report = self._build_report(product_id, cached)

        if report.is_consistent:
            logger.debug("consistency_verified", extra=report.as_log_fields())
        else:
            logger.warning("consistency_drift_detected", extra=report.as_log_fields())
        if report.ledger_carrier_mismatch:
            logger.error("ledger_carrier_mismatch", extra=report.as_log_fields())
        return report

    def _build_report(self, product_id: UUID, cached_product_value: int) -> ConsistencyReport:
        carrier_units = self._session.execute(
            select(func.coalesce(func.sum(UnitCarrier.units_assigned), 0)).where(
                UnitCarrier.product_id == product_id,
                UnitCarrier.stocked_in.is_(True),
            )
        ).scalar_one()

        adjustment_net = self._session.execute(
            select(func.coalesce(func.sum(_SIGNED_QUANTITY), 0)).where(
                LedgerEntry.product_id == product_id,
                LedgerEntry.carrier_id.is_(None),
            )
        ).scalar_one()

        ledger_total = self._session.execute(
            select(func.coalesce(func.sum(_SIGNED_QUANTITY), 0)).where(
                LedgerEntry.product_id == product_id,
            )
        ).scalar_one()

        snapshot_value = self._session.execute(
            select(InventorySnapshot.quantity).where(
                InventorySnapshot.product_id == product_id
            )
        ).scalar_one_or_none()

        defective = self._session.execute(
            select(UnitCarrier.code)
            .where(
                UnitCarrier.product_id == product_id,
                UnitCarrier.stocked_in.is_(True),
                UnitCarrier.units_assigned == 0,
            )
            .order_by(UnitCarrier.code)
        ).scalars().all()

        return ConsistencyReport(
            product_id=product_id,
            carrier_units=int(carrier_units),
            adjustment_net=int(adjustment_net),
            truth_from_carriers=int(carrier_units) + int(adjustment_net),
            truth_from_ledger=int(ledger_total),
            cached_product_value=int(cached_product_value),
            cached_snapshot_value=snapshot_value,
            defective_carriers=tuple(defective),
            checked_at=self._clock.now_utc(),
        )

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def repair(self, product_id: UUID) -> ConsistencyReport:
        """
        Normalize defective carriers and overwrite both views with truth.

        Returns:
            The report recomputed after the repair.
        """
        with LogContext.bind(product_id=str(product_id)):
            t0 = time.monotonic()
            try:
                product = self._projector.lock_product(product_id)
                carriers = self._registry.lock_for_product(product_id)

                before = self._build_report(product_id, product.aggregate_stock)

                normalized = 0
                if self._normalize:
                    for carrier in carriers:
                        if self._registry.normalize_units(carrier):
                            normalized += 1

                recomputed = self._build_report(product_id, product.aggregate_stock)
                target = max(recomputed.truth_from_carriers, 0)
                self._projector.overwrite(product_id, target)
                after = self._build_report(product_id, target)

                if self._auto_commit:
                    self._session.commit()
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.error("consistency_repair_failed", exc_info=True)
                raise

            fields = before.as_log_fields()
            fields.update(
                {
                    "repaired_quantity": target,
                    "carriers_normalized": normalized,
                    "is_consistent_after": after.is_consistent,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                }
            )
            logger.warning("consistency_repaired", extra=fields)
            if after.ledger_carrier_mismatch:
                logger.error("ledger_carrier_mismatch", extra=after.as_log_fields())

            if self._metrics is not None:
                self._metrics.record_repair()
            if self._bus is not None:
                self._bus.publish(ConsistencyReportEmitted(report=before, repaired=True))
            return after

    def verify_and_repair(self, product_id: UUID) -> ConsistencyReport:
        """
        Verify, and repair if the views drifted.

        Returns:
            The final report (post-repair when a repair ran).
        """
        report = self.verify(product_id)
        if not report.is_consistent:
            return self.repair(product_id)
        if report.ledger_carrier_mismatch and self._bus is not None:
            self._bus.publish(ConsistencyReportEmitted(report=report, repaired=False))
        return report

    def sweep(self) -> SweepResult:
        """Verify every product, repairing the ones that drifted."""
        t0 = time.monotonic()
        product_ids = self._session.execute(
            select(Product.id).order_by(Product.sku)
        ).scalars().all()

        repaired: list[UUID] = []
        mismatched: list[UUID] = []
        reports: list[ConsistencyReport] = []
        for product_id in product_ids:
            report = self.verify(product_id)
            if not report.is_consistent:
                report = self.repair(product_id)
                repaired.append(product_id)
            if report.ledger_carrier_mismatch:
                mismatched.append(product_id)
            reports.append(report)

        # End the read transaction so a long-lived session does not pin a snapshot
        if self._auto_commit:
            self._session.commit()

        result = SweepResult(
            checked=len(product_ids),
            repaired=tuple(repaired),
            mismatched=tuple(mismatched),
            reports=tuple(reports),
        )
        logger.info(
            "reconcile_sweep_completed",
            extra={
                "checked": result.checked,
                "repaired": len(result.repaired),
                "mismatched": len(result.mismatched),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return result
