"""
StockEngine -- the inbound interface of the stock consistency core.

Responsibility:
    The one object collaborators (scanning UI/API, catalog, reporting, the
    operator CLI) talk to.  Opens a session per request, runs the
    StockTransactionProcessor, turns rejections into a ScanOutcome, and
    schedules the post-scan consistency check.

Architecture position:
    Kernel > Services -- outermost kernel service.  Owns the process-scoped
    state: the immediate-repeat tracker, StockMetrics, the verification
    executor and the ReconcileScheduler.  Built from configuration by
    ``stock_config.bridges.build_stock_engine``.

Post-scan verification:
    After each committed scan the engine submits ``verify_and_repair`` for
    the scanned product to a small thread pool, so the scan is acknowledged
    without waiting for it.  The next scan of the same product waits for
    that check before it starts, so drift never compounds across scans.

Failure modes:
    - submit_scan: rejections come back inside ScanOutcome; StorageUnavailable
      and other infrastructure errors propagate.
    - submit_adjustment: rejections propagate as StockRejection subclasses.
    - Verification failures are logged and never reach the scan's caller.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    CarrierInfo,
    CarrierView,
    ConsistencyReport,
    Direction,
    MovementPage,
    MovementResult,
    RejectionReason,
    ScanOutcome,
)
from stock_kernel.exceptions import StockRejection, UnknownBarcodeError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.carrier_registry import CarrierRegistry
from stock_kernel.services.metrics import StockMetrics
from stock_kernel.services.notifications import NotificationBus
from stock_kernel.services.reconcile_scheduler import ReconcileScheduler
from stock_kernel.services.reconciler import ConsistencyReconciler, SweepResult
from stock_kernel.services.scan_gate import ImmediateRepeatTracker
from stock_kernel.services.stock_processor import StockTransactionProcessor

logger = get_logger("services.stock_engine")


class StockEngine:
    """
    Entry point for scans, adjustments and stock reads.

    Contract:
        Thread-safe: each call uses its own session; the only shared
        mutable state is the tracker, the metrics and the pending-check
        map, each guarded by its own lock.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        bus: NotificationBus | None = None,
        immediate_repeat_seconds: float = 3,
        cooldown_seconds: float = 300,
        default_unit_count: int = 1,
        normalize_zero_unit_carriers: bool = True,
        verify_after_scan: bool = True,
        sweep_interval_seconds: float = 300,
        metrics_refresh_seconds: float = 30,
        verify_workers: int = 2,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self.bus = bus or NotificationBus()
        self.metrics = StockMetrics(session_factory, self._clock)

        self._cooldown_seconds = cooldown_seconds
        self._default_unit_count = default_unit_count
        self._normalize = normalize_zero_unit_carriers
        self._verify_after_scan = verify_after_scan
        self._verify_workers = verify_workers

        self._tracker = ImmediateRepeatTracker(immediate_repeat_seconds, self._clock)

        self._checks_lock = threading.Lock()
        self._pending_checks: dict[UUID, Future] = {}
        self._executor: ThreadPoolExecutor | None = None

        self.scheduler = ReconcileScheduler(
            session_factory=session_factory,
            reconciler_factory=self._reconciler,
            metrics=self.metrics,
            clock=self._clock,
            sweep_interval_seconds=sweep_interval_seconds,
            metrics_refresh_seconds=metrics_refresh_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Refresh metrics and start the background reconciliation."""
        self.metrics.refresh()
        self.scheduler.start()
        logger.info("stock_engine_started")

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the scheduler and drain pending verifications."""
        self.scheduler.stop(timeout=timeout)
        self.wait_for_verifications(timeout=timeout)
        with self._checks_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        logger.info("stock_engine_stopped")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def submit_scan(
        self,
        code: str,
        direction: Direction | str,
        actor: str,
        note: str | None = None,
    ) -> ScanOutcome:
        """
        Submit a barcode scan.

        Returns:
            ScanOutcome with either the committed movement or the
            rejection reason.

        Raises:
            StorageUnavailableError: datastore failure; nothing committed.
        """
        product_id = self._product_for_code(code)
        if product_id is not None:
            self._await_verification(product_id)

        try:
            with self._session() as session:
                movement = self._processor(session).process_scan(
                    code, direction, actor, note=note
                )
        except StockRejection as exc:
            return ScanOutcome.rejected_with(RejectionReason.from_error(exc))

        if self._verify_after_scan:
            self._schedule_verification(movement.product_id)
        return ScanOutcome.accepted_with(movement)

    def submit_adjustment(
        self,
        product_id: UUID,
        direction: Direction | str,
        quantity: int,
        actor: str,
        note: str | None = None,
        reference: str | None = None,
    ) -> MovementResult:
        """
        Record a manual stock change, bypassing the scan gate.

        Raises:
            StockRejection: InvalidEntryError, UnknownProductError or
                InsufficientStockError.
            StorageUnavailableError: datastore failure; nothing committed.
        """
        self._await_verification(product_id)
        with self._session() as session:
            return self._processor(session).process_adjustment(
                product_id,
                direction,
                quantity,
                actor,
                note=note,
                reference=reference,
            )

    def issue_carriers(
        self,
        product_id: UUID,
        count: int,
        units_each: int,
        actor: str | None = None,
    ) -> list[CarrierInfo]:
        """Issue ``count`` carriers with generated codes and commit them."""
        with self._session() as session:
            registry = CarrierRegistry(session, self._default_unit_count)
            try:
                issued = registry.issue_batch(product_id, count, units_each, actor=actor)
                session.commit()
            except Exception:
                session.rollback()
                raise
            return issued

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_aggregate(self, product_id: UUID) -> int:
        with self._session() as session:
            return StockSelector(session).get_aggregate(product_id)

    def lookup_carrier(self, code: str) -> CarrierView:
        """
        Raises:
            UnknownBarcodeError: no carrier carries ``code``.
        """
        with self._session() as session:
            view = StockSelector(session).carrier_view(code)
        if view is None:
            raise UnknownBarcodeError(code)
        return view

    def movement_history(
        self,
        product_id: UUID | None = None,
        direction: Direction | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> MovementPage:
        with self._session() as session:
            return LedgerSelector(session).history(
                product_id=product_id, direction=direction, page=page, limit=limit
            )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, product_id: UUID) -> ConsistencyReport:
        """Verify one product now, repairing it if it drifted."""
        self._await_verification(product_id)
        with self._session() as session:
            return self._reconciler(session).verify_and_repair(product_id)

    def sweep(self) -> SweepResult | None:
        """Run a full sweep now; None if the sweep failed (it is logged)."""
        return self.scheduler.run_sweep()

    def wait_for_verifications(self, timeout: float | None = None) -> None:
        """Block until every scheduled post-scan check has finished."""
        with self._checks_lock:
            pending = list(self._pending_checks.values())
        if pending:
            wait(pending, timeout=timeout)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def _processor(self, session: Session) -> StockTransactionProcessor:
        return StockTransactionProcessor(
            session,
            self._tracker,
            clock=self._clock,
            bus=self.bus,
            metrics=self.metrics,
            cooldown_seconds=self._cooldown_seconds,
            default_unit_count=self._default_unit_count,
        )

    def _reconciler(self, session: Session) -> ConsistencyReconciler:
        return ConsistencyReconciler(
            session,
            clock=self._clock,
            bus=self.bus,
            metrics=self.metrics,
            default_unit_count=self._default_unit_count,
            normalize_zero_unit_carriers=self._normalize,
        )

    def _product_for_code(self, code: str) -> UUID | None:
        with self._session() as session:
            return session.execute(
                select(UnitCarrier.product_id).where(UnitCarrier.code == code)
            ).scalar_one_or_none()

    def _await_verification(self, product_id: UUID) -> None:
        with self._checks_lock:
            pending = self._pending_checks.get(product_id)
        if pending is not None:
            wait([pending])

    def _schedule_verification(self, product_id: UUID) -> None:
        with self._checks_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._verify_workers,
                    thread_name_prefix="stock-verify",
                )
            future = self._executor.submit(self._verify_product, product_id)
            self._pending_checks[product_id] = future

        def _forget(done: Future) -> None:
            with self._checks_lock:
                if self._pending_checks.get(product_id) is done:
                    del self._pending_checks[product_id]

        future.add_done_callback(_forget)

    def _verify_product(self, product_id: UUID) -> ConsistencyReport | None:
        try:
            with self._session() as session:
                report = self._reconciler(session).verify_and_repair(product_id)
                session.commit()
                return report
        except Exception:
            logger.exception(
                "post_scan_verification_failed",
                extra={"product_id": str(product_id)},
            )
            return None
