"""
StockEngine over real commits: scans, adjustments, reads, post-scan
verification, metrics and the reconcile scheduler.
"""

import pytest

from stock_kernel.domain.dtos import CarrierState, Direction
from stock_kernel.exceptions import (
    InsufficientStockError,
    RejectionKind,
    UnknownBarcodeError,
)
from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.services.reconcile_scheduler import (
    MIN_TICK_SECONDS,
    ReconcileScheduler,
)
from tests.conftest import TEST_ACTOR


@pytest.fixture
def inject_zero_unit_carrier(session_factory):
    """Commit a stocked-in, zero-unit carrier directly into storage."""

    def _inject(product_id, code="LEGACY-0001"):
        s = session_factory()
        try:
            s.add(
                UnitCarrier(
                    product_id=product_id,
                    code=code,
                    units_assigned=0,
                    stocked_in=True,
                    ever_stocked_in=True,
                )
            )
            s.commit()
        finally:
            s.close()

    return _inject


class TestSubmitScan:
    def test_accepted_scan(self, stock_engine, committed_product):
        engine = stock_engine()
        product_id, (code,) = committed_product(carriers=(5,))

        outcome = engine.submit_scan(code, Direction.IN, TEST_ACTOR)

        assert outcome.accepted
        assert outcome.rejection is None
        assert outcome.movement.new_quantity == 5
        assert engine.get_aggregate(product_id) == 5

    def test_stock_in_then_out(self, stock_engine, committed_product, deterministic_clock):
        engine = stock_engine()
        product_id, (code,) = committed_product(carriers=(5,))

        engine.submit_scan(code, "IN", TEST_ACTOR)
        repeat = engine.submit_scan(code, "IN", TEST_ACTOR)
        deterministic_clock.advance(5)
        out = engine.submit_scan(code, "OUT", TEST_ACTOR)
        again = engine.submit_scan(code, "OUT", TEST_ACTOR)

        assert repeat.rejection.kind is RejectionKind.ALREADY_STOCKED_IN
        assert out.movement.new_quantity == 0
        assert again.rejection.kind is RejectionKind.NEVER_STOCKED_IN
        assert again.rejection.details["previously_stocked_in"] is True
        assert engine.get_aggregate(product_id) == 0
        assert engine.lookup_carrier(code).state is CarrierState.STOCKED_OUT

    def test_unknown_barcode_is_rejected_outcome(self, stock_engine):
        engine = stock_engine()
        outcome = engine.submit_scan("4000000000000", Direction.IN, TEST_ACTOR)

        assert not outcome.accepted
        assert outcome.rejection.kind is RejectionKind.UNKNOWN_BARCODE
        assert outcome.rejection.code == "UNKNOWN_BARCODE"
        assert outcome.rejection.details["scan_code"] == "4000000000000"

    def test_rejections_counted(self, stock_engine, committed_product):
        engine = stock_engine()
        _, (code,) = committed_product(carriers=(1,))
        engine.submit_scan(code, Direction.OUT, TEST_ACTOR)
        engine.submit_scan("missing", Direction.IN, TEST_ACTOR)

        snapshot = engine.metrics.snapshot()
        assert snapshot.rejections == {
            "NEVER_STOCKED_IN": 1,
            "UNKNOWN_BARCODE": 1,
        }
        assert snapshot.total_rejections == 2


class TestAdjustmentsAndIssuance:
    def test_adjustment_and_shortfall(self, stock_engine, committed_product):
        engine = stock_engine()
        product_id, _ = committed_product()

        result = engine.submit_adjustment(product_id, Direction.IN, 5, TEST_ACTOR)
        assert result.new_quantity == 5

        with pytest.raises(InsufficientStockError) as exc_info:
            engine.submit_adjustment(product_id, Direction.OUT, 10, TEST_ACTOR)
        assert exc_info.value.shortfall == 5
        assert engine.get_aggregate(product_id) == 5

    def test_issue_carriers_are_committed(self, stock_engine, committed_product):
        engine = stock_engine()
        product_id, _ = committed_product()

        issued = engine.issue_carriers(product_id, 3, 12, actor=TEST_ACTOR)

        assert len(issued) == 3
        for carrier in issued:
            view = engine.lookup_carrier(carrier.code)
            assert view.units_assigned == 12
            assert view.state is CarrierState.UNASSIGNED

    def test_lookup_unknown_carrier(self, stock_engine):
        with pytest.raises(UnknownBarcodeError):
            stock_engine().lookup_carrier("nope")

    def test_movement_history(self, stock_engine, committed_product):
        engine = stock_engine()
        product_id, (code,) = committed_product(carriers=(2,))
        engine.submit_scan(code, Direction.IN, TEST_ACTOR)
        engine.submit_adjustment(product_id, Direction.OUT, 1, TEST_ACTOR)

        page = engine.movement_history(product_id=product_id)

        assert page.total == 2
        assert [e.direction for e in page.items] == [Direction.OUT, Direction.IN]
        assert engine.movement_history(direction="IN").total == 1


class TestPostScanVerification:
    def test_scan_triggers_repair_of_defective_carrier(
        self, stock_engine, committed_product, inject_zero_unit_carrier
    ):
        engine = stock_engine()
        product_id, (code,) = committed_product(carriers=(5,))
        inject_zero_unit_carrier(product_id)

        outcome = engine.submit_scan(code, Direction.IN, TEST_ACTOR)
        engine.wait_for_verifications(timeout=10)

        assert outcome.movement.new_quantity == 5
        assert engine.get_aggregate(product_id) == 6
        assert engine.lookup_carrier("LEGACY-0001").units_assigned == 1
        assert engine.metrics.snapshot().repairs == 1

    def test_verification_can_be_disabled(
        self, stock_engine, committed_product, inject_zero_unit_carrier
    ):
        engine = stock_engine(verify_after_scan=False)
        product_id, (code,) = committed_product(carriers=(5,))
        inject_zero_unit_carrier(product_id)

        engine.submit_scan(code, Direction.IN, TEST_ACTOR)
        engine.wait_for_verifications(timeout=10)

        assert engine.get_aggregate(product_id) == 5
        assert engine.lookup_carrier("LEGACY-0001").units_assigned == 0

    def test_reconcile_on_demand(
        self, stock_engine, committed_product, inject_zero_unit_carrier
    ):
        engine = stock_engine(verify_after_scan=False, default_unit_count=2)
        product_id, _ = committed_product()
        inject_zero_unit_carrier(product_id)

        report = engine.reconcile(product_id)

        assert report.is_consistent
        assert report.truth_from_carriers == 2
        assert engine.get_aggregate(product_id) == 2


class TestMetricsAndScheduler:
    def test_metrics_refresh(self, stock_engine, committed_product, deterministic_clock):
        engine = stock_engine()
        product_id, codes = committed_product(carriers=(3, 4))
        committed_product()
        for code in codes:
            engine.submit_scan(code, Direction.IN, TEST_ACTOR)
        engine.wait_for_verifications(timeout=10)

        snapshot = engine.metrics.refresh()

        assert snapshot.products == 2
        assert snapshot.total_units == 7
        assert snapshot.carriers_stocked_in == 2
        assert snapshot.ledger_entries == 2
        assert snapshot.scans_in == 2
        assert snapshot.scans_out == 0
        assert snapshot.refreshed_at == deterministic_clock.now_utc()

    def test_sweep_repairs_and_records(self, stock_engine, committed_product):
        engine = stock_engine()
        first, _ = committed_product(sku="SWEEP-1")
        second, _ = committed_product(sku="SWEEP-2")

        result = engine.sweep()

        assert result.checked == 2
        assert set(result.repaired) == {first, second}
        assert engine.scheduler.last_sweep is result
        assert engine.sweep().repaired == ()

    def test_tick_runs_due_work_only(self, stock_engine, committed_product, deterministic_clock):
        engine = stock_engine(sweep_interval_seconds=300, metrics_refresh_seconds=30)
        committed_product()

        assert engine.scheduler.tick() is not None
        assert engine.metrics.snapshot().products == 1

        deterministic_clock.advance(10)
        assert engine.scheduler.tick() is None

        deterministic_clock.advance(300)
        assert engine.scheduler.tick() is not None

    def test_start_and_stop(self, stock_engine):
        engine = stock_engine()
        engine.start()
        assert engine.scheduler.is_running

        engine.stop(timeout=10)
        assert not engine.scheduler.is_running

    def test_failed_sweep_is_logged(self, session_factory, deterministic_clock, captured_logs):
        def broken_reconciler(session):
            raise RuntimeError("reconciler unavailable")

        scheduler = ReconcileScheduler(
            session_factory, broken_reconciler, clock=deterministic_clock
        )

        assert scheduler.run_sweep() is None
        assert scheduler.last_sweep is None
        failures = [r for r in captured_logs() if r["message"] == "reconcile_sweep_failed"]
        assert len(failures) == 1
        assert failures[0]["exc_message"] == "reconciler unavailable"

    @pytest.mark.parametrize(
        "sweep,refresh,tick",
        [(0, 30, None), (300, 0, None), (300, 30, 0), (0, 0, 0)],
    )
    def test_tick_interval_never_zero(self, session_factory, sweep, refresh, tick):
        scheduler = ReconcileScheduler(
            session_factory,
            lambda session: None,
            sweep_interval_seconds=sweep,
            metrics_refresh_seconds=refresh,
            tick_interval_seconds=tick,
        )
        assert scheduler.tick_interval >= MIN_TICK_SECONDS

    def test_tick_interval_follows_shortest_period(self, session_factory):
        scheduler = ReconcileScheduler(
            session_factory,
            lambda session: None,
            sweep_interval_seconds=300,
            metrics_refresh_seconds=30,
        )
        assert scheduler.tick_interval == 30
