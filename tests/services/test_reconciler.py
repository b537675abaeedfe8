"""
ConsistencyReconciler: drift detection and repair of the cached views.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from stock_kernel.domain.dtos import Direction
from stock_kernel.exceptions import UnknownProductError
from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.notifications import ConsistencyReportEmitted
from stock_kernel.services.reconciler import ConsistencyReconciler
from tests.conftest import TEST_ACTOR


def _inject_stocked_carrier(session, product_id, code="DEFECT-0001", units=0):
    """Write a stocked-in carrier straight into storage, bypassing the ledger."""
    carrier = UnitCarrier(
        product_id=product_id,
        code=code,
        units_assigned=units,
        stocked_in=True,
        ever_stocked_in=True,
    )
    session.add(carrier)
    session.commit()
    return carrier


def _views(session, product_id):
    selector = StockSelector(session)
    return selector.get_aggregate(product_id), selector.snapshot_quantity(product_id)


@pytest.fixture
def stocked_product(make_product, make_carrier, processor):
    """A product with one 5-unit carrier scanned in (stock 5)."""
    product = make_product()
    carrier = make_carrier(product.id, units=5)
    processor.process_scan(carrier.code, Direction.IN, TEST_ACTOR)
    return product


class TestVerify:
    def test_consistent_after_movements(self, reconciler, processor, stocked_product):
        processor.process_adjustment(stocked_product.id, Direction.IN, 2, TEST_ACTOR)

        report = reconciler.verify(stocked_product.id)

        assert report.carrier_units == 5
        assert report.adjustment_net == 2
        assert report.truth_from_carriers == 7
        assert report.truth_from_ledger == 7
        assert report.cached_product_value == 7
        assert report.cached_snapshot_value == 7
        assert report.is_consistent
        assert not report.ledger_carrier_mismatch

    def test_product_without_snapshot_is_inconsistent(self, reconciler, make_product):
        product = make_product()
        report = reconciler.verify(product.id)
        assert report.cached_snapshot_value is None
        assert not report.is_consistent

    def test_detects_product_drift(self, reconciler, session, stocked_product):
        stocked_product.aggregate_stock = 99
        session.commit()

        report = reconciler.verify(stocked_product.id)

        assert report.cached_product_value == 99
        assert report.cached_snapshot_value == 5
        assert not report.is_consistent

    def test_verify_is_read_only(self, reconciler, session, stocked_product):
        stocked_product.aggregate_stock = 99
        session.commit()
        reconciler.verify(stocked_product.id)
        assert _views(session, stocked_product.id) == (99, 5)

    def test_unknown_product(self, reconciler):
        with pytest.raises(UnknownProductError):
            reconciler.verify(uuid4())

    def test_drift_is_logged(self, reconciler, session, stocked_product, captured_logs):
        stocked_product.aggregate_stock = 1
        session.commit()

        reconciler.verify(stocked_product.id)

        drift = [r for r in captured_logs() if r["message"] == "consistency_drift_detected"]
        assert len(drift) == 1
        assert drift[0]["truth_from_carriers"] == 5
        assert drift[0]["cached_product_value"] == 1


class TestRepair:
    def test_repairs_both_views(self, reconciler, session, stocked_product):
        stocked_product.aggregate_stock = 40
        snapshot = session.execute(
            select(InventorySnapshot).where(
                InventorySnapshot.product_id == stocked_product.id
            )
        ).scalar_one()
        snapshot.quantity = 2
        session.commit()

        report = reconciler.verify_and_repair(stocked_product.id)

        assert report.is_consistent
        assert _views(session, stocked_product.id) == (5, 5)

    def test_creates_missing_snapshot(self, reconciler, session, make_product):
        product = make_product()
        report = reconciler.verify_and_repair(product.id)
        assert report.is_consistent
        assert _views(session, product.id) == (0, 0)

    def test_zero_unit_carrier_repaired(self, reconciler, session, stocked_product):
        _inject_stocked_carrier(session, stocked_product.id)

        before = reconciler.verify(stocked_product.id)
        assert before.defective_carriers == ("DEFECT-0001",)
        assert not before.is_consistent

        after = reconciler.repair(stocked_product.id)

        carrier = StockSelector(session).carrier_view("DEFECT-0001")
        assert carrier.units_assigned == 1
        assert after.truth_from_carriers == 6
        assert after.defective_carriers == ()
        assert after.is_consistent
        assert _views(session, stocked_product.id) == (6, 6)
        # The ledger never saw this carrier move
        assert after.truth_from_ledger == 5
        assert after.ledger_carrier_mismatch

    def test_repair_uses_configured_default_unit_count(
        self, session, deterministic_clock, stocked_product
    ):
        _inject_stocked_carrier(session, stocked_product.id)
        reconciler = ConsistencyReconciler(
            session, clock=deterministic_clock, default_unit_count=3
        )

        reconciler.repair(stocked_product.id)

        assert StockSelector(session).carrier_view("DEFECT-0001").units_assigned == 3
        assert _views(session, stocked_product.id) == (8, 8)

    def test_normalization_can_be_disabled(
        self, session, deterministic_clock, stocked_product
    ):
        _inject_stocked_carrier(session, stocked_product.id)
        reconciler = ConsistencyReconciler(
            session, clock=deterministic_clock, normalize_zero_unit_carriers=False
        )

        report = reconciler.repair(stocked_product.id)

        assert report.defective_carriers == ("DEFECT-0001",)
        assert not report.is_consistent
        assert _views(session, stocked_product.id) == (5, 5)

    def test_negative_truth_clamped_to_zero(
        self, reconciler, session, processor, stocked_product
    ):
        processor.process_adjustment(stocked_product.id, Direction.OUT, 4, TEST_ACTOR)
        carrier = session.execute(
            select(UnitCarrier).where(UnitCarrier.product_id == stocked_product.id)
        ).scalar_one()
        carrier.units_assigned = 1
        session.commit()

        report = reconciler.repair(stocked_product.id)

        assert report.truth_from_carriers == -3
        assert _views(session, stocked_product.id) == (0, 0)

    def test_repair_publishes_pre_repair_report(
        self, reconciler, session, published, stocked_product
    ):
        stocked_product.aggregate_stock = 11
        session.commit()
        published.clear()

        reconciler.verify_and_repair(stocked_product.id)

        assert len(published) == 1
        emitted = published[0]
        assert isinstance(emitted, ConsistencyReportEmitted)
        assert emitted.repaired is True
        assert emitted.report.cached_product_value == 11

    def test_consistent_product_not_repaired(
        self, reconciler, published, captured_logs, stocked_product
    ):
        published.clear()
        report = reconciler.verify_and_repair(stocked_product.id)

        assert report.is_consistent
        assert published == []
        assert not any(r["message"] == "consistency_repaired" for r in captured_logs())

    def test_mismatch_without_drift_is_published(
        self, reconciler, session, projector, published, make_product
    ):
        product = make_product()
        _inject_stocked_carrier(session, product.id, code="GHOST-0001", units=2)
        projector.overwrite(product.id, 2)
        session.commit()
        published.clear()

        report = reconciler.verify_and_repair(product.id)

        assert report.is_consistent
        assert report.ledger_carrier_mismatch
        assert len(published) == 1
        assert published[0].repaired is False


class TestSweep:
    def test_sweep_repairs_only_drifted_products(
        self, reconciler, session, processor, make_product
    ):
        healthy = make_product(sku="SWEEP-A")
        drifted = make_product(sku="SWEEP-B")
        fresh = make_product(sku="SWEEP-C")
        processor.process_adjustment(healthy.id, Direction.IN, 4, TEST_ACTOR)
        processor.process_adjustment(drifted.id, Direction.IN, 4, TEST_ACTOR)
        drifted.aggregate_stock = 0
        session.commit()

        result = reconciler.sweep()

        assert result.checked == 3
        assert result.repaired == (drifted.id, fresh.id)
        assert result.mismatched == ()
        assert result.drift_found
        assert all(r.is_consistent for r in result.reports)

        second = reconciler.sweep()
        assert second.repaired == ()
        assert not second.drift_found

    def test_sweep_reports_mismatch(self, reconciler, session, make_product):
        product = make_product(sku="SWEEP-M")
        _inject_stocked_carrier(session, product.id, code="GHOST-0002", units=3)

        result = reconciler.sweep()

        assert result.mismatched == (product.id,)
        assert _views(session, product.id) == (3, 3)
