"""
Fault injection: a movement that fails part-way leaves no trace.

Failures are injected at each step after the scan gate: the carrier
transition, the ledger append, the aggregate projection and the commit
itself.  State is then inspected from a fresh session.
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from stock_kernel.domain.dtos import CarrierState, Direction
from stock_kernel.exceptions import StorageUnavailableError
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.aggregate_projector import AggregateProjector
from stock_kernel.services.carrier_registry import CarrierRegistry
from stock_kernel.services.ledger_service import LedgerService
from stock_kernel.services.stock_engine import StockEngine
from tests.conftest import TEST_ACTOR


def _disk_error():
    return OperationalError("INSERT", {}, Exception("database disk image is malformed"))


def _state(session_factory, product_id, code):
    s = session_factory()
    try:
        stock = StockSelector(s)
        return (
            stock.get_aggregate(product_id),
            stock.snapshot_quantity(product_id),
            LedgerSelector(s).count(product_id),
            stock.carrier_view(code).state,
        )
    finally:
        s.close()


@pytest.mark.parametrize(
    "target,attribute",
    [
        (CarrierRegistry, "scan_in"),
        (LedgerService, "append"),
        (AggregateProjector, "apply"),
    ],
)
def test_failure_at_any_step_persists_nothing(
    stock_engine, committed_product, session_factory, target, attribute
):
    engine = stock_engine(verify_after_scan=False)
    product_id, (code,) = committed_product(carriers=(5,))

    with patch.object(target, attribute, side_effect=_disk_error()):
        with pytest.raises(StorageUnavailableError):
            engine.submit_scan(code, Direction.IN, TEST_ACTOR)

    assert _state(session_factory, product_id, code) == (
        0, None, 0, CarrierState.UNASSIGNED,
    )

    # The failed scan is retryable straight away
    outcome = engine.submit_scan(code, Direction.IN, TEST_ACTOR)
    assert outcome.accepted
    assert _state(session_factory, product_id, code) == (
        5, 5, 1, CarrierState.STOCKED_IN,
    )


def test_commit_failure_persists_nothing(
    committed_product, session_factory, deterministic_clock
):
    product_id, (code,) = committed_product(carriers=(3,))
    failures = [_disk_error()]

    def flaky_factory():
        s = session_factory()
        real_commit = s.commit

        def commit():
            if failures:
                raise failures.pop()
            real_commit()

        s.commit = commit
        return s

    engine = StockEngine(flaky_factory, clock=deterministic_clock, verify_after_scan=False)

    with pytest.raises(StorageUnavailableError) as exc_info:
        engine.submit_scan(code, Direction.IN, TEST_ACTOR)
    assert exc_info.value.operation == "scan"

    assert _state(session_factory, product_id, code) == (
        0, None, 0, CarrierState.UNASSIGNED,
    )
    assert engine.submit_scan(code, Direction.IN, TEST_ACTOR).accepted


def test_unexpected_error_propagates_unchanged(stock_engine, committed_product, session_factory):
    engine = stock_engine(verify_after_scan=False)
    product_id, _ = committed_product()

    with patch.object(AggregateProjector, "apply", side_effect=KeyError("boom")):
        with pytest.raises(KeyError):
            engine.submit_adjustment(product_id, Direction.IN, 3, TEST_ACTOR)

    s = session_factory()
    try:
        assert LedgerSelector(s).count(product_id) == 0
    finally:
        s.close()
