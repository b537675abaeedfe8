"""
Property-based fuzzing of random movement sequences.

Whatever mix of scans, adjustments, repeats and rejections hypothesis
generates, after every step:
- aggregate stock is never negative
- both cached views agree with each other and with the ledger
- ledger truth and carrier truth agree
"""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from stock_kernel.domain.dtos import Direction
from stock_kernel.exceptions import StockRejection
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.selectors.stock_selector import StockSelector
from tests.conftest import TEST_ACTOR, new_product

_scan = st.tuples(
    st.just("scan"),
    st.integers(min_value=0, max_value=3),
    st.sampled_from([Direction.IN, Direction.OUT]),
)
_adjust = st.tuples(
    st.just("adjust"),
    st.integers(min_value=1, max_value=15),
    st.sampled_from([Direction.IN, Direction.OUT]),
)
_steps = st.lists(
    st.tuples(st.one_of(_scan, _adjust), st.sampled_from([0, 1, 5, 301])),
    min_size=1,
    max_size=25,
)

_FUZZ_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)


def _assert_invariants(session, reconciler, product_id):
    stock = StockSelector(session)
    aggregate = stock.get_aggregate(product_id)
    assert aggregate >= 0
    assert stock.snapshot_quantity(product_id) == aggregate
    assert LedgerSelector(session).signed_total(product_id) == aggregate

    report = reconciler.verify(product_id)
    assert report.is_consistent
    assert not report.ledger_carrier_mismatch


class TestMovementSequences:
    @given(
        units=st.lists(st.integers(min_value=0, max_value=20), min_size=4, max_size=4),
        steps=_steps,
    )
    @_FUZZ_SETTINGS
    def test_random_sequences_preserve_invariants(
        self, session, processor, registry, reconciler, deterministic_clock, units, steps
    ):
        product = new_product(session)
        codes = [registry.issue(product.id, u, actor=TEST_ACTOR).code for u in units]
        # Seed both views so the product starts consistent
        processor.process_adjustment(product.id, Direction.IN, 1, TEST_ACTOR)

        for (kind, arg, direction), wait_seconds in steps:
            deterministic_clock.advance(wait_seconds)
            try:
                if kind == "scan":
                    processor.process_scan(codes[arg], direction, TEST_ACTOR)
                else:
                    processor.process_adjustment(product.id, direction, arg, TEST_ACTOR)
            except StockRejection:
                pass
            _assert_invariants(session, reconciler, product.id)

    @given(quantities=st.lists(st.integers(min_value=1, max_value=10), min_size=1, max_size=20))
    @_FUZZ_SETTINGS
    def test_draining_stops_at_zero(self, session, processor, quantities):
        product = new_product(session)
        processor.process_adjustment(product.id, Direction.IN, 10, TEST_ACTOR)

        remaining = 10
        for quantity in quantities:
            try:
                result = processor.process_adjustment(
                    product.id, Direction.OUT, quantity, TEST_ACTOR
                )
            except StockRejection as exc:
                assert quantity > remaining
                assert exc.kind.value == "INSUFFICIENT_STOCK"
                continue
            remaining -= quantity
            assert result.new_quantity == remaining

        assert StockSelector(session).get_aggregate(product.id) == remaining
