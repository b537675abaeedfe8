"""
Carrier state machine: pure transition rules.

UNASSIGNED -> STOCKED_IN <-> STOCKED_OUT, zero-unit repair detection and
the default unit count for carriers issued without units.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from stock_kernel.domain.carrier_state import (
    check_scan_in,
    check_scan_out,
    derive_state,
    needs_unit_repair,
    units_to_move,
)
from stock_kernel.domain.dtos import CarrierState
from stock_kernel.exceptions import (
    AlreadyStockedInError,
    NeverStockedInError,
    RejectionKind,
)

CODE = "4006381333931"


class TestDeriveState:
    def test_fresh_carrier_is_unassigned(self):
        assert derive_state(False, False) is CarrierState.UNASSIGNED

    def test_stocked_in(self):
        assert derive_state(True, True) is CarrierState.STOCKED_IN

    def test_stocked_out_after_prior_stock_in(self):
        assert derive_state(False, True) is CarrierState.STOCKED_OUT


class TestScanIn:
    @pytest.mark.parametrize(
        "state", [CarrierState.UNASSIGNED, CarrierState.STOCKED_OUT]
    )
    def test_allowed(self, state):
        check_scan_in(CODE, state)

    def test_already_stocked_in(self):
        with pytest.raises(AlreadyStockedInError) as exc_info:
            check_scan_in(CODE, CarrierState.STOCKED_IN)
        assert exc_info.value.kind is RejectionKind.ALREADY_STOCKED_IN
        assert exc_info.value.scan_code == CODE


class TestScanOut:
    def test_allowed_only_when_stocked_in(self):
        check_scan_out(CODE, CarrierState.STOCKED_IN)

    def test_never_stocked_in(self):
        with pytest.raises(NeverStockedInError) as exc_info:
            check_scan_out(CODE, CarrierState.UNASSIGNED)
        assert exc_info.value.previously_stocked_in is False
        assert "never stocked IN" in str(exc_info.value)

    def test_no_longer_stocked_in(self):
        with pytest.raises(NeverStockedInError) as exc_info:
            check_scan_out(CODE, CarrierState.STOCKED_OUT)
        assert exc_info.value.previously_stocked_in is True
        assert "already stocked out" in str(exc_info.value)

    def test_both_variants_share_one_kind(self):
        errors = []
        for state in (CarrierState.UNASSIGNED, CarrierState.STOCKED_OUT):
            with pytest.raises(NeverStockedInError) as exc_info:
                check_scan_out(CODE, state)
            errors.append(exc_info.value)
        assert {e.kind for e in errors} == {RejectionKind.NEVER_STOCKED_IN}
        assert str(errors[0]) != str(errors[1])


class TestUnitRepair:
    def test_stocked_in_zero_units_is_defect(self):
        assert needs_unit_repair(CarrierState.STOCKED_IN, 0)

    @pytest.mark.parametrize(
        "state,units",
        [
            (CarrierState.STOCKED_IN, 3),
            (CarrierState.UNASSIGNED, 0),
            (CarrierState.STOCKED_OUT, 0),
        ],
    )
    def test_not_defect(self, state, units):
        assert not needs_unit_repair(state, units)

    def test_units_to_move_uses_assigned(self):
        assert units_to_move(5, default_unit_count=1) == (5, False)

    def test_units_to_move_defaults_zero(self):
        assert units_to_move(0, default_unit_count=2) == (2, True)


_EVENTS = st.lists(st.sampled_from(["IN", "OUT"]), max_size=40)


@given(events=_EVENTS)
def test_state_machine_never_double_counts(events):
    """Replaying any scan sequence, a carrier is counted at most once."""
    stocked_in = False
    ever = False
    counted = 0

    for event in events:
        state = derive_state(stocked_in, ever)
        if event == "IN":
            try:
                check_scan_in(CODE, state)
            except AlreadyStockedInError:
                assert state is CarrierState.STOCKED_IN
                continue
            stocked_in, ever = True, True
            counted += 1
        else:
            try:
                check_scan_out(CODE, state)
            except NeverStockedInError:
                assert state is not CarrierState.STOCKED_IN
                continue
            stocked_in = False
            counted -= 1

        assert counted in (0, 1)
        assert counted == (1 if stocked_in else 0)
