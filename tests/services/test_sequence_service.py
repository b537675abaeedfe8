"""SequenceService: locked, monotonic counters."""

from stock_kernel.services.sequence_service import SequenceService


def test_first_value_is_one(session):
    assert SequenceService(session).next_value("scratch") == 1


def test_values_increase(session):
    service = SequenceService(session)
    values = [service.next_value("scratch") for _ in range(4)]
    assert values == [1, 2, 3, 4]
    assert service.current_value("scratch") == 4


def test_sequences_are_independent(session):
    service = SequenceService(session)
    service.next_value("a")
    service.next_value("a")
    assert service.next_value("b") == 1


def test_unknown_sequence_has_no_current_value(session):
    assert SequenceService(session).current_value("missing") is None


def test_initialize_sequences_starts_ledger_counter_at_zero(session):
    service = SequenceService(session)
    service.initialize_sequences()
    assert service.current_value(SequenceService.LEDGER_ENTRY) == 0
    assert service.next_value(SequenceService.LEDGER_ENTRY) == 1
