"""
LedgerService -- the append-only movement ledger.

Responsibility:
    Validates a LedgerEntryDraft and persists it as an immutable
    LedgerEntry with a strictly increasing sequence number and timestamp.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    StockTransactionProcessor inside its unit of work.

Invariants enforced:
    - quantity > 0 and direction in {IN, OUT}, else InvalidEntryError.
    - product_id references an existing product, else UnknownProductError.
    - seq comes from the locked ``ledger_entry`` counter; created_at is the
      clock time, pushed forward when needed so it is strictly greater than
      the previous entry's.
    - Entries are never mutated (see db/immutability.py).

Failure modes:
    - InvalidEntryError, UnknownProductError before anything is written.
    - Any datastore error propagates; the caller rolls back the unit of work.

Aggregate updates are NOT done here; the caller applies them through the
AggregateProjector within the same transaction.
"""

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock, ensure_utc
from stock_kernel.domain.dtos import Direction, LedgerEntryDraft, LedgerEntryRecord
from stock_kernel.exceptions import InvalidEntryError, UnknownProductError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.ledger import LedgerEntry
from stock_kernel.models.product import Product
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")

REFERENCE_ADJUSTMENT = "ADJUSTMENT"
REFERENCE_INITIAL_STOCK = "INITIAL_STOCK"
REFERENCE_UNIT_REPAIR = "UNIT_REPAIR"
_TIMESTAMP_STEP = timedelta(microseconds=1)


def scan_reference(code: str) -> str:
    """Default reference for a scan-triggered entry."""
    return f"SCAN:{code}"


class LedgerService(BaseService[LedgerEntry]):
    """
    Appends movements to the ledger.

    Contract:
        ``append`` flushes one LedgerEntry and returns its record.  It does
        not commit.

    Non-goals:
        - Does NOT touch carrier state or cached aggregates.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequences = sequence_service or SequenceService(session)

    def append(self, draft: LedgerEntryDraft) -> LedgerEntryRecord:
        """
        Persist ``draft`` as an immutable ledger entry.

        Raises:
            InvalidEntryError: quantity <= 0, unknown direction, no actor, or
                a carrier entry without a reference.
            UnknownProductError: product does not exist.
        """
        quantity = draft.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidEntryError(f"quantity must be an integer, got {quantity!r}")
        if quantity <= 0:
            raise InvalidEntryError(f"quantity must be positive, got {quantity}")

        try:
            direction = Direction(draft.direction)
        except ValueError:
            raise InvalidEntryError(f"unknown direction {draft.direction!r}") from None

        if not draft.actor:
            raise InvalidEntryError("actor is required")

        if draft.carrier_id is not None and not draft.reference:
            raise InvalidEntryError("carrier movements need an explicit reference")

        if self.session.get(Product, draft.product_id) is None:
            raise UnknownProductError(str(draft.product_id))

        seq = self._sequences.next_value(SequenceService.LEDGER_ENTRY)
        created_at = self._next_timestamp()

        reference = draft.reference or REFERENCE_ADJUSTMENT

        entry = LedgerEntry(
            seq=seq,
            product_id=draft.product_id,
            carrier_id=draft.carrier_id,
            direction=direction.value,
            quantity=quantity,
            actor=draft.actor,
            note=draft.note,
            reference=reference,
            created_at=created_at,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_appended",
            extra={
                "entry_id": str(entry.id),
                "seq": seq,
                "product_id": str(draft.product_id),
                "carrier_id": str(draft.carrier_id) if draft.carrier_id else None,
                "direction": direction.value,
                "quantity": quantity,
                "reference": reference,
            },
        )
        return LedgerEntryRecord.from_model(entry)

    def _next_timestamp(self) -> datetime:
        """
        Clock time, or one microsecond after the latest entry if the clock
        has not moved past it.  Called while holding the sequence lock.
        """
        now = ensure_utc(self._clock.now_utc())
        latest = self.session.execute(
            select(LedgerEntry.created_at).order_by(LedgerEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()
        if latest is None:
            return now
        floor = ensure_utc(latest) + _TIMESTAMP_STEP
        return now if now >= floor else floor
