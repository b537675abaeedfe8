"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through the stock
    pipeline: LedgerEntryDraft (input to the ledger), LedgerEntryRecord
    (persisted ledger row), CarrierInfo (carrier snapshot), Admission (scan
    gate output), MovementResult / ScanOutcome / RejectionReason (engine
    output), ConsistencyReport (reconciler output) and the read models
    CarrierView and MovementPage.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Every DTO is a frozen dataclass; services never leak ORM rows.

Data flow:
    scan code -> Admission -> LedgerEntryDraft -> LedgerEntryRecord -> MovementResult
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from stock_kernel.exceptions import RejectionKind, StockRejection

if TYPE_CHECKING:
    from stock_kernel.models.carrier import UnitCarrier as UnitCarrierModel
    from stock_kernel.models.ledger import LedgerEntry as LedgerEntryModel


class Direction(str, Enum):
    """Direction of a stock movement."""

    IN = "IN"
    OUT = "OUT"

    @property
    def sign(self) -> int:
        """+1 for IN, -1 for OUT."""
        return 1 if self is Direction.IN else -1

    def signed(self, quantity: int) -> int:
        return self.sign * quantity


class CarrierState(str, Enum):
    """
    Stock-contribution state of a unit carrier.

    Contract:
        UNASSIGNED -> STOCKED_IN <-> STOCKED_OUT.  Only STOCKED_IN carriers
        count toward aggregate stock.
    """

    UNASSIGNED = "UNASSIGNED"
    STOCKED_IN = "STOCKED_IN"
    STOCKED_OUT = "STOCKED_OUT"


@dataclass(frozen=True)
class LedgerEntryDraft:
    """
    A ledger entry before persistence.

    Contract:
        quantity is a positive unit count (units, not labels).  carrier_id is
        None for manual adjustments.  Carrier movements must supply a
        reference (``SCAN:<code>``); adjustments default to ``ADJUSTMENT``.
        Drafts are not validated on construction; LedgerService.append
        refuses invalid ones with InvalidEntryError.
    """

    product_id: UUID
    direction: Direction
    quantity: int
    actor: str
    carrier_id: UUID | None = None
    note: str | None = None
    reference: str | None = None

    @property
    def signed_quantity(self) -> int:
        return self.direction.signed(self.quantity)


@dataclass(frozen=True)
class LedgerEntryRecord:
    """
    A persisted, immutable ledger entry.

    Guarantees:
        - seq is strictly increasing across the whole ledger.
        - created_at is strictly increasing in seq order.
    """

    id: UUID
    seq: int
    product_id: UUID
    carrier_id: UUID | None
    direction: Direction
    quantity: int
    actor: str
    note: str | None
    reference: str
    created_at: datetime

    @property
    def signed_quantity(self) -> int:
        return self.direction.signed(self.quantity)

    @classmethod
    def from_model(cls, model: LedgerEntryModel) -> LedgerEntryRecord:
        from stock_kernel.domain.clock import ensure_utc

        return cls(
            id=model.id,
            seq=model.seq,
            product_id=model.product_id,
            carrier_id=model.carrier_id,
            direction=Direction(model.direction),
            quantity=model.quantity,
            actor=model.actor,
            note=model.note,
            reference=model.reference,
            created_at=ensure_utc(model.created_at),
        )


@dataclass(frozen=True)
class CarrierInfo:
    """Snapshot of a unit carrier's identity and state."""

    id: UUID
    product_id: UUID
    code: str
    units_assigned: int
    stocked_in: bool
    ever_stocked_in: bool
    last_moved_at: datetime | None = None

    @property
    def state(self) -> CarrierState:
        from stock_kernel.domain.carrier_state import derive_state

        return derive_state(self.stocked_in, self.ever_stocked_in)

    @classmethod
    def from_model(cls, model: UnitCarrierModel) -> CarrierInfo:
        from stock_kernel.domain.clock import ensure_utc

        return cls(
            id=model.id,
            product_id=model.product_id,
            code=model.code,
            units_assigned=model.units_assigned,
            stocked_in=model.stocked_in,
            ever_stocked_in=model.ever_stocked_in,
            last_moved_at=(
                ensure_utc(model.last_moved_at) if model.last_moved_at else None
            ),
        )


@dataclass(frozen=True)
class Admission:
    """
    A scan accepted by the scan gate.

    ``units`` is the unit count the movement will carry.
    ``units_defaulted`` is True when the carrier held zero units and the
    repair policy's default count was substituted.
    """

    scan_code: str
    direction: Direction
    product_id: UUID
    carrier_id: UUID
    units: int
    units_defaulted: bool = False


@dataclass(frozen=True)
class RejectionReason:
    """
    Structured reason a scan or adjustment was refused.

    ``details`` carries the rejection's structured attributes (for example
    available/required/shortfall for insufficient stock).
    """

    kind: RejectionKind
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, error: StockRejection) -> RejectionReason:
        details = {
            k: v for k, v in vars(error).items() if not k.startswith("_")
        }
        return cls(
            kind=error.kind,
            code=error.code,
            message=str(error),
            details=details,
        )


@dataclass(frozen=True)
class MovementResult:
    """A committed movement: the ledger entry and the new aggregate stock."""

    entry: LedgerEntryRecord
    new_quantity: int
    carrier: CarrierInfo | None = None

    @property
    def product_id(self) -> UUID:
        return self.entry.product_id

    @property
    def quantity_delta(self) -> int:
        return self.entry.signed_quantity


@dataclass(frozen=True)
class ScanOutcome:
    """Result of submitting a scan: a movement or a rejection, never both."""

    movement: MovementResult | None = None
    rejection: RejectionReason | None = None

    @property
    def accepted(self) -> bool:
        return self.movement is not None

    @classmethod
    def accepted_with(cls, movement: MovementResult) -> ScanOutcome:
        return cls(movement=movement)

    @classmethod
    def rejected_with(cls, rejection: RejectionReason) -> ScanOutcome:
        return cls(rejection=rejection)


@dataclass(frozen=True)
class ConsistencyReport:
    """
    Comparison of the cached aggregate views against derived truth.

    Contract:
        truth_from_carriers = carrier_units + adjustment_net, where
        carrier_units sums units over stocked-in carriers and adjustment_net
        is the signed sum of carrier-less (manual) ledger entries.
        truth_from_ledger is the signed sum of every ledger entry.

    Guarantees:
        - is_consistent is True only when both cached views equal
          truth_from_carriers, the snapshot row exists, and no stocked-in
          carrier holds zero units.
        - ledger_carrier_mismatch flags a ledger/carrier desync, which is
          distinct from plain cache drift.
    """

    product_id: UUID
    carrier_units: int
    adjustment_net: int
    truth_from_carriers: int
    truth_from_ledger: int
    cached_product_value: int
    cached_snapshot_value: int | None
    defective_carriers: tuple[str, ...] = ()
    checked_at: datetime | None = None

    @property
    def snapshot_present(self) -> bool:
        return self.cached_snapshot_value is not None

    @property
    def ledger_carrier_mismatch(self) -> bool:
        return self.truth_from_carriers != self.truth_from_ledger

    @property
    def is_consistent(self) -> bool:
        return (
            self.snapshot_present
            and self.cached_product_value == self.truth_from_carriers
            and self.cached_snapshot_value == self.truth_from_carriers
            and not self.defective_carriers
        )

    def as_log_fields(self) -> dict[str, Any]:
        return {
            "product_id": str(self.product_id),
            "carrier_units": self.carrier_units,
            "adjustment_net": self.adjustment_net,
            "truth_from_carriers": self.truth_from_carriers,
            "truth_from_ledger": self.truth_from_ledger,
            "cached_product_value": self.cached_product_value,
            "cached_snapshot_value": self.cached_snapshot_value,
            "defective_carriers": list(self.defective_carriers),
            "is_consistent": self.is_consistent,
            "ledger_carrier_mismatch": self.ledger_carrier_mismatch,
        }


@dataclass(frozen=True)
class CarrierView:
    """Read model for barcode lookup: carrier, owning product and stock."""

    carrier_id: UUID
    code: str
    product_id: UUID
    sku: str
    product_name: str
    units_assigned: int
    state: CarrierState
    aggregate_stock: int
    last_moved_at: datetime | None = None


@dataclass(frozen=True)
class MovementPage:
    """One page of ledger history, newest first."""

    items: tuple[LedgerEntryRecord, ...]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.limit - 1) // self.limit
