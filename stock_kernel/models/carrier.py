"""
Module: stock_kernel.models.carrier
Responsibility: ORM persistence for unit carriers -- the physical barcode
    labels operators scan, each standing for a fixed number of units.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique (uq_carrier_code).
    - units_assigned >= 0 (ck_carrier_units_non_negative).
    - A carrier referenced by ledger entries is never deleted (ledger FK
      ON DELETE RESTRICT plus the before_flush guard in db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate code.
    - CarrierReferencedError on deletion of a referenced carrier.

State is stored as two flags: stocked_in (currently counted) and
ever_stocked_in (has been counted at least once).  The pair maps to the
UNASSIGNED / STOCKED_IN / STOCKED_OUT states in domain/carrier_state.py.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString


class UnitCarrier(TrackedBase):
    """
    A scannable label carrying ``units_assigned`` units of one product.

    Contract:
        Only the carrier registry changes stocked_in / ever_stocked_in /
        units_assigned after issuance.
    """

    __tablename__ = "unit_carriers"

    __table_args__ = (
        UniqueConstraint("code", name="uq_carrier_code"),
        CheckConstraint(
            "units_assigned >= 0", name="ck_carrier_units_non_negative"
        ),
        Index("idx_carrier_product_stocked", "product_id", "stocked_in"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Scannable identifier printed on the label
    code: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    units_assigned: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    stocked_in: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    ever_stocked_in: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    last_moved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<UnitCarrier {self.code}: units={self.units_assigned} "
            f"stocked_in={self.stocked_in}>"
        )
