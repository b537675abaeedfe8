"""
Module: stock_kernel.models.ledger
Responsibility: ORM persistence for the append-only movement ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py (for the Direction enumeration).

Invariants enforced:
    - Append-only: no UPDATE, no DELETE (ORM listeners in db/immutability.py
      and database triggers in db/triggers.py).
    - quantity > 0 (ck_ledger_quantity_positive).
    - direction is IN or OUT (ck_ledger_direction).
    - seq is unique and strictly increasing (uq_ledger_seq, allocated from
      the locked ``ledger_entry`` sequence counter).

Failure modes:
    - ImmutabilityViolationError on any ORM update or delete.
    - DBAPIError raised by the triggers on raw UPDATE/DELETE.

Aggregates are derivable from this table alone: the signed sum of quantity
per product equals the product's aggregate stock.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString
from stock_kernel.domain.dtos import Direction


class LedgerEntry(Base):
    """
    One immutable stock movement.

    Contract:
        Written once by LedgerService.append and never modified.  carrier_id
        is NULL for manual adjustments.
    """

    __tablename__ = "ledger_entries"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_ledger_seq"),
        CheckConstraint("quantity > 0", name="ck_ledger_quantity_positive"),
        CheckConstraint("direction IN ('IN', 'OUT')", name="ck_ledger_direction"),
        Index("idx_ledger_product_seq", "product_id", "seq"),
        Index("idx_ledger_carrier_direction_seq", "carrier_id", "direction", "seq"),
    )

    seq: Mapped[int] = mapped_column(
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    carrier_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("unit_carriers.id", ondelete="RESTRICT"),
        nullable=True,
    )

    direction: Mapped[Direction] = mapped_column(
        String(3),
        nullable=False,
    )

    # Units moved (not labels)
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    actor: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    note: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    reference: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry #{self.seq} {self.direction} {self.quantity} "
            f"product={self.product_id}>"
        )
