"""
Module: stock_kernel.models.inventory_snapshot
Responsibility: ORM persistence for the inventory read view, a
    materialized copy of Product.aggregate_stock for read paths that should
    not touch the catalog row.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per product (uq_snapshot_product).
    - quantity >= 0 (ck_snapshot_quantity_non_negative).
    - quantity == Product.aggregate_stock after every commit (maintained by
      AggregateProjector, restored by ConsistencyReconciler).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString


class InventorySnapshot(Base):
    """Cached per-product quantity, always written with the product aggregate."""

    __tablename__ = "inventory_snapshots"

    __table_args__ = (
        UniqueConstraint("product_id", name="uq_snapshot_product"),
        CheckConstraint("quantity >= 0", name="ck_snapshot_quantity_non_negative"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
