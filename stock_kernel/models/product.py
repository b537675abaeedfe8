"""
Module: stock_kernel.models.product
Responsibility: ORM persistence for catalog products, as far as the stock
    kernel needs them: identity, sku, price and the cached aggregate stock.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - sku is unique (uq_product_sku).
    - aggregate_stock >= 0 (ck_product_aggregate_non_negative).

Failure modes:
    - IntegrityError on a duplicate sku or a negative aggregate write.

The product row doubles as the per-product write lock: every movement and
every repair takes SELECT ... FOR UPDATE on it before touching carriers,
the ledger or the inventory snapshot.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase


class Product(TrackedBase):
    """
    Catalog product with its cached aggregate stock.

    Contract:
        The catalog owns every field except aggregate_stock.  The stock
        kernel writes aggregate_stock only through the aggregate projector
        and the reconciler.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("sku", name="uq_product_sku"),
        CheckConstraint(
            "aggregate_stock >= 0", name="ck_product_aggregate_non_negative"
        ),
    )

    sku: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
    )

    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
    )

    # Cached total stock (derived; see AggregateProjector)
    aggregate_stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku}: {self.aggregate_stock}>"
