"""
Module: stock_kernel.selectors.stock_selector
Responsibility: Read paths over the cached aggregate views and carriers:
    aggregate stock per product, the snapshot quantity, and barcode lookup.
Architecture position: Kernel > Selectors.  The aggregate read here is the
    one catalog and reporting collaborators consume.

Failure modes:
    - UnknownProductError for a product that does not exist.
    - carrier_view() returns None for an unknown code; the engine turns that
      into UnknownBarcodeError.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.carrier_state import derive_state
from stock_kernel.domain.clock import ensure_utc
from stock_kernel.domain.dtos import CarrierInfo, CarrierView
from stock_kernel.exceptions import UnknownProductError
from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.product import Product
from stock_kernel.selectors.base import BaseSelector


class StockSelector(BaseSelector[Product]):
    """Read-only access to stock levels and carriers."""

    def __init__(self, session: Session):
        super().__init__(session)

    def get_aggregate(self, product_id: UUID) -> int:
        value = self.session.execute(
            select(Product.aggregate_stock).where(Product.id == product_id)
        ).scalar_one_or_none()
        if value is None:
            raise UnknownProductError(str(product_id))
        return int(value)

    def snapshot_quantity(self, product_id: UUID) -> int | None:
        """The inventory snapshot quantity, or None when no row exists yet."""
        return self.session.execute(
            select(InventorySnapshot.quantity).where(
                InventorySnapshot.product_id == product_id
            )
        ).scalar_one_or_none()

    def product_id_for_sku(self, sku: str) -> UUID | None:
        return self.session.execute(
            select(Product.id).where(Product.sku == sku)
        ).scalar_one_or_none()

    def carrier_view(self, code: str) -> CarrierView | None:
        row = self.session.execute(
            select(UnitCarrier, Product)
            .join(Product, Product.id == UnitCarrier.product_id)
            .where(UnitCarrier.code == code)
        ).one_or_none()
        if row is None:
            return None

        carrier, product = row
        return CarrierView(
            carrier_id=carrier.id,
            code=carrier.code,
            product_id=product.id,
            sku=product.sku,
            product_name=product.name,
            units_assigned=carrier.units_assigned,
            state=derive_state(carrier.stocked_in, carrier.ever_stocked_in),
            aggregate_stock=product.aggregate_stock,
            last_moved_at=(
                ensure_utc(carrier.last_moved_at) if carrier.last_moved_at else None
            ),
        )

    def carriers_for_product(self, product_id: UUID) -> list[CarrierInfo]:
        rows = self.session.execute(
            select(UnitCarrier)
            .where(UnitCarrier.product_id == product_id)
            .order_by(UnitCarrier.code)
        ).scalars().all()
        return [CarrierInfo.from_model(row) for row in rows]
