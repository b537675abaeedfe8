"""
AggregateProjector -- keeps the two cached stock views in step with the ledger.

Responsibility:
    Writes Product.aggregate_stock and InventorySnapshot.quantity from one
    single value, inside the caller's transaction, so both views change in
    the same atomic unit as the ledger append that caused them.

Architecture position:
    Kernel > Services -- imperative shell.  Called by
    StockTransactionProcessor (``apply``) and ConsistencyReconciler
    (``overwrite``).

Invariants enforced:
    - Both views are written from the same computed value, never computed
      independently per view.
    - Aggregate stock never goes negative: ``apply`` raises
      InsufficientStockError before writing anything.
    - The product row is locked (SELECT ... FOR UPDATE) before it is read,
      so concurrent movements for one product serialize on it.

Failure modes:
    - UnknownProductError if the product row does not exist.
    - InsufficientStockError if the delta would take stock below zero.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import InsufficientStockError, UnknownProductError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.product import Product
from stock_kernel.services.base import BaseService

logger = get_logger("services.aggregate_projector")


class AggregateProjector(BaseService[Product]):
    """
    Projects movements into the cached aggregate views.

    Contract:
        Callers lock the product with ``lock_product`` first; ``apply`` and
        ``overwrite`` then operate on the locked row.  Nothing is committed.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def lock_product(self, product_id: UUID) -> Product:
        """Lock and return the product row (refreshing any cached copy)."""
        product = self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise UnknownProductError(str(product_id))
        return product

    def _snapshot(self, product_id: UUID) -> InventorySnapshot | None:
        return self.session.execute(
            select(InventorySnapshot)
            .where(InventorySnapshot.product_id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def ensure_available(self, product: Product, required: int) -> None:
        """Raise InsufficientStockError unless ``required`` units are on hand."""
        if required > product.aggregate_stock:
            raise InsufficientStockError(
                product_id=str(product.id),
                available=product.aggregate_stock,
                required=required,
            )

    def apply(self, product_id: UUID, signed_delta: int) -> int:
        """
        Add ``signed_delta`` to both cached views.

        Returns:
            The new aggregate stock.
        """
        product = self.lock_product(product_id)
        if signed_delta < 0:
            self.ensure_available(product, -signed_delta)

        new_quantity = product.aggregate_stock + signed_delta
        self._write(product, new_quantity)

        logger.info(
            "aggregate_applied",
            extra={
                "product_id": str(product_id),
                "signed_delta": signed_delta,
                "new_quantity": new_quantity,
            },
        )
        return new_quantity

    def overwrite(self, product_id: UUID, quantity: int) -> int:
        """
        Set both cached views to ``quantity`` (repair path).

        Returns:
            The quantity written.
        """
        if quantity < 0:
            raise ValueError(f"aggregate stock cannot be negative: {quantity}")
        product = self.lock_product(product_id)
        previous = product.aggregate_stock
        self._write(product, quantity)

        logger.info(
            "aggregate_overwritten",
            extra={
                "product_id": str(product_id),
                "previous_quantity": previous,
                "new_quantity": quantity,
            },
        )
        return quantity

    def _write(self, product: Product, quantity: int) -> None:
        now = self._clock.now_utc()
        product.aggregate_stock = quantity

        snapshot = self._snapshot(product.id)
        if snapshot is None:
            snapshot = InventorySnapshot(
                product_id=product.id,
                quantity=quantity,
                last_updated=now,
            )
            self.session.add(snapshot)
        else:
            snapshot.quantity = quantity
            snapshot.last_updated = now

        self.session.flush()
