"""ORM models for the stock kernel."""

from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.models.inventory_snapshot import InventorySnapshot
from stock_kernel.models.ledger import LedgerEntry
from stock_kernel.models.product import Product
from stock_kernel.models.sequence import SequenceCounter

__all__ = [
    "InventorySnapshot",
    "LedgerEntry",
    "Product",
    "SequenceCounter",
    "UnitCarrier",
]
