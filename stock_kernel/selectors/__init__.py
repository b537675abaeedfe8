"""Selectors for the stock kernel (read side)."""

from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.selectors.stock_selector import StockSelector

__all__ = [
    "LedgerSelector",
    "StockSelector",
]
