"""
Stock Kernel - inventory ledger consistency engine

Turns barcode scans and manual adjustments into durable stock movements:
- Append-only movement ledger with monotonic sequencing
- Unit carrier (barcode label) state machine
- Scan admission with immediate-repeat and cooldown suppression
- Synchronous projection into cached aggregate views
- Drift detection and repair against ledger/carrier truth
"""

__version__ = "0.1.0"
