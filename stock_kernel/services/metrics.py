"""
StockMetrics -- process-scoped warehouse metrics with an explicit lifecycle.

Responsibility:
    Holds the running counters (accepted scans by direction, rejections by
    kind, repairs) and the periodically refreshed warehouse totals, and
    exposes them as an immutable MetricsSnapshot.

Lifecycle:
    Created by StockEngine at start, refreshed once on start and then on
    the configured interval by ReconcileScheduler, read through
    ``snapshot()``.  There is no module-level instance.

Invariants enforced:
    - All state is guarded by one ``threading.Lock``.
    - ``snapshot()`` never exposes mutable internals.
"""

import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import Direction
from stock_kernel.exceptions import RejectionKind
from stock_kernel.logging_config import get_logger
from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.models.ledger import LedgerEntry
from stock_kernel.models.product import Product

logger = get_logger("services.metrics")


@dataclass(frozen=True)
class MetricsSnapshot:
    """Read-only view of the metrics at one instant."""

    products: int = 0
    total_units: int = 0
    carriers_stocked_in: int = 0
    ledger_entries: int = 0
    scans_in: int = 0
    scans_out: int = 0
    repairs: int = 0
    rejections: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType({})
    )
    refreshed_at: datetime | None = None

    @property
    def total_rejections(self) -> int:
        return sum(self.rejections.values())


class StockMetrics:
    """Running counters plus periodically refreshed totals."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._accepted: Counter[Direction] = Counter()
        self._rejections: Counter[RejectionKind] = Counter()
        self._repairs = 0
        self._totals: dict[str, int] = {}
        self._refreshed_at: datetime | None = None

    def record_accepted(self, direction: Direction) -> None:
        with self._lock:
            self._accepted[Direction(direction)] += 1

    def record_rejection(self, kind: RejectionKind) -> None:
        with self._lock:
            self._rejections[RejectionKind(kind)] += 1

    def record_repair(self) -> None:
        with self._lock:
            self._repairs += 1

    def refresh(self) -> MetricsSnapshot:
        """Recompute the warehouse totals from the datastore."""
        session = self._session_factory()
        try:
            products, total_units = session.execute(
                select(
                    func.count(Product.id),
                    func.coalesce(func.sum(Product.aggregate_stock), 0),
                )
            ).one()
            carriers_stocked_in = session.execute(
                select(func.count(UnitCarrier.id)).where(
                    UnitCarrier.stocked_in.is_(True)
                )
            ).scalar_one()
            ledger_entries = session.execute(
                select(func.count(LedgerEntry.id))
            ).scalar_one()
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        with self._lock:
            self._totals = {
                "products": int(products),
                "total_units": int(total_units),
                "carriers_stocked_in": int(carriers_stocked_in),
                "ledger_entries": int(ledger_entries),
            }
            self._refreshed_at = self._clock.now_utc()

        logger.debug("metrics_refreshed", extra=dict(self._totals))
        return self.snapshot()

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                products=self._totals.get("products", 0),
                total_units=self._totals.get("total_units", 0),
                carriers_stocked_in=self._totals.get("carriers_stocked_in", 0),
                ledger_entries=self._totals.get("ledger_entries", 0),
                scans_in=self._accepted[Direction.IN],
                scans_out=self._accepted[Direction.OUT],
                repairs=self._repairs,
                rejections=MappingProxyType(
                    {kind.value: count for kind, count in self._rejections.items()}
                ),
                refreshed_at=self._refreshed_at,
            )
