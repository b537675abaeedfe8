"""Services for the stock kernel (write side)."""

from stock_kernel.services.aggregate_projector import AggregateProjector
from stock_kernel.services.carrier_registry import CarrierRegistry, generate_code
from stock_kernel.services.ledger_service import (
    REFERENCE_ADJUSTMENT,
    REFERENCE_INITIAL_STOCK,
    REFERENCE_UNIT_REPAIR,
    LedgerService,
    scan_reference,
)
from stock_kernel.services.metrics import MetricsSnapshot, StockMetrics
from stock_kernel.services.notifications import (
    TOPIC_ALL,
    TOPIC_CONSISTENCY_REPORT,
    TOPIC_MOVEMENT_RECORDED,
    TOPIC_STOCK_CHANGED,
    ConsistencyReportEmitted,
    MovementRecorded,
    NotificationBus,
    StockChanged,
)
from stock_kernel.services.reconcile_scheduler import ReconcileScheduler
from stock_kernel.services.reconciler import ConsistencyReconciler, SweepResult
from stock_kernel.services.scan_gate import ImmediateRepeatTracker, ScanGate
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_engine import StockEngine
from stock_kernel.services.stock_processor import StockTransactionProcessor

__all__ = [
    "AggregateProjector",
    "CarrierRegistry",
    "ConsistencyReconciler",
    "ConsistencyReportEmitted",
    "ImmediateRepeatTracker",
    "LedgerService",
    "MetricsSnapshot",
    "MovementRecorded",
    "NotificationBus",
    "REFERENCE_ADJUSTMENT",
    "REFERENCE_INITIAL_STOCK",
    "REFERENCE_UNIT_REPAIR",
    "ReconcileScheduler",
    "ScanGate",
    "SequenceService",
    "StockChanged",
    "StockEngine",
    "StockMetrics",
    "StockTransactionProcessor",
    "SweepResult",
    "TOPIC_ALL",
    "TOPIC_CONSISTENCY_REPORT",
    "TOPIC_MOVEMENT_RECORDED",
    "TOPIC_STOCK_CHANGED",
    "generate_code",
    "scan_reference",
]
