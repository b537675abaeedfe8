"""
Config -> Kernel Bridges.

Functions that turn an EngineConfig into kernel objects.  They live in
stock_config (the producer) because the kernel must NEVER import
stock_config.

Usage:
    from stock_config import get_active_config
    from stock_config.bridges import build_stock_engine, init_database

    config = get_active_config()
    init_database(config)
    engine = build_stock_engine(config)
    engine.start()
"""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from stock_config.schema import EngineConfig
from stock_kernel.db.engine import get_session_factory, init_engine_from_url
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.clock import Clock
from stock_kernel.logging_config import configure_logging
from stock_kernel.services.notifications import NotificationBus
from stock_kernel.services.reconciler import ConsistencyReconciler
from stock_kernel.services.stock_engine import StockEngine


def init_database(config: EngineConfig) -> Engine:
    """Configure logging, the global engine and the ORM immutability guards."""
    configure_logging(level=config.logging.level)
    db = config.database
    engine = init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
    )
    register_immutability_listeners()
    return engine


def build_stock_engine(
    config: EngineConfig,
    session_factory: Callable[[], Session] | None = None,
    clock: Clock | None = None,
    bus: NotificationBus | None = None,
) -> StockEngine:
    """Build a StockEngine with the configured windows and repair policy.

    ``session_factory`` defaults to the one set up by ``init_database``.
    """
    return StockEngine(
        session_factory=session_factory or get_session_factory(),
        clock=clock,
        bus=bus,
        immediate_repeat_seconds=config.scan_gate.immediate_repeat_seconds,
        cooldown_seconds=config.scan_gate.cooldown_seconds,
        default_unit_count=config.repair.default_unit_count,
        normalize_zero_unit_carriers=config.repair.normalize_zero_unit_carriers,
        verify_after_scan=config.reconciler.verify_after_scan,
        sweep_interval_seconds=config.reconciler.sweep_interval_seconds,
        metrics_refresh_seconds=config.reconciler.metrics_refresh_seconds,
    )


def build_reconciler(
    config: EngineConfig,
    session: Session,
    clock: Clock | None = None,
    bus: NotificationBus | None = None,
) -> ConsistencyReconciler:
    """A reconciler bound to ``session`` following the configured repair policy."""
    return ConsistencyReconciler(
        session,
        clock=clock,
        bus=bus,
        default_unit_count=config.repair.default_unit_count,
        normalize_zero_unit_carriers=config.repair.normalize_zero_unit_carriers,
    )
