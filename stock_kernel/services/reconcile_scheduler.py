"""
ReconcileScheduler -- in-process polling scheduler for reconciliation.

Contract:
    Wakes on a fixed tick interval and runs whatever is due: a full
    ``ConsistencyReconciler.sweep()`` every ``sweep_interval_seconds`` and a
    ``StockMetrics.refresh()`` every ``metrics_refresh_seconds``.  Each tick
    uses its own session from the injected factory.

Architecture position:
    Kernel > Services.  Started and stopped by StockEngine.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Graceful shutdown: ``stop()`` signals the loop and joins the thread;
      a sweep in progress runs to completion.
    - A failing tick is logged and never kills the loop.
    - The loop never waits less than MIN_TICK_SECONDS between ticks.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.logging_config import get_logger
from stock_kernel.services.metrics import StockMetrics
from stock_kernel.services.reconciler import ConsistencyReconciler, SweepResult

logger = get_logger("services.reconcile_scheduler")

MIN_TICK_SECONDS = 0.5


class ReconcileScheduler:
    """Background thread running periodic sweeps and metrics refreshes.

    Contract:
        - ``tick()`` runs the due work once (public for testing).
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  One process
          per datastore is expected to run it.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        reconciler_factory: Callable[[Session], ConsistencyReconciler],
        metrics: StockMetrics | None = None,
        clock: Clock | None = None,
        sweep_interval_seconds: float = 300,
        metrics_refresh_seconds: float = 30,
        tick_interval_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._reconciler_factory = reconciler_factory
        self._metrics = metrics
        self._clock = clock or SystemClock()
        self._sweep_interval = timedelta(seconds=sweep_interval_seconds)
        self._metrics_interval = timedelta(seconds=metrics_refresh_seconds)
        self._tick_interval = max(
            tick_interval_seconds or min(sweep_interval_seconds, metrics_refresh_seconds),
            MIN_TICK_SECONDS,
        )
        self._next_sweep_at: datetime | None = None
        self._next_refresh_at: datetime | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_sweep: SweepResult | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepResult | None:
        """Run due work.

        Returns the sweep result when a sweep ran on this tick, else None.
        """
        now = self._clock.now_utc()
        result = None

        if self._next_sweep_at is None or now >= self._next_sweep_at:
            result = self.run_sweep()
            self._next_sweep_at = now + self._sweep_interval

        if self._metrics is not None and (
            self._next_refresh_at is None or now >= self._next_refresh_at
        ):
            try:
                self._metrics.refresh()
            except Exception:
                logger.exception("metrics_refresh_failed")
            self._next_refresh_at = now + self._metrics_interval

        return result

    def run_sweep(self) -> SweepResult | None:
        """Sweep every product once in a fresh session."""
        session = self._session_factory()
        try:
            result = self._reconciler_factory(session).sweep()
            session.commit()
            self.last_sweep = result
            return result
        except Exception:
            session.rollback()
            logger.exception("reconcile_sweep_failed")
            return None
        finally:
            session.close()

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="reconcile-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={
                "tick_interval": self._tick_interval,
                "sweep_interval": self._sweep_interval.total_seconds(),
            },
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the scheduler to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)
