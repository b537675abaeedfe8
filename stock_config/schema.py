"""
Stock engine configuration schema.

Frozen dataclasses parsed from YAML by the loader.  Every deployment-level
knob of the stock kernel lives here: the datastore, the scan gate windows,
the zero-unit repair policy, the reconciler cadence and the log level.

Scan gate windows are per deployment, not per product type.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Datastore connection settings."""

    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30


@dataclass(frozen=True)
class ScanGateConfig:
    """
    Scan gate windows, in seconds.

    immediate_repeat_seconds: how long the previous accepted code keeps
        blocking an identical scan (cleared early by any different code).
    cooldown_seconds: how long a carrier+direction pair stays blocked
        after an accepted ledger entry.
    """

    immediate_repeat_seconds: float = 3
    cooldown_seconds: float = 300


@dataclass(frozen=True)
class RepairPolicy:
    """
    Zero-unit carrier handling.

    default_unit_count is the unit count assumed for a carrier that holds
    zero units; it both seeds the scan and repairs stocked-in carriers.
    Whether this default is a business rule or a workaround for historical
    data entry awaits product-owner confirmation, so it stays configurable.
    """

    default_unit_count: int = 1
    normalize_zero_unit_carriers: bool = True


@dataclass(frozen=True)
class ReconcilerConfig:
    """Reconciler cadence."""

    verify_after_scan: bool = True
    sweep_interval_seconds: float = 300
    metrics_refresh_seconds: float = 30


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class EngineConfig:
    """
    The complete runtime configuration.

    ``checksum`` is a SHA-256 over the canonical merged source data, for
    change detection.  ``sources`` lists the YAML files that contributed,
    in overlay order.
    """

    database: DatabaseConfig
    scan_gate: ScanGateConfig = field(default_factory=ScanGateConfig)
    repair: RepairPolicy = field(default_factory=RepairPolicy)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
    sources: tuple[str, ...] = ()
