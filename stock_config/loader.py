"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Loads YAML files, overlays them with environment variables and parses the
merged mapping into the frozen ``stock_config.schema`` dataclasses.  The
single public entry point for runtime config is
``stock_config.get_active_config()``.

Invariants enforced
-------------------
* All validation errors raise ``ValueError`` with a descriptive message;
  no silent defaults for invalid values.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Non-numeric environment override  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    DatabaseConfig,
    EngineConfig,
    LoggingConfig,
    ReconcilerConfig,
    RepairPolicy,
    ScanGateConfig,
)

# Environment variable -> (section, key, converter)
ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "DATABASE_URL": ("database", "url", str),
    "STOCK_LOG_LEVEL": ("logging", "level", str),
    "STOCK_IMMEDIATE_REPEAT_SECONDS": ("scan_gate", "immediate_repeat_seconds", float),
    "STOCK_COOLDOWN_SECONDS": ("scan_gate", "cooldown_seconds", float),
    "STOCK_DEFAULT_UNIT_COUNT": ("repair", "default_unit_count", int),
    "STOCK_SWEEP_INTERVAL_SECONDS": ("reconciler", "sweep_interval_seconds", float),
}

_VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def merge_config(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``overlay`` onto a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_env_overrides(
    data: dict[str, Any], env: Mapping[str, str]
) -> dict[str, Any]:
    """
    Apply the recognised environment variables on top of ``data``.

    Raises:
        ValueError: if a numeric override cannot be converted.
    """
    result = copy.deepcopy(data)
    for var, (section, key, convert) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError:
            raise ValueError(
                f"Environment variable {var}={raw!r} is not a valid {convert.__name__}"
            ) from None
        result.setdefault(section, {})[key] = value
    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    url = data.get("url") or ""
    if not str(url).strip():
        raise ValueError("database.url must not be empty")
    config = DatabaseConfig(
        url=str(url),
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=int(data.get("pool_timeout", 30)),
    )
    if config.pool_size < 1:
        raise ValueError("database.pool_size must be at least 1")
    if config.max_overflow < 0:
        raise ValueError("database.max_overflow must not be negative")
    return config


def parse_scan_gate(data: dict[str, Any]) -> ScanGateConfig:
    config = ScanGateConfig(
        immediate_repeat_seconds=float(data.get("immediate_repeat_seconds", 3)),
        cooldown_seconds=float(data.get("cooldown_seconds", 300)),
    )
    if config.immediate_repeat_seconds < 0:
        raise ValueError("scan_gate.immediate_repeat_seconds must not be negative")
    if config.cooldown_seconds < 0:
        raise ValueError("scan_gate.cooldown_seconds must not be negative")
    return config


def parse_repair_policy(data: dict[str, Any]) -> RepairPolicy:
    config = RepairPolicy(
        default_unit_count=int(data.get("default_unit_count", 1)),
        normalize_zero_unit_carriers=bool(
            data.get("normalize_zero_unit_carriers", True)
        ),
    )
    if config.default_unit_count < 1:
        raise ValueError("repair.default_unit_count must be at least 1")
    return config


def parse_reconciler(data: dict[str, Any]) -> ReconcilerConfig:
    config = ReconcilerConfig(
        verify_after_scan=bool(data.get("verify_after_scan", True)),
        sweep_interval_seconds=float(data.get("sweep_interval_seconds", 300)),
        metrics_refresh_seconds=float(data.get("metrics_refresh_seconds", 30)),
    )
    if config.sweep_interval_seconds <= 0:
        raise ValueError("reconciler.sweep_interval_seconds must be positive")
    if config.metrics_refresh_seconds <= 0:
        raise ValueError("reconciler.metrics_refresh_seconds must be positive")
    return config


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"logging.level must be one of {sorted(_VALID_LOG_LEVELS)}, got {level!r}"
        )
    return LoggingConfig(level=level)


def parse_engine_config(
    data: dict[str, Any], sources: tuple[str, ...] = ()
) -> EngineConfig:
    """Parse a fully merged mapping into an EngineConfig."""
    return EngineConfig(
        database=parse_database(_section(data, "database")),
        scan_gate=parse_scan_gate(_section(data, "scan_gate")),
        repair=parse_repair_policy(_section(data, "repair")),
        reconciler=parse_reconciler(_section(data, "reconciler")),
        logging=parse_logging(_section(data, "logging")),
        checksum=compute_checksum(data),
        sources=sources,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
