"""
stock_config -- single public entrypoint for stock engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration.  This package sits above ``stock_kernel``: the kernel
    MUST NEVER import from ``stock_config``; ``stock_config.bridges``
    translates an EngineConfig into kernel objects.

Sources, in overlay order:
    1. packaged ``defaults.yaml``
    2. the YAML file named by ``path`` or ``STOCK_CONFIG_FILE``
    3. environment overrides (see ``loader.ENV_OVERRIDES``)

Failure modes:
    - ``FileNotFoundError`` -- the named override file does not exist.
    - ``ValueError`` -- a value fails validation.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from stock_config.loader import (
    apply_env_overrides,
    load_yaml_file,
    merge_config,
    parse_engine_config,
)
from stock_config.schema import (
    DatabaseConfig,
    EngineConfig,
    LoggingConfig,
    ReconcilerConfig,
    RepairPolicy,
    ScanGateConfig,
)

_logger = logging.getLogger("stock_kernel.config")

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"
CONFIG_FILE_ENV = "STOCK_CONFIG_FILE"


def get_active_config(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Optional YAML file overlaid on the packaged defaults.
            Falls back to ``STOCK_CONFIG_FILE`` when not given.
        env: Environment mapping; defaults to ``os.environ``.

    Returns:
        A validated, frozen EngineConfig.
    """
    env = os.environ if env is None else env

    data = load_yaml_file(DEFAULTS_FILE)
    sources = [str(DEFAULTS_FILE)]

    override = path or env.get(CONFIG_FILE_ENV)
    if override:
        override_path = Path(override)
        data = merge_config(data, load_yaml_file(override_path))
        sources.append(str(override_path))

    data = apply_env_overrides(data, env)
    config = parse_engine_config(data, sources=tuple(sources))

    _logger.info(
        "stock_config_loaded",
        extra={
            "checksum": config.checksum,
            "sources": list(config.sources),
            "immediate_repeat_seconds": config.scan_gate.immediate_repeat_seconds,
            "cooldown_seconds": config.scan_gate.cooldown_seconds,
            "default_unit_count": config.repair.default_unit_count,
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "EngineConfig",
    "LoggingConfig",
    "ReconcilerConfig",
    "RepairPolicy",
    "ScanGateConfig",
    "get_active_config",
]
