"""
fab_config -- single public entrypoint for fabrication configuration.

Responsibility:
    Provides the one way to obtain configuration at runtime through
    ``get_active_config()``.  Services, the boundary and scripts never read
    configuration files directly.

Architecture position:
    Configuration -- sits above ``fab_kernel`` and ``fab_engines`` and below
    ``fab_services``.  The kernel MUST NEVER import from ``fab_config``;
    ``fab_config.bridges`` translates definitions into engine objects.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic identity: the same YAML always yields the same checksum.
    - One parse per path: results are cached until ``clear_config_cache()``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or invalid settings.

Audit relevance:
    Every load emits a ``FAB_CONFIG_TRACE`` log entry with the config_id,
    version and checksum, tying ledger activity to the configuration
    version that governed it.
"""

from __future__ import annotations

import threading
from pathlib import Path

from fab_config.loader import load_config
from fab_config.schema import (
    FabricationConfig,
    GlassConfig,
    InventoryConfig,
    RoundingDef,
)
from fab_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration set
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

_cache: dict[Path, FabricationConfig] = {}
_cache_lock = threading.Lock()


def get_active_config(path: Path | str | None = None) -> FabricationConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        path: Configuration set file.  Defaults to fab_config/sets/default.yaml.

    Returns:
        The parsed, checksummed FabricationConfig (cached per resolved path).
    """
    resolved = Path(path or DEFAULT_CONFIG_PATH).resolve()
    with _cache_lock:
        cached = _cache.get(resolved)
        if cached is not None:
            return cached
        config = load_config(resolved)
        _cache[resolved] = config

    _logger.info(
        "FAB_CONFIG_TRACE",
        extra={
            "trace_type": "FAB_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "path": str(resolved),
        },
    )
    return config


def clear_config_cache() -> None:
    """Drop cached configuration (tests and reload)."""
    with _cache_lock:
        _cache.clear()


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "FabricationConfig",
    "GlassConfig",
    "InventoryConfig",
    "RoundingDef",
    "clear_config_cache",
    "get_active_config",
]
