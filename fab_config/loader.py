"""
Configuration Loader (``fab_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``fab_config.schema`` dataclasses.  Runtime callers go through
``fab_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Required keys have no silent defaults: a missing one raises ``KeyError``
  and an out-of-range value raises ``ValueError``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values (unknown sort order, bad increment)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from fab_config.schema import FabricationConfig, GlassConfig, InventoryConfig, RoundingDef

_SORT_ORDERS = ("FIFO", "LIFO")
_ROUNDING_MODES = ("nearest", "up", "none")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field: str) -> Decimal:
    # YAML floats are read back through their text form.
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field}: cannot parse decimal from {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"{field}: must be finite, got {value!r}")
    return result


def parse_rounding(data: dict[str, Any], field: str = "rounding") -> RoundingDef:
    """Parse a RoundingDef from a dict."""
    mode = str(data["mode"]).lower()
    if mode not in _ROUNDING_MODES:
        raise ValueError(f"{field}.mode must be one of {_ROUNDING_MODES}, got {mode!r}")
    if mode == "none":
        return RoundingDef(mode=mode)
    increment = parse_decimal(data["increment"], f"{field}.increment")
    if increment <= 0:
        raise ValueError(f"{field}.increment must be positive, got {increment}")
    return RoundingDef(mode=mode, increment=increment, unit=data.get("unit"))


def parse_inventory(data: dict[str, Any]) -> InventoryConfig:
    """Parse InventoryConfig; every key is optional and defaults as in the schema."""
    defaults = InventoryConfig()
    sort_order = str(data.get("default_sort_order", defaults.default_sort_order)).upper()
    if sort_order not in _SORT_ORDERS:
        raise ValueError(f"inventory.default_sort_order must be FIFO or LIFO, got {sort_order!r}")
    return InventoryConfig(
        default_sort_order=sort_order,
        batch_prefix=data.get("batch_prefix", defaults.batch_prefix),
        migrated_prefix=data.get("migrated_prefix", defaults.migrated_prefix),
        transaction_prefix=data.get("transaction_prefix", defaults.transaction_prefix),
        weight_unit=data.get("weight_unit", defaults.weight_unit),
        currency=data.get("currency", defaults.currency),
    )


def parse_glass(data: dict[str, Any]) -> GlassConfig:
    """Parse GlassConfig from a dict."""
    area_places = data["area_places"]
    if isinstance(area_places, bool) or not isinstance(area_places, int) or area_places < 0:
        raise ValueError(f"glass.area_places must be a non-negative integer, got {area_places!r}")
    presets = tuple(
        (name, parse_rounding(definition, f"glass.presets.{name}"))
        for name, definition in sorted((data.get("presets") or {}).items())
    )
    return GlassConfig(
        input_unit=data["input_unit"],
        output_unit=data["output_unit"],
        area_places=area_places,
        rounding=parse_rounding(data["rounding"], "glass.rounding"),
        billing_ladder=bool(data.get("billing_ladder", False)),
        presets=presets,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_config(path: Path) -> FabricationConfig:
    """
    Load and parse a configuration set file.

    Raises:
        FileNotFoundError, yaml.YAMLError, KeyError, ValueError.
    """
    data = load_yaml_file(path)
    return FabricationConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        inventory=parse_inventory(data.get("inventory") or {}),
        glass=parse_glass(data["glass"]),
        database_url=(data.get("database") or {}).get("url"),
        log_level=str((data.get("logging") or {}).get("level", "INFO")).upper(),
        checksum=compute_checksum(data),
    )
