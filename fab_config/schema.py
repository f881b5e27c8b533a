"""
Fabrication configuration schema.

Frozen dataclasses the YAML configuration set is parsed into.  They hold
declarative data only; ``fab_config.bridges`` turns them into engine
objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryConfig:
    """Batch ledger defaults."""

    default_sort_order: str = "FIFO"
    batch_prefix: str = "BATCH"
    migrated_prefix: str = "MIGRATED"
    transaction_prefix: str = "TXN"
    weight_unit: str = "kg"
    currency: str = "INR"


# ---------------------------------------------------------------------------
# Glass
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoundingDef:
    """Dimension rounding rule as written in YAML."""

    mode: str  # nearest, up, none
    increment: Decimal = Decimal("1")
    unit: str | None = None


@dataclass(frozen=True)
class GlassConfig:
    """Glass calculator defaults and named rounding presets."""

    input_unit: str
    output_unit: str
    area_places: int
    rounding: RoundingDef
    billing_ladder: bool = False
    presets: tuple[tuple[str, RoundingDef], ...] = ()

    def preset(self, name: str) -> RoundingDef:
        for preset_name, definition in self.presets:
            if preset_name == name:
                return definition
        raise KeyError(
            f"Unknown rounding preset {name!r}; "
            f"available: {', '.join(n for n, _ in self.presets) or 'none'}"
        )

    @property
    def preset_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.presets)


# ---------------------------------------------------------------------------
# Configuration set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FabricationConfig:
    """The complete, checksummed configuration set."""

    config_id: str
    version: int
    inventory: InventoryConfig
    glass: GlassConfig
    database_url: str | None = None
    log_level: str = "INFO"
    checksum: str = field(default="", compare=False)
