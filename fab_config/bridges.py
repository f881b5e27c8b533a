"""
Bridges from configuration data to engine objects.

The configuration layer stores declarative definitions; these helpers turn
them into the value objects the engines compute with, so engines never read
configuration themselves.
"""

from __future__ import annotations

from fab_config.schema import GlassConfig, InventoryConfig, RoundingDef
from fab_engines.glass import RoundingPolicy
from fab_engines.stock.batch import SortOrder


def rounding_policy(definition: RoundingDef) -> RoundingPolicy:
    if definition.mode == "none":
        return RoundingPolicy.none()
    return RoundingPolicy(
        mode=definition.mode,
        increment=definition.increment,
        increment_unit=definition.unit,
    )


def glass_rounding(glass: GlassConfig, preset: str | None = None) -> RoundingPolicy:
    """The configured default policy, or the named preset."""
    if preset is None:
        return rounding_policy(glass.rounding)
    return rounding_policy(glass.preset(preset))


def default_sort_order(inventory: InventoryConfig) -> SortOrder:
    return SortOrder(inventory.default_sort_order)
