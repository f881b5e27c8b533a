"""
Legacy stock migration.

Older stock records kept one row per (length, unit, gauge) with a quantity
and a unit rate, but no batches.  Each usable row becomes an opening batch
with the migrated-id prefix.  A row is usable only when it carries a
positive quantity, rate and recorded weight: reference gauge weights are an
estimate and are never used to invent a recorded weight.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from fab_engines.stock.batch import Batch, StockKey
from fab_kernel.domain.values import positive_decimal, require_text, to_quantity
from fab_kernel.exceptions import ValidationError
from fab_kernel.logging_config import LogContext, get_logger
from fab_services.batch_ledger import BatchStockLedger, build_stock_key

logger = get_logger("services.migration")


@dataclass(frozen=True)
class MigrationReport:
    """Outcome of migrating one material."""

    material_id: str
    migrated: tuple[Batch, ...] = ()
    skipped: tuple[tuple[int, str], ...] = ()
    already_migrated: bool = False

    @property
    def migrated_quantity(self) -> int:
        return sum(b.original_quantity for b in self.migrated)


@dataclass(frozen=True)
class _Entry:
    index: int
    key: StockKey
    quantity: int
    weight: Decimal
    total_cost: Decimal


def _parse_entry(index: int, material_id: str, raw: Mapping[str, object]) -> _Entry:
    key = build_stock_key(material_id, raw.get("length"), raw.get("unit"), raw.get("gauge"))
    quantity = to_quantity(raw.get("quantity"), "quantity")
    rate = positive_decimal(raw.get("unitRate"), "unitRate")
    weight = positive_decimal(raw.get("actualWeight"), "actualWeight")
    return _Entry(
        index=index,
        key=key,
        quantity=quantity,
        weight=weight,
        total_cost=rate * quantity,
    )


def migrate_legacy_stock(
    ledger: BatchStockLedger,
    material_id: str,
    entries: Sequence[Mapping[str, object]],
    supplier: str | None = None,
    received_at: datetime | None = None,
) -> MigrationReport:
    """
    Book a material's legacy stock rows as opening batches.

    Every row is checked before anything is written; unusable rows are
    reported in ``skipped`` as ``(index, reason)``.  Usable rows are booked
    together in one unit of work, so a failure part way leaves the material
    unmigrated and a rerun books every row.  A material that already has
    batches is left alone and reported as ``already_migrated``.

    Args:
        entries: Rows with ``length``, ``unit``, ``gauge``, ``quantity``,
            ``unitRate`` and ``actualWeight``.
        received_at: Legacy receipt time shared by all opening batches.
    """
    material = require_text(material_id, "material_id")
    if received_at is not None and received_at.tzinfo is None:
        raise ValidationError("received_at", "must be timezone-aware", received_at)
    with LogContext.bind(material_id=material):
        usable: list[_Entry] = []
        skipped: list[tuple[int, str]] = []
        for index, raw in enumerate(entries):
            if not isinstance(raw, Mapping):
                skipped.append((index, "entry is not an object"))
                continue
            try:
                usable.append(_parse_entry(index, material, raw))
            except ValidationError as exc:
                skipped.append((index, str(exc)))

        with ledger.unit_of_work(entry.key for entry in usable):
            if ledger.store.batches_for_material(material):
                logger.info("legacy_migration_skipped", extra={"reason": "already migrated"})
                return MigrationReport(material_id=material, already_migrated=True)
            migrated = tuple(
                ledger.book_opening_stock(
                    material,
                    entry.key.length,
                    entry.key.length_unit,
                    entry.key.gauge,
                    entry.quantity,
                    entry.weight,
                    entry.total_cost,
                    supplier=supplier,
                    received_at=received_at,
                    notes=f"Migrated from legacy stock entry {entry.index}",
                )
                for entry in usable
            )

        logger.info(
            "legacy_migration_completed",
            extra={
                "migrated_batches": len(migrated),
                "skipped_entries": len(skipped),
            },
        )
        for index, reason in skipped:
            logger.warning("legacy_entry_skipped", extra={"entry_index": index, "reason": reason})

    return MigrationReport(
        material_id=material,
        migrated=migrated,
        skipped=tuple(skipped),
        already_migrated=False,
    )
