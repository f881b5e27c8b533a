"""
fab_services.boundary -- Request/response mapping for external callers.

Responsibility:
    Accept raw request payloads (camelCase keys, JSON-ish values) for the
    stock ledger and the glass calculator, call the engine, and return
    JSON-safe dicts.  Turns any FabricationError into an error payload.

Architecture position:
    Services -- outermost layer of this repository.  HTTP routing and
    authentication belong to the caller; each function here corresponds to
    one route:

        POST stock-inward              -> stock_inward
        POST consume-stock             -> consume_stock
        POST reverse-consumption       -> reverse_consumption
        GET  stock-report/:materialId  -> stock_report
        GET  batch-history/:materialId -> batch_history
        GET  consumption-history/:id   -> consumption_history
        (quotation/estimation)         -> glass_area

Invariants enforced:
    - Decimals serialize as strings, datetimes as ISO-8601, enums as values.
    - Payload validation happens in the ledger/engines; this layer only
      maps names and never swallows errors.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from fab_config import get_active_config
from fab_config.bridges import glass_rounding
from fab_engines.glass import (
    GlassAreaResult,
    RoundingMode,
    RoundingPolicy,
    calculate_glass_area_with_quantity,
)
from fab_engines.stock.batch import (
    Batch,
    ConsumptionPlan,
    KeySummary,
    MaterialStockView,
    StockTransaction,
    TransactionLine,
)
from fab_kernel.domain.values import require_text
from fab_kernel.exceptions import FabricationError, ValidationError
from fab_kernel.logging_config import LogContext, get_logger
from fab_services.batch_ledger import BatchStockLedger

logger = get_logger("services.boundary")

_CAMEL_RE = re.compile(r"_([a-z])")


def camel(name: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), name)


def to_json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------


def batch_to_dict(batch: Batch) -> dict[str, Any]:
    return {
        "batchId": batch.batch_id,
        "materialId": batch.key.material_id,
        "length": to_json_value(batch.key.length),
        "lengthUnit": batch.key.length_unit,
        "gauge": batch.key.gauge,
        "originalQuantity": batch.original_quantity,
        "currentQuantity": batch.current_quantity,
        "consumedQuantity": batch.consumed_quantity,
        "actualTotalWeight": to_json_value(batch.actual_total_weight),
        "weightUnit": batch.weight_unit,
        "unitWeight": to_json_value(batch.unit_weight),
        "currentWeight": to_json_value(batch.current_weight),
        "totalCost": to_json_value(batch.total_cost),
        "currentValue": to_json_value(batch.current_value),
        "ratePerPiece": to_json_value(batch.rate_per_piece),
        "ratePerKg": to_json_value(batch.rate_per_kg),
        "utilizationPercent": to_json_value(batch.utilization_percent),
        "supplier": batch.supplier,
        "invoiceNumber": batch.invoice_number,
        "lotNumber": batch.lot_number,
        "notes": batch.notes,
        "sourceBatchId": batch.source_batch_id,
        "receivedAt": to_json_value(batch.received_at),
        "status": batch.status.value,
    }


def line_to_dict(line: TransactionLine) -> dict[str, Any]:
    return {
        "batchId": line.batch_id,
        "quantity": line.quantity,
        "weight": to_json_value(line.weight),
        "cost": to_json_value(line.cost),
        "residualQuantity": line.residual_quantity,
    }


def plan_to_dict(plan: ConsumptionPlan) -> dict[str, Any]:
    return {
        "transactionId": plan.transaction_id,
        "materialId": plan.key.material_id,
        "length": to_json_value(plan.key.length),
        "lengthUnit": plan.key.length_unit,
        "gauge": plan.key.gauge,
        "sortOrder": plan.sort_order.value,
        "consumptionType": plan.consumption_type.value,
        "totalQuantity": plan.total_quantity,
        "totalWeight": to_json_value(plan.total_weight),
        "totalCost": to_json_value(plan.total_cost),
        "lines": [line_to_dict(line) for line in plan.lines],
    }


def transaction_to_dict(transaction: StockTransaction) -> dict[str, Any]:
    return {
        "transactionId": transaction.transaction_id,
        "transactionType": transaction.transaction_type.value,
        "materialId": transaction.key.material_id,
        "length": to_json_value(transaction.key.length),
        "lengthUnit": transaction.key.length_unit,
        "gauge": transaction.key.gauge,
        "occurredAt": to_json_value(transaction.occurred_at),
        "consumptionType": to_json_value(transaction.consumption_type),
        "sortOrder": to_json_value(transaction.sort_order),
        "reversesTransactionId": transaction.reverses_transaction_id,
        "notes": transaction.notes,
        "totalQuantity": transaction.total_quantity,
        "totalWeight": to_json_value(transaction.total_weight),
        "totalCost": to_json_value(transaction.total_cost),
        "lines": [line_to_dict(line) for line in transaction.lines],
    }


def _summary_to_dict(summary: KeySummary) -> dict[str, Any]:
    return {
        "length": to_json_value(summary.key.length),
        "lengthUnit": summary.key.length_unit,
        "gauge": summary.key.gauge,
        "batchCount": summary.batch_count,
        "totalStock": summary.total_stock,
        "totalWeight": to_json_value(summary.total_weight),
        "totalValue": to_json_value(summary.total_value),
    }


def stock_view_to_dict(view: MaterialStockView) -> dict[str, Any]:
    return {
        "materialId": view.material_id,
        "aggregatedTotals": {
            "totalCurrentStock": view.total_current_stock,
            "totalCurrentWeight": to_json_value(view.total_current_weight),
            "totalCurrentValue": to_json_value(view.total_current_value),
            "averageRatePerPiece": to_json_value(view.average_rate_per_piece),
            "averageRatePerKg": to_json_value(view.average_rate_per_kg),
            "activeBatchCount": len(view.active_batches),
        },
        "summaryByKey": [_summary_to_dict(s) for s in view.summary_by_key],
        "activeBatches": [batch_to_dict(b) for b in view.active_batches],
    }


def glass_result_to_dict(result: GlassAreaResult) -> dict[str, Any]:
    return {
        "widthFormula": result.width_formula,
        "heightFormula": result.height_formula,
        "windowWidth": to_json_value(result.window_width),
        "windowHeight": to_json_value(result.window_height),
        "glassQuantity": result.glass_quantity,
        "inputUnit": result.input_unit,
        "outputUnit": result.output_unit,
        "rounding": {
            "mode": result.rounding.mode.value,
            "increment": to_json_value(result.rounding.increment),
            "unit": result.rounding.increment_unit,
        },
        "adjustedWidth": to_json_value(result.adjusted_width),
        "adjustedHeight": to_json_value(result.adjusted_height),
        "roundedWidth": to_json_value(result.rounded_width),
        "roundedHeight": to_json_value(result.rounded_height),
        "areaPerPiece": to_json_value(result.area_per_piece),
        "totalArea": to_json_value(result.total_area),
        "billableAreaPerPiece": to_json_value(result.billable_area_per_piece),
        "billableTotalArea": to_json_value(result.billable_total_area),
    }


def error_response(exc: FabricationError) -> dict[str, Any]:
    """
    Error payload: ``{"error": code, "message": str(exc), ...attributes}``.

    Public attributes of the exception are added under camelCase names.
    """
    payload: dict[str, Any] = {"error": exc.code, "message": str(exc)}
    for name, value in vars(exc).items():
        if name.startswith("_"):
            continue
        payload[camel(name)] = to_json_value(value) if _is_plain(value) else str(value)
    return payload


def _is_plain(value: Any) -> bool:
    return value is None or isinstance(
        value, (str, int, float, bool, Decimal, datetime, Enum, list, tuple)
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _require_mapping(payload: object) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationError("payload", "must be an object", payload)
    return payload


def _dispatch(route: str, material_id: object, call: Callable[[], dict[str, Any]]) -> dict[str, Any]:
    with LogContext.bind(material_id=material_id if isinstance(material_id, str) else None):
        logger.debug("request_received", extra={"route": route})
        try:
            return call()
        except FabricationError as exc:
            logger.warning(
                "request_rejected",
                extra={"route": route, "error_code": exc.code, "reason": str(exc)},
            )
            raise


def stock_inward(ledger: BatchStockLedger, payload: Mapping[str, Any]) -> dict[str, Any]:
    """POST stock-inward."""
    data = _require_mapping(payload)

    def call() -> dict[str, Any]:
        batch = ledger.stock_inward(
            data.get("materialId"),
            data.get("length"),
            data.get("lengthUnit"),
            data.get("gauge"),
            data.get("quantity"),
            data.get("actualWeight"),
            data.get("totalCost"),
            supplier=data.get("supplier"),
            invoice_number=data.get("invoiceNumber"),
            lot_number=data.get("lotNumber"),
            notes=data.get("notes"),
        )
        return {"batch": batch_to_dict(batch)}

    return _dispatch("stock-inward", data.get("materialId"), call)


def consume_stock(ledger: BatchStockLedger, payload: Mapping[str, Any]) -> dict[str, Any]:
    """POST consume-stock."""
    data = _require_mapping(payload)

    def call() -> dict[str, Any]:
        plan = ledger.consume_stock(
            data.get("materialId"),
            data.get("length"),
            data.get("lengthUnit"),
            data.get("gauge"),
            data.get("quantityNeeded"),
            sort_order=data.get("sortOrder"),
            consumption_type=data.get("consumptionType") or "PRODUCTION",
            notes=data.get("notes"),
        )
        return plan_to_dict(plan)

    return _dispatch("consume-stock", data.get("materialId"), call)


def reverse_consumption(ledger: BatchStockLedger, payload: Mapping[str, Any]) -> dict[str, Any]:
    """POST reverse-consumption."""
    data = _require_mapping(payload)

    def call() -> dict[str, Any]:
        correction = ledger.reverse_consumption(data.get("transactionId"), data.get("reason"))
        return transaction_to_dict(correction)

    return _dispatch("reverse-consumption", None, call)


def stock_report(
    ledger: BatchStockLedger,
    material_id: str,
    filters: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """GET stock-report/:materialId[?length&lengthUnit&gauge]."""
    query = filters or {}

    def call() -> dict[str, Any]:
        view = ledger.get_stock_report(
            material_id,
            query.get("length"),
            query.get("lengthUnit"),
            query.get("gauge"),
        )
        return stock_view_to_dict(view)

    return _dispatch("stock-report", material_id, call)


def _parse_datetime(value: object, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(field, "must be an ISO-8601 timestamp", value) from None
    raise ValidationError(field, "must be an ISO-8601 timestamp", value)


def batch_history(
    ledger: BatchStockLedger,
    material_id: str,
    filters: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """GET batch-history/:materialId[?startDate&endDate&supplier&gauge&includeDepleted]."""
    query = filters or {}

    def call() -> dict[str, Any]:
        include = _parse_flag(query.get("includeDepleted"), True, "includeDepleted")
        batches = ledger.get_batch_history(
            material_id,
            start=_parse_datetime(query.get("startDate"), "startDate"),
            end=_parse_datetime(query.get("endDate"), "endDate"),
            supplier=query.get("supplier"),
            gauge=query.get("gauge"),
            include_depleted=include,
        )
        return {"materialId": material_id, "batches": [batch_to_dict(b) for b in batches]}

    return _dispatch("batch-history", material_id, call)


def consumption_history(ledger: BatchStockLedger, material_id: str) -> dict[str, Any]:
    """GET consumption-history/:materialId."""

    def call() -> dict[str, Any]:
        transactions = ledger.get_consumption_history(material_id)
        return {
            "materialId": material_id,
            "transactions": [transaction_to_dict(t) for t in transactions],
        }

    return _dispatch("consumption-history", material_id, call)


def _parse_flag(value: object, default: bool, field: str) -> bool:
    """Query-string and JSON booleans: true/false, 1/0, yes/no."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes"):
            return True
        if text in ("false", "0", "no"):
            return False
    raise ValidationError(field, "must be true or false", value)


def _requested_rounding(requested: Mapping[str, Any]) -> RoundingPolicy:
    """Explicit {mode, increment, unit}; increment is required unless mode is none."""
    mode = require_text(requested.get("mode"), "rounding.mode").lower()
    if mode == RoundingMode.NONE.value:
        return RoundingPolicy.none()
    return RoundingPolicy(
        mode=mode,
        increment=requested.get("increment"),
        increment_unit=requested.get("unit"),
    )


def glass_area(payload: Mapping[str, Any], config_path: str | None = None) -> dict[str, Any]:
    """
    Glass calculation for quotation and estimation lines.

    Units, area places and the rounding policy default to the active
    configuration.  ``roundingPreset`` names a configured preset;
    ``rounding`` ({mode, increment, unit}) gives an explicit policy.
    ``glassQuantity`` is required.
    """
    data = _require_mapping(payload)
    glass = get_active_config(config_path).glass

    def call() -> dict[str, Any]:
        if data.get("rounding") is not None:
            policy = _requested_rounding(_require_mapping(data["rounding"]))
        elif data.get("roundingPreset") is not None:
            try:
                policy = glass_rounding(glass, data["roundingPreset"])
            except KeyError as exc:
                raise ValidationError("roundingPreset", exc.args[0], data["roundingPreset"]) from None
        else:
            policy = glass_rounding(glass)
        result = calculate_glass_area_with_quantity(
            data.get("widthFormula"),
            data.get("heightFormula"),
            data.get("windowWidth"),
            data.get("windowHeight"),
            data.get("glassQuantity"),
            data.get("inputUnit") or glass.input_unit,
            data.get("outputUnit") or glass.output_unit,
            rounding=policy,
            area_places=glass.area_places,
            billing_ladder=_parse_flag(data.get("billingLadder"), glass.billing_ladder, "billingLadder"),
        )
        return glass_result_to_dict(result)

    return _dispatch("glass-area", None, call)
