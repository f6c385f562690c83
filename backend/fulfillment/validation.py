from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any

from fulfillment.time_utils import parse_iso_date


# Largest quantity accepted on a single line; keeps arithmetic well inside column range
MAX_LINE_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


def pick(payload: dict, *names: str, default: Any = None) -> Any:
    """
    Return the first key present in payload.

    The client contract uses camelCase ("packageId") while internal callers
    use snake_case ("package_id"); routes accept both.
    """
    for name in names:
        if name in payload and payload[name] is not None:
            return payload[name]
    return default


def require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects floats, booleans, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_positive_int(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    n = coerce_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be > 0")
    if n > MAX_LINE_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_LINE_QUANTITY}")
    return n


def coerce_optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field)


def coerce_date(value: Any, field: str) -> date:
    if value is None:
        raise ValidationError(f"{field} is required")
    try:
        parsed = parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    return parsed


def clean_text(value: Any, field: str, *, max_length: int = 1000) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text or None


# =============================================================================
# PAYLOAD NORMALIZERS
# =============================================================================

@dataclass(frozen=True)
class OrderItemInput:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class ReturnItemInput:
    product_id: int
    batch_id: int
    quantity: int


def parse_order_items(raw: Any) -> list[OrderItemInput]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")

    items: list[OrderItemInput] = []
    seen: set[int] = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = coerce_positive_int(pick(entry, "productId", "product_id"), f"items[{index}].productId")
        quantity = coerce_positive_int(pick(entry, "quantity"), f"items[{index}].quantity")
        if product_id in seen:
            raise ValidationError(f"items[{index}]: product {product_id} appears on more than one line")
        seen.add(product_id)
        items.append(OrderItemInput(product_id=product_id, quantity=quantity))
    return items


def parse_returned_items(raw: Any) -> list[ReturnItemInput]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("returnedItems must be a non-empty list")

    items: list[ReturnItemInput] = []
    seen: set[tuple[int, int]] = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"returnedItems[{index}] must be an object")
        product_id = coerce_positive_int(pick(entry, "productId", "product_id"), f"returnedItems[{index}].productId")
        batch_id = coerce_positive_int(pick(entry, "batchId", "batch_id"), f"returnedItems[{index}].batchId")
        quantity = coerce_positive_int(pick(entry, "quantity"), f"returnedItems[{index}].quantity")
        key = (product_id, batch_id)
        if key in seen:
            raise ValidationError(f"returnedItems[{index}]: batch {batch_id} appears on more than one line")
        seen.add(key)
        items.append(ReturnItemInput(product_id=product_id, batch_id=batch_id, quantity=quantity))
    return items


def parse_supply_payload(payload: dict) -> dict:
    """Normalize an inventory supply (new batch) request."""
    payload = require_payload(payload)
    cleaned = {
        "product_id": coerce_positive_int(pick(payload, "productId", "product_id"), "productId"),
        "warehouse_id": coerce_positive_int(pick(payload, "warehouseId", "warehouse_id"), "warehouseId"),
        "supplier_id": coerce_positive_int(pick(payload, "supplierId", "supplier_id"), "supplierId"),
        "quantity": coerce_positive_int(pick(payload, "quantity"), "quantity"),
        "mfg_date": coerce_date(pick(payload, "mfgDate", "mfg_date"), "mfgDate"),
        "exp_date": coerce_date(pick(payload, "expDate", "exp_date"), "expDate"),
        "unit_cost_cents": coerce_optional_int(pick(payload, "unitCostCents", "unit_cost_cents"), "unitCostCents"),
        "batch_number": clean_text(pick(payload, "batchNumber", "batch_number"), "batchNumber", max_length=64),
        "notes": clean_text(pick(payload, "notes"), "notes"),
    }
    if cleaned["unit_cost_cents"] is not None and cleaned["unit_cost_cents"] < 0:
        raise ValidationError("unitCostCents must be >= 0")
    if cleaned["exp_date"] < cleaned["mfg_date"]:
        raise ValidationError("expDate cannot be before mfgDate")
    return cleaned
