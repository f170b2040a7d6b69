"""
Supply stock rules for the back-office inventory.

A supply is "critical" at or below its critical threshold, "low" at or below
its minimum, "ok" otherwise. Every stock change is recorded as a movement
holding the stock before and after.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional


def stock_state(stock: float, minimum_stock: float, critical_stock: float) -> str:
    if stock <= critical_stock:
        return "critical"
    if stock <= minimum_stock:
        return "low"
    return "ok"


def inventory_value(stock: float, cost_per_unit: float) -> float:
    return round(stock * cost_per_unit, 2)


def supply_to_client(doc: dict[str, Any]) -> dict[str, Any]:
    stock = float(doc.get("stock", 0))
    return {
        **{k: v for k, v in doc.items() if k not in ("created_at", "updated_at")},
        "stock": stock,
        "stock_state": stock_state(
            stock, float(doc.get("minimum_stock", 0)), float(doc.get("critical_stock", 0))
        ),
        "inventory_value": inventory_value(stock, float(doc.get("cost_per_unit", 0))),
    }


def movement(supply_id: str, kind: str, before: float, after: float,
             reference_id: Optional[str] = None, notes: Optional[str] = None) -> dict[str, Any]:
    return {
        "supply_id": supply_id,
        "kind": kind,
        "quantity": round(after - before, 3),
        "stock_before": before,
        "stock_after": after,
        "reference_id": reference_id,
        "notes": notes,
    }


def apply_purchase(supply: dict[str, Any], quantity: float, total_cost: float) -> dict[str, Any]:
    """Field update for a supply after buying `quantity` of it.

    The cost per unit becomes the price paid in this purchase.
    """
    before = float(supply.get("stock", 0))
    return {
        "stock": round(before + quantity, 3),
        "cost_per_unit": round(total_cost / quantity, 4),
    }


def summarize_stock(supplies: Iterable[dict[str, Any]]) -> dict[str, Any]:
    counts = {"ok": 0, "low": 0, "critical": 0}
    value = 0.0
    total = 0
    for s in supplies:
        total += 1
        counts[s["stock_state"]] += 1
        value += s["inventory_value"]
    return {"total_supplies": total, **counts, "inventory_value": round(value, 2)}


def product_cost(price: float, recipe: Iterable[tuple[float, float]]) -> dict[str, float]:
    """Supply cost and gross margin of a product.

    `recipe` yields (quantity used, cost per unit) for each supply.
    """
    cost = round(sum(qty * unit_cost for qty, unit_cost in recipe), 2)
    margin = round(price - cost, 2)
    return {
        "price": price,
        "supply_cost": cost,
        "gross_margin": margin,
        "margin_percent": round(margin / price * 100, 1) if price else 0.0,
    }
