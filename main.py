import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from zoneinfo import ZoneInfo
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

import inventory
from cart import OrderDraft
from database import (
    settings,
    get_db,
    create_document,
    get_documents,
    get_document,
    update_document,
    delete_document,
    count_documents,
)
from errors import InvalidPricingPolicy, InvalidStateTransition
from order_status import HAPPY_PATH, OrderStatus, allowed_transitions, is_editable, transition
from pricing import AllocationResult, CartLineItem, PackageItemSelection, PricingPolicy
from schemas import (
    InventoryStats,
    Movement,
    OrderDetailsUpdate,
    OrderIn,
    OrderItemIn,
    OrderLineRecord,
    OrderOut,
    PackageContentLine,
    Product as ProductSchema,
    Purchase,
    Quote,
    RecipeItem,
    StatusUpdate,
    StockAdjustment,
    Supply,
    SupplyOut,
    Topping as ToppingSchema,
    ToppingLine,
)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Dolce Seli API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Utils

def _money(value: Decimal) -> float:
    return round(float(value), 2)

def product_to_client(doc):
    return {
        "id": doc.get("id"),
        "name": doc.get("name"),
        "description": doc.get("description"),
        "price": float(doc.get("price", 0)),
        "emoji": doc.get("emoji"),
        "kind": doc.get("kind", "individual"),
        "included_toppings": int(doc.get("included_toppings", 0)),
        "package_items": doc.get("package_items", []),
        "active": doc.get("active", True),
    }

def topping_to_client(doc):
    return {
        "id": doc.get("id"),
        "name": doc.get("name"),
        "description": doc.get("description"),
        "emoji": doc.get("emoji"),
        "active": doc.get("active", True),
    }

def _topping_lines(toppings, allocation: AllocationResult, names: dict[str, str]) -> list[ToppingLine]:
    return [
        ToppingLine(topping_id=t, name=names.get(t, t), included=allocation.is_included(t))
        for t in toppings
    ]

def line_to_record(line: CartLineItem) -> OrderLineRecord:
    allocation = line.allocation
    package_allocations = line.package_allocations
    contents = [
        PackageContentLine(
            product_id=item.product_id,
            quantity=item.quantity,
            product_name=item.name,
            included_toppings=item.allowance,
            toppings=_topping_lines(item.toppings, item_allocation, line.topping_names),
            extra_count=item_allocation.extra_count,
            extra_charge=_money(item_allocation.extra_charge),
        )
        for item, item_allocation in zip(line.package_items, package_allocations)
    ]
    # Line totals cover the package's own toppings plus those of its products
    return OrderLineRecord(
        product_id=line.product_id,
        product_name=line.name,
        kind=line.kind,
        quantity=line.quantity,
        unit_price=_money(line.policy.unit_price),
        included_toppings=line.policy.included_topping_count,
        toppings=_topping_lines(line.toppings, allocation, line.topping_names),
        extra_count=allocation.extra_count + sum(a.extra_count for a in package_allocations),
        extra_charge=_money(line.extra_charge),
        subtotal=_money(line.subtotal),
        contents=contents or None,
    )

async def _active_topping_names() -> dict[str, str]:
    docs = await get_documents("topping", {"active": True}, limit=500)
    return {d["id"]: d.get("name", d["id"]) for d in docs}

def _check_toppings(toppings: List[str], topping_names: dict[str, str]):
    unknown = [t for t in toppings if t not in topping_names]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Invalid toppings {', '.join(unknown)}")

async def _package_selections(doc, item: OrderItemIn, topping_names: dict[str, str]) -> list[PackageItemSelection]:
    package_items = doc.get("package_items") or []
    chosen = {sel.item_index: sel.toppings for sel in item.item_toppings}
    if doc.get("kind") != "package" and chosen:
        raise HTTPException(status_code=400, detail=f"Product {item.product_id} is not a package")
    out_of_range = [i for i in chosen if i >= len(package_items)]
    if out_of_range:
        raise HTTPException(status_code=400, detail=f"Invalid package item index {out_of_range[0]}")
    selections = []
    for index, entry in enumerate(package_items):
        sub = await get_document("product", entry["product_id"])
        if not sub:
            raise HTTPException(status_code=400, detail=f"Invalid package product {entry['product_id']}")
        toppings = chosen.get(index, [])
        _check_toppings(toppings, topping_names)
        selections.append(PackageItemSelection(
            product_id=entry["product_id"],
            name=sub.get("name", ""),
            included_topping_count=int(sub.get("included_toppings", 0)),
            quantity=int(entry.get("quantity", 1)),
            toppings=tuple(toppings),
        ))
    return selections

async def build_draft(items: List[OrderItemIn]) -> OrderDraft:
    # Prices always come from the catalog, never from the client
    topping_names = await _active_topping_names()
    draft = OrderDraft()
    for item in items:
        doc = await get_document("product", item.product_id)
        if not doc or not doc.get("active", True):
            raise HTTPException(status_code=400, detail=f"Invalid product {item.product_id}")
        _check_toppings(item.toppings, topping_names)
        package_items = await _package_selections(doc, item, topping_names)
        policy = PricingPolicy(
            unit_price=doc.get("price", 0),
            included_topping_count=int(doc.get("included_toppings", 0)),
            extra_topping_price=settings.EXTRA_TOPPING_PRICE,
        )
        draft.add_line(CartLineItem(
            product_id=item.product_id,
            name=doc.get("name", ""),
            policy=policy,
            quantity=item.quantity,
            toppings=tuple(item.toppings),
            kind=doc.get("kind", "individual"),
            topping_names=topping_names,
            package_items=package_items,
        ))
    return draft

async def _check_product(product: ProductSchema, product_id: Optional[str] = None):
    active_toppings = await count_documents("topping", {"active": True})
    if product.included_toppings > active_toppings:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot include {product.included_toppings} toppings, only {active_toppings} available",
        )
    if product.kind != "package":
        return
    if not product.package_items:
        raise HTTPException(status_code=400, detail="A package needs at least one product")
    for item in product.package_items:
        if item.product_id == product_id:
            raise HTTPException(status_code=400, detail="A package cannot contain itself")
        doc = await get_document("product", item.product_id)
        if not doc or doc.get("kind") != "individual":
            raise HTTPException(status_code=400, detail=f"Invalid package product {item.product_id}")
    if product_id:
        # Packages only hold individual products, so a referenced product keeps its kind
        packages = await get_documents("product", {"kind": "package"}, limit=500)
        users = [
            p["id"] for p in packages
            if p["id"] != product_id
            and any(i.get("product_id") == product_id for i in p.get("package_items", []))
        ]
        if users:
            raise HTTPException(
                status_code=409,
                detail=f"Product is part of packages {', '.join(users)} and must stay individual",
            )

async def _get_order_or_404(order_id: str):
    doc = await get_document("order", order_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    return doc

@app.exception_handler(InvalidPricingPolicy)
async def invalid_pricing_handler(request: Request, exc: InvalidPricingPolicy):
    logger.warning("Pricing rejected on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})

@app.exception_handler(InvalidStateTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStateTransition):
    logger.warning("Status change rejected on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "current": exc.current, "target": exc.target},
    )

@app.get("/")
async def root():
    return {"message": "Dolce Seli Backend Running"}

@app.get("/test")
async def test():
    try:
        db = await get_db()
        colls = await db.list_collection_names()
        return {
            "backend": "✅ Running",
            "database": "✅ Available",
            "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
            "database_name": db.name,
            "connection_status": "Connected",
            "collections": colls,
        }
    except Exception as e:
        logger.error("Database check failed: %s", e)
        return {"backend": "✅ Running", "database": "❌ Not Available", "error": str(e)}

# Seed data: the shop's standard menu
SEED_TOPPINGS: list[dict] = [
    {"name": "Nuez", "emoji": "🌰"},
    {"name": "Coco rallado", "emoji": "🥥"},
    {"name": "Chocoreta", "emoji": "🍫"},
    {"name": "ChocoCrispis", "emoji": "🥣"},
    {"name": "Arroz inflado", "emoji": "🍚"},
    {"name": "Krankys", "emoji": "🍪"},
    {"name": "Fruti Lupis", "emoji": "🌈"},
]

SEED_PRODUCTS: dict[str, dict] = {
    "classic": {"name": "Seli Clásico", "description": "Fresas con crema (6 oz)", "price": 30.0, "emoji": "🍓", "included_toppings": 1},
    "medium": {"name": "Seli Mediano", "description": "Fresas con crema (12 oz)", "price": 50.0, "emoji": "🍓", "included_toppings": 1},
    "choco": {"name": "Seli Choco", "description": "Fresas con chocolate semiamargo", "price": 35.0, "emoji": "🍫", "included_toppings": 1},
}

SEED_PACKAGES: list[dict] = [
    {"name": "Esencia Seli", "description": "1 Seli Clásico + 1 Seli Choco", "price": 65.0, "items": [("classic", 1), ("choco", 1)]},
    {"name": "Dúo Dolce", "description": "1 Seli Mediano + 1 Seli Choco", "price": 90.0, "items": [("medium", 1), ("choco", 1)]},
    {"name": "Para Compartir", "description": "2 Seli Medianos", "price": 100.0, "items": [("medium", 2)]},
    {"name": "Familia Seli", "description": "3 Seli Medianos", "price": 140.0, "items": [("medium", 3)]},
]

class SeedResponse(BaseModel):
    seeded: bool
    toppings: int = 0
    products: int = 0

@app.post("/seed", response_model=SeedResponse)
async def seed():
    if await count_documents("product") > 0:
        return SeedResponse(seeded=False)
    for t in SEED_TOPPINGS:
        await create_document("topping", ToppingSchema(**t).model_dump())
    ids = {}
    for key, p in SEED_PRODUCTS.items():
        saved = await create_document("product", ProductSchema(**p).model_dump())
        ids[key] = saved["id"]
    for pkg in SEED_PACKAGES:
        items = [{"product_id": ids[key], "quantity": qty} for key, qty in pkg["items"]]
        data = {k: v for k, v in pkg.items() if k != "items"}
        await create_document("product", ProductSchema(**data, kind="package", package_items=items).model_dump())
    count = len(SEED_PRODUCTS) + len(SEED_PACKAGES)
    logger.info("Seeded %d toppings and %d products", len(SEED_TOPPINGS), count)
    return SeedResponse(seeded=True, toppings=len(SEED_TOPPINGS), products=count)

# Catalog

@app.get("/products")
async def get_products(
    q: Optional[str] = Query(None),
    kind: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
):
    filt = {}
    if q:
        filt["name"] = {"$regex": q, "$options": "i"}
    if kind:
        filt["kind"] = kind
    if active is not None:
        filt["active"] = active
    docs = await get_documents("product", filt, limit=200)
    return [product_to_client(d) for d in docs]

@app.get("/products/{product_id}")
async def get_product(product_id: str):
    doc = await get_document("product", product_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return product_to_client(doc)

@app.post("/products", status_code=201)
async def create_product(product: ProductSchema):
    await _check_product(product)
    saved = await create_document("product", product.model_dump())
    logger.info("Created %s %s", product.kind, saved.get("id"))
    return product_to_client(saved)

@app.put("/products/{product_id}")
async def update_product(product_id: str, product: ProductSchema):
    await _check_product(product, product_id)
    updated = await update_document("product", product_id, product.model_dump())
    if not updated:
        raise HTTPException(status_code=404, detail="Product not found")
    return product_to_client(updated)

@app.delete("/products/{product_id}", status_code=204)
async def delete_product(product_id: str):
    if not await delete_document("product", product_id):
        raise HTTPException(status_code=404, detail="Product not found")

@app.get("/toppings")
async def get_toppings(show_all: bool = Query(False, alias="all")):
    docs = await get_documents("topping", {} if show_all else {"active": True}, limit=500, sort=[("name", 1)])
    return [topping_to_client(d) for d in docs]

@app.post("/toppings", status_code=201)
async def create_topping(topping: ToppingSchema):
    saved = await create_document("topping", topping.model_dump())
    return topping_to_client(saved)

@app.put("/toppings/{topping_id}")
async def update_topping(topping_id: str, topping: ToppingSchema):
    updated = await update_document("topping", topping_id, topping.model_dump())
    if not updated:
        raise HTTPException(status_code=404, detail="Topping not found")
    return topping_to_client(updated)

@app.delete("/toppings/{topping_id}", status_code=204)
async def delete_topping(topping_id: str):
    if not await delete_document("topping", topping_id):
        raise HTTPException(status_code=404, detail="Topping not found")

# Pricing

class QuoteIn(BaseModel):
    items: List[OrderItemIn] = Field(min_length=1)
    delivery_fee: float = Field(ge=0, default=0)
    free_delivery: bool = False

@app.post("/quote", response_model=Quote)
async def quote(payload: QuoteIn):
    draft = await build_draft(payload.items)
    summary = draft.summary(payload.delivery_fee, payload.free_delivery)
    return Quote(
        items=[line_to_record(line) for line in summary.lines],
        subtotal=_money(summary.subtotal),
        delivery_fee=_money(summary.delivery_fee),
        total=_money(summary.total),
    )

# Orders

@app.post("/orders", response_model=OrderOut, status_code=201)
async def create_order(order: OrderIn):
    draft = await build_draft(order.items)
    summary = draft.summary(order.delivery_fee, order.free_delivery)
    order_doc = {
        **order.model_dump(exclude={"items", "delivery_fee", "free_delivery"}),
        "items": [line_to_record(line).model_dump() for line in summary.lines],
        "subtotal": _money(summary.subtotal),
        "delivery_fee": _money(summary.delivery_fee),
        "total": _money(summary.total),
        "status": OrderStatus.PENDING.value,
    }
    saved = await create_document("order", order_doc)
    logger.info("Order %s created for %s, total %.2f", saved.get("id"), order.customer, order_doc["total"])
    return OrderOut(**saved)

@app.get("/orders", response_model=list[OrderOut])
async def list_orders(status: Optional[OrderStatus] = Query(None)):
    filt = {"status": status.value} if status else {}
    docs = await get_documents("order", filt, limit=500, sort=[("created_at", -1)])
    return [OrderOut(**d) for d in docs]

class DailyStats(BaseModel):
    total_orders: int
    total_sales: float
    by_status: dict[str, int]

def start_of_day(now: datetime, tz_name: str) -> datetime:
    """Midnight of `now`'s date in the shop's timezone, expressed in UTC."""
    local = now.astimezone(ZoneInfo(tz_name))
    return local.replace(hour=0, minute=0, second=0, microsecond=0).astimezone(timezone.utc)

@app.get("/orders/stats/today", response_model=DailyStats)
async def today_stats():
    start = start_of_day(datetime.now(timezone.utc), settings.SHOP_TIMEZONE)
    docs = await get_documents("order", {"created_at": {"$gte": start}}, limit=5000)
    by_status = {s.value: 0 for s in OrderStatus}
    sales = 0.0
    for d in docs:
        status = d.get("status", OrderStatus.PENDING.value)
        by_status[status] = by_status.get(status, 0) + 1
        if status != OrderStatus.CANCELLED.value:
            sales += float(d.get("total", 0))
    return DailyStats(total_orders=len(docs), total_sales=round(sales, 2), by_status=by_status)

@app.get("/orders/{order_id}", response_model=OrderOut)
async def get_order(order_id: str):
    return OrderOut(**await _get_order_or_404(order_id))

@app.patch("/orders/{order_id}", response_model=OrderOut)
async def update_order_details(order_id: str, payload: OrderDetailsUpdate):
    doc = await _get_order_or_404(order_id)
    if not is_editable(doc["status"]):
        raise HTTPException(status_code=409, detail=f"Order is {doc['status']} and can no longer be edited")
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return OrderOut(**doc)
    try:
        OrderOut(**{**doc, **changes})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    updated = await update_document("order", order_id, changes)
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    return OrderOut(**updated)

async def _change_status(order_id: str, target: OrderStatus):
    doc = await _get_order_or_404(order_id)
    changes = transition(doc["status"], target)
    updated = await update_document("order", order_id, changes)
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Order %s: %s -> %s", order_id, doc["status"], target.value)
    return OrderOut(**updated)

@app.patch("/orders/{order_id}/status", response_model=OrderOut)
async def update_order_status(order_id: str, payload: StatusUpdate):
    return await _change_status(order_id, payload.status)

@app.post("/orders/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(order_id: str):
    return await _change_status(order_id, OrderStatus.CANCELLED)

@app.delete("/orders/{order_id}", status_code=204)
async def delete_order(order_id: str):
    if not await delete_document("order", order_id):
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Order %s deleted", order_id)

@app.get("/order-statuses")
async def order_statuses():
    return {
        "statuses": [s.value for s in OrderStatus],
        "happy_path": [s.value for s in HAPPY_PATH],
        "transitions": {s.value: [t.value for t in allowed_transitions(s)] for s in OrderStatus},
    }

# Inventory

async def _get_supply_or_404(supply_id: str):
    doc = await get_document("supply", supply_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Supply not found")
    return doc

async def _record_movement(supply_id: str, kind: str, before: float, after: float,
                           reference_id: Optional[str] = None, notes: Optional[str] = None):
    entry = Movement(**inventory.movement(supply_id, kind, before, after, reference_id, notes))
    return await create_document("movement", entry.model_dump())

@app.get("/inventory/supplies", response_model=list[SupplyOut])
async def list_supplies(
    state: Optional[str] = Query(None),
    show_all: bool = Query(False, alias="all"),
):
    docs = await get_documents("supply", {} if show_all else {"active": True}, limit=500, sort=[("name", 1)])
    supplies = [inventory.supply_to_client(d) for d in docs]
    if state:
        supplies = [s for s in supplies if s["stock_state"] == state]
    return supplies

@app.get("/inventory/supplies/{supply_id}", response_model=SupplyOut)
async def get_supply(supply_id: str):
    return inventory.supply_to_client(await _get_supply_or_404(supply_id))

@app.post("/inventory/supplies", response_model=SupplyOut, status_code=201)
async def create_supply(supply: Supply):
    saved = await create_document("supply", supply.model_dump())
    logger.info("Created supply %s", saved.get("id"))
    return inventory.supply_to_client(saved)

@app.put("/inventory/supplies/{supply_id}", response_model=SupplyOut)
async def update_supply(supply_id: str, supply: Supply):
    # Stock only moves through purchases and adjustments
    await _get_supply_or_404(supply_id)
    updated = await update_document("supply", supply_id, supply.model_dump(exclude={"stock"}))
    if not updated:
        raise HTTPException(status_code=404, detail="Supply not found")
    return inventory.supply_to_client(updated)

@app.delete("/inventory/supplies/{supply_id}", status_code=204)
async def deactivate_supply(supply_id: str):
    # Purchases and movements keep pointing at it, so it is only switched off
    if not await update_document("supply", supply_id, {"active": False}):
        raise HTTPException(status_code=404, detail="Supply not found")
    logger.info("Supply %s deactivated", supply_id)

@app.post("/inventory/supplies/{supply_id}/adjust", response_model=SupplyOut)
async def adjust_stock(supply_id: str, payload: StockAdjustment):
    doc = await _get_supply_or_404(supply_id)
    before = float(doc.get("stock", 0))
    updated = await update_document("supply", supply_id, {"stock": payload.stock})
    if not updated:
        raise HTTPException(status_code=404, detail="Supply not found")
    await _record_movement(supply_id, payload.kind, before, payload.stock, notes=payload.notes)
    logger.info("Supply %s %s: %s -> %s", supply_id, payload.kind, before, payload.stock)
    return inventory.supply_to_client(updated)

@app.post("/inventory/purchases", status_code=201)
async def create_purchase(purchase: Purchase):
    supply = await _get_supply_or_404(purchase.supply_id)
    before = float(supply.get("stock", 0))
    changes = inventory.apply_purchase(supply, purchase.quantity, purchase.total_cost)
    saved = await create_document("purchase", {**purchase.model_dump(), "cost_per_unit": changes["cost_per_unit"]})
    updated = await update_document("supply", purchase.supply_id, changes)
    if not updated:
        raise HTTPException(status_code=404, detail="Supply not found")
    await _record_movement(purchase.supply_id, "purchase", before, changes["stock"], reference_id=saved.get("id"))
    logger.info("Purchase %s: %s +%s", saved.get("id"), purchase.supply_id, purchase.quantity)
    return {**saved, "supply": inventory.supply_to_client(updated)}

@app.get("/inventory/purchases")
async def list_purchases(supply_id: Optional[str] = Query(None)):
    filt = {"supply_id": supply_id} if supply_id else {}
    return await get_documents("purchase", filt, limit=500, sort=[("created_at", -1)])

@app.get("/inventory/movements")
async def list_movements(supply_id: Optional[str] = Query(None)):
    filt = {"supply_id": supply_id} if supply_id else {}
    return await get_documents("movement", filt, limit=500, sort=[("created_at", -1)])

@app.put("/inventory/recipes", status_code=201)
async def set_recipe_item(item: RecipeItem):
    """Set how much of a supply one unit of a product uses."""
    if not await get_document("product", item.product_id):
        raise HTTPException(status_code=400, detail=f"Invalid product {item.product_id}")
    await _get_supply_or_404(item.supply_id)
    existing = await get_documents("recipe", {"product_id": item.product_id, "supply_id": item.supply_id}, limit=1)
    if existing:
        return await update_document("recipe", existing[0]["id"], item.model_dump())
    return await create_document("recipe", item.model_dump())

@app.get("/inventory/recipes")
async def list_recipes(product_id: Optional[str] = Query(None)):
    filt = {"product_id": product_id} if product_id else {}
    return await get_documents("recipe", filt, limit=1000)

@app.delete("/inventory/recipes/{recipe_id}", status_code=204)
async def delete_recipe_item(recipe_id: str):
    if not await delete_document("recipe", recipe_id):
        raise HTTPException(status_code=404, detail="Recipe item not found")

@app.get("/inventory/costs")
async def product_costs():
    products = await get_documents("product", {"active": True}, limit=200)
    supplies = {s["id"]: s for s in await get_documents("supply", {}, limit=500)}
    recipes = await get_documents("recipe", {}, limit=1000)
    out = []
    for p in products:
        used = [
            (float(r["quantity"]), float(supplies[r["supply_id"]].get("cost_per_unit", 0)))
            for r in recipes
            if r["product_id"] == p["id"] and r["supply_id"] in supplies
        ]
        out.append({
            "product_id": p["id"],
            "name": p.get("name"),
            **inventory.product_cost(float(p.get("price", 0)), used),
        })
    return out

@app.get("/inventory/stats", response_model=InventoryStats)
async def inventory_stats():
    docs = await get_documents("supply", {"active": True}, limit=500)
    return InventoryStats(**inventory.summarize_stock(inventory.supply_to_client(d) for d in docs))

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
