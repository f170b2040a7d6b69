from __future__ import annotations
from datetime import datetime
from typing import Annotated, Literal, Optional
from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

from order_status import OrderStatus

# Each stored class => one collection, lowercased name

ProductKind = Literal["individual", "package"]
PaymentType = Literal["cash", "transfer", "card"]

ORDER_LINE_SCHEMA_VERSION = 1


class PackageItem(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, default=1)


class Product(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(ge=0)
    emoji: Optional[str] = None
    kind: ProductKind = "individual"
    included_toppings: int = Field(ge=0, default=1)
    package_items: list[PackageItem] = Field(default_factory=list)
    active: bool = True

    @model_validator(mode="after")
    def check_package_items(self):
        if self.kind == "individual" and self.package_items:
            raise ValueError("Only packages can list package items")
        return self


class Topping(BaseModel):
    name: str
    description: Optional[str] = None
    emoji: Optional[str] = None
    active: bool = True


def _unique(toppings: list[str]) -> list[str]:
    if len(set(toppings)) != len(toppings):
        raise ValueError("A topping can only be selected once per item")
    return toppings


ToppingSelection = Annotated[list[str], AfterValidator(_unique)]


class PackageItemToppings(BaseModel):
    """Toppings for the product at position `item_index` of a package."""

    item_index: int = Field(ge=0)
    toppings: ToppingSelection = Field(default_factory=list)


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, default=1)
    # Selection order matters: the first ones fill the free allowance
    toppings: ToppingSelection = Field(default_factory=list)
    item_toppings: list[PackageItemToppings] = Field(default_factory=list)

    @field_validator("item_toppings")
    @classmethod
    def one_selection_per_item(cls, v: list[PackageItemToppings]) -> list[PackageItemToppings]:
        indexes = [sel.item_index for sel in v]
        if len(set(indexes)) != len(indexes):
            raise ValueError("Each package item can only have one topping selection")
        return v


class OrderIn(BaseModel):
    customer: str
    phone: str
    address: Optional[str] = None
    maps_link: Optional[str] = None
    delivery_time: Optional[str] = None
    payment_type: Optional[PaymentType] = None
    delivery_fee: float = Field(ge=0, default=0)
    free_delivery: bool = False
    notes: Optional[str] = None
    items: list[OrderItemIn] = Field(min_length=1)


class ToppingLine(BaseModel):
    topping_id: str
    name: str
    included: bool


class PackageContentLine(PackageItem):
    """A product inside a package line, with its own toppings."""

    product_name: Optional[str] = None
    included_toppings: int = Field(ge=0, default=0)
    toppings: list[ToppingLine] = Field(default_factory=list)
    extra_count: int = Field(ge=0, default=0)
    extra_charge: float = Field(ge=0, default=0)


class OrderLineRecord(BaseModel):
    """Frozen snapshot of one priced line, as stored inside an order."""

    schema_version: Literal[1] = ORDER_LINE_SCHEMA_VERSION
    product_id: str
    product_name: str
    kind: ProductKind
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    included_toppings: int = Field(ge=0)
    toppings: list[ToppingLine] = Field(default_factory=list)
    extra_count: int = Field(ge=0)
    extra_charge: float = Field(ge=0)
    subtotal: float = Field(ge=0)
    contents: Optional[list[PackageContentLine]] = None


class Quote(BaseModel):
    items: list[OrderLineRecord]
    subtotal: float
    delivery_fee: float
    total: float


class OrderOut(BaseModel):
    id: str
    customer: str
    phone: str
    address: Optional[str] = None
    maps_link: Optional[str] = None
    delivery_time: Optional[str] = None
    payment_type: Optional[PaymentType] = None
    notes: Optional[str] = None
    items: list[OrderLineRecord]
    subtotal: float
    delivery_fee: float = 0
    total: float
    status: OrderStatus
    confirmed_at: Optional[datetime] = None
    preparation_started_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderDetailsUpdate(BaseModel):
    customer: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    maps_link: Optional[str] = None
    delivery_time: Optional[str] = None
    payment_type: Optional[PaymentType] = None
    notes: Optional[str] = None

    @field_validator("customer", "phone")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> str:
        # Sent explicitly as null or empty: these are required on an order
        if v is None or not v.strip():
            raise ValueError("cannot be empty")
        return v


class StatusUpdate(BaseModel):
    status: OrderStatus


# Inventory

Unit = Literal["g", "ml", "pieces", "kg", "l"]
StockState = Literal["ok", "low", "critical"]
MovementType = Literal["purchase", "manual_adjustment", "waste"]


class Supply(BaseModel):
    name: str
    description: Optional[str] = None
    unit: Unit
    stock: float = Field(ge=0, default=0)
    minimum_stock: float = Field(ge=0, default=0)
    critical_stock: float = Field(ge=0, default=0)
    cost_per_unit: float = Field(ge=0, default=0)
    supplier: Optional[str] = None
    notes: Optional[str] = None
    active: bool = True

    @model_validator(mode="after")
    def check_thresholds(self):
        if self.critical_stock > self.minimum_stock:
            raise ValueError("critical_stock cannot be above minimum_stock")
        return self


class SupplyOut(Supply):
    id: str
    stock_state: StockState
    inventory_value: float


class Purchase(BaseModel):
    supply_id: str
    quantity: float = Field(gt=0)
    total_cost: float = Field(ge=0)
    supplier: Optional[str] = None
    notes: Optional[str] = None
    purchased_on: Optional[str] = None


class StockAdjustment(BaseModel):
    stock: float = Field(ge=0)
    kind: Literal["manual_adjustment", "waste"] = "manual_adjustment"
    notes: Optional[str] = None


class Movement(BaseModel):
    supply_id: str
    kind: MovementType
    quantity: float
    stock_before: float
    stock_after: float
    reference_id: Optional[str] = None
    notes: Optional[str] = None


class RecipeItem(BaseModel):
    product_id: str
    supply_id: str
    quantity: float = Field(gt=0)
    notes: Optional[str] = None


class InventoryStats(BaseModel):
    total_supplies: int
    ok: int
    low: int
    critical: int
    inventory_value: float
