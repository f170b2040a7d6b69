"""
Topping allocation and line pricing.

Every product or package includes N free toppings. Selections are counted in
the order they were made: the first N are included, anything after that is an
extra billed at a flat unit price. The extra charge is added once per line and
is never folded into the unit price.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Sequence

from errors import InvalidPricingPolicy

EXTRA_TOPPING_PRICE = Decimal("5")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary float expansion
    return Decimal(str(value))


@dataclass(frozen=True)
class PricingPolicy:
    unit_price: Decimal
    included_topping_count: int = 1
    extra_topping_price: Decimal = EXTRA_TOPPING_PRICE

    def __post_init__(self):
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        object.__setattr__(self, "extra_topping_price", to_decimal(self.extra_topping_price))
        if self.unit_price < 0:
            raise InvalidPricingPolicy(f"unit price must be >= 0, got {self.unit_price}")
        if self.included_topping_count < 0:
            raise InvalidPricingPolicy(
                f"included topping count must be >= 0, got {self.included_topping_count}"
            )
        if self.extra_topping_price < 0:
            raise InvalidPricingPolicy(
                f"extra topping price must be >= 0, got {self.extra_topping_price}"
            )


@dataclass(frozen=True)
class AllocationResult:
    included_ids: tuple[str, ...]
    extra_ids: tuple[str, ...]
    extra_count: int
    extra_charge: Decimal

    def is_included(self, topping_id: str) -> bool:
        return topping_id in self.included_ids


def allocate(selected_topping_ids: Sequence[str], included_count: int, extra_unit_price) -> AllocationResult:
    """Split a topping selection into included and extra toppings.

    The first ``included_count`` selections (in selection order) are free, the
    rest are charged at ``extra_unit_price`` each. Duplicates are not checked
    here; the caller's toggle semantics keep the selection unique.
    """
    extra_unit_price = to_decimal(extra_unit_price)
    if included_count < 0:
        raise InvalidPricingPolicy(f"included topping count must be >= 0, got {included_count}")
    if extra_unit_price < 0:
        raise InvalidPricingPolicy(f"extra topping price must be >= 0, got {extra_unit_price}")

    selected = tuple(selected_topping_ids)
    included = selected[:included_count]
    extra = selected[included_count:]
    return AllocationResult(
        included_ids=included,
        extra_ids=extra,
        extra_count=len(extra),
        extra_charge=len(extra) * extra_unit_price,
    )


def toggle_topping(selection: Sequence[str], topping_id: str) -> tuple[str, ...]:
    """Select ``topping_id``, or unselect it if it is already in ``selection``."""
    if topping_id in selection:
        return tuple(t for t in selection if t != topping_id)
    return tuple(selection) + (topping_id,)


def clamp_quantity(quantity: int) -> int:
    return max(1, int(quantity))


def compute_subtotal(unit_price, quantity: int, allocation: AllocationResult, *sub_allocations: AllocationResult) -> Decimal:
    # extras are charged per line, not per unit
    extras = allocation.extra_charge + sum((a.extra_charge for a in sub_allocations), Decimal("0"))
    return to_decimal(unit_price) * quantity + extras


@dataclass
class PackageItemSelection:
    """Toppings chosen for one product inside a package.

    The free allowance is the product's own allowance times how many of it
    the package holds.
    """

    product_id: str
    name: str
    included_topping_count: int
    quantity: int = 1
    toppings: tuple[str, ...] = ()

    def __post_init__(self):
        self.toppings = tuple(self.toppings)

    @property
    def allowance(self) -> int:
        return self.included_topping_count * self.quantity


@dataclass
class CartLineItem:
    """One product or package in an order, with its own toppings."""

    product_id: str
    name: str
    policy: PricingPolicy
    quantity: int = 1
    toppings: tuple[str, ...] = ()
    kind: str = "individual"
    topping_names: dict[str, str] = field(default_factory=dict)
    package_items: list[PackageItemSelection] = field(default_factory=list)

    def __post_init__(self):
        self.quantity = clamp_quantity(self.quantity)
        self.toppings = tuple(self.toppings)

    @property
    def allocation(self) -> AllocationResult:
        return allocate(
            self.toppings,
            self.policy.included_topping_count,
            self.policy.extra_topping_price,
        )

    @property
    def package_allocations(self) -> list[AllocationResult]:
        return [
            allocate(item.toppings, item.allowance, self.policy.extra_topping_price)
            for item in self.package_items
        ]

    @property
    def extra_charge(self) -> Decimal:
        return self.allocation.extra_charge + sum(
            (a.extra_charge for a in self.package_allocations), Decimal("0")
        )

    @property
    def subtotal(self) -> Decimal:
        return compute_subtotal(
            self.policy.unit_price, self.quantity, self.allocation, *self.package_allocations
        )

    def set_quantity(self, quantity: int) -> None:
        self.quantity = clamp_quantity(quantity)

    def remove_topping(self, topping_id: str) -> None:
        # later selections move up into the free allowance
        self.toppings = tuple(t for t in self.toppings if t != topping_id)

    def remove_package_topping(self, item_index: int, topping_id: str) -> None:
        item = self.package_items[item_index]
        item.toppings = tuple(t for t in item.toppings if t != topping_id)


@dataclass(frozen=True)
class OrderSummary:
    lines: tuple[CartLineItem, ...]
    line_subtotals: tuple[Decimal, ...]
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal


def summarize(lines: Iterable[CartLineItem], delivery_fee=0, free_delivery: bool = False) -> OrderSummary:
    lines = tuple(lines)
    fee = to_decimal(delivery_fee)
    if fee < 0:
        raise InvalidPricingPolicy(f"delivery fee must be >= 0, got {fee}")
    if free_delivery:
        fee = Decimal("0")
    line_subtotals = tuple(line.subtotal for line in lines)
    subtotal = sum(line_subtotals, Decimal("0"))
    return OrderSummary(
        lines=lines,
        line_subtotals=line_subtotals,
        subtotal=subtotal,
        delivery_fee=fee,
        total=subtotal + fee,
    )
