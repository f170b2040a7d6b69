from __future__ import annotations


class InvalidPricingPolicy(ValueError):
    """A price, topping allowance or fee that would produce a wrong charge."""


class InvalidStateTransition(ValueError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current}' to '{target}'")
