from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pricing import CartLineItem, OrderSummary, summarize

logger = logging.getLogger(__name__)


@dataclass
class OrderDraft:
    """Lines being assembled for one order.

    Owned by whoever builds the order (a request handler, a UI session) and
    passed around explicitly; there is no shared module-level cart.
    """

    lines: list[CartLineItem] = field(default_factory=list)

    def add_line(self, line: CartLineItem) -> int:
        self.lines.append(line)
        logger.debug("Added %s x%d to draft", line.product_id, line.quantity)
        return len(self.lines) - 1

    def remove_line(self, index: int) -> CartLineItem:
        return self.lines.pop(index)

    def remove_topping(self, index: int, topping_id: str) -> CartLineItem:
        line = self.lines[index]
        line.remove_topping(topping_id)
        return line

    def clear(self) -> None:
        self.lines.clear()

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def summary(self, delivery_fee=0, free_delivery: bool = False) -> OrderSummary:
        return summarize(self.lines, delivery_fee, free_delivery)
