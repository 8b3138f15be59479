"""In-memory cart for a single checkout session.

A :class:`Cart` holds at most one :class:`CartLine` per product. Each line
keeps a snapshot of the product taken when it was added or last refreshed,
and its quantity never exceeds the stock in that snapshot. The backend is not
consulted again until the sale is committed.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional

from . import log
from .core_logic import require_positive_quantity
from .data_manager import ProductRow
from .errors import InsufficientStock


@dataclass(frozen=True)
class CartLine:
    """Product snapshot plus the quantity requested for it."""

    product_id: str
    product_name: str
    category: Optional[str]
    unit_price: Decimal
    stock: int
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @classmethod
    def from_product(cls, product: ProductRow, quantity: int) -> "CartLine":
        return cls(
            product_id=product.product_id,
            product_name=product.name,
            category=product.category or None,
            unit_price=product.price,
            stock=product.stock,
            quantity=quantity,
        )


class Cart:
    """Ordered collection of cart lines keyed by product id."""

    def __init__(self) -> None:
        self._lines: "OrderedDict[str, CartLine]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(list(self._lines.values()))

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._lines

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def add_or_increment(self, product: ProductRow, quantity: int = 1) -> CartLine:
        """Add ``quantity`` of ``product``, merging with an existing line.

        The product snapshot on the line is replaced by ``product`` so the
        check always runs against the freshest stock the caller has seen.

        Raises:
            ValidationError: If ``quantity`` is not positive.
            InsufficientStock: If the resulting quantity exceeds
                ``product.stock``.
        """

        require_positive_quantity(quantity)
        existing = self._lines.get(product.product_id)
        current = existing.quantity if existing is not None else 0
        requested = current + quantity
        if requested > product.stock:
            log.warning(
                "Cannot add %s x '%s' to cart: %s already in cart, %s in stock",
                quantity,
                product.product_id,
                current,
                product.stock,
            )
            raise InsufficientStock(product.product_id, requested, product.stock)

        line = CartLine.from_product(product, requested)
        self._lines[product.product_id] = line
        log.debug("Cart line '%s' now at quantity %s", product.product_id, requested)
        return line

    def set_quantity(self, product_id: str, quantity: int) -> Optional[CartLine]:
        """Overwrite the quantity of a line; zero or less removes it.

        Returns the updated line, or ``None`` when the line was removed or
        did not exist.

        Raises:
            InsufficientStock: If ``quantity`` exceeds the line's stock
                snapshot.
        """

        if quantity <= 0:
            self.remove(product_id)
            return None
        line = self._lines.get(product_id)
        if line is None:
            return None
        if quantity > line.stock:
            log.warning(
                "Cannot set '%s' to %s: only %s in stock",
                product_id,
                quantity,
                line.stock,
            )
            raise InsufficientStock(product_id, quantity, line.stock)
        updated = replace(line, quantity=quantity)
        self._lines[product_id] = updated
        return updated

    def remove(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    def total(self) -> Decimal:
        """Sum of ``quantity * unit_price`` over all lines."""

        return sum((line.line_total for line in self._lines.values()), Decimal("0.00"))

    def refresh(self, products: Iterable[ProductRow]) -> List[str]:
        """Re-snapshot lines from a fresh catalog fetch.

        Lines whose product disappeared or is out of stock are dropped, and
        quantities above the new stock are lowered to it. Returns the ids of
        the lines that were changed.
        """

        by_id: Dict[str, ProductRow] = {product.product_id: product for product in products}
        changed = []
        for product_id, line in list(self._lines.items()):
            product = by_id.get(product_id)
            if product is None or product.stock <= 0:
                del self._lines[product_id]
                changed.append(product_id)
                continue
            quantity = min(line.quantity, product.stock)
            if quantity != line.quantity:
                changed.append(product_id)
            self._lines[product_id] = CartLine.from_product(product, quantity)
        if changed:
            log.info("Cart refresh adjusted lines: %s", ", ".join(changed))
        return changed
