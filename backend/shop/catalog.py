"""
Catalog collaborator and Inventory Adjuster.

The shop core only reads titles and prices and issues inventory decrements;
product lifecycle belongs to the catalog.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, List

import structlog

from schemas.order_definitions import Product

logger = structlog.get_logger().bind(component="inventory")


class IProductStore(ABC):
    """Read + decrement capability the core needs from the catalog"""

    @abstractmethod
    async def get_products_by_ids(self, product_ids: Iterable[int]) -> List[Product]:
        pass

    @abstractmethod
    async def decrement_inventory(self, product_id: int, quantity: int) -> bool:
        """Decrement clamped at zero. Returns False if the product is gone."""
        pass


class InMemoryProductStore(IProductStore):
    """In-memory catalog with per-product locks"""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[int, Product] = {p.id: p for p in products}
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def put(self, product: Product) -> None:
        self._products[product.id] = product

    def remove(self, product_id: int) -> None:
        self._products.pop(product_id, None)

    def get(self, product_id: int) -> Product:
        return self._products[product_id]

    async def get_products_by_ids(self, product_ids: Iterable[int]) -> List[Product]:
        return [self._products[pid] for pid in set(product_ids) if pid in self._products]

    async def decrement_inventory(self, product_id: int, quantity: int) -> bool:
        async with self._locks[product_id]:
            product = self._products.get(product_id)
            if product is None:
                return False
            self._products[product_id] = product.model_copy(
                update={"inventory": max(product.inventory - quantity, 0)}
            )
            return True


class InventoryAdjuster:
    """
    Best-effort inventory decrements.

    Failures are logged and swallowed: by the time we decrement, the sale has
    already happened and must not be reported as failed.
    """

    def __init__(self, products: IProductStore):
        self.products = products

    async def decrement(self, product_id: int, quantity: int) -> bool:
        log = logger.bind(product_id=product_id, quantity=quantity)
        if quantity <= 0:
            log.debug("inventory_decrement_skipped")
            return False
        try:
            found = await self.products.decrement_inventory(product_id, quantity)
        except Exception as e:
            log.error("inventory_decrement_failed", error=str(e), error_type=type(e).__name__)
            return False
        if not found:
            log.warning("inventory_product_missing")
            return False
        log.info("inventory_decremented")
        return True
