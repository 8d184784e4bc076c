"""
Order Store
===========
Repository interface for orders plus the in-memory implementation used for
local runs and tests. The PostgreSQL implementation lives in ``database``.

The one operation with a concurrency contract is ``mark_paid``: it must be a
compare-and-set so that exactly one caller observes the transition.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from schemas.order_definitions import Order, OrderStatus, utc_now


class IOrderRepository(ABC):
    """Order-specific repository interface"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        pass

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_payment_reference(self, reference: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def set_payment_reference(self, order_id: str, reference: str) -> bool:
        """Attach the provider reference. Returns False if one is already set."""
        pass

    @abstractmethod
    async def mark_paid(self, order_id: str) -> Optional[Order]:
        """
        Atomically move an order into ``paid`` unless it has been paid before
        or already carries the ``paid`` status.

        Returns the updated order to the single caller that performed the
        transition, and None to everyone else.
        """
        pass

    @abstractmethod
    async def set_status(self, order_id: str, status: OrderStatus) -> bool:
        pass

    @abstractmethod
    async def update_fulfillment(
        self,
        order_id: str,
        status: OrderStatus,
        tracking_number: Optional[str],
    ) -> int:
        pass

    @abstractmethod
    async def list_all(self) -> List[Order]:
        """All orders, newest first."""
        pass

    @abstractmethod
    async def delete(self, order_id: str) -> int:
        pass


class InMemoryOrderRepository(IOrderRepository):
    """Thread-safe in-memory order repository"""

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def create(self, order: Order) -> Order:
        async with self._lock:
            self._orders[order.id] = order
            return order

    async def get(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            return self._orders.get(order_id)

    async def get_by_payment_reference(self, reference: str) -> Optional[Order]:
        async with self._lock:
            for order in self._orders.values():
                if order.provider_payment_reference == reference:
                    return order
            return None

    async def set_payment_reference(self, order_id: str, reference: str) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.provider_payment_reference is not None:
                return False
            self._orders[order_id] = order.model_copy(update={
                "provider_payment_reference": reference,
                "updated_at": utc_now(),
            })
            return True

    async def mark_paid(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.paid_at is not None or order.status == OrderStatus.PAID:
                return None
            now = utc_now()
            paid = order.model_copy(update={
                "status": OrderStatus.PAID,
                "paid_at": now,
                "updated_at": now,
            })
            self._orders[order_id] = paid
            return paid

    async def set_status(self, order_id: str, status: OrderStatus) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return False
            self._orders[order_id] = order.model_copy(update={
                "status": status,
                "updated_at": utc_now(),
            })
            return True

    async def update_fulfillment(
        self,
        order_id: str,
        status: OrderStatus,
        tracking_number: Optional[str],
    ) -> int:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return 0
            self._orders[order_id] = order.model_copy(update={
                "status": status,
                "tracking_number": tracking_number,
                "updated_at": utc_now(),
            })
            return 1

    async def list_all(self) -> List[Order]:
        async with self._lock:
            return sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)

    async def delete(self, order_id: str) -> int:
        async with self._lock:
            if order_id in self._orders:
                del self._orders[order_id]
                return 1
            return 0
