"""
Order administration - fulfillment updates and removal, gated on an injected
``is_admin(request_context)`` capability. The gate is checked before any store
access so an unauthorized call never touches state.
"""

from typing import Any, Callable, Dict, List, Optional

import structlog

from schemas.order_definitions import Order, OrderEventType, OrderStatus
from shop.errors import InvalidInput, Unauthorized
from shop.journal import IOrderJournal, record_event
from shop.orders import IOrderRepository

logger = structlog.get_logger().bind(component="order_admin")

AdminCheck = Callable[[Any], bool]


class OrderAdmin:
    def __init__(self, orders: IOrderRepository, journal: IOrderJournal, is_admin: AdminCheck):
        self.orders = orders
        self.journal = journal
        self.is_admin = is_admin

    def _require_admin(self, request_context: Any, action: str) -> None:
        if not self.is_admin(request_context):
            logger.warning("admin_denied", action=action)
            raise Unauthorized()

    async def list_orders(self, request_context: Any) -> List[Order]:
        self._require_admin(request_context, "list_orders")
        return await self.orders.list_all()

    async def update_order(
        self,
        request_context: Any,
        order_id: str,
        status: Optional[str] = None,
        tracking_number: Optional[str] = None,
    ) -> Dict[str, int]:
        """Status override plus tracking number; status defaults to processing."""
        self._require_admin(request_context, "update_order")
        try:
            new_status = OrderStatus(status) if status else OrderStatus.PROCESSING
        except ValueError:
            raise InvalidInput(f"Invalid status: {status}")

        changed = await self.orders.update_fulfillment(order_id, new_status, tracking_number or None)
        if changed:
            await record_event(self.journal, order_id, OrderEventType.ORDER_UPDATED, {
                "status": new_status.value,
                "tracking_number": tracking_number or None,
            })
        return {"changed": changed}

    async def delete_order(self, request_context: Any, order_id: str) -> Dict[str, int]:
        self._require_admin(request_context, "delete_order")
        deleted = await self.orders.delete(order_id)
        if deleted:
            await record_event(self.journal, order_id, OrderEventType.ORDER_DELETED, {}, severity="WARNING")
        return {"deleted": deleted}
