"""
Reconciliation Engine
=====================
Reflects the payment provider's authoritative status onto local orders.

Two entry points converge on ``apply_provider_status``:
- push: provider webhook deliveries (may be redelivered any number of times)
- pull: customer-triggered verification after returning from checkout

The move into ``paid`` goes through the store's compare-and-set
``mark_paid``; only the caller that wins it adjusts inventory, so concurrent
push and pull deliveries decrement stock exactly once.
"""

from typing import Any, Dict, Mapping, Optional

import structlog

from schemas.order_definitions import (
    Order,
    OrderEventType,
    OrderStatus,
    TERMINAL_PAYMENT_STATUSES,
)
from shop.catalog import InventoryAdjuster
from shop.errors import NotFound, PaymentNotFound
from shop.journal import IOrderJournal, record_event
from shop.orders import IOrderRepository
from shop.providers import ProviderRegistry

logger = structlog.get_logger().bind(component="reconciliation")


PROVIDER_STATUS_TRANSITIONS: Dict[str, OrderStatus] = {
    "paid": OrderStatus.PAID,
    "canceled": OrderStatus.CANCELED,
    "expired": OrderStatus.EXPIRED,
    "failed": OrderStatus.FAILED,
}

FAILURE_EVENTS = {
    OrderStatus.CANCELED: OrderEventType.PAYMENT_CANCELED,
    OrderStatus.EXPIRED: OrderEventType.PAYMENT_EXPIRED,
    OrderStatus.FAILED: OrderEventType.PAYMENT_FAILED,
}


def map_provider_status(provider_status: Optional[str]) -> Optional[OrderStatus]:
    """Order status a provider status leads to, or None for no transition."""
    return PROVIDER_STATUS_TRANSITIONS.get((provider_status or "").lower())


class ReconciliationEngine:
    """
    Example:
        engine = ReconciliationEngine(orders, inventory, providers, journal)
        await engine.handle_provider_callback("mollie", body, headers)  # push
        status = await engine.verify_payment(order_id)                  # pull
    """

    def __init__(
        self,
        orders: IOrderRepository,
        inventory: InventoryAdjuster,
        providers: ProviderRegistry,
        journal: IOrderJournal,
    ):
        self.orders = orders
        self.inventory = inventory
        self.providers = providers
        self.journal = journal

    # =========================================================================
    # STATUS TRANSITION
    # =========================================================================

    async def apply_provider_status(self, order: Order, provider_status: str, source: str) -> bool:
        """
        Apply a provider status to an order. Returns True if state changed.
        """
        log = logger.bind(order_id=order.id, provider_status=provider_status, source=source)
        target = map_provider_status(provider_status)
        if target is None:
            log.debug("status_no_transition")
            return False

        if target is OrderStatus.PAID:
            paid = await self.orders.mark_paid(order.id)
            if paid is None:
                log.info("payment_already_applied")
                return False

            await record_event(self.journal, order.id, OrderEventType.PAYMENT_CONFIRMED, {
                "source": source,
                "payment_reference": paid.provider_payment_reference,
                "amount": paid.total_amount_minor_units,
            })
            adjusted = [
                item.product_id
                for item in paid.items
                if await self.inventory.decrement(item.product_id, item.billed_quantity)
            ]
            await record_event(self.journal, order.id, OrderEventType.INVENTORY_ADJUSTED, {
                "products": adjusted,
                "skipped": len(paid.items) - len(adjusted),
            })
            return True

        # Failure outcomes overwrite unconditionally; reapplying is harmless
        changed = await self.orders.set_status(order.id, target)
        if changed:
            await record_event(self.journal, order.id, FAILURE_EVENTS[target], {
                "source": source,
                "previous_status": order.status.value,
            }, severity="WARNING")
        return changed

    # =========================================================================
    # PUSH PATH
    # =========================================================================

    async def handle_provider_callback(
        self,
        provider_name: str,
        body: bytes,
        headers: Mapping[str, str],
    ) -> Dict[str, Any]:
        """
        Process a webhook delivery. Always acknowledges.

        Errors are logged, not raised: the provider's own redelivery is the
        retry mechanism and the pull path covers anything missed.
        """
        log = logger.bind(provider=provider_name, path="webhook")
        try:
            provider = self.providers.get(provider_name)
            event = await provider.parse_callback(body, headers)
            if event is None:
                log.info("webhook_ignored")
                return {"received": True}

            log = log.bind(payment_reference=event.payment_reference, provider_status=event.status)
            order = await self.orders.get_by_payment_reference(event.payment_reference)
            if order is None:
                log.info("webhook_unknown_payment")
                return {"received": True}

            await record_event(self.journal, order.id, OrderEventType.WEBHOOK_RECEIVED, {
                "provider": provider_name,
                "provider_status": event.status,
                "provider_event_id": event.event_id,
            })
            await self.apply_provider_status(order, event.status, source="webhook")

        except Exception as e:
            log.error("webhook_processing_failed", error=str(e), error_type=type(e).__name__)

        return {"received": True}

    # =========================================================================
    # PULL PATH
    # =========================================================================

    async def verify_payment(self, order_id: str) -> str:
        """Fetch the live provider status for an order and reconcile it."""
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found", order_id=order_id)
        if not order.provider_payment_reference:
            raise PaymentNotFound("Order has no payment", order_id=order_id)

        provider = self.providers.get(order.provider_name)
        provider_status = await provider.get_payment_status(order.provider_payment_reference)

        target = map_provider_status(provider_status)
        if target is not None and not (order.status == target and target in TERMINAL_PAYMENT_STATUSES):
            await self.apply_provider_status(order, provider_status, source="verify")

        return provider_status
