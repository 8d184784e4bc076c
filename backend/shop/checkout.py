"""
Checkout Orchestrator
=====================
Turns a cart into a priced, immutable order snapshot and a hosted payment at
the provider. Runs as a strictly sequential pipeline:

    resolve -> price -> persist -> call provider -> persist reference

and aborts on the first failure. No order is created unless every cart line
resolves against the catalog.
"""

from typing import Any, Iterable, List, Optional

import structlog
from pydantic import ValidationError

from schemas.order_definitions import (
    CartItem,
    CheckoutResult,
    Order,
    OrderEventType,
    OrderItem,
    RedirectTargets,
    billable_quantity,
)
from shop.catalog import IProductStore
from shop.errors import InvalidInput, ProviderError, ShopError, UnknownProduct
from shop.journal import IOrderJournal, record_event
from shop.orders import IOrderRepository
from shop.providers import ProviderRegistry

logger = structlog.get_logger().bind(component="checkout")


class CheckoutOrchestrator:
    """
    Example:
        orchestrator = CheckoutOrchestrator(orders, products, providers, journal)
        result = await orchestrator.checkout([CartItem(id=1, quantity=2)], "a@b.c")
        # Customer pays at result.redirect_url
    """

    def __init__(
        self,
        orders: IOrderRepository,
        products: IProductStore,
        providers: ProviderRegistry,
        journal: IOrderJournal,
        currency: str = "EUR",
    ):
        self.orders = orders
        self.products = products
        self.providers = providers
        self.journal = journal
        self.currency = currency

    async def snapshot_items(self, cart_items: List[CartItem]) -> List[OrderItem]:
        """Price every cart line from the catalog in one batched lookup."""
        product_ids = list(dict.fromkeys(item.id for item in cart_items))
        catalog = {p.id: p for p in await self.products.get_products_by_ids(product_ids)}

        for product_id in product_ids:
            if product_id not in catalog:
                raise UnknownProduct(product_id)

        return [
            OrderItem(
                product_id=item.id,
                title=catalog[item.id].title,
                unit_price_minor_units=catalog[item.id].price_minor_units,
                quantity=item.quantity,
                billed_quantity=billable_quantity(item.quantity),
            )
            for item in cart_items
        ]

    async def checkout(
        self,
        cart_items: Iterable[Any],
        customer_email: Optional[str] = None,
        provider_name: Optional[str] = None,
        return_url: str = "http://localhost:8000/success.html",
        cancel_url: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Create a pending order and a provider payment for it.

        ``return_url`` receives ``?order=<id>`` so the success page can call
        the verify endpoint.
        """
        try:
            cart = [item if isinstance(item, CartItem) else CartItem.model_validate(item)
                    for item in (cart_items or [])]
        except ValidationError as e:
            raise InvalidInput("Invalid cart item") from e
        if not cart:
            raise InvalidInput("No items")

        # Unsupported providers fail before anything is written
        provider = self.providers.get(provider_name)
        log = logger.bind(provider=provider.name)

        items = await self.snapshot_items(cart)
        total = sum(item.line_total_minor_units for item in items)

        order = await self.orders.create(Order(
            customer_email=customer_email or None,
            items=items,
            total_amount_minor_units=total,
            currency=self.currency,
            provider_name=provider.name,
        ))
        log = log.bind(order_id=order.id)
        await record_event(self.journal, order.id, OrderEventType.ORDER_CREATED, {
            "total_minor_units": total,
            "currency": self.currency,
            "line_count": len(items),
        })

        separator = "&" if "?" in return_url else "?"
        targets = RedirectTargets(
            return_url=f"{return_url}{separator}order={order.id}",
            cancel_url=cancel_url,
        )

        try:
            session = await provider.create_payment(
                amount_minor_units=total,
                currency=self.currency,
                metadata={"order_id": order.id},
                redirect_targets=targets,
            )
            await self.orders.set_payment_reference(order.id, session.external_id)
        except ShopError as e:
            await self._abandon(order, e)
            raise
        except Exception as e:
            log.error("checkout_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            await self._abandon(order, e)
            raise ProviderError("Checkout could not be completed", provider=provider.name) from e

        await record_event(self.journal, order.id, OrderEventType.PAYMENT_INITIATED, {
            "provider": provider.name,
            "payment_reference": session.external_id,
        })
        log.info("checkout_created", payment_reference=session.external_id, amount=total)

        return CheckoutResult(
            order_id=order.id,
            redirect_url=session.redirect_url,
            amount=total,
            currency=self.currency,
        )

    async def _abandon(self, order: Order, error: Exception) -> None:
        # The order stays pending without a payment reference; no cleanup
        await record_event(self.journal, order.id, OrderEventType.CHECKOUT_ABANDONED, {
            "provider": order.provider_name,
            "error": str(error),
            "error_type": type(error).__name__,
        }, severity="WARNING")
