"""
Shop context - the explicit bundle of stores and services a request needs.

Built once per process (``api.server`` lifespan) or per test, then handed to
the route handlers; nothing in the core reaches for module-level state.
"""

from dataclasses import dataclass, field
from typing import Optional

from shop.admin import AdminCheck, OrderAdmin
from shop.catalog import InMemoryProductStore, InventoryAdjuster, IProductStore
from shop.checkout import CheckoutOrchestrator
from shop.journal import InMemoryOrderJournal, IOrderJournal
from shop.orders import InMemoryOrderRepository, IOrderRepository
from shop.providers import ProviderRegistry
from shop.reconciliation import ReconciliationEngine


@dataclass
class Shop:
    orders: IOrderRepository
    products: IProductStore
    journal: IOrderJournal
    providers: ProviderRegistry
    checkout: CheckoutOrchestrator
    reconciliation: ReconciliationEngine
    admin: OrderAdmin
    inventory: InventoryAdjuster = field(repr=False, default=None)

    @classmethod
    def assemble(
        cls,
        providers: ProviderRegistry,
        is_admin: AdminCheck,
        orders: Optional[IOrderRepository] = None,
        products: Optional[IProductStore] = None,
        journal: Optional[IOrderJournal] = None,
        currency: str = "EUR",
    ) -> "Shop":
        # Dependency injection with in-memory defaults
        orders = orders or InMemoryOrderRepository()
        products = products or InMemoryProductStore()
        journal = journal or InMemoryOrderJournal()
        inventory = InventoryAdjuster(products)

        return cls(
            orders=orders,
            products=products,
            journal=journal,
            providers=providers,
            checkout=CheckoutOrchestrator(orders, products, providers, journal, currency=currency),
            reconciliation=ReconciliationEngine(orders, inventory, providers, journal),
            admin=OrderAdmin(orders, journal, is_admin),
            inventory=inventory,
        )
