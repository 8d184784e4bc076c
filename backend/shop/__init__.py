# shop/__init__.py
# ============================================================================
# STOREFRONT BACKEND - ORDER / PAYMENT CORE
# ============================================================================
# Checkout, payment reconciliation, inventory and order administration
# ============================================================================

# Logging is configured before any module binds its logger
from shop.log_setup import configure_logging

configure_logging()

from shop.errors import (
    ShopError,
    InvalidInput,
    NotFound,
    UnknownProduct,
    Unauthorized,
    ProviderError,
    PaymentNotFound,
    UnsupportedProvider,
    StorageError,
)

from shop.orders import IOrderRepository, InMemoryOrderRepository
from shop.catalog import IProductStore, InMemoryProductStore, InventoryAdjuster
from shop.journal import IOrderJournal, InMemoryOrderJournal, record_event

from shop.providers import (
    PaymentProvider,
    MollieProvider,
    StripeProvider,
    ProviderRegistry,
    ProviderSettings,
)

from shop.checkout import CheckoutOrchestrator
from shop.reconciliation import ReconciliationEngine, map_provider_status
from shop.admin import OrderAdmin
from shop.context import Shop

__all__ = [
    "configure_logging",
    # Errors
    "ShopError",
    "InvalidInput",
    "NotFound",
    "UnknownProduct",
    "Unauthorized",
    "ProviderError",
    "PaymentNotFound",
    "UnsupportedProvider",
    "StorageError",
    # Stores
    "IOrderRepository",
    "InMemoryOrderRepository",
    "IProductStore",
    "InMemoryProductStore",
    "InventoryAdjuster",
    "IOrderJournal",
    "InMemoryOrderJournal",
    "record_event",
    # Providers
    "PaymentProvider",
    "MollieProvider",
    "StripeProvider",
    "ProviderRegistry",
    "ProviderSettings",
    # Services
    "CheckoutOrchestrator",
    "ReconciliationEngine",
    "map_provider_status",
    "OrderAdmin",
    "Shop",
]
