# schemas/order_definitions.py
# ============================================================================
# STOREFRONT BACKEND - ORDER SCHEMAS
# ============================================================================
# Type-safe definitions shared by the checkout, reconciliation and admin flows
# ============================================================================

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
import uuid

from pydantic import BaseModel, Field, computed_field


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELED = "canceled"
    EXPIRED = "expired"
    FAILED = "failed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


# Statuses after which no further payment-driven transition is expected
TERMINAL_PAYMENT_STATUSES = frozenset({
    OrderStatus.PAID,
    OrderStatus.CANCELED,
    OrderStatus.EXPIRED,
    OrderStatus.FAILED,
})


class OrderEventType(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    CHECKOUT_ABANDONED = "CHECKOUT_ABANDONED"
    WEBHOOK_RECEIVED = "WEBHOOK_RECEIVED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_CANCELED = "PAYMENT_CANCELED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    INVENTORY_ADJUSTED = "INVENTORY_ADJUSTED"
    ORDER_UPDATED = "ORDER_UPDATED"
    ORDER_DELETED = "ORDER_DELETED"


# ============================================================================
# SECTION 2: TIME AND MONEY
# ============================================================================

def utc_now() -> datetime:
    """Timezone-aware UTC timestamp; orders are stored as TIMESTAMPTZ."""
    return datetime.now(timezone.utc)


def to_minor_units(amount_major: Any) -> int:
    """
    Convert a major-unit price (e.g. 9.99) to integer minor units (999).

    Rounds half-up once; all later arithmetic is integer.
    """
    return int((Decimal(str(amount_major)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_minor_units(amount_minor: int) -> str:
    """Render minor units as a fixed two-decimal string ("19.98")."""
    sign = "-" if amount_minor < 0 else ""
    amount_minor = abs(amount_minor)
    return f"{sign}{amount_minor // 100}.{amount_minor % 100:02d}"


def billable_quantity(raw_quantity: Any) -> int:
    """Requested quantity if it is a positive whole number, otherwise 1."""
    if isinstance(raw_quantity, bool):
        return 1
    try:
        value = Decimal(str(raw_quantity))
    except (ArithmeticError, ValueError):
        return 1
    if not value.is_finite() or value <= 0 or value != value.to_integral_value():
        return 1
    return int(value)


# ============================================================================
# SECTION 3: CATALOG
# ============================================================================

class Product(BaseModel):
    """Catalog entry, owned by the catalog collaborator."""
    id: int
    title: str
    price: Decimal = Field(description="Price in major units")
    inventory: int = 0

    @computed_field
    @property
    def price_minor_units(self) -> int:
        return to_minor_units(self.price)


class CartItem(BaseModel):
    """Single cart line as sent by the storefront."""
    id: int
    quantity: Any = None


# ============================================================================
# SECTION 4: ORDERS
# ============================================================================

class OrderItem(BaseModel):
    """Immutable line snapshot taken at checkout time."""
    model_config = {"frozen": True}

    product_id: int
    title: str
    unit_price_minor_units: int
    quantity: Any = None
    billed_quantity: int = Field(ge=1)

    @computed_field
    @property
    def line_total_minor_units(self) -> int:
        return self.unit_price_minor_units * self.billed_quantity


class Order(BaseModel):
    """Core order entity"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    customer_email: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    total_amount_minor_units: int = 0
    currency: str = "EUR"

    status: OrderStatus = OrderStatus.PENDING
    tracking_number: Optional[str] = None

    provider_name: str
    provider_payment_reference: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    paid_at: Optional[datetime] = None

    @computed_field
    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None


class OrderEvent(BaseModel):
    """Journal entry for an order state change"""
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: Optional[str] = None
    event_type: OrderEventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    severity: str = "INFO"
    timestamp: datetime = Field(default_factory=utc_now)


# ============================================================================
# SECTION 5: PROVIDER EXCHANGE
# ============================================================================

class RedirectTargets(BaseModel):
    """Where the provider sends the customer and its callbacks."""
    return_url: str
    cancel_url: Optional[str] = None
    webhook_url: Optional[str] = None


class PaymentSession(BaseModel):
    """Result of creating a hosted payment at the provider."""
    external_id: str
    redirect_url: str


class ProviderEvent(BaseModel):
    """A verified payment outcome reported by a provider."""
    payment_reference: str
    status: str
    event_id: Optional[str] = None


class CheckoutResult(BaseModel):
    """Checkout session creation result"""
    order_id: str
    redirect_url: str
    amount: int
    currency: str
