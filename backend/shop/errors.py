"""
Shop error taxonomy.

Each error carries the HTTP status the API layer answers with; the message is
what the storefront shows verbatim, so it never includes driver internals.
"""

from typing import Any, Dict, Optional


class ShopError(Exception):
    """Base class for every error the shop core raises on purpose."""

    status_code: int = 500
    code: str = "shop_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class InvalidInput(ShopError):
    status_code = 400
    code = "invalid_input"


class NotFound(ShopError):
    status_code = 404
    code = "not_found"


class UnknownProduct(NotFound):
    """A cart line references a product the catalog cannot resolve."""

    # Client-correctable at checkout: the cart is wrong, not the URL
    status_code = 400
    code = "unknown_product"

    def __init__(self, product_id: Any):
        super().__init__(f"Product not found: {product_id}", product_id=product_id)
        self.product_id = product_id


class Unauthorized(ShopError):
    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized", **context: Any):
        super().__init__(message, **context)


class ProviderError(ShopError):
    status_code = 500
    code = "provider_error"

    def __init__(self, message: str, provider: Optional[str] = None, **context: Any):
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class PaymentNotFound(NotFound):
    code = "payment_not_found"


class UnsupportedProvider(ShopError):
    status_code = 400
    code = "unsupported_provider"

    def __init__(self, provider: str, reason: str = "not configured"):
        super().__init__(f"Payment provider '{provider}' is {reason}", provider=provider)
        self.provider = provider


class StorageError(ShopError):
    status_code = 500
    code = "storage_error"
