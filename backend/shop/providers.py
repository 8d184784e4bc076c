"""
Payment Provider Adapters
=========================
Abstract boundary to external payment gateways, with one adapter per
provider and a registry that selects them by name.

- MollieProvider: Mollie REST API over httpx (hosted checkout + status poll)
- StripeProvider: Stripe Checkout Sessions via the stripe SDK, signed webhooks

pip install httpx stripe structlog
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import parse_qs

import httpx
import stripe
import structlog

from schemas.order_definitions import (
    PaymentSession,
    ProviderEvent,
    RedirectTargets,
    format_minor_units,
)
from shop.errors import PaymentNotFound, ProviderError, UnsupportedProvider

logger = structlog.get_logger().bind(component="payment_providers")


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class ProviderSettings:
    """Provider credentials and limits."""
    default_provider: str = "mollie"
    currency: str = "EUR"
    timeout_seconds: float = 10.0

    mollie_api_key: str = ""
    mollie_api_url: str = "https://api.mollie.com/v2"
    mollie_webhook_url: Optional[str] = None

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    @classmethod
    def from_env(cls) -> "ProviderSettings":
        return cls(
            default_provider=os.getenv("PAYMENT_PROVIDER", "mollie"),
            currency=os.getenv("SHOP_CURRENCY", "EUR"),
            timeout_seconds=float(os.getenv("PAYMENT_PROVIDER_TIMEOUT_SECONDS", "10.0")),
            mollie_api_key=os.getenv("MOLLIE_API_KEY", ""),
            mollie_api_url=os.getenv("MOLLIE_API_URL", "https://api.mollie.com/v2"),
            mollie_webhook_url=os.getenv("MOLLIE_WEBHOOK_URL") or None,
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        )


# =============================================================================
# ADAPTER INTERFACE
# =============================================================================

class PaymentProvider(ABC):
    """Abstract payment provider adapter"""

    name: str = "abstract"

    @abstractmethod
    async def create_payment(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Dict[str, Any],
        redirect_targets: RedirectTargets,
    ) -> PaymentSession:
        """Create a hosted payment. Raises ProviderError."""
        pass

    @abstractmethod
    async def get_payment_status(self, external_id: str) -> str:
        """Live provider status. Raises ProviderError or PaymentNotFound."""
        pass

    @abstractmethod
    async def parse_callback(self, body: bytes, headers: Mapping[str, str]) -> Optional[ProviderEvent]:
        """
        Verify and parse a raw webhook delivery.

        Returns None for deliveries that carry no payment outcome.
        """
        pass

    async def aclose(self) -> None:
        pass


# =============================================================================
# MOLLIE
# =============================================================================

class MollieProvider(PaymentProvider):
    """
    Mollie payments API adapter.

    Mollie webhooks only carry the payment id, so every callback is verified
    by fetching the payment back from the API.
    """

    name = "mollie"

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.mollie.com/v2",
        webhook_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        self._client = client or httpx.AsyncClient(
            base_url=api_url,
            timeout=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        self._logger = logger.bind(provider=self.name)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            self._logger.error("provider_timeout", method=method, path=path)
            raise ProviderError("Payment provider timed out", provider=self.name)
        except httpx.HTTPError as e:
            self._logger.error("provider_unreachable", method=method, path=path, error=str(e))
            raise ProviderError("Payment provider unreachable", provider=self.name)

        if response.status_code == 404:
            raise PaymentNotFound("Payment not found", provider=self.name, path=path)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            self._logger.error("provider_rejected",
                               method=method,
                               path=path,
                               status_code=response.status_code,
                               detail=detail)
            raise ProviderError(f"Payment provider error: {detail}", provider=self.name)

        return response.json()

    async def create_payment(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Dict[str, Any],
        redirect_targets: RedirectTargets,
    ) -> PaymentSession:
        payload: Dict[str, Any] = {
            "amount": {"currency": currency, "value": format_minor_units(amount_minor_units)},
            "description": f"Order {metadata.get('order_id')}",
            "redirectUrl": redirect_targets.return_url,
            "metadata": metadata,
        }
        if redirect_targets.cancel_url:
            payload["cancelUrl"] = redirect_targets.cancel_url
        webhook_url = redirect_targets.webhook_url or self.webhook_url
        if webhook_url:
            payload["webhookUrl"] = webhook_url

        data = await self._request("POST", "/payments", json=payload)
        checkout_url = data.get("_links", {}).get("checkout", {}).get("href")
        if not data.get("id") or not checkout_url:
            raise ProviderError("Payment provider returned no checkout link", provider=self.name)

        return PaymentSession(external_id=data["id"], redirect_url=checkout_url)

    async def get_payment_status(self, external_id: str) -> str:
        data = await self._request("GET", f"/payments/{external_id}")
        return data.get("status", "unknown")

    async def parse_callback(self, body: bytes, headers: Mapping[str, str]) -> Optional[ProviderEvent]:
        form = parse_qs(body.decode("utf-8", errors="replace"))
        payment_id = (form.get("id") or [None])[0]
        if not payment_id:
            return None
        status = await self.get_payment_status(payment_id)
        return ProviderEvent(payment_reference=payment_id, status=status)


# =============================================================================
# STRIPE
# =============================================================================

def map_stripe_session_status(status: Optional[str], payment_status: Optional[str]) -> str:
    """Map a Checkout Session onto the shared payment status vocabulary."""
    if payment_status in ("paid", "no_payment_required"):
        return "paid"
    if status == "expired":
        return "expired"
    if status == "complete":
        # Completed but funds not captured yet (delayed payment methods)
        return "pending"
    return "open"


STRIPE_EVENT_STATUSES = {
    "checkout.session.async_payment_succeeded": "paid",
    "checkout.session.async_payment_failed": "failed",
    "checkout.session.expired": "expired",
}


class StripeProvider(PaymentProvider):
    """Stripe Checkout adapter. SDK calls are blocking, so they run in an executor."""

    name = "stripe"

    def __init__(self, secret_key: str, webhook_secret: str = "", timeout_seconds: float = 10.0):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        self._logger = logger.bind(provider=self.name)

    async def _call(self, fn: Callable, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, partial(fn, *args, api_key=self.secret_key, **kwargs)),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._logger.error("provider_timeout", call=getattr(fn, "__qualname__", str(fn)))
            raise ProviderError("Payment provider timed out", provider=self.name)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise PaymentNotFound("Payment not found", provider=self.name)
            self._logger.error("provider_rejected", error=str(e))
            raise ProviderError(f"Payment provider error: {e.user_message or e}", provider=self.name)
        except stripe.StripeError as e:
            self._logger.error("provider_error", error=str(e), error_type=type(e).__name__)
            raise ProviderError("Payment provider error", provider=self.name)

    async def create_payment(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Dict[str, Any],
        redirect_targets: RedirectTargets,
    ) -> PaymentSession:
        order_id = str(metadata.get("order_id"))
        session = await self._call(
            stripe.checkout.Session.create,
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": amount_minor_units,
                    "product_data": {"name": f"Order {order_id}"},
                },
                "quantity": 1,
            }],
            success_url=redirect_targets.return_url,
            cancel_url=redirect_targets.cancel_url or redirect_targets.return_url,
            client_reference_id=order_id,
            metadata={k: str(v) for k, v in metadata.items()},
            idempotency_key=f"checkout_{order_id}",
        )
        return PaymentSession(external_id=session.id, redirect_url=session.url)

    async def get_payment_status(self, external_id: str) -> str:
        session = await self._call(stripe.checkout.Session.retrieve, external_id)
        return map_stripe_session_status(session.status, session.payment_status)

    async def parse_callback(self, body: bytes, headers: Mapping[str, str]) -> Optional[ProviderEvent]:
        signature = headers.get("stripe-signature", "")
        try:
            stripe.Webhook.construct_event(body, signature, self.webhook_secret)
        except stripe.SignatureVerificationError:
            raise ProviderError("Invalid webhook signature", provider=self.name)
        except ValueError:
            raise ProviderError("Malformed webhook payload", provider=self.name)

        event = json.loads(body)
        event_type = event.get("type", "unknown")
        session = event.get("data", {}).get("object", {})

        if event_type == "checkout.session.completed":
            status = map_stripe_session_status(session.get("status"), session.get("payment_status"))
        else:
            status = STRIPE_EVENT_STATUSES.get(event_type)

        if not status or not session.get("id"):
            self._logger.debug("webhook_ignored", event_type=event_type)
            return None

        return ProviderEvent(payment_reference=session["id"], status=status, event_id=event.get("id"))


# =============================================================================
# REGISTRY
# =============================================================================

KNOWN_PROVIDERS = ("mollie", "stripe")


class ProviderRegistry:
    """Provider lookup keyed by name; fails fast for anything not configured."""

    def __init__(self, providers: Optional[Dict[str, PaymentProvider]] = None, default: str = "mollie"):
        self._providers: Dict[str, PaymentProvider] = dict(providers or {})
        self.default = default

    @classmethod
    def from_settings(cls, settings: ProviderSettings) -> "ProviderRegistry":
        registry = cls(default=settings.default_provider)
        if settings.mollie_api_key:
            registry.register(MollieProvider(
                api_key=settings.mollie_api_key,
                api_url=settings.mollie_api_url,
                webhook_url=settings.mollie_webhook_url,
                timeout_seconds=settings.timeout_seconds,
            ))
        if settings.stripe_secret_key:
            registry.register(StripeProvider(
                secret_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
                timeout_seconds=settings.timeout_seconds,
            ))
        logger.info("providers_configured", providers=registry.names, default=registry.default)
        return registry

    def register(self, provider: PaymentProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: Optional[str] = None) -> PaymentProvider:
        name = name or self.default
        provider = self._providers.get(name)
        if provider is None:
            reason = "not configured" if name in KNOWN_PROVIDERS else "not supported"
            raise UnsupportedProvider(name, reason)
        return provider

    @property
    def names(self) -> list:
        return sorted(self._providers)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
