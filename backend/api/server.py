# api/server.py
# ============================================================================
# STOREFRONT BACKEND - FASTAPI SERVER
# ============================================================================
# Checkout, payment verification, provider webhooks and order administration
# ============================================================================

import hmac
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog
import uvicorn

from shop import (
    InvalidInput,
    ProviderRegistry,
    ProviderSettings,
    Shop,
    ShopError,
)
from database import (
    Database,
    PostgresOrderJournal,
    PostgresOrderRepository,
    PostgresProductStore,
)
from schemas.order_definitions import utc_now

logger = structlog.get_logger().bind(component="server")

VERSION = "1.0.0"


# =============================================================================
# CONFIGURATION
# =============================================================================

class ServerConfig:
    """Server configuration from environment"""

    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8000"))
    ENV = os.getenv("ENV", "development")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

    # Public URL the customer returns to after paying; derived from the
    # request when unset
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")
    SUCCESS_PATH = os.getenv("SUCCESS_PATH", "/success.html")

    # Empty token disables every admin endpoint
    ADMIN_API_TOKEN = os.getenv("ADMIN_API_TOKEN", "")


def make_admin_check(token: str):
    """Build the is_admin(request) capability from a shared bearer token."""

    def is_admin(request: Any) -> bool:
        if not token or request is None:
            return False
        header = request.headers.get("authorization", "")
        scheme, _, supplied = header.partition(" ")
        if scheme.lower() != "bearer":
            supplied = request.headers.get("x-admin-token", "")
        return bool(supplied) and hmac.compare_digest(supplied.encode(), token.encode())

    return is_admin


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CheckoutRequest(BaseModel):
    """Cart submitted by the storefront."""
    items: Optional[List[Any]] = None
    customer_email: Optional[str] = Field(default=None, max_length=320)
    provider: Optional[str] = None


class CheckoutResponse(BaseModel):
    url: str
    order_id: str


class OrderUpdateRequest(BaseModel):
    status: Optional[str] = None
    tracking_number: Optional[str] = Field(default=None, max_length=255)


class HealthResponse(BaseModel):
    ok: bool
    version: str
    uptime_seconds: float
    providers: List[str]


START_TIME = utc_now()


# =============================================================================
# LIFESPAN MANAGEMENT
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    database: Optional[Database] = None

    if app.state.shop is None:
        database = Database()
        await database.initialize()
        providers = ProviderRegistry.from_settings(ProviderSettings.from_env())
        app.state.shop = Shop.assemble(
            providers=providers,
            is_admin=make_admin_check(app.state.config.ADMIN_API_TOKEN),
            orders=PostgresOrderRepository(database),
            products=PostgresProductStore(database),
            journal=PostgresOrderJournal(database),
            currency=os.getenv("SHOP_CURRENCY", "EUR"),
        )
        if not os.getenv("MOLLIE_WEBHOOK_URL"):
            logger.info("webhooks_disabled", hint="no MOLLIE_WEBHOOK_URL set, relying on /api/verify-payment")

    logger.info("server_started", version=VERSION, providers=app.state.shop.providers.names)

    yield

    logger.info("server_stopping")
    await app.state.shop.providers.aclose()
    if database:
        await database.close()


def get_shop(request: Request) -> Shop:
    return request.app.state.shop


# =============================================================================
# FASTAPI APP
# =============================================================================

def create_app(shop: Optional[Shop] = None, config: Optional[ServerConfig] = None) -> FastAPI:
    """
    Build the API. Passing ``shop`` skips database and provider setup, which
    is how tests run the app against in-memory stores.
    """
    config = config or ServerConfig()

    app = FastAPI(
        title="Storefront Backend",
        description="Orders, payments and fulfillment for a small storefront",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.shop = shop
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing header."""
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        return response

    # -------------------------------------------------------------------------
    # ERROR MAPPING
    # -------------------------------------------------------------------------

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        if exc.status_code >= 500:
            logger.error("request_failed",
                         request_path=request.url.path,
                         error=exc.message,
                         error_type=type(exc).__name__,
                         **exc.context)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "code": "invalid_input"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("request_crashed",
                     request_path=request.url.path,
                     error=str(exc),
                     error_type=type(exc).__name__,
                     exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # -------------------------------------------------------------------------
    # ENDPOINTS
    # -------------------------------------------------------------------------

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(shop: Shop = Depends(get_shop)):
        """Health check endpoint."""
        return HealthResponse(
            ok=True,
            version=VERSION,
            uptime_seconds=(utc_now() - START_TIME).total_seconds(),
            providers=shop.providers.names,
        )

    @app.post("/api/checkout", response_model=CheckoutResponse)
    async def checkout(body: CheckoutRequest, request: Request, shop: Shop = Depends(get_shop)):
        """
        Create a pending order and return the provider's hosted checkout URL.
        """
        base_url = config.PUBLIC_BASE_URL or str(request.base_url)
        result = await shop.checkout.checkout(
            body.items or [],
            customer_email=body.customer_email,
            provider_name=body.provider,
            return_url=base_url.rstrip("/") + config.SUCCESS_PATH,
        )
        return CheckoutResponse(url=result.redirect_url, order_id=result.order_id)

    @app.get("/api/verify-payment")
    @app.get("/api/verify-mollie")
    async def verify_payment(order: Optional[str] = None, shop: Shop = Depends(get_shop)):
        """Poll the provider for an order's payment (when webhooks are not available)."""
        if not order:
            raise InvalidInput("Missing order")
        status = await shop.reconciliation.verify_payment(order)
        return {"status": status}

    @app.post("/webhook/{provider}")
    async def provider_webhook(provider: str, request: Request, shop: Shop = Depends(get_shop)):
        """Provider callback. Always 200; failures are logged and left to redelivery."""
        body = await request.body()
        return await shop.reconciliation.handle_provider_callback(provider, body, request.headers)

    # -------------------------------------------------------------------------
    # ORDERS (admin)
    # -------------------------------------------------------------------------

    @app.get("/api/orders")
    async def list_orders(request: Request, shop: Shop = Depends(get_shop)) -> List[Dict[str, Any]]:
        orders = await shop.admin.list_orders(request)
        return [order.model_dump(mode="json") for order in orders]

    @app.put("/api/orders/{order_id}")
    async def update_order(
        order_id: str,
        body: OrderUpdateRequest,
        request: Request,
        shop: Shop = Depends(get_shop),
    ):
        return await shop.admin.update_order(
            request,
            order_id,
            status=body.status,
            tracking_number=body.tracking_number,
        )

    @app.delete("/api/orders/{order_id}")
    async def delete_order(order_id: str, request: Request, shop: Shop = Depends(get_shop)):
        return await shop.admin.delete_order(request, order_id)

    return app


app = create_app()


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=ServerConfig.HOST,
        port=ServerConfig.PORT,
        reload=ServerConfig.ENV == "development",
        log_level="info"
    )
