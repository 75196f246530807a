"""
FastAPI Application Entry Point

Order intake for the web form, with WhatsApp receipts and delayed status
messages. Supports both the mock channel (development) and Twilio
WhatsApp (production).

Endpoints:
    - POST /api/identificar-cliente: Look up a customer by phone
    - POST /api/criar-pedido: Place an order
    - GET /api/clientes/{telefone}/pedidos: Order history of a customer
    - GET /api/channel/status: Chat channel lifecycle state
    - GET /health: System health check

Run with:
    uvicorn orderbot.main:app --port 3000
"""

import logging
from datetime import datetime
from typing import Optional
from contextlib import asynccontextmanager

import redis
import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from orderbot.bootstrap import AppServices, build_services
from orderbot.core.config import SchedulerBackend, get_settings, setup_logging
from orderbot.core.exceptions import OrderBotError
from orderbot.receipt import compute_totals
from orderbot.schemas import (
    ChannelStatusResponse,
    CustomerResponse,
    ErrorResponse,
    HealthResponse,
    IdentifyRequest,
    IdentifyResponse,
    OrderCreateResponse,
    OrderHistoryResponse,
    OrderResponse,
    OrderSubmission,
)

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """
    Build the application.

    When `services` is given the caller owns its lifecycle (tests);
    otherwise the services are built from settings and started/stopped by
    the lifespan handler.
    """
    settings = services.settings if services else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is not None:
            yield
            return

        logger.info("=" * 60)
        logger.info(f"🚀 Starting {settings.app_name}")
        logger.info(f"   Version: {settings.app_version}")
        logger.info(f"   Environment: {settings.env_mode.value}")
        logger.info(f"   Notifications: {settings.scheduler_backend.value} / {settings.notification_policy.value}")
        logger.info("=" * 60)

        if settings.use_real_services:
            missing = settings.validate_production_config()
            if missing:
                logger.warning(f"⚠️ Missing production config: {missing}")

        app.state.services = build_services(settings)
        await app.state.services.start()
        logger.info("✅ Application ready!")

        yield  # Application runs

        logger.info("Shutting down...")
        await app.state.services.shutdown()
        logger.info("✅ Cleanup complete")

    app = FastAPI(
        title=settings.app_name,
        description="Order intake with WhatsApp receipts and delayed status notifications.",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # ORDER ENDPOINTS
    # =========================================================================

    @app.post(
        "/api/identificar-cliente",
        response_model=IdentifyResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="Identify Customer",
    )
    async def identify_customer(body: IdentifyRequest, request: Request) -> IdentifyResponse:
        """Check the phone and return the stored customer, if any."""
        result = await get_services(request).orders.identify_customer(body.phone)

        if result.customer is not None:
            customer = CustomerResponse(
                phone=result.customer.phone,
                name=result.customer.name,
                address=result.customer.address,
                reference=result.customer.reference,
            )
        else:
            customer = CustomerResponse(phone=result.phone)
        return IdentifyResponse(is_new=result.is_new, customer=customer)

    @app.post(
        "/api/criar-pedido",
        response_model=OrderCreateResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="Place Order",
    )
    async def create_order(body: OrderSubmission, request: Request) -> OrderCreateResponse:
        """Store the order, send the receipt and schedule the follow-ups."""
        logger.info(f"Creating order for: {body.customer.name}")
        result = await get_services(request).orders.submit_order(body)
        return OrderCreateResponse(order_id=result.order_id, total=result.total)

    @app.get(
        "/api/clientes/{telefone}/pedidos",
        response_model=OrderHistoryResponse,
        responses=ERROR_RESPONSES,
        tags=["Orders"],
        summary="Order History",
    )
    async def order_history(telefone: str, request: Request) -> OrderHistoryResponse:
        """Orders of a customer, newest first."""
        services = get_services(request)
        orders = await services.orders.order_history(telefone)

        entries = []
        for order in orders:
            snapshot = order.snapshot
            totals = compute_totals(
                snapshot.cart,
                services.settings.delivery_fee,
                snapshot.payment_method,
                snapshot.change_for,
            )
            entries.append(OrderResponse(
                id=order.id,
                phone=order.customer_phone,
                cart=snapshot.cart,
                payment_method=snapshot.payment_method,
                change_for=snapshot.change_for,
                subtotal=totals.subtotal,
                total=totals.total,
                confirmation_sent=order.confirmation_sent,
                dispatch_sent=order.dispatch_sent,
                voided=order.voided,
                created_at=order.created_at,
            ))
        return OrderHistoryResponse(orders=entries)

    # =========================================================================
    # STATUS & HEALTH ENDPOINTS
    # =========================================================================

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """API root with navigation links."""
        return {
            "message": f"🍔 Welcome to {settings.app_name}",
            "version": settings.app_version,
            "environment": settings.env_mode.value,
            "documentation": "/docs",
            "health": "/health",
        }

    @app.get(
        "/api/channel/status",
        response_model=ChannelStatusResponse,
        tags=["Health"],
    )
    async def channel_status(request: Request) -> ChannelStatusResponse:
        services = get_services(request)
        return ChannelStatusResponse(
            state=services.gate.state.value,
            ready=services.gate.is_ready,
            provider=services.channel.provider_name,
        )

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="System Health Check",
    )
    async def health_check(request: Request) -> HealthResponse:
        """Verify all system components are operational."""
        services = get_services(request)

        db_status = "healthy"
        try:
            await services.database.ping()
        except Exception as e:
            db_status = f"unhealthy: {str(e)}"
            logger.error(f"Database health check failed: {e}")

        channel_status = "healthy" if services.gate.is_ready else services.gate.state.value

        redis_status = "not used"
        if settings.scheduler_backend == SchedulerBackend.CELERY:
            redis_status = "healthy"
            try:
                r = aioredis.Redis.from_url(settings.redis_url, socket_timeout=2)
                try:
                    await r.ping()
                finally:
                    await r.aclose()
            except redis.RedisError as e:
                redis_status = f"unhealthy: {str(e)}"
                logger.error(f"Redis health check failed: {e}")

        overall = "operational" if all(
            s in ("healthy", "not used") for s in [db_status, channel_status, redis_status]
        ) else "degraded"

        scheduler = services.scheduler
        return HealthResponse(
            status=overall,
            database=db_status,
            channel=channel_status,
            redis=redis_status,
            pending_notifications=scheduler.pending if scheduler else 0,
            timestamp=datetime.now(),
        )

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.exception_handler(OrderBotError)
    async def order_error_handler(request: Request, exc: OrderBotError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message} ({exc.detail})")
        else:
            logger.info(f"Rejected request: {exc.message} ({exc.detail})")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info(f"Invalid request body: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Dados do pedido inválidos."},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all exception handler."""
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": str(exc) if settings.debug else "Ocorreu um erro inesperado no servidor.",
            },
        )

    return app


# Initialize logging and the default application instance
setup_logging()
app = create_app()
