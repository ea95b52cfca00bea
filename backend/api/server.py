# api/server.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — FASTAPI SERVER
# ============================================================================
# Preview, checkout, payment webhook, status polling and PDF download, with
# CORS, timing headers and health checks.
# ============================================================================

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel
from starlette.background import BackgroundTask

from api.context import AppContext
from config import AppConfig
from logging_config import configure_logging
from pipeline.errors import (
    FulfillmentError,
    InvalidNotification,
    NotFoundError,
    PaymentSessionError,
)
from schemas.order_definitions import (
    ArtifactStatusResponse,
    CalculationInput,
    OrderInput,
)
from services.calculator import calculate_breakdown
from tasks.sweeper import order_summary, sweeper_loop

logger = structlog.get_logger(component="server")

VERSION = "1.0.0"
DOWNLOAD_FILENAME = "calculo-rescisao-detalhado.pdf"


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    uptime_seconds: float
    processor: str
    database: str


def get_context(request: Request) -> AppContext:
    return request.app.state.context


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the app. With no context the lifespan opens one from the
    environment (and refuses to start on a ConfigurationError); an injected
    context is used as-is and left open for its owner.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        config = context.config if context else AppConfig.from_env()
        configure_logging(config.log_level, config.log_format)
        logger.info("server_starting", version=VERSION, env=config.env, **config.summary())

        if owned:
            config.validate()
            ctx = await AppContext.from_config(config)
        else:
            ctx = context
        app.state.context = ctx
        app.state.started_at = datetime.now(timezone.utc)

        sweeper_task = None
        if config.sweeper_enabled:
            sweeper_task = asyncio.create_task(sweeper_loop(
                ctx.pending_orders,
                ctx.artifacts,
                interval_seconds=config.sweeper_interval_seconds,
                stale_hours=config.pending_order_stale_hours,
                notifier=ctx.notifier,
            ))

        yield

        logger.info("server_shutting_down")
        if sweeper_task:
            sweeper_task.cancel()
            try:
                await sweeper_task
            except asyncio.CancelledError:
                pass
        if owned:
            await ctx.close()

    cors_origins = context.config.cors_origins if context else AppConfig.from_env().cors_origins

    app = FastAPI(
        title="Rescisão Checkout Service",
        description="Paid severance calculation: checkout, payment confirmation and PDF delivery",
        version=VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_middleware(app)
    _register_exception_handlers(app)
    _register_routes(app)
    return app


# ============================================================================
# MIDDLEWARE
# ============================================================================

def _register_middleware(app: FastAPI) -> None:

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        """Add response timing and request ID headers"""
        request_id = str(uuid4())[:8]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()

        response = await call_next(request)

        duration = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        response.headers["X-Request-ID"] = request_id
        return response


# ============================================================================
# ERROR MAPPING
# ============================================================================

def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(PaymentSessionError)
    async def payment_session_error(request: Request, exc: PaymentSessionError):
        return JSONResponse(
            status_code=502,
            content={
                "error": "Erro ao criar pagamento",
                "message": "O processador de pagamento não respondeu. Tente novamente.",
                "retryable": True,
            },
        )

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"error": "Não encontrado"})

    @app.exception_handler(InvalidNotification)
    async def invalid_notification(request: Request, exc: InvalidNotification):
        return PlainTextResponse("invalid", status_code=400)


# ============================================================================
# ENDPOINTS
# ============================================================================

def _register_routes(app: FastAPI) -> None:

    # ---------------------------------------------------------------- health

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request, ctx: AppContext = Depends(get_context)):
        """Health check endpoint"""
        uptime = (datetime.now(timezone.utc) - request.app.state.started_at).total_seconds()
        return HealthResponse(
            status="healthy",
            version=VERSION,
            uptime_seconds=uptime,
            processor=ctx.processor.name,
            database="postgres" if ctx.database else "in_memory",
        )

    @app.get("/ready")
    async def readiness_check(ctx: AppContext = Depends(get_context)):
        """Kubernetes readiness probe"""
        if ctx.database:
            try:
                await ctx.database.fetch_one("SELECT 1")
            except Exception as e:
                logger.warning("readiness_failed", error=str(e))
                return JSONResponse(status_code=503, content={"ready": False})
        return {"ready": True}

    @app.get("/live")
    async def liveness_check():
        """Kubernetes liveness probe"""
        return {"live": True}

    # ---------------------------------------------------------------- preview

    @app.post("/preview-calculation")
    @app.post("/preview")
    async def preview_calculation(payload: CalculationInput):
        """Breakdown only; no payment, no persistence."""
        return {label: float(value) for label, value in calculate_breakdown(payload).items()}

    # ---------------------------------------------------------------- checkout

    @app.post("/create-payment")
    @app.post("/checkout")
    async def create_payment(payload: OrderInput, ctx: AppContext = Depends(get_context)):
        result = await ctx.checkout.start_checkout(payload)
        return result.to_response()

    # ---------------------------------------------------------------- webhook

    @app.post("/webhook")
    @app.post("/payment-webhook")
    async def payment_webhook(request: Request, ctx: AppContext = Depends(get_context)):
        """
        Payment confirmations. 200 "OK" acknowledges the event; 500 "error"
        asks the processor to redeliver. Internal detail never leaves.
        """
        body = await request.body()
        event = ctx.processor.parse_notification(body, request.query_params, request.headers)

        try:
            outcome = await ctx.fulfillment.handle_confirmation(event)
        except FulfillmentError as e:
            # PaymentStatusError or FulfillmentStepFailure: ask for redelivery
            logger.error("webhook_failed", error_type=type(e).__name__, error=str(e))
            return PlainTextResponse("error", status_code=500)

        logger.info("webhook_processed", outcome=outcome.value, payment_id=event.payment_id)
        return PlainTextResponse("OK", status_code=200)

    # ---------------------------------------------------------------- status / download

    @app.get("/status/{session_id}", response_model=ArtifactStatusResponse)
    @app.get("/artifact-status/{session_id}", response_model=ArtifactStatusResponse)
    async def artifact_status(session_id: str, ctx: AppContext = Depends(get_context)):
        return ArtifactStatusResponse(status=await ctx.status.status(session_id))

    @app.get("/download/{session_id}")
    @app.get("/artifact/{session_id}")
    async def download_artifact(session_id: str, ctx: AppContext = Depends(get_context)):
        data = await ctx.status.download(session_id)
        return Response(
            content=data,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{DOWNLOAD_FILENAME}"'},
            background=BackgroundTask(ctx.status.after_download, session_id),
        )

    # ---------------------------------------------------------------- admin

    @app.get("/admin/orders/summary")
    async def orders_summary(ctx: AppContext = Depends(get_context)):
        return await order_summary(ctx.pending_orders, ctx.config.pending_order_stale_hours)


# ============================================================================
# MAIN
# ============================================================================

app = create_app()


if __name__ == "__main__":
    config = AppConfig.from_env()
    uvicorn.run(
        "api.server:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level=config.log_level.lower(),
    )
