"""
Main FastAPI application for the Bookvault API.
Serves invoices, purchases and encrypted content delivery, wallet balances,
the Telegram webhook, health and metrics.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bookvault.core.config import settings
from bookvault.core.logging import configure_logging
from bookvault.api.routes import health, payments, purchases, telegram_webhook, wallet
from bookvault.services.container import ServiceContainer
from bookvault.services.errors import BookvaultError
from bookvault.utils.metrics import router as metrics_router


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    owned = getattr(app.state, "container", None) is None
    if owned:
        app.state.container = ServiceContainer()
    logger.info("app_started")
    try:
        yield
    finally:
        if owned:
            app.state.container.close()
            app.state.container = None


app = FastAPI(
    title="Bookvault API",
    description="Telegram Stars purchases and encrypted book delivery",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookvaultError)
async def bookvault_error_handler(request: Request, exc: BookvaultError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            extra={"path": request.url.path, "status_code": exc.status_code, "error": str(exc)},
        )
    content = {"error": type(exc).__name__, "detail": str(exc)}
    reason = exc.detail.get("reason")
    if reason:
        content["reason"] = reason
    return JSONResponse(status_code=exc.status_code, content=content)


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(payments.router)
app.include_router(purchases.router)
app.include_router(wallet.router)
app.include_router(telegram_webhook.router)
app.include_router(metrics_router)
