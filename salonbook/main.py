# salonbook/main.py
"""
SalonBook API application.

Run locally with:
    uvicorn salonbook.main:app --reload
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator, Dict

from fastapi import APIRouter, FastAPI, Response

from .core.config import settings
from .database import init_db
from .errors import register_error_handlers
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import appointments as appointments_v1, payments as payments_v1

API_TITLE = "SalonBook API"
API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(f"Environment: {settings.environment}")

    if settings.auto_create_tables:
        init_db()
        logger.info("Database tables ensured")

    if settings.payment_gateway_fake:
        logger.warning("In-memory payment gateway is enabled; no real money will move")

    yield

    logger.info(f"{API_TITLE} shutting down...")


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description="Salon appointment booking with gateway-backed payments",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    # Register unified error envelope handlers
    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(appointments_v1.router, prefix="/appointments")
    api_v1.include_router(payments_v1.router, prefix="/payments")
    app.include_router(api_v1)

    @app.get("/health", tags=["health"])
    def health_check() -> Dict[str, str]:
        return {"status": "healthy", "service": "salonbook", "version": API_VERSION}

    @app.get("/metrics", tags=["monitoring"], include_in_schema=False)
    def metrics() -> Response:
        return Response(
            content=prometheus_metrics.get_metrics(),
            media_type=prometheus_metrics.get_content_type(),
        )

    return app


app = create_app()
