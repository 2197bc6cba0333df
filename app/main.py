# app/main.py
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.core.config import settings
from app.access.catalog import PRODUCTS, format_price
from app.access.service import GrantService
from app.api.endpoints import health, payments, sessions
import logging

# Configure basic logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


def create_app(grant_service: Optional[GrantService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    One GrantService is created per app and shared by every request handler
    through app.state; tests pass their own to control the clock.
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_PREFIX}/openapi.json"
    )
    app.state.grant_service = grant_service if grant_service is not None else GrantService()

    # Browser frontends run on a different origin during development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # The prefix ensures all routes start with /api
    app.include_router(health.router, prefix=settings.API_PREFIX, tags=["default"])
    app.include_router(payments.router, prefix=settings.API_PREFIX, tags=["payments"])
    app.include_router(sessions.router, prefix=settings.API_PREFIX, tags=["sessions"])

    prices = ", ".join(f"{product.name} {format_price(product.amount_usd)}" for product in PRODUCTS.values())
    logger.info(
        f"{settings.PROJECT_NAME} ready: paying to {settings.PAY_TO_ADDRESS} on {settings.NETWORK} "
        f"(mode={settings.PAYMENT_MODE}); options: {prices}"
    )
    return app


app = create_app()
