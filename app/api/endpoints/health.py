# app/api/endpoints/health.py
from fastapi import APIRouter
import logging

from app.core.config import settings
from app.access.catalog import get_payment_options
from app.api.models.payment import (
    HealthConfig,
    HealthResponse,
    PaymentOption,
    PaymentOptionsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse, summary="Health Check")
async def health() -> HealthResponse:
    """ Basic health check endpoint, echoing the payment configuration. """
    logger.info("Health endpoint accessed.")
    return HealthResponse(
        status="ok",
        message="Server is running",
        config=HealthConfig(
            network=settings.NETWORK,
            payTo=settings.PAY_TO_ADDRESS,
            mode=settings.PAYMENT_MODE,
        ),
    )


@router.get("/payment-options", response_model=PaymentOptionsResponse, summary="List Payment Options")
async def payment_options() -> PaymentOptionsResponse:
    """
    Static catalog of purchasable access tiers.

    Returns:
        PaymentOptionsResponse: One entry per tier (24-hour session, one-time access)
    """
    options = [PaymentOption(**option) for option in get_payment_options()]
    return PaymentOptionsResponse(options=options)
