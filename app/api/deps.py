# app/api/deps.py
import logging

from fastapi import Request
from pydantic import ValidationError

from app.access.service import GrantService
from app.api.models.payment import PaymentRequest

logger = logging.getLogger(__name__)


def get_grant_service(request: Request) -> GrantService:
    """The process-wide GrantService built by create_app()."""
    return request.app.state.grant_service


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


async def parse_payment_request(request: Request) -> PaymentRequest:
    """
    Read a purchase body leniently.

    Empty, unparsable, non-object or wrongly typed bodies all fall back to an
    empty request instead of rejecting the purchase.
    """
    try:
        body = await request.json()
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors
        logger.debug(f"Unparsable purchase body, using defaults: {e}")
        return PaymentRequest()

    if not isinstance(body, dict):
        logger.debug(f"Purchase body is not an object ({type(body).__name__}), using defaults")
        return PaymentRequest()

    try:
        return PaymentRequest.model_validate(body)
    except ValidationError as e:
        logger.warning(f"Invalid purchase body, using defaults: {e.error_count()} error(s)")
        return PaymentRequest()
