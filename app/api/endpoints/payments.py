# app/api/endpoints/payments.py
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
import logging
from typing import Optional

from app.access import audit
from app.access.catalog import GrantTier, get_product
from app.access.service import GrantService
from app.api.deps import get_client_ip, get_grant_service, parse_payment_request
from app.api.models.payment import (
    PaymentDetails,
    PaymentHistoryResponse,
    PaymentRecord,
    PurchaseResponse,
)
from app.api.models.session import SessionDetails, to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


async def _purchase(request: Request, service: GrantService, tier: GrantTier) -> PurchaseResponse:
    """Shared body of the purchase endpoints."""
    body = await parse_payment_request(request)
    product = get_product(tier)
    client_ip = get_client_ip(request)

    try:
        result = service.purchase(
            tier,
            wallet_address=body.walletAddress,
            proof_reference=body.transactionHash,
            metadata=body.metadata,
        )
    except Exception as e:
        logger.error(f"Unexpected error issuing {tier.value} grant: {e}", exc_info=True)
        audit.log_error(client_ip, type(e).__name__, str(e), context={"tier": tier.value})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while issuing access."
        )

    audit.log_grant_issued(
        client_ip=client_ip,
        grant_id=result.grant_id,
        tier=tier.value,
        amount_usd=product.amount_usd,
        expires_at=to_iso(result.grant.expires_at),
        transaction_hash=body.transactionHash,
        wallet_address=body.walletAddress,
    )

    return PurchaseResponse(
        success=True,
        sessionId=result.grant_id,
        message=product.purchase_message,
        session=SessionDetails.from_grant(result.grant, validFor=product.valid_for),
        payment=PaymentDetails(
            amountUsd=product.amount_usd,
            walletAddress=body.walletAddress,
            transactionHash=body.transactionHash,
            metadata=body.metadata,
        ),
    )


@router.post(
    "/pay/session",
    response_model=PurchaseResponse,
    response_model_exclude_none=True,
    summary="Buy 24-Hour Access ($1.00)"
)
async def pay_session(
    request: Request,
    service: GrantService = Depends(get_grant_service)
) -> PurchaseResponse:
    """
    Purchase a session id valid for 24 hours of unlimited access.

    Body (all optional): walletAddress, transactionHash, metadata.
    Payment is simulated and always succeeds.
    """
    return await _purchase(request, service, GrantTier.TIMED_SESSION)


@router.post(
    "/pay/onetime",
    response_model=PurchaseResponse,
    response_model_exclude_none=True,
    summary="Buy One-Time Access ($0.10)"
)
async def pay_onetime(
    request: Request,
    service: GrantService = Depends(get_grant_service)
) -> PurchaseResponse:
    """
    Purchase a single-use pass, valid for 5 minutes.

    The first successful GET /session/{id} consumes the pass.
    """
    return await _purchase(request, service, GrantTier.SINGLE_USE)


@router.get(
    "/payments",
    response_model=PaymentHistoryResponse,
    response_model_exclude_none=True,
    summary="Recent Payments"
)
async def list_payments(
    limit: Optional[int] = Query(None, ge=1, le=100, description="Maximum entries (default 25)"),
    service: GrantService = Depends(get_grant_service)
) -> PaymentHistoryResponse:
    """
    Inspect recorded payments, most recent first (demo only).
    """
    entries = service.list_recent_payments(limit)
    return PaymentHistoryResponse(payments=[PaymentRecord.from_entry(entry) for entry in entries])
