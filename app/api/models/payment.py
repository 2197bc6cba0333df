# app/api/models/payment.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.access.ledger import LedgerEntry
from app.api.models.session import SessionDetails, to_iso


class PaymentRequest(BaseModel):
    """
    Request body for the purchase endpoints. Every field is optional;
    simulated payments only record them as provenance.
    """
    walletAddress: Optional[str] = Field(
        None,
        description="Buyer's wallet address",
        examples=["0x1234567890abcdef1234567890abcdef12345678"]
    )
    transactionHash: Optional[str] = Field(
        None,
        description="Hash of the payment transaction (not verified)"
    )
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        description="Free-form details stored with the payment record"
    )


class PaymentOption(BaseModel):
    name: str
    endpoint: str
    price: str = Field(..., description="Display price, e.g. '$1.00'")
    description: str
    amountUsd: Optional[float] = None
    amountUsdc: Optional[str] = Field(None, description="Price in USDC base units (6 decimals)")
    validFor: Optional[str] = None


class PaymentOptionsResponse(BaseModel):
    options: List[PaymentOption]


class HealthConfig(BaseModel):
    network: str
    payTo: str
    mode: str


class HealthResponse(BaseModel):
    status: str
    message: Optional[str] = None
    config: HealthConfig


class PaymentDetails(BaseModel):
    """Echo of the payment that produced a grant."""
    amountUsd: float
    walletAddress: Optional[str] = None
    transactionHash: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class PurchaseResponse(BaseModel):
    """Response model for a successful purchase."""
    success: bool
    sessionId: str
    message: str
    session: SessionDetails
    payment: PaymentDetails


class PaymentRecord(BaseModel):
    """One payment ledger entry as served by /payments."""
    id: str
    type: str
    amountUsd: float
    walletAddress: Optional[str] = None
    transactionHash: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    createdAt: str

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "PaymentRecord":
        return cls(
            id=entry.id,
            type=entry.tier.value,
            amountUsd=entry.amount_usd,
            walletAddress=entry.wallet_address,
            transactionHash=entry.proof_reference,
            metadata=dict(entry.metadata) if entry.metadata is not None else None,
            createdAt=to_iso(entry.created_at),
        )


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentRecord]
