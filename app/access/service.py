# app/access/service.py
"""
Grant issuance and validation.

GrantService is the single owner of the grant store and the payment ledger.
One instance is built per process (see app.main.create_app) and handed to
request handlers through a FastAPI dependency.

Payments are simulated: purchase always succeeds and the supplied transaction
hash is recorded as provenance only.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from app.access.catalog import GrantTier, get_product, lifetime_for
from app.access.grants import AccessGrant, AccessGrantStore, generate_grant_id
from app.access.ledger import LedgerEntry, PaymentLedger

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ValidationStatus(Enum):
    """Outcome of presenting a grant id."""
    VALID = "valid"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    ALREADY_CONSUMED = "already_consumed"


VALIDATION_ERRORS = {
    ValidationStatus.NOT_FOUND: "Session not found",
    ValidationStatus.EXPIRED: "Session expired",
    ValidationStatus.ALREADY_CONSUMED: "One-time access already used",
}


@dataclass(frozen=True)
class ValidationResult:
    status: ValidationStatus
    grant: Optional[AccessGrant] = None
    checked_at: Optional[datetime] = None

    @property
    def valid(self) -> bool:
        return self.status is ValidationStatus.VALID

    @property
    def error(self) -> Optional[str]:
        return VALIDATION_ERRORS.get(self.status)


@dataclass(frozen=True)
class PurchaseResult:
    grant_id: str
    grant: AccessGrant
    payment: LedgerEntry


class GrantService:
    """
    Issues grants for each tier and resolves them on lookup.

    Tier rules:
    - 24hour grants live 24 hours and can be validated any number of times.
    - onetime grants live 5 minutes and the first successful validation
      consumes them.
    """

    def __init__(
        self,
        store: Optional[AccessGrantStore] = None,
        ledger: Optional[PaymentLedger] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store if store is not None else AccessGrantStore()
        self._ledger = ledger if ledger is not None else PaymentLedger()
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    def purchase(
        self,
        tier: GrantTier,
        wallet_address: Optional[str] = None,
        proof_reference: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> PurchaseResult:
        """
        Issue a new grant and record the payment.

        Args:
            tier: Product tier being bought
            wallet_address: Buyer's wallet (provenance only)
            proof_reference: Transaction hash supplied by the client (not verified)
            metadata: Free-form details stored with the ledger entry

        Returns:
            PurchaseResult with the new grant id, the grant and its ledger entry
        """
        product = get_product(tier)
        now = self.now()
        grant = AccessGrant(
            id=generate_grant_id(),
            tier=tier,
            created_at=now,
            expires_at=now + lifetime_for(tier),
            consumed=False,
            wallet_address=wallet_address,
            proof_reference=proof_reference,
        )
        self._store.insert(grant)

        entry = LedgerEntry(
            id=grant.id,
            tier=tier,
            amount_usd=product.amount_usd,
            created_at=now,
            wallet_address=wallet_address,
            proof_reference=proof_reference,
            metadata=metadata,
        )
        self._ledger.append(entry)

        logger.info(
            f"Issued {tier.value} grant {grant.id} for ${product.amount_usd:.2f} "
            f"(wallet={wallet_address or 'n/a'}, expires={grant.expires_at.isoformat()})"
        )
        return PurchaseResult(grant_id=grant.id, grant=grant, payment=entry)

    def validate(self, grant_id: str) -> ValidationResult:
        """
        Resolve a grant id against the store's current state.

        The first validation of a live onetime grant is also the write that
        consumes it; it reports VALID and every later call reports
        ALREADY_CONSUMED. Unknown ids never touch the store.
        """
        now = self.now()
        grant = self._store.get(grant_id)

        if grant is None:
            logger.info(f"Validation of unknown grant {grant_id}")
            return ValidationResult(status=ValidationStatus.NOT_FOUND, checked_at=now)

        if grant.is_expired(now):
            return ValidationResult(status=ValidationStatus.EXPIRED, grant=grant, checked_at=now)

        if grant.single_use:
            if not self._store.update_consumed(grant_id):
                # Lost the race or already used
                return ValidationResult(
                    status=ValidationStatus.ALREADY_CONSUMED,
                    grant=self._store.get(grant_id),
                    checked_at=now,
                )
            grant = self._store.get(grant_id)
            logger.info(f"Consumed onetime grant {grant_id}")

        return ValidationResult(status=ValidationStatus.VALID, grant=grant, checked_at=now)

    def list_active(self) -> List[AccessGrant]:
        """Point-in-time snapshot of every currently valid grant."""
        return self._store.all_valid(self.now())

    def list_recent_payments(self, limit: Optional[int] = None) -> List[LedgerEntry]:
        """Most recent ledger entries, newest first."""
        return self._ledger.recent(limit)
