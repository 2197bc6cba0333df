# app/access/grants.py
"""
In-memory registry of issued access grants.

A grant is the capability token handed to a buyer: whoever holds the id can
present it for validation. Grants are never deleted; validity is a pure
function of the clock and the consumed flag, so expired and used grants stay
queryable.

All mutations go through a single lock, which makes the consume step an
atomic compare-and-set even when requests are served from several threads.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional

from app.access.catalog import GrantTier

logger = logging.getLogger(__name__)


def generate_grant_id() -> str:
    """Generate an opaque 128-bit random grant id."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class AccessGrant:
    """Immutable snapshot of a grant. The store swaps in new snapshots on change."""
    id: str
    tier: GrantTier
    created_at: datetime
    expires_at: datetime
    consumed: bool = False
    wallet_address: Optional[str] = None
    proof_reference: Optional[str] = None

    @property
    def single_use(self) -> bool:
        return self.tier is GrantTier.SINGLE_USE

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_used(self) -> bool:
        return self.single_use and self.consumed

    def is_valid(self, now: datetime) -> bool:
        return not self.is_expired(now) and not self.is_used()


class AccessGrantStore:
    """
    Mapping from grant id to AccessGrant.

    Owned by GrantService; nothing else writes to it.
    """

    def __init__(self):
        self._grants: Dict[str, AccessGrant] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._grants)

    def __contains__(self, grant_id: str) -> bool:
        with self._lock:
            return grant_id in self._grants

    def insert(self, grant: AccessGrant) -> None:
        """
        Store a newly issued grant.

        Ids are uuid4 values, so collisions are not retried.
        """
        with self._lock:
            self._grants[grant.id] = grant
        logger.debug(f"Stored grant {grant.id} ({grant.tier.value})")

    def get(self, grant_id: str) -> Optional[AccessGrant]:
        """Return the current snapshot of a grant, or None if unknown."""
        with self._lock:
            return self._grants.get(grant_id)

    def update_consumed(self, grant_id: str) -> bool:
        """
        Atomically flip a grant's consumed flag from False to True.

        Args:
            grant_id: Id of the grant to consume

        Returns:
            True if this call performed the flip, False if the grant is unknown
            or was already consumed by someone else
        """
        with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None or grant.consumed:
                return False
            self._grants[grant_id] = replace(grant, consumed=True)
            return True

    def all_valid(self, now: datetime) -> List[AccessGrant]:
        """Return snapshots of every grant that is valid at `now`."""
        with self._lock:
            grants = list(self._grants.values())
        return [grant for grant in grants if grant.is_valid(now)]
