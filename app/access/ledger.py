# app/access/ledger.py
"""
Bounded, append-only payment history.

The ledger records every grant issuance for display and audit. It is
independent of grant state: expiring or consuming a grant never touches its
ledger entry. Only the most recent entries are kept (oldest evicted first).
"""
import copy
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from app.access.catalog import GrantTier
from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    """One issuance event. Mirrors the id of the grant that produced it."""
    id: str
    tier: GrantTier
    amount_usd: float
    created_at: datetime
    wallet_address: Optional[str] = None
    proof_reference: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = field(default=None, hash=False, compare=False)


def _detached(entry: LedgerEntry) -> LedgerEntry:
    if entry.metadata is None:
        return entry
    return replace(entry, metadata=copy.deepcopy(entry.metadata))


class PaymentLedger:
    """FIFO sequence capped at `max_entries`."""

    def __init__(self, max_entries: Optional[int] = None):
        """
        Args:
            max_entries: Maximum entries to retain. If None, uses config.
        """
        self._max_entries = max_entries if max_entries is not None else settings.LEDGER_MAX_ENTRIES
        self._entries: Deque[LedgerEntry] = deque(maxlen=self._max_entries)
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, entry: LedgerEntry) -> None:
        """Insert at the tail, evicting the head once the cap is exceeded."""
        # Keep our own copy so the caller's dict can't change history
        entry = _detached(entry)

        with self._lock:
            evicted = self._entries[0] if self._entries and len(self._entries) == self._max_entries else None
            self._entries.append(entry)

        if evicted is not None:
            logger.debug(f"Ledger full, evicted oldest entry {evicted.id}")

    def recent(self, limit: Optional[int] = None) -> List[LedgerEntry]:
        """
        Return the newest entries, most recent first.

        Args:
            limit: Maximum number of entries. If None, uses config.

        Returns:
            A new list of entry copies; mutating it, or any entry's metadata,
            does not affect the ledger
        """
        count = limit if limit is not None else settings.LEDGER_DEFAULT_LIMIT
        if count <= 0:
            return []

        with self._lock:
            # Newest-first before the stable sort so equal timestamps keep that order
            snapshot = list(reversed(self._entries))

        snapshot.sort(key=lambda entry: entry.created_at, reverse=True)
        return [_detached(entry) for entry in snapshot[:count]]
