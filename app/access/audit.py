# app/access/audit.py
"""
Audit logging for access grants.

This module records grant events for:
- Dispute resolution ("I paid but my pass was rejected")
- Reconciliation against wallet activity
- Debugging validation failures

Log format: JSON lines (one event per line)
Log location: Configured via AUDIT_LOG_PATH
Enabled via: AUDIT_LOG_ENABLED

Events logged:
- Grant issued (tier, amount, expiry, transaction hash)
- Grant validated (tier, whether it was consumed)
- Grant rejected (reason: not found, expired, already used)
- Error (type, context)

The in-memory payment ledger is bounded and lost on restart; this log is the
durable trail when an operator needs one.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    GRANT_ISSUED = "grant_issued"
    GRANT_VALIDATED = "grant_validated"
    GRANT_REJECTED = "grant_rejected"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a short request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.AUDIT_LOG_PATH)


def ensure_audit_log_directory() -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    try:
        log_dir = get_audit_log_path().parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created audit log directory: {log_dir}")
        return True
    except OSError as e:
        logger.error(f"Failed to create audit log directory: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        wallet_address: Wallet address attached to the grant (if any)
        request_id: Unique request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the log.

    Returns:
        The request_id used for this event, or None if auditing is disabled
        or the write failed
    """
    if not settings.AUDIT_LOG_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        ensure_audit_log_directory()
        with open(get_audit_log_path(), "a") as f:
            f.write(json.dumps(event, default=str) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


def log_grant_issued(
    client_ip: Optional[str],
    grant_id: str,
    tier: str,
    amount_usd: float,
    expires_at: str,
    transaction_hash: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a grant issuance."""
    return log_audit_event(
        event_type=AuditEventType.GRANT_ISSUED,
        data={
            "grant_id": grant_id,
            "tier": tier,
            "amount_usd": amount_usd,
            "expires_at": expires_at,
            "transaction_hash": transaction_hash,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_grant_validated(
    client_ip: Optional[str],
    grant_id: str,
    tier: str,
    consumed: bool,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a successful validation (and consumption, for onetime grants)."""
    return log_audit_event(
        event_type=AuditEventType.GRANT_VALIDATED,
        data={
            "grant_id": grant_id,
            "tier": tier,
            "consumed": consumed,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_grant_rejected(
    client_ip: Optional[str],
    grant_id: str,
    reason: str,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a rejected validation."""
    return log_audit_event(
        event_type=AuditEventType.GRANT_REJECTED,
        data={
            "grant_id": grant_id,
            "reason": reason,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_error(
    client_ip: Optional[str],
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an error event."""
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        request_id=request_id
    )
