# app/api/endpoints/sessions.py
from fastapi import APIRouter, Depends, Path, Request, status
from fastapi.responses import JSONResponse
import logging

from app.access import audit
from app.access.service import GrantService, ValidationStatus
from app.api.deps import get_client_ip, get_grant_service
from app.api.models.session import (
    ActiveSessionsResponse,
    SessionDetails,
    SessionValidationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/session/{session_id}",
    response_model=SessionValidationResponse,
    summary="Validate a Session"
)
async def validate_session(
    request: Request,
    session_id: str = Path(..., description="Session id returned by a purchase."),
    service: GrantService = Depends(get_grant_service)
) -> JSONResponse:
    """
    Check whether a session id grants access right now.

    Not idempotent for onetime passes: the first successful call consumes the
    pass and reports valid; later calls report it as already used.

    Returns 404 only when the id is unknown. Expired or used grants answer 200
    with valid=false, an error string and the grant details.
    """
    client_ip = get_client_ip(request)
    result = service.validate(session_id)

    if result.status is ValidationStatus.NOT_FOUND:
        audit.log_grant_rejected(client_ip, session_id, reason=result.status.value)
        body = SessionValidationResponse(valid=False, error=result.error)
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=body.model_dump(exclude_none=True)
        )

    grant = result.grant

    if not result.valid:
        logger.info(f"Session {session_id} rejected: {result.error}")
        audit.log_grant_rejected(
            client_ip, session_id, reason=result.status.value, wallet_address=grant.wallet_address
        )
        body = SessionValidationResponse(
            valid=False,
            error=result.error,
            session=SessionDetails.from_grant(grant, used=grant.consumed if grant.single_use else None),
        )
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(exclude_none=True))

    remaining_ms = int((grant.expires_at - result.checked_at).total_seconds() * 1000)
    audit.log_grant_validated(
        client_ip, session_id, tier=grant.tier.value, consumed=grant.consumed,
        wallet_address=grant.wallet_address
    )
    body = SessionValidationResponse(
        valid=True,
        session=SessionDetails.from_grant(grant, remainingTime=remaining_ms),
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(exclude_none=True))


@router.get(
    "/sessions",
    response_model=ActiveSessionsResponse,
    response_model_exclude_none=True,
    summary="List Active Sessions"
)
async def list_sessions(service: GrantService = Depends(get_grant_service)) -> ActiveSessionsResponse:
    """
    Snapshot of every session that is currently valid (demo only).
    """
    grants = service.list_active()
    return ActiveSessionsResponse(sessions=[SessionDetails.from_grant(grant) for grant in grants])
