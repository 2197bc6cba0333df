# app/client/gateway.py
"""
Typed HTTP client for the access gateway API.

This is the layer a UI drives: it sends purchase requests carrying the
connected wallet address and parses every answer into the same pydantic
models the server emits.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

import requests
from requests.exceptions import RequestException

from app.access.catalog import GrantTier
from app.api.models.payment import (
    HealthResponse,
    PaymentHistoryResponse,
    PaymentOptionsResponse,
    PurchaseResponse,
)
from app.api.models.session import ActiveSessionsResponse, SessionValidationResponse, to_iso
from app.core.config import settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """The gateway answered with an unexpected HTTP status."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"Gateway returned {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class ClientGateway:
    """
    Thin request layer over the gateway's JSON API.

    Args:
        base_url: API root including the prefix. Uses API_BASE_URL if not provided.
        timeout: Request timeout in seconds. Uses GATEWAY_TIMEOUT_SECONDS if not provided.
        session: requests.Session to reuse (handy for tests and connection pooling).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self._session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        accept_statuses: Iterable[int] = ()
    ) -> Dict[str, Any]:
        url = self._url(path)
        try:
            response = self._session.request(method, url, json=payload, timeout=self.timeout)
        except RequestException as e:
            logger.error(f"Error calling gateway ({method} {url}): {e}")
            raise

        if not response.ok and response.status_code not in accept_statuses:
            detail = response.text
            logger.error(f"Gateway {method} {url} failed with {response.status_code}: {detail}")
            raise GatewayError(response.status_code, detail)

        return response.json()

    def get_health(self) -> HealthResponse:
        return HealthResponse.model_validate(self._request("GET", "/health"))

    def get_payment_options(self) -> PaymentOptionsResponse:
        return PaymentOptionsResponse.model_validate(self._request("GET", "/payment-options"))

    def purchase(
        self,
        tier: GrantTier,
        wallet_address: str,
        transaction_hash: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> PurchaseResponse:
        """
        Buy access for the connected wallet.

        Raises:
            ValueError: If no wallet address is given (connect a wallet first)
            GatewayError: If the gateway rejects the request
        """
        if not wallet_address:
            raise ValueError("Connect a wallet before requesting a payment")

        if metadata is None:
            metadata = {
                "product": tier.value,
                "requestedAt": to_iso(datetime.now(timezone.utc)),
            }

        path = "/pay/session" if tier is GrantTier.TIMED_SESSION else "/pay/onetime"
        payload: Dict[str, Any] = {"walletAddress": wallet_address, "metadata": metadata}
        if transaction_hash:
            payload["transactionHash"] = transaction_hash

        result = PurchaseResponse.model_validate(self._request("POST", path, payload))
        logger.info(f"Purchased {tier.value} access: {result.sessionId}")
        return result

    def purchase_session(self, wallet_address: str, **kwargs) -> PurchaseResponse:
        return self.purchase(GrantTier.TIMED_SESSION, wallet_address, **kwargs)

    def purchase_onetime(self, wallet_address: str, **kwargs) -> PurchaseResponse:
        return self.purchase(GrantTier.SINGLE_USE, wallet_address, **kwargs)

    def validate_session(self, session_id: str) -> SessionValidationResponse:
        """
        Present a session id. An unknown id (404) is a normal answer with
        valid=False. Consumes onetime passes.
        """
        if not session_id or not session_id.strip():
            raise ValueError("Please enter a session ID")
        path = f"/session/{quote(session_id.strip(), safe='')}"
        data = self._request("GET", path, accept_statuses=(404,))
        return SessionValidationResponse.model_validate(data)

    def get_active_sessions(self) -> ActiveSessionsResponse:
        return ActiveSessionsResponse.model_validate(self._request("GET", "/sessions"))

    def get_payments(self) -> PaymentHistoryResponse:
        return PaymentHistoryResponse.model_validate(self._request("GET", "/payments"))
