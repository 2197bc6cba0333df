# app/wallet/errors.py
"""
Wallet connection failures.

Every failure carries a single user-facing message plus diagnostic context
(raw provider code, message, data and traceback). Diagnostics stay on the
client for local debugging and are never sent to the server.
"""
import traceback
from typing import Any, Dict, Optional

# EIP-1193 / JSON-RPC error codes reported by injected providers
USER_REJECTED = 4001
UNRECOGNIZED_CHAIN = 4902
REQUEST_PENDING = -32002


class ProviderRpcError(Exception):
    """Raw error reported by a wallet provider for a single request."""

    def __init__(self, code: Optional[int] = None, message: str = "", data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    @property
    def user_rejected(self) -> bool:
        return self.code == USER_REJECTED

    def __repr__(self) -> str:
        return f"ProviderRpcError(code={self.code!r}, message={self.message!r})"


class WalletError(Exception):
    """Base class for wallet connection failures."""
    default_message = "failed to connect the wallet"

    def __init__(self, user_message: Optional[str] = None, cause: Optional[BaseException] = None):
        self.user_message = user_message or self.default_message
        self.cause = cause
        super().__init__(self.user_message)

    @property
    def diagnostics(self) -> Dict[str, Any]:
        """Full context of the failure, for local logs only."""
        cause = self.cause
        stack = None
        if cause is not None:
            stack = "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))
        return {
            "error": type(self).__name__,
            "message": self.user_message,
            "code": getattr(cause, "code", None),
            "raw_message": str(cause) if cause is not None else None,
            "data": getattr(cause, "data", None),
            "stack": stack,
        }


class NoProviderAvailable(WalletError):
    default_message = "no Ethereum wallet found; install MetaMask or another wallet extension"


class UserRejectedConnection(WalletError):
    default_message = "user cancelled the connection request"


class NoAccountsFound(WalletError):
    default_message = "no accounts found; create or import an account in your wallet"


class ChainReadFailure(WalletError):
    default_message = "could not read the current network from the wallet"


class NetworkSwitchRejected(WalletError):
    default_message = "user cancelled the network switch request"


class NetworkAddRejected(WalletError):
    default_message = "user cancelled the add network request"


class GenericProviderError(WalletError):
    default_message = "could not connect to the wallet; make sure the extension is enabled"


class ConnectionInvalidated(WalletError):
    """An account or network event superseded an in-flight connection attempt."""
    default_message = "the wallet changed during connection; please reconnect"
